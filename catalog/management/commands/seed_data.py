"""
Management command to seed the database with sample data.

Generates:
- admin and buyer groups with one demo user each
- grocery categories
- products with random prices and stock levels

Usage:
    python manage.py seed_data
    python manage.py seed_data --clear  # Clear existing data first
"""
import random
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.contrib.auth.models import Group
from django.core.management.base import BaseCommand
from django.db import transaction

from catalog.models import Category, Product
from core.permissions import ADMIN_ROLE, BUYER_ROLE

DEMO_PASSWORD = 'password123'


class Command(BaseCommand):
    help = 'Seed the database with roles, demo users, grocery categories and products'

    def add_arguments(self, parser):
        parser.add_argument(
            '--clear',
            action='store_true',
            help='Clear existing catalog, cart and order data before seeding',
        )
        parser.add_argument(
            '--products',
            type=int,
            default=60,
            help='Number of products to create (default: 60)',
        )

    def handle(self, *args, **options):
        if options['clear']:
            self.stdout.write('Clearing existing data...')
            self._clear_data()

        self.stdout.write('Starting database seeding...')

        with transaction.atomic():
            self._create_users()
            categories = self._create_categories()
            self._create_products(options['products'], categories)

        self.stdout.write(self.style.SUCCESS('Database seeding completed successfully!'))

    def _clear_data(self):
        """Clear all catalog, cart and order data."""
        from cart.models import CartItem, CheckoutSession
        from orders.models import Order, OrderStatusLog

        OrderStatusLog.objects.all().delete()
        Order.objects.all().delete()
        CartItem.objects.all().delete()
        CheckoutSession.objects.all().delete()
        Product.objects.all().delete()
        Category.objects.all().delete()

        self.stdout.write(self.style.WARNING('All existing data cleared.'))

    def _create_users(self):
        """Create the two role groups and a demo account for each."""
        User = get_user_model()
        demo_accounts = [
            (ADMIN_ROLE, 'admin@example.com', 'Store', 'Admin'),
            (BUYER_ROLE, 'buyer@example.com', 'Budi', 'Santoso'),
        ]

        for role, email, first_name, last_name in demo_accounts:
            group, _ = Group.objects.get_or_create(name=role)
            user, created = User.objects.get_or_create(
                username=role,
                defaults={'email': email, 'first_name': first_name, 'last_name': last_name}
            )
            if created:
                user.set_password(DEMO_PASSWORD)
                user.save()
                self.stdout.write(f'  Created user: {user.username} ({role})')
            user.groups.add(group)

        self.stdout.write(self.style.SUCCESS('Created admin and buyer roles'))

    def _create_categories(self):
        """Create grocery categories."""
        category_names = [
            'Fruits', 'Vegetables', 'Dairy & Eggs', 'Meat & Seafood',
            'Bakery', 'Rice & Grains', 'Snacks', 'Beverages',
            'Spices & Sauces', 'Frozen Food',
        ]

        categories = []
        for name in category_names:
            category, created = Category.objects.get_or_create(name=name)
            categories.append(category)
            if created:
                self.stdout.write(f'  Created category: {name}')

        self.stdout.write(self.style.SUCCESS(f'Created {len(categories)} categories'))
        return categories

    def _create_products(self, count, categories):
        """Create products with random prices (Rp 2.000 - 150.000) and stock."""
        product_templates = {
            'Fruits': ['Banana', 'Mango', 'Apple', 'Orange', 'Papaya', 'Watermelon'],
            'Vegetables': ['Spinach', 'Carrot', 'Tomato', 'Shallot', 'Garlic', 'Chili'],
            'Dairy & Eggs': ['Fresh Milk', 'Chicken Eggs', 'Cheddar Cheese', 'Yogurt', 'Butter'],
            'Meat & Seafood': ['Chicken Breast', 'Beef Slices', 'Shrimp', 'Tilapia', 'Squid'],
            'Bakery': ['White Bread', 'Croissant', 'Donut', 'Whole Wheat Bread'],
            'Rice & Grains': ['Jasmine Rice', 'Brown Rice', 'Oatmeal', 'Green Beans'],
            'Snacks': ['Potato Chips', 'Cassava Crackers', 'Peanuts', 'Chocolate Bar'],
            'Beverages': ['Mineral Water', 'Iced Tea', 'Ground Coffee', 'Orange Juice'],
            'Spices & Sauces': ['Sweet Soy Sauce', 'Chili Sauce', 'Cooking Oil', 'Sugar', 'Salt'],
            'Frozen Food': ['Chicken Nuggets', 'Fish Balls', 'Dumplings', 'French Fries'],
        }
        sizes = ['250g', '500g', '1kg', '2kg', '1L', 'Pack', 'Family Pack']

        existing_names = set(Product.objects.values_list('name', flat=True))
        products = []

        self.stdout.write(f'Creating {count} products...')

        for i in range(count):
            category = random.choice(categories)
            base_name = random.choice(product_templates.get(category.name, ['Item']))

            # Try a few sizes before falling back to a numbered name
            for _ in range(10):
                name = f"{base_name} {random.choice(sizes)}"
                if name not in existing_names:
                    break
            else:
                name = f"{base_name} #{i + 1}"
            existing_names.add(name)

            products.append(Product(
                name=name,
                description=f"Fresh {base_name.lower()} from our {category.name.lower()} aisle.",
                price=Decimal(random.randrange(2000, 150000, 500)),
                stock=random.choice([0, 3, 8] + [random.randint(10, 200)] * 7),
                category=category,
                is_active=random.random() > 0.05  # 95% active
            ))

        Product.objects.bulk_create(products)

        self.stdout.write(self.style.SUCCESS(f'Created {len(products)} products'))
        return products
