import logging
from decimal import Decimal

from sqlalchemy import func, select

import identity
from config import Settings
from database import Database
from models import ROLE_ADMIN, Category, Product, User

logger = logging.getLogger(__name__)

SAMPLE_CATEGORIES = [
    {"name": "Fruits & Vegetables", "description": "Fresh fruits and vegetables", "image": "/uploads/categories/fruits-vegetables.jpg"},
    {"name": "Dairy & Eggs", "description": "Milk, cheese, butter, and eggs", "image": "/uploads/categories/dairy-eggs.jpg"},
    {"name": "Meat & Seafood", "description": "Fresh meat and seafood", "image": "/uploads/categories/meat-seafood.jpg"},
    {"name": "Bakery", "description": "Bread, cakes, and pastries", "image": "/uploads/categories/bakery.jpg"},
    {"name": "Beverages", "description": "Juices, soft drinks, and water", "image": "/uploads/categories/beverages.jpg"},
]

# (name, description, price, original price, category, image, unit, stock, featured)
SAMPLE_PRODUCTS = [
    ("Organic Bananas", "Sweet and nutritious organic bananas", "1.99", "2.49", "Fruits & Vegetables", "/uploads/products/bananas.jpg", "bunch", 50, True),
    ("Red Apples", "Crisp and juicy red apples", "2.99", "3.49", "Fruits & Vegetables", "/uploads/products/apples.jpg", "kg", 40, True),
    ("Whole Milk", "Fresh whole milk", "3.49", "3.99", "Dairy & Eggs", "/uploads/products/milk.jpg", "gallon", 30, True),
    ("Large Eggs", "Farm fresh large eggs", "4.99", "5.49", "Dairy & Eggs", "/uploads/products/eggs.jpg", "dozen", 25, False),
    ("Chicken Breast", "Boneless, skinless chicken breast", "8.99", "9.99", "Meat & Seafood", "/uploads/products/chicken.jpg", "kg", 20, True),
]


def seed_sample_data(db: Database, settings: Settings) -> bool:
    """Insert sample categories, products and an admin account into an empty store."""
    with db.transaction() as session:
        if session.scalar(select(func.count(Category.id))):
            logger.info("Sample data already present, skipping seed")
            return False

        categories = {}
        for values in SAMPLE_CATEGORIES:
            category = Category(**values)
            session.add(category)
            categories[values["name"]] = category
        session.flush()

        for name, description, price, original, category, image, unit, stock, featured in SAMPLE_PRODUCTS:
            session.add(
                Product(
                    name=name,
                    description=description,
                    price=Decimal(price),
                    original_price=Decimal(original),
                    category_id=categories[category].id,
                    image=image,
                    unit=unit,
                    stock=stock,
                    featured=featured,
                )
            )

        admin_email = identity.normalize_email(settings.admin_email)
        exists = session.scalar(select(User.id).where(User.email == admin_email))
        if exists is None:
            session.add(
                User(
                    full_name="Admin User",
                    email=admin_email,
                    password=identity.hash_password(settings.admin_password, settings.bcrypt_rounds),
                    role=ROLE_ADMIN,
                )
            )
    logger.info(
        "Seeded %s categories, %s products and admin %s",
        len(SAMPLE_CATEGORIES), len(SAMPLE_PRODUCTS), settings.admin_email,
    )
    return True
