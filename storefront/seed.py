"""Sample catalog used to seed an empty store."""
from typing import List

from .schemas import ProductCreate

SAMPLE_PRODUCTS: List[dict] = [
    {
        "name": "Windows 11 Pro",
        "description": "Windows 11 Pro Digital License - Lifetime activation for 1 PC",
        "image": "/placeholder-win11.png",
        "price": 400.0,
        "original_price": 850.0,
        "rating": 5,
        "review_count": 19,
        "badge": "Bestseller",
        "category": "microsoft",
        "stock": 50,
    },
    {
        "name": "Windows 10 Pro",
        "description": "Windows 10 Pro Digital License - Lifetime activation",
        "image": "/placeholder-win10.png",
        "price": 350.0,
        "original_price": 399.0,
        "rating": 4,
        "review_count": 62,
        "category": "microsoft",
        "stock": 100,
    },
    {
        "name": "Windows + Office Combo",
        "description": "Windows 10 Pro + Office 2021 Bundle",
        "image": "/placeholder-combo.png",
        "price": 600.0,
        "original_price": 800.0,
        "rating": 5,
        "review_count": 45,
        "badge": "Sale",
        "category": "microsoft",
        "stock": 30,
    },
    {
        "name": "Microsoft Office 365",
        "description": "Office 365 Personal - 1 Year Subscription",
        "image": "/placeholder-office365.png",
        "price": 400.0,
        "original_price": 600.0,
        "rating": 4,
        "review_count": 14,
        "category": "microsoft",
        "stock": 75,
    },
    {
        "name": "Microsoft Office 2021 Pro Plus",
        "description": "Office 2021 Professional Plus - Lifetime License",
        "image": "/placeholder-office2021.png",
        "price": 500.0,
        "original_price": 1500.0,
        "rating": 5,
        "review_count": 86,
        "category": "microsoft",
        "stock": 60,
    },
]


def sample_products() -> List[ProductCreate]:
    return [ProductCreate(**p) for p in SAMPLE_PRODUCTS]
