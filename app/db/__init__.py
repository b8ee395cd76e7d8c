from .base import Base
from .models.product import Product  # Registers products table
