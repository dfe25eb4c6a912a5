"""Storefront service: catalog, cart, checkout, order lifecycle and payments"""

__version__ = "1.0.0"
