"""Storefront e-commerce microservices."""

__version__ = "1.0.0"
