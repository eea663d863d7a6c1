"""Storefront API: catalogue, cart, orders and card payments."""

__version__ = "1.0.0"
