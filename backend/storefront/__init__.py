"""Storefront order-fulfillment service."""
