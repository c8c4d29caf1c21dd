"""ThreadCart storefront service: catalog, cart, checkout and order lifecycle."""

__version__ = "1.0.0"
