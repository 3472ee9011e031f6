"""Product catalog."""

from pauaffiliate.catalog.models import Product

__all__ = ["Product"]
