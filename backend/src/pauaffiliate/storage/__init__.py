"""Persistence layer."""

from pauaffiliate.storage.db import Database, db
from pauaffiliate.storage.models import Base

__all__ = ["Base", "Database", "db"]
