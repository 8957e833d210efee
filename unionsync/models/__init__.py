"""
Models package: export all SQLAlchemy models.
"""

from unionsync.models.base import Base
from unionsync.models.card import Card, CardRecord

__all__ = ["Base", "Card", "CardRecord"]
