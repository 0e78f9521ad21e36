"""Database package for order persistence."""
from .connection import Database
from .models import Base, OrderRecord
from .repository import SqlAlchemyOrderRepository

__all__ = ["Base", "Database", "OrderRecord", "SqlAlchemyOrderRepository"]
