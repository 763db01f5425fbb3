"""Database package."""

from taskdesk.db.base import Base, BaseModel
from taskdesk.db.session import get_db_session

__all__ = ["Base", "BaseModel", "get_db_session"]
