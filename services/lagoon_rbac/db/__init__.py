"""Legacy API database module."""

from .models import Base
from .session import close_db, create_engine, create_session_factory, init_db

__all__ = ["Base", "close_db", "create_engine", "create_session_factory", "init_db"]
