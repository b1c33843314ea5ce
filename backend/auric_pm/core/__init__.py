"""
Auric PM - Core Package
=======================

Store, models, schemas and the project-management services.
"""

from auric_pm.core.config import settings
from auric_pm.core.database import Base, atomic, get_db, get_db_session

__all__ = ["Base", "atomic", "get_db", "get_db_session", "settings"]
