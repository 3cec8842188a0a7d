"""Database package for the Work Item Tracker."""

from .base import Base, get_db, init_database, transactional

__all__ = ["Base", "get_db", "init_database", "transactional"]
