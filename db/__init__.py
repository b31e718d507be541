"""
Database module for the identity engine.

Provides SQLAlchemy models, engine, and repositories.
"""

from db.engine import Base, SessionLocal, dispose_engine, init_engine

__all__ = ["Base", "SessionLocal", "dispose_engine", "init_engine"]
