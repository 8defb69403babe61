"""
SQLAlchemy declarative base shared by every access-control model.

Kept free of model and repository imports so any module can import Base
without creating a cycle.
"""

from sqlalchemy.orm import declarative_base

Base = declarative_base()
