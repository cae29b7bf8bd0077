"""SQLAlchemy persistence for thread aggregates"""
from .models import Base, ThreadRecord, StorageMeta, SCHEMA_VERSION
from .crud import ThreadCRUD, MetaCRUD

__all__ = ["Base", "ThreadRecord", "StorageMeta", "SCHEMA_VERSION", "ThreadCRUD", "MetaCRUD"]
