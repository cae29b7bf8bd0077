"""Durable storage backend for thread aggregates"""
from .threads import ThreadStorage, StorageError

__all__ = ["ThreadStorage", "StorageError"]
