from sqlalchemy.orm import Session
from sqlalchemy import func
from .models import ThreadRecord, StorageMeta, SCHEMA_VERSION
from typing import List, Optional, Tuple


class ThreadCRUD:
    """CRUD operations for ThreadRecord model"""

    @staticmethod
    def upsert_thread(db: Session, data: dict) -> ThreadRecord:
        """Insert or fully replace a thread aggregate"""
        db_thread = db.get(ThreadRecord, data["id"])
        if db_thread is None:
            db_thread = ThreadRecord(id=data["id"])
            db.add(db_thread)

        db_thread.room_id = data["room_id"]
        db_thread.created_at = data["created_at"]
        db_thread.updated_at = data["updated_at"]
        db_thread.archived_at = data.get("archived_at")
        db_thread.message_count = len(data.get("messages", []))
        db_thread.data = data
        db.commit()
        db.refresh(db_thread)
        return db_thread

    @staticmethod
    def get_thread(db: Session, thread_id: str) -> Optional[ThreadRecord]:
        """Get thread by ID"""
        return db.get(ThreadRecord, thread_id)

    @staticmethod
    def get_threads_by_room(db: Session, room_id: str) -> List[ThreadRecord]:
        """Get all threads in a room, oldest first"""
        return db.query(ThreadRecord).filter(
            ThreadRecord.room_id == room_id
        ).order_by(ThreadRecord.created_at).all()

    @staticmethod
    def get_all_threads(db: Session) -> List[ThreadRecord]:
        """Get all threads, oldest first"""
        return db.query(ThreadRecord).order_by(ThreadRecord.created_at).all()

    @staticmethod
    def delete_thread(db: Session, thread_id: str) -> bool:
        """Delete thread by ID"""
        db_thread = db.get(ThreadRecord, thread_id)
        if db_thread:
            db.delete(db_thread)
            db.commit()
            return True
        return False

    @staticmethod
    def delete_all(db: Session) -> int:
        """Delete every thread, returning how many rows went away"""
        count = db.query(ThreadRecord).delete()
        db.commit()
        return count

    @staticmethod
    def get_totals(db: Session) -> Tuple[int, int]:
        """(thread count, total message count) across all rooms"""
        count, messages = db.query(
            func.count(ThreadRecord.id),
            func.coalesce(func.sum(ThreadRecord.message_count), 0)
        ).one()
        return int(count), int(messages)


class MetaCRUD:
    """Key/value bookkeeping for the storage schema"""

    @staticmethod
    def get_value(db: Session, key: str) -> Optional[str]:
        row = db.get(StorageMeta, key)
        return row.value if row else None

    @staticmethod
    def set_value(db: Session, key: str, value: str) -> None:
        row = db.get(StorageMeta, key)
        if row is None:
            db.add(StorageMeta(key=key, value=value))
        else:
            row.value = value
        db.commit()

    @staticmethod
    def ensure_schema_version(db: Session) -> int:
        """Record the schema version on first use and return the stored one"""
        stored = MetaCRUD.get_value(db, "schema_version")
        if stored is None:
            MetaCRUD.set_value(db, "schema_version", str(SCHEMA_VERSION))
            return SCHEMA_VERSION
        return int(stored)
