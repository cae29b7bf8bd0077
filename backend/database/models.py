from sqlalchemy import Column, Integer, String, BigInteger, JSON, Index
from sqlalchemy.orm import declarative_base

Base = declarative_base()

SCHEMA_VERSION = 1


class ThreadRecord(Base):
    """One row per thread aggregate; `data` holds the full serialized thread."""
    __tablename__ = "threads"
    __table_args__ = (
        Index('idx_threads_room_created', 'room_id', 'created_at'),
    )

    id = Column(String(255), primary_key=True)
    room_id = Column(String(255), nullable=False, index=True)
    created_at = Column(BigInteger, nullable=False, index=True)  # epoch ms
    updated_at = Column(BigInteger, nullable=False)
    archived_at = Column(BigInteger, nullable=True)
    message_count = Column(Integer, default=0)
    data = Column(JSON, nullable=False)

    def to_dict(self) -> dict:
        """Row summary without the aggregate payload"""
        return {
            "id": self.id,
            "room_id": self.room_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "archived_at": self.archived_at,
            "message_count": self.message_count,
        }


class StorageMeta(Base):
    __tablename__ = "storage_meta"

    key = Column(String(64), primary_key=True)
    value = Column(String(255), nullable=False)
