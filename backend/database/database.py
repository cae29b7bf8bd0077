import logging

from sqlalchemy.engine import create_engine, Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.exc import SQLAlchemyError
from database.models import Base
from config import DATABASE_URL

logger = logging.getLogger(__name__)


def create_db_engine(database_url: str = DATABASE_URL, echo: bool = False) -> Engine:
    """Create an engine; SQLite connections may be used from executor threads"""
    kwargs = {}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
            # One shared connection, otherwise every thread sees an empty database
            kwargs["poolclass"] = StaticPool
    return create_engine(database_url, echo=echo, **kwargs)


def create_tables(engine: Engine):
    """Create all database tables (no-op for tables that already exist)"""
    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created successfully")
    except SQLAlchemyError as e:
        logger.error(f"Error creating tables: {e}")
        raise


def get_session_factory(engine: Engine) -> sessionmaker:
    """Session factory bound to `engine`"""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)
