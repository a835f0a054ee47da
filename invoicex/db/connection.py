import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Generator, Optional, Type
from urllib.parse import quote_plus

from sqlalchemy import create_engine, event, MetaData
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session, declarative_base
from sqlalchemy.pool import QueuePool

logger = logging.getLogger(__name__)

metadata = MetaData()
Base = declarative_base(metadata=metadata)


def get_base() -> Type:
    """
    Get the base class for declarative models

    Returns:
        Base class for declarative models
    """
    return Base


class Database:
    """
    Database connection manager for InvoiceX

    Handles SQLite and PostgreSQL connections with connection pooling.
    The relational store is the single source of truth for documents,
    batches and queued jobs; sessions are short-lived and nothing is
    cached between them.

    Usage:
        db = Database({'type': 'sqlite', 'path': 'invoicex.db'})
        db.initialize()

        with db.transaction() as session:
            session.add(document)
    """

    def __init__(self, db_config: Optional[Dict[str, Any]] = None):
        """
        Initialize database connection

        Args:
            db_config: The ``database`` configuration section. Either a ``url``
                or a ``type`` of 'sqlite' (with ``path``) or 'postgresql'
                (with a ``postgres`` block).
        """
        self.db_config = db_config or {'type': 'sqlite', 'path': 'invoicex.db'}
        self.engine: Engine = self._create_engine()
        self.Session = sessionmaker(
            bind=self.engine,
            expire_on_commit=False,
            autocommit=False,
            autoflush=False
        )

    @classmethod
    def from_url(cls, url: str) -> 'Database':
        """Create a database from a SQLAlchemy URL"""
        return cls({'url': url})

    def _create_engine(self) -> Engine:
        url = self.db_config.get('url')
        db_type = self.db_config.get('type', 'sqlite')

        if url is None and db_type == 'sqlite':
            db_path = Path(self.db_config.get('path', 'invoicex.db'))
            db_path.parent.mkdir(parents=True, exist_ok=True)
            url = f'sqlite:///{db_path}'
        elif url is None and db_type in ('postgresql', 'postgres'):
            postgres_config = self.db_config.get('postgres', {})
            host = postgres_config.get('host', 'localhost')
            port = postgres_config.get('port', 5432)
            database = postgres_config.get('database', 'invoicex')
            user = quote_plus(postgres_config.get('user', 'postgres'))
            password = quote_plus(postgres_config.get('password', ''))
            sslmode = postgres_config.get('sslmode', 'prefer')
            url = f'postgresql://{user}:{password}@{host}:{port}/{database}?sslmode={sslmode}'
        elif url is None:
            raise ValueError(f"Unsupported database type: {db_type}")

        if url.startswith('sqlite'):
            engine = create_engine(
                url,
                poolclass=QueuePool,
                pool_size=5,
                max_overflow=10,
                pool_timeout=30,
                connect_args={
                    'timeout': 30,
                    'check_same_thread': False
                }
            )

            @event.listens_for(engine, "connect")
            def set_sqlite_pragma(dbapi_connection, connection_record):
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()

            return engine

        return create_engine(
            url,
            pool_size=5,
            max_overflow=10,
            pool_timeout=30,
            pool_recycle=1800,
            pool_pre_ping=True
        )

    def session(self) -> Session:
        """
        Get a database session

        Returns:
            SQLAlchemy session (usable as a context manager)
        """
        return self.Session()

    @contextmanager
    def transaction(self) -> Generator[Session, None, None]:
        """
        Get a database session with transaction management

        Commits on success, rolls back and re-raises on error.

        Yields:
            SQLAlchemy session
        """
        session = self.Session()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error(f"Database transaction error: {str(e)}")
            raise
        finally:
            session.close()

    def initialize(self) -> None:
        """Create all tables"""
        # Register the models on the shared metadata
        from invoicex.db import models  # noqa: F401
        Base.metadata.create_all(self.engine)

    def dispose(self) -> None:
        """Release pooled connections"""
        self.engine.dispose()
