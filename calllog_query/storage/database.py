"""Database connection and session management."""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..models.call_models import create_tables
from ..settings import QuerySettings

logger = logging.getLogger(__name__)


class DatabaseManager:
    """Manages database connections and sessions for the call-log store."""

    def __init__(
        self,
        database_url: Optional[str] = None,
        settings: Optional[QuerySettings] = None,
        **engine_kwargs,
    ):
        """
        Initialize database manager.

        Args:
            database_url: Database connection URL. If None, uses
                         CALLLOG_QUERY_DATABASE_URL or defaults to SQLite
            settings: Optional settings object; read from the environment if None
            **engine_kwargs: Additional arguments passed to create_engine
        """
        self.settings = settings or QuerySettings()
        self.database_url = database_url or self.settings.database_url
        self.engine = self._create_engine(**engine_kwargs)
        self.SessionLocal = sessionmaker(bind=self.engine)

        # Initialize tables
        self._ensure_tables_exist()

    def _create_engine(self, **kwargs):
        """Create SQLAlchemy engine with appropriate configuration."""
        default_kwargs = {"echo": self.settings.debug, "future": True}

        # SQLite-specific configurations
        if self.database_url.startswith("sqlite"):
            default_kwargs.update(
                {
                    "poolclass": StaticPool,
                    "connect_args": {"check_same_thread": False, "timeout": 30},
                }
            )

        # PostgreSQL-specific configurations
        elif "postgresql" in self.database_url:
            default_kwargs.update(
                {
                    "pool_size": 10,
                    "max_overflow": 20,
                    "pool_recycle": 3600,
                    "pool_pre_ping": True,
                }
            )

        # Merge with user-provided kwargs
        default_kwargs.update(kwargs)

        engine = create_engine(self.database_url, **default_kwargs)
        self._setup_engine_events(engine)
        return engine

    def _setup_engine_events(self, engine):
        """Set up database engine event listeners."""

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            if "sqlite" in str(engine.url):
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()

    def _ensure_tables_exist(self):
        """Create database tables if they don't exist."""
        try:
            create_tables(self.engine)
            logger.info("Database tables initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize database tables: {e}")
            raise

    @contextmanager
    def get_session(self):
        """
        Context manager for database sessions.

        Yields:
            SQLAlchemy session with automatic transaction management
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error(f"Database session error: {e}")
            raise
        finally:
            session.close()

    def health_check(self) -> Dict[str, Any]:
        """Perform database health check."""
        safe_url = self.database_url.split("@")[-1]
        try:
            with self.get_session() as session:
                result = session.execute(text("SELECT 1")).scalar()
                return {
                    "status": "healthy",
                    "database_url": safe_url,
                    "connection_test": result == 1,
                    "statistics": self._get_database_stats(session),
                }
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return {"status": "unhealthy", "error": str(e), "database_url": safe_url}

    def _get_database_stats(self, session: Session) -> Dict[str, Any]:
        """Get basic database statistics."""
        from ..models.call_models import CallLog, SavedViewRecord

        return {
            "call_count": session.query(CallLog).count(),
            "view_count": session.query(SavedViewRecord).count(),
        }

    def close(self):
        """Close database engine and connections."""
        if hasattr(self, "engine"):
            self.engine.dispose()
            logger.info("Database connections closed")


# Global database manager instance
_db_manager: Optional[DatabaseManager] = None


def get_database_manager(database_url: Optional[str] = None, **kwargs) -> DatabaseManager:
    """Get or create global database manager instance."""
    global _db_manager

    if _db_manager is None:
        _db_manager = DatabaseManager(database_url, **kwargs)

    return _db_manager


def reset_database_manager():
    """Reset global database manager (useful for testing)."""
    global _db_manager
    if _db_manager:
        _db_manager.close()
    _db_manager = None
