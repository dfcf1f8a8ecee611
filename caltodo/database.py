"""
Database layer for caltodo.

Provides SQLAlchemy ORM models, async engine/session management, and database
initialization. SQLite (via aiosqlite) is the default store; any async
SQLAlchemy driver works.
"""

from contextlib import asynccontextmanager
import datetime as dt
from pathlib import Path
from typing import AsyncGenerator, Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    event,
)
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from caltodo.config import DEFAULT_DATABASE_URL
from caltodo.logging_config import get_logger

logger = get_logger(__name__)


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


class ProjectORM(Base):
    """
    SQLAlchemy ORM model for projects.

    A project groups tasks; deleting it deletes its tasks at the storage layer.
    """
    __tablename__ = "projects"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)
    color: Mapped[Optional[str]] = mapped_column(String(7), nullable=True)

    created_at: Mapped[dt.datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime, nullable=False)

    tasks: Mapped[list["TaskORM"]] = relationship(
        "TaskORM",
        back_populates="project",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<ProjectORM(id={self.id}, name={self.name})>"


class TaskORM(Base):
    """
    SQLAlchemy ORM model for tasks.

    ``order_index`` is dense (1..n) within the partition
    ``(user_id, date, project_id)``; ``parent_id`` links subtasks.
    """
    __tablename__ = "tasks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Scoping
    date: Mapped[Optional[dt.date]] = mapped_column(Date, nullable=True)
    project_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=True, index=True
    )
    parent_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=True, index=True
    )

    # Ordering
    order_index: Mapped[int] = mapped_column(Integer, nullable=False)

    completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Timestamps
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime, nullable=False)

    project: Mapped[Optional["ProjectORM"]] = relationship("ProjectORM", back_populates="tasks")

    __table_args__ = (
        Index("idx_tasks_partition_order", "user_id", "date", "project_id", "order_index"),
    )

    def __repr__(self) -> str:
        return (
            f"<TaskORM(id={self.id}, title={self.title}, date={self.date}, "
            f"project_id={self.project_id}, order_index={self.order_index})>"
        )


class DocumentORM(Base):
    """
    SQLAlchemy ORM model for documents.

    Documents nest through ``parent_id``; a document with children cannot be
    deleted, so the foreign key restricts rather than cascades.
    """
    __tablename__ = "documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    parent_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("documents.id", ondelete="RESTRICT"), nullable=True, index=True
    )
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[dt.datetime] = mapped_column(DateTime, nullable=False, index=True)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime, nullable=False)

    def __repr__(self) -> str:
        return f"<DocumentORM(id={self.id}, title={self.title}, parent_id={self.parent_id})>"


def _configure_sqlite_connection(dbapi_connection, connection_record) -> None:
    """
    Prepare a new SQLite connection.

    Enables foreign keys and turns off the driver's own transaction handling,
    which would otherwise defer BEGIN until the first write and leave the
    reads that compute an index outside the transaction.
    """
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
    dbapi_connection.isolation_level = None


def _begin_sqlite_immediate(conn) -> None:
    """Start every SQLite transaction holding the write lock."""
    conn.exec_driver_sql("BEGIN IMMEDIATE")


class DatabaseManager:
    """
    Manages database connections and session lifecycle.

    Handles async engine creation, session management, and database
    initialization for both production and testing scenarios.
    """

    def __init__(self, database_url: str = DEFAULT_DATABASE_URL, echo: bool = False):
        """
        Initialize database manager with connection URL.

        Args:
            database_url: SQLAlchemy database URL (default: local SQLite file)
            echo: Log every SQL statement
        """
        self.database_url = database_url
        self.echo = echo
        self.engine: Optional[AsyncEngine] = None
        self.session_maker: Optional[async_sessionmaker[AsyncSession]] = None

    async def initialize(self) -> None:
        """
        Initialize the database engine and create tables.

        Creates the async engine, session maker, and all tables defined
        in the Base metadata.
        """
        try:
            logger.info(f"Initializing database: {self.database_url}")
            url = make_url(self.database_url)
            if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
                Path(url.database).parent.mkdir(parents=True, exist_ok=True)

            self.engine = create_async_engine(
                self.database_url,
                echo=self.echo,
            )

            if self.engine.dialect.name == "sqlite":
                event.listen(self.engine.sync_engine, "connect", _configure_sqlite_connection)
                event.listen(self.engine.sync_engine, "begin", _begin_sqlite_immediate)

            self.session_maker = async_sessionmaker(
                self.engine,
                class_=AsyncSession,
                expire_on_commit=False,
            )

            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

            logger.info("Database initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize database: {e}", exc_info=True)
            raise

    async def close(self) -> None:
        """
        Close the database engine and cleanup resources.
        """
        if self.engine:
            logger.info("Closing database connection")
            try:
                await self.engine.dispose()
                self.engine = None
                self.session_maker = None
                logger.info("Database connection closed successfully")
            except Exception as e:
                logger.error(f"Error closing database connection: {e}", exc_info=True)
                raise

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Get an async database session with automatic transaction management.

        The session commits when the block exits normally and rolls back on any
        exception, so a service operation that fails half way leaves no
        partial index shifts behind.

        Yields:
            AsyncSession for database operations

        Example:
            async with db_manager.get_session() as session:
                service = TaskOrderingService(session)
                await service.delete_task(task_id, user_id)
        """
        if not self.session_maker:
            raise RuntimeError("DatabaseManager not initialized. Call initialize() first.")

        async with self.session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception as e:
                logger.error(f"Database session error, rolling back: {e}", exc_info=True)
                await session.rollback()
                raise


# Global database manager instance
_db_manager: Optional[DatabaseManager] = None


def get_database_manager(database_url: str = DEFAULT_DATABASE_URL) -> DatabaseManager:
    """
    Get or create the global database manager instance.

    Args:
        database_url: SQLAlchemy database URL

    Returns:
        DatabaseManager instance
    """
    global _db_manager
    if _db_manager is None:
        _db_manager = DatabaseManager(database_url)
    return _db_manager


async def init_database(database_url: str = DEFAULT_DATABASE_URL) -> DatabaseManager:
    """
    Initialize the database and return the manager instance.

    Convenience function for application startup.

    Args:
        database_url: SQLAlchemy database URL

    Returns:
        Initialized DatabaseManager instance
    """
    db_manager = get_database_manager(database_url)
    await db_manager.initialize()
    return db_manager
