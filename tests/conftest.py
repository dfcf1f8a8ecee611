"""
Pytest configuration and fixtures for caltodo tests.

Provides database fixtures, service fixtures, row factories, and common test utilities.
"""

from datetime import date

import pytest
import pytest_asyncio
from sqlalchemy import select

from caltodo.database import DatabaseManager, TaskORM
from caltodo.models import PartitionKey
from caltodo.services.document_service import DocumentHierarchyService
from caltodo.services.ordering_index import OrderingIndex
from caltodo.services.project_service import ProjectService
from caltodo.services.task_service import TaskOrderingService

from tests.helpers import SAMPLE_DATE, USER_ID, TickingClock


@pytest_asyncio.fixture
async def db_manager():
    """
    Create an in-memory SQLite database for testing.

    Yields:
        DatabaseManager instance with in-memory database

    Example:
        async def test_something(db_manager):
            async with db_manager.get_session() as session:
                # Test database operations
    """
    manager = DatabaseManager("sqlite+aiosqlite:///:memory:")
    await manager.initialize()

    yield manager

    await manager.close()


@pytest_asyncio.fixture
async def db_session(db_manager):
    """
    Provide a database session for tests.

    Args:
        db_manager: Database manager fixture

    Yields:
        AsyncSession for database operations
    """
    async with db_manager.get_session() as session:
        yield session


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture
def task_service(db_session, clock):
    return TaskOrderingService(db_session, clock=clock)


@pytest.fixture
def document_service(db_session, clock):
    return DocumentHierarchyService(db_session, clock=clock)


@pytest.fixture
def project_service(db_session, clock):
    return ProjectService(db_session, clock=clock)


@pytest_asyncio.fixture
async def sample_project(project_service):
    """Create a project owned by USER_ID."""
    return await project_service.create_project(USER_ID, "Work", color="#336699")


@pytest_asyncio.fixture
async def other_project(project_service):
    """Create a second project owned by USER_ID."""
    return await project_service.create_project(USER_ID, "Home")


@pytest.fixture
def add_task_row(db_session, clock):
    """
    Factory fixture inserting TaskORM rows with an explicit order_index.

    Bypasses the services so ordering helpers can be tested on hand-built
    partitions.

    Example:
        async def test_something(add_task_row):
            task = await add_task_row("A", 1)
    """
    async def _add_task_row(
        title: str,
        order_index: int,
        user_id: int = USER_ID,
        date: date = SAMPLE_DATE,
        project_id: int = None,
        parent_id: int = None
    ) -> TaskORM:
        now = clock()
        task = TaskORM(
            user_id=user_id,
            title=title,
            date=date,
            project_id=project_id,
            parent_id=parent_id,
            order_index=order_index,
            completed=False,
            created_at=now,
            updated_at=now,
        )
        db_session.add(task)
        await db_session.flush()
        return task
    return _add_task_row


@pytest.fixture
def dense_titles(db_session):
    """
    Read a partition straight from the database and check it is dense.

    Returns:
        Async function returning the partition's titles in order

    Example:
        async def test_something(dense_titles):
            assert await dense_titles(PartitionKey(1, SAMPLE_DATE)) == ["A", "B"]
    """
    async def _dense_titles(partition: PartitionKey) -> list:
        result = await db_session.execute(
            select(TaskORM.title, TaskORM.order_index)
            .where(*OrderingIndex._partition_clause(partition))
            .order_by(TaskORM.order_index, TaskORM.id)
        )
        rows = result.all()
        assert [index for _, index in rows] == list(range(1, len(rows) + 1)), rows
        return [title for title, _ in rows]
    return _dense_titles
