"""
Dense task ordering for caltodo.

Keeps ``TaskORM.order_index`` contiguous (1..n) inside every partition
``(user_id, date, project_id)`` while tasks are inserted, deleted and moved.
All index arithmetic is done with bulk UPDATE statements on the caller's
session, so it commits or rolls back together with the rest of the operation.
"""

from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from caltodo.database import TaskORM
from caltodo.exceptions import NotFoundError, ValidationError
from caltodo.logging_config import get_logger
from caltodo.models import PartitionKey
from caltodo.utils.clock import Clock, utc_now

logger = get_logger(__name__)


class OrderingIndex:
    """
    Maintains the per-partition ``order_index`` of tasks.

    Every public method expects to run inside the caller's transaction. Rows
    of the partition being renumbered are locked first (``SELECT ... FOR
    UPDATE``) so concurrent writers on the same partition serialize instead of
    computing the same slot.
    """

    def __init__(self, session: AsyncSession, clock: Clock = utc_now) -> None:
        """
        Initialize the ordering index with a database session.

        Args:
            session: Active async database session
            clock: Source of UTC timestamps for ``updated_at``
        """
        self.session = session
        self.clock = clock

    # ==============================================================================
    # QUERY HELPERS
    # ==============================================================================

    @staticmethod
    def _partition_clause(partition: PartitionKey) -> List:
        """
        Build the WHERE conditions selecting one partition.

        ``None`` date or project matches only NULL, never a value.
        """
        clause = [TaskORM.user_id == partition.user_id]
        if partition.date is None:
            clause.append(TaskORM.date.is_(None))
        else:
            clause.append(TaskORM.date == partition.date)
        if partition.project_id is None:
            clause.append(TaskORM.project_id.is_(None))
        else:
            clause.append(TaskORM.project_id == partition.project_id)
        return clause

    async def lock_partition(self, partition: PartitionKey) -> None:
        """
        Lock every row of the partition for the rest of the transaction.

        SQLite ignores FOR UPDATE; there the transaction already holds the
        database write lock from ``BEGIN IMMEDIATE`` (see ``caltodo.database``).
        """
        await self.session.execute(
            select(TaskORM.id)
            .where(*self._partition_clause(partition))
            .with_for_update()
        )

    async def partition_size(
        self,
        partition: PartitionKey,
        exclude_id: Optional[int] = None
    ) -> int:
        query = select(func.count(TaskORM.id)).where(*self._partition_clause(partition))
        if exclude_id is not None:
            query = query.where(TaskORM.id != exclude_id)
        result = await self.session.execute(query)
        return result.scalar_one()

    async def get_partition(self, partition: PartitionKey) -> List[TaskORM]:
        """
        Get the rows of a partition in display order.

        Args:
            partition: Partition to read

        Returns:
            TaskORM rows ordered by ``order_index``
        """
        result = await self.session.execute(
            select(TaskORM)
            .where(*self._partition_clause(partition))
            .order_by(TaskORM.order_index, TaskORM.id)
        )
        return list(result.scalars().all())

    async def _get_in_partition(self, task_id: int, partition: PartitionKey) -> TaskORM:
        """
        Fetch a task that must live in the given partition.

        The row is re-read from the database so its ``order_index`` reflects
        any shift already made in this transaction.

        Raises:
            NotFoundError: If the task is missing, owned by someone else, or
                sits in a different partition
        """
        result = await self.session.execute(
            select(TaskORM)
            .where(TaskORM.id == task_id, TaskORM.user_id == partition.user_id)
            .execution_options(populate_existing=True)
        )
        task_orm = result.scalar_one_or_none()
        if task_orm is None or PartitionKey.of(task_orm) != partition:
            logger.warning(
                f"Anchor task {task_id} not found in partition {partition}"
            )
            raise NotFoundError("Task", task_id, field="after_id")
        return task_orm

    async def _shift(
        self,
        partition: PartitionKey,
        from_index: int,
        delta: int,
        exclude_id: Optional[int] = None
    ) -> int:
        """
        Add ``delta`` to every ``order_index >= from_index`` in the partition.

        A single UPDATE statement moves the whole tail, so the partition is
        never observed half shifted.

        Returns:
            Number of rows shifted
        """
        stmt = (
            update(TaskORM)
            .where(*self._partition_clause(partition))
            .where(TaskORM.order_index >= from_index)
            .values(order_index=TaskORM.order_index + delta)
            .execution_options(synchronize_session="fetch")
        )
        if exclude_id is not None:
            stmt = stmt.where(TaskORM.id != exclude_id)
        result = await self.session.execute(stmt)
        return result.rowcount

    # ==============================================================================
    # INDEX ASSIGNMENT
    # ==============================================================================

    async def next_index_for_partition(
        self,
        partition: PartitionKey,
        exclude_id: Optional[int] = None
    ) -> int:
        """
        Get the index that appends to the end of a partition.

        Args:
            partition: Target partition
            exclude_id: Task to ignore (a row being moved into the partition)

        Returns:
            ``max(order_index) + 1``, or 1 for an empty partition
        """
        query = select(func.max(TaskORM.order_index)).where(*self._partition_clause(partition))
        if exclude_id is not None:
            query = query.where(TaskORM.id != exclude_id)
        result = await self.session.execute(query)
        max_index = result.scalar_one_or_none()
        return (max_index or 0) + 1

    async def insert_at(
        self,
        partition: PartitionKey,
        position: int,
        exclude_id: Optional[int] = None
    ) -> int:
        """
        Open a slot at ``position`` by shifting the tail of the partition up.

        Args:
            partition: Target partition
            position: 1-based slot; values past the end are clamped to n + 1
            exclude_id: Task being moved, left untouched by the shift

        Returns:
            The index to assign to the inserted row

        Raises:
            ValidationError: If position is below 1
        """
        if position < 1:
            raise ValidationError(
                f"Position must be 1 or greater, got {position}", field="position"
            )

        await self.lock_partition(partition)

        size = await self.partition_size(partition, exclude_id=exclude_id)
        if position > size + 1:
            logger.debug(f"Clamping position {position} to {size + 1} in {partition}")
            position = size + 1

        shifted = await self._shift(partition, position, 1, exclude_id=exclude_id)
        logger.debug(f"Opened slot {position} in {partition}, shifted={shifted}")
        return position

    async def insert_after(
        self,
        partition: PartitionKey,
        after_id: int,
        exclude_id: Optional[int] = None
    ) -> int:
        """
        Open the slot directly after an anchor task.

        Args:
            partition: Target partition, which must contain the anchor
            after_id: Anchor task ID
            exclude_id: Task being moved, left untouched by the shift

        Returns:
            The index to assign to the inserted row

        Raises:
            NotFoundError: If the anchor does not resolve inside the partition
        """
        await self.lock_partition(partition)
        anchor = await self._get_in_partition(after_id, partition)
        return await self.insert_at(partition, anchor.order_index + 1, exclude_id=exclude_id)

    async def insert_first(
        self,
        partition: PartitionKey,
        exclude_id: Optional[int] = None
    ) -> int:
        return await self.insert_at(partition, 1, exclude_id=exclude_id)

    async def compact_after_delete(
        self,
        partition: PartitionKey,
        removed_index: int,
        exclude_id: Optional[int] = None
    ) -> int:
        """
        Close the gap left at ``removed_index``.

        Rows after the gap move down by one. If the slot is already occupied
        (the gap was closed before) nothing changes, so running this twice for
        the same removal is harmless.

        Args:
            partition: Partition that lost a row
            removed_index: Index the removed row held
            exclude_id: Row to ignore (a task being moved out of its slot)

        Returns:
            Number of rows shifted
        """
        await self.lock_partition(partition)

        occupied_query = (
            select(func.count(TaskORM.id))
            .where(*self._partition_clause(partition))
            .where(TaskORM.order_index == removed_index)
        )
        if exclude_id is not None:
            occupied_query = occupied_query.where(TaskORM.id != exclude_id)
        occupied = (await self.session.execute(occupied_query)).scalar_one()
        if occupied:
            logger.debug(f"Slot {removed_index} in {partition} already filled, skipping compaction")
            return 0

        shifted = await self._shift(partition, removed_index + 1, -1, exclude_id=exclude_id)
        logger.debug(f"Compacted {partition} after index {removed_index}, shifted={shifted}")
        return shifted

    # ==============================================================================
    # RELOCATION
    # ==============================================================================

    async def _get_task_or_raise(self, task_id: int, user_id: int) -> TaskORM:
        result = await self.session.execute(
            select(TaskORM).where(TaskORM.id == task_id, TaskORM.user_id == user_id)
        )
        task_orm = result.scalar_one_or_none()
        if task_orm is None:
            raise NotFoundError("Task", task_id)
        return task_orm

    async def move(
        self,
        task_id: int,
        user_id: int,
        new_partition: PartitionKey,
        after_id: Optional[int] = None
    ) -> TaskORM:
        """
        Move a task to the first slot, or after an anchor, of a partition.

        The task is first detached from its old slot (compacting the old
        partition), then inserted into the now dense target partition. For a
        move inside one partition this means the mover's own slot is never
        counted twice: moving a task after the item directly above it is a
        no-op.

        Args:
            task_id: Task to move
            user_id: Owner of the task
            new_partition: Destination partition
            after_id: Anchor task in the destination, or None for first place

        Returns:
            The moved TaskORM row (flushed)

        Raises:
            NotFoundError: If the task or the anchor does not resolve
            ValidationError: If the destination belongs to another user
        """
        if new_partition.user_id != user_id:
            raise ValidationError("Cannot move a task into another user's partition")

        task_orm = await self._get_task_or_raise(task_id, user_id)
        old_partition = PartitionKey.of(task_orm)
        old_index = task_orm.order_index

        if after_id is not None:
            if after_id == task_id:
                if old_partition == new_partition:
                    logger.debug(f"Task {task_id} moved after itself, keeping slot {old_index}")
                    return task_orm
                raise NotFoundError("Task", after_id, field="after_id")
            # Resolve the anchor before any write so a bad anchor changes nothing
            await self._get_in_partition(after_id, new_partition)

        await self.compact_after_delete(old_partition, old_index, exclude_id=task_id)

        if after_id is None:
            new_index = await self.insert_first(new_partition, exclude_id=task_id)
        else:
            new_index = await self.insert_after(new_partition, after_id, exclude_id=task_id)

        task_orm.date = new_partition.date
        task_orm.project_id = new_partition.project_id
        task_orm.order_index = new_index
        task_orm.updated_at = self.clock()
        await self.session.flush()

        logger.info(
            f"Moved task {task_id}: {old_partition}#{old_index} -> "
            f"{new_partition}#{new_index}"
        )
        return task_orm

    async def append(self, task_orm: TaskORM, new_partition: PartitionKey) -> int:
        """
        Move a task to the end of a partition.

        Used when a task changes project as a side effect of reparenting.

        Returns:
            The task's new index
        """
        old_partition = PartitionKey.of(task_orm)
        old_index = task_orm.order_index

        await self.compact_after_delete(old_partition, old_index, exclude_id=task_orm.id)
        await self.lock_partition(new_partition)
        new_index = await self.next_index_for_partition(new_partition, exclude_id=task_orm.id)

        task_orm.date = new_partition.date
        task_orm.project_id = new_partition.project_id
        task_orm.order_index = new_index
        task_orm.updated_at = self.clock()
        await self.session.flush()

        logger.debug(
            f"Appended task {task_orm.id}: {old_partition}#{old_index} -> "
            f"{new_partition}#{new_index}"
        )
        return new_index
