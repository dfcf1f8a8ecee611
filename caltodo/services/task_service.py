"""
Task service for caltodo.

Creates, moves, reparents and deletes tasks while keeping every partition
``(user_id, date, project_id)`` densely ordered and the task tree within the
configured nesting depth. Subtasks always live in their parent's project.
"""

from datetime import date as Date
from typing import List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from caltodo.database import ProjectORM, TaskORM
from caltodo.exceptions import (
    CalTodoError,
    DailyLimitError,
    NotFoundError,
    ProjectMismatchError,
    StorageError,
    ValidationError,
)
from caltodo.logging_config import get_logger
from caltodo.models import PartitionKey, Task, validate_fields
from caltodo.nesting_config import LimitsConfig
from caltodo.services.hierarchy import HierarchyValidator
from caltodo.services.ordering_index import OrderingIndex
from caltodo.utils.clock import Clock, utc_now

logger = get_logger(__name__)

MAX_PAGE_SIZE = 1000


class TaskOrderingService:
    """
    Service layer for task operations.

    Every method runs on the caller's session and only flushes; the session
    scope (``DatabaseManager.get_session``) commits or rolls back the whole
    operation.
    """

    def __init__(
        self,
        session: AsyncSession,
        limits: Optional[LimitsConfig] = None,
        clock: Clock = utc_now
    ) -> None:
        """
        Initialize task service with database session.

        Args:
            session: Active async database session
            limits: Daily cap and nesting limits (defaults when omitted)
            clock: Source of UTC timestamps
        """
        self.session = session
        self.limits = limits or LimitsConfig()
        self.clock = clock
        self.ordering = OrderingIndex(session, clock=clock)
        self.hierarchy = HierarchyValidator(session, TaskORM, "Task")

    @property
    def max_depth(self) -> int:
        return self.limits.max_task_nesting_depth

    # ==============================================================================
    # CONVERSION HELPERS
    # ==============================================================================

    @staticmethod
    def _orm_to_pydantic(task_orm: TaskORM) -> Task:
        return Task.model_validate(task_orm)

    # ==============================================================================
    # LOOKUP HELPERS
    # ==============================================================================

    async def _get_task_or_raise(self, task_id: int, user_id: int, field: Optional[str] = None) -> TaskORM:
        """
        Get a task by ID or raise an exception.

        Args:
            task_id: Task ID
            user_id: Owner; tasks of other users are reported as missing
            field: Request field to attach to the error

        Returns:
            TaskORM instance

        Raises:
            NotFoundError: If task not found
        """
        return await self.hierarchy.get_or_raise(task_id, user_id, field=field)

    async def _get_project_or_raise(self, project_id: int, user_id: int) -> ProjectORM:
        result = await self.session.execute(
            select(ProjectORM).where(ProjectORM.id == project_id, ProjectORM.user_id == user_id)
        )
        project_orm = result.scalar_one_or_none()
        if project_orm is None:
            logger.warning(f"Project {project_id} not found for user {user_id}")
            raise NotFoundError("Project", project_id, field="project_id")
        return project_orm

    async def _count_tasks_on_date(
        self,
        user_id: int,
        day: Date,
        exclude_id: Optional[int] = None
    ) -> int:
        query = select(func.count(TaskORM.id)).where(
            TaskORM.user_id == user_id,
            TaskORM.date == day
        )
        if exclude_id is not None:
            query = query.where(TaskORM.id != exclude_id)
        result = await self.session.execute(query)
        return result.scalar_one()

    async def _check_daily_limit(
        self,
        user_id: int,
        day: Optional[Date],
        exclude_id: Optional[int] = None
    ) -> None:
        if day is None:
            return
        count = await self._count_tasks_on_date(user_id, day, exclude_id=exclude_id)
        if count >= self.limits.max_tasks_per_day:
            logger.warning(f"Daily limit reached for user {user_id} on {day}: {count} tasks")
            raise DailyLimitError(
                f"Maximum of {self.limits.max_tasks_per_day} tasks per day reached",
                field="date",
            )

    async def _check_project_change(
        self,
        task_orm: TaskORM,
        project_id: Optional[int],
        user_id: int
    ) -> None:
        """
        Validate moving a task (and its subtree) to another project.

        Raises:
            NotFoundError: If the project does not resolve for the user
            ProjectMismatchError: If a subtask would leave its parent's
                project, or a task with subtasks would lose its project
            ValidationError: If an undated task would lose its project
        """
        if project_id is not None:
            await self._get_project_or_raise(project_id, user_id)

        if task_orm.parent_id is not None:
            parent_orm = await self._get_task_or_raise(task_orm.parent_id, user_id)
            if parent_orm.project_id != project_id:
                logger.warning(
                    f"Rejected project change of subtask {task_orm.id}: parent "
                    f"{parent_orm.id} is in project {parent_orm.project_id}"
                )
                raise ProjectMismatchError(
                    "Subtasks must belong to the same project as their parent",
                    field="project_id",
                )

        if project_id is None:
            if await self.hierarchy.children_count(task_orm.id, user_id) > 0:
                raise ProjectMismatchError(
                    "Tasks with subtasks must belong to a project", field="project_id"
                )
            if task_orm.date is None:
                raise ValidationError(
                    "Tasks without a date must belong to a project", field="project_id"
                )

    async def _cascade_project(self, task_id: int, user_id: int, project_id: Optional[int]) -> int:
        """
        Move every descendant of a task into ``project_id``.

        Each descendant that changes partition is appended to the end of its
        new partition, nearest level first.

        Returns:
            Number of descendants moved
        """
        moved = 0
        for descendant_id in await self.hierarchy.descendant_ids(task_id, user_id):
            descendant_orm = await self._get_task_or_raise(descendant_id, user_id)
            if descendant_orm.project_id == project_id:
                continue
            await self.ordering.append(
                descendant_orm,
                PartitionKey(user_id, descendant_orm.date, project_id)
            )
            moved += 1
        if moved:
            logger.debug(f"Moved {moved} descendants of task {task_id} to project {project_id}")
        return moved

    @staticmethod
    def _storage_error(action: str, error: SQLAlchemyError) -> StorageError:
        logger.error(f"Failed to {action}: {error}", exc_info=True)
        return StorageError(f"Failed to {action}")

    # ==============================================================================
    # CREATE OPERATIONS
    # ==============================================================================

    async def create_task(
        self,
        user_id: int,
        title: str,
        description: Optional[str] = None,
        date: Optional[Date] = None,
        project_id: Optional[int] = None,
        parent_id: Optional[int] = None,
        completed: bool = False,
        after_id: Optional[int] = None,
        position: Optional[int] = None
    ) -> Task:
        """
        Create a new task.

        Without ``after_id`` or ``position`` the task is appended to the end
        of its partition. A subtask always joins its parent's project.

        Args:
            user_id: Owner of the task
            title: Task title (1 to 256 characters)
            description: Optional description (up to 50000 characters)
            date: Calendar date; required when the task has no project
            project_id: Owning project
            parent_id: Parent task for subtasks
            completed: Initial completion flag
            after_id: Place the task directly after this task
            position: Place the task at this 1-based slot

        Returns:
            Created Task instance

        Raises:
            NotFoundError: If the parent, project or anchor does not resolve
            NestingLimitError: If the parent is already at the deepest level
            ProjectMismatchError: If the parent has no project
            DailyLimitError: If the date already holds the maximum of tasks
            ValidationError: If fields are invalid or placement is ambiguous
        """
        try:
            logger.debug(
                f"Creating task: title='{title}', user_id={user_id}, date={date}, "
                f"project_id={project_id}, parent_id={parent_id}"
            )

            fields = validate_fields(Task, {
                "user_id": user_id,
                "title": title,
                "description": description,
                "date": date,
                "project_id": project_id,
                "parent_id": parent_id,
                "completed": completed,
            })
            date = fields.date
            project_id = fields.project_id
            parent_id = fields.parent_id
            completed = fields.completed

            if after_id is not None and position is not None:
                raise ValidationError(
                    "Provide either after_id or position, not both", field="position"
                )

            if parent_id is not None:
                parent_orm = await self._get_task_or_raise(parent_id, user_id, field="parent_id")
                if parent_orm.project_id is None:
                    logger.warning(f"Parent task {parent_id} has no project")
                    raise ProjectMismatchError(
                        "Parent task must belong to a project", field="parent_id"
                    )
                if project_id is not None and project_id != parent_orm.project_id:
                    logger.debug(
                        f"Overriding project_id={project_id} with parent's "
                        f"project {parent_orm.project_id}"
                    )
                project_id = parent_orm.project_id
                await self.hierarchy.ensure_can_attach(parent_id, user_id, self.max_depth)
            elif project_id is None and date is None:
                raise ValidationError(
                    "Date is required for tasks without a project", field="date"
                )
            elif project_id is not None:
                await self._get_project_or_raise(project_id, user_id)

            await self._check_daily_limit(user_id, date)

            partition = PartitionKey(user_id, date, project_id)
            if after_id is not None:
                order_index = await self.ordering.insert_after(partition, after_id)
            elif position is not None:
                order_index = await self.ordering.insert_at(partition, position)
            else:
                await self.ordering.lock_partition(partition)
                order_index = await self.ordering.next_index_for_partition(partition)

            now = self.clock()
            task_orm = TaskORM(
                user_id=user_id,
                title=fields.title,
                description=fields.description,
                date=date,
                project_id=project_id,
                parent_id=parent_id,
                order_index=order_index,
                completed=completed,
                created_at=now,
                updated_at=now,
            )
            self.session.add(task_orm)
            await self.session.flush()

            task = self._orm_to_pydantic(task_orm)
            logger.info(
                f"Created task: id={task.id}, title='{task.title}', "
                f"partition={task.partition}, order={task.order_index}"
            )
            return task

        except CalTodoError:
            raise
        except SQLAlchemyError as e:
            raise self._storage_error("create task", e) from e

    # ==============================================================================
    # READ OPERATIONS
    # ==============================================================================

    async def get_task(self, task_id: int, user_id: int) -> Task:
        """
        Get a single task.

        Raises:
            NotFoundError: If the task does not resolve for the user
        """
        task_orm = await self._get_task_or_raise(task_id, user_id)
        return self._orm_to_pydantic(task_orm)

    async def get_tasks(
        self,
        user_id: int,
        from_date: Optional[Date] = None,
        until_date: Optional[Date] = None,
        limit: int = 100,
        offset: int = 0
    ) -> List[Task]:
        """
        Get a user's tasks, optionally within a date range.

        Args:
            user_id: Owner
            from_date: Inclusive lower bound on the date
            until_date: Inclusive upper bound on the date
            limit: Page size (1 to 1000)
            offset: Rows to skip

        Returns:
            Tasks ordered by date, then position
        """
        if limit < 1 or limit > MAX_PAGE_SIZE:
            raise ValidationError(f"Limit must be between 1 and {MAX_PAGE_SIZE}", field="limit")
        if offset < 0:
            raise ValidationError("Offset must not be negative", field="offset")

        query = select(TaskORM).where(TaskORM.user_id == user_id)
        if from_date is not None:
            query = query.where(TaskORM.date >= from_date)
        if until_date is not None:
            query = query.where(TaskORM.date <= until_date)
        query = (
            query
            .order_by(TaskORM.date, TaskORM.project_id, TaskORM.order_index, TaskORM.id)
            .limit(limit)
            .offset(offset)
        )

        result = await self.session.execute(query)
        tasks = [self._orm_to_pydantic(task_orm) for task_orm in result.scalars().all()]
        logger.debug(f"Retrieved {len(tasks)} tasks for user {user_id}")
        return tasks

    async def get_partition(self, partition: PartitionKey) -> List[Task]:
        """Get the tasks of one partition in display order."""
        rows = await self.ordering.get_partition(partition)
        return [self._orm_to_pydantic(task_orm) for task_orm in rows]

    async def get_children(self, task_id: int, user_id: int) -> List[Task]:
        """
        Get the direct subtasks of a task.

        Raises:
            NotFoundError: If the parent task does not resolve for the user
        """
        await self._get_task_or_raise(task_id, user_id)
        result = await self.session.execute(
            select(TaskORM)
            .where(TaskORM.parent_id == task_id, TaskORM.user_id == user_id)
            .order_by(TaskORM.date, TaskORM.order_index, TaskORM.id)
        )
        return [self._orm_to_pydantic(task_orm) for task_orm in result.scalars().all()]

    # ==============================================================================
    # UPDATE OPERATIONS
    # ==============================================================================

    async def update_task(
        self,
        task_id: int,
        user_id: int,
        title: Optional[str] = None,
        description: Optional[str] = None,
        completed: Optional[bool] = None
    ) -> Task:
        """
        Update a task's title, description or completion flag.

        Placement is unaffected; use ``update_order``, ``reassign_parent`` or
        ``reassign_project`` to move a task.

        Raises:
            ValidationError: If no field is given or a field is invalid
            NotFoundError: If the task does not resolve for the user
        """
        if title is None and description is None and completed is None:
            raise ValidationError("At least one of title, description, or completed must be provided")

        try:
            logger.debug(f"Updating task {task_id}: title={title}, completed={completed}")

            task_orm = await self._get_task_or_raise(task_id, user_id)
            values = self._orm_to_pydantic(task_orm).model_dump()
            if title is not None:
                values["title"] = title
            if description is not None:
                values["description"] = description
            if completed is not None:
                values["completed"] = completed
            fields = validate_fields(Task, values)

            task_orm.title = fields.title
            task_orm.description = fields.description
            task_orm.completed = fields.completed
            task_orm.updated_at = self.clock()
            await self.session.flush()

            logger.info(f"Updated task: id={task_id}, title='{task_orm.title}'")
            return self._orm_to_pydantic(task_orm)

        except CalTodoError:
            raise
        except SQLAlchemyError as e:
            raise self._storage_error(f"update task {task_id}", e) from e

    async def update_order(
        self,
        task_id: int,
        user_id: int,
        new_date: Optional[Date],
        after_id: Optional[int] = None,
        new_project_id: Optional[int] = None
    ) -> Task:
        """
        Move a task to a date (and optionally a project) and a position.

        The task lands directly after ``after_id``, or first when it is None.
        Changing the project moves the task's subtree along with it.

        Args:
            task_id: Task to move
            user_id: Owner of the task
            new_date: Target date, None for the undated project list
            after_id: Anchor task in the target partition
            new_project_id: Target project, None keeps the current project

        Returns:
            Updated Task instance

        Raises:
            NotFoundError: If the task, project or anchor does not resolve
            ProjectMismatchError: If the project change breaks subtask rules
            DailyLimitError: If the target date is full
            ValidationError: If the task would end up with neither date nor project
        """
        try:
            logger.debug(
                f"Reordering task {task_id}: date={new_date}, after_id={after_id}, "
                f"project_id={new_project_id}"
            )

            task_orm = await self._get_task_or_raise(task_id, user_id)
            target_project = task_orm.project_id if new_project_id is None else new_project_id
            project_changed = target_project != task_orm.project_id

            if project_changed:
                await self._check_project_change(task_orm, target_project, user_id)
            if new_date is None and target_project is None:
                raise ValidationError(
                    "Date is required for tasks without a project", field="date"
                )
            if new_date != task_orm.date:
                await self._check_daily_limit(user_id, new_date, exclude_id=task_id)

            await self.ordering.move(
                task_id,
                user_id,
                PartitionKey(user_id, new_date, target_project),
                after_id
            )
            if project_changed:
                await self._cascade_project(task_id, user_id, target_project)

            task = self._orm_to_pydantic(task_orm)
            logger.info(
                f"Reordered task: id={task_id}, partition={task.partition}, "
                f"order={task.order_index}"
            )
            return task

        except CalTodoError:
            raise
        except SQLAlchemyError as e:
            raise self._storage_error(f"reorder task {task_id}", e) from e

    async def reassign_parent(
        self,
        task_id: int,
        new_parent_id: Optional[int],
        user_id: int
    ) -> Task:
        """
        Make a task a subtask of another task, or a root task.

        The task and all of its descendants take the new parent's project.
        Every row that changes partition is appended to the end of its new
        partition. ``new_parent_id=None`` detaches the task and keeps its
        project.

        Raises:
            NotFoundError: If the task or the new parent does not resolve
            CycleDetectedError: If the parent is the task or one of its descendants
            ProjectMismatchError: If the new parent has no project
            NestingLimitError: If the moved subtree would exceed the depth limit
        """
        try:
            logger.debug(f"Reassigning parent of task {task_id} to {new_parent_id}")

            task_orm = await self._get_task_or_raise(task_id, user_id)

            if new_parent_id is None:
                if task_orm.parent_id is not None:
                    old_parent_id = task_orm.parent_id
                    task_orm.parent_id = None
                    task_orm.updated_at = self.clock()
                    await self.session.flush()
                    logger.info(f"Detached task {task_id} from parent {old_parent_id}")
                return self._orm_to_pydantic(task_orm)

            await self.hierarchy.ensure_valid_parent(task_id, new_parent_id, user_id, self.max_depth)

            parent_orm = await self._get_task_or_raise(new_parent_id, user_id, field="parent_id")
            if parent_orm.project_id is None:
                logger.warning(f"Parent task {new_parent_id} has no project")
                raise ProjectMismatchError(
                    "Parent task must belong to a project", field="parent_id"
                )

            height = await self.hierarchy.subtree_height(task_id, user_id)
            await self.hierarchy.ensure_can_attach(
                new_parent_id, user_id, self.max_depth, subtree_height=height
            )

            task_orm.parent_id = new_parent_id
            task_orm.updated_at = self.clock()
            project_id = parent_orm.project_id
            if task_orm.project_id != project_id:
                await self.ordering.append(task_orm, PartitionKey(user_id, task_orm.date, project_id))
            await self._cascade_project(task_id, user_id, project_id)
            await self.session.flush()

            task = self._orm_to_pydantic(task_orm)
            logger.info(
                f"Reassigned task {task_id} under {new_parent_id}, "
                f"partition={task.partition}, order={task.order_index}"
            )
            return task

        except CalTodoError:
            raise
        except SQLAlchemyError as e:
            raise self._storage_error(f"reassign parent of task {task_id}", e) from e

    async def reassign_project(
        self,
        task_id: int,
        project_id: Optional[int],
        user_id: int
    ) -> Task:
        """
        Move a task and its subtree to another project, keeping the date.

        Raises:
            NotFoundError: If the task or project does not resolve
            ProjectMismatchError: If a subtask would leave its parent's project,
                or a task with subtasks would lose its project
            ValidationError: If an undated task would lose its project
        """
        try:
            logger.debug(f"Reassigning task {task_id} to project {project_id}")

            task_orm = await self._get_task_or_raise(task_id, user_id)
            if task_orm.project_id == project_id:
                return self._orm_to_pydantic(task_orm)

            await self._check_project_change(task_orm, project_id, user_id)

            await self.ordering.append(task_orm, PartitionKey(user_id, task_orm.date, project_id))
            await self._cascade_project(task_id, user_id, project_id)

            task = self._orm_to_pydantic(task_orm)
            logger.info(
                f"Reassigned task {task_id} to project {project_id}, "
                f"order={task.order_index}"
            )
            return task

        except CalTodoError:
            raise
        except SQLAlchemyError as e:
            raise self._storage_error(f"reassign project of task {task_id}", e) from e

    # ==============================================================================
    # DELETE OPERATIONS
    # ==============================================================================

    async def delete_task(self, task_id: int, user_id: int) -> bool:
        """
        Delete a task and all of its descendants.

        Every partition that lost a row is compacted afterwards, highest
        vacated index first, so the remaining rows stay dense.

        Args:
            task_id: Task to delete
            user_id: Owner of the task

        Returns:
            True once the task is deleted

        Raises:
            NotFoundError: If the task does not resolve for the user
        """
        try:
            logger.debug(f"Deleting task {task_id} and descendants")

            task_orm = await self._get_task_or_raise(task_id, user_id)
            task_title = task_orm.title

            descendant_ids = await self.hierarchy.descendant_ids(task_id, user_id)
            doomed_ids = [task_id] + descendant_ids
            result = await self.session.execute(
                select(TaskORM).where(TaskORM.id.in_(doomed_ids), TaskORM.user_id == user_id)
            )
            vacated = [(PartitionKey.of(row), row.order_index) for row in result.scalars().all()]

            await self.session.execute(
                delete(TaskORM)
                .where(TaskORM.id.in_(doomed_ids), TaskORM.user_id == user_id)
                .execution_options(synchronize_session="fetch")
            )
            await self.session.flush()

            for partition, removed_index in sorted(vacated, key=lambda slot: slot[1], reverse=True):
                await self.ordering.compact_after_delete(partition, removed_index)

            logger.info(
                f"Deleted task: id={task_id}, title='{task_title}', "
                f"descendants={len(descendant_ids)}"
            )
            return True

        except CalTodoError:
            raise
        except SQLAlchemyError as e:
            raise self._storage_error(f"delete task {task_id}", e) from e

