"""
Project service for caltodo.

Provides CRUD operations for projects. A project is part of every task
partition it holds, so deleting a project removes whole partitions and never
leaves gaps in another one.
"""

from typing import List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from caltodo.database import ProjectORM, TaskORM
from caltodo.exceptions import CalTodoError, NotFoundError, StorageError, ValidationError
from caltodo.logging_config import get_logger
from caltodo.models import Project, validate_fields
from caltodo.utils.clock import Clock, utc_now

logger = get_logger(__name__)


class ProjectService:
    """
    Service layer for project management.

    Handles creation, retrieval, updating, and deletion of projects.
    """

    def __init__(self, session: AsyncSession, clock: Clock = utc_now) -> None:
        """
        Initialize the project service.

        Args:
            session: Active database session for operations
            clock: Source of UTC timestamps
        """
        self.session = session
        self.clock = clock

    async def _get_project_or_raise(self, project_id: int, user_id: int) -> ProjectORM:
        result = await self.session.execute(
            select(ProjectORM).where(ProjectORM.id == project_id, ProjectORM.user_id == user_id)
        )
        project_orm = result.scalar_one_or_none()
        if project_orm is None:
            logger.warning(f"Project {project_id} not found for user {user_id}")
            raise NotFoundError("Project", project_id)
        return project_orm

    async def create_project(
        self,
        user_id: int,
        name: str,
        description: Optional[str] = None,
        color: Optional[str] = None
    ) -> Project:
        """
        Create a new project.

        Args:
            user_id: Owner of the project
            name: Project name (1 to 256 characters)
            description: Optional description (up to 2048 characters)
            color: Optional ``#RRGGBB`` color

        Returns:
            Created Project instance

        Raises:
            ValidationError: If a field is invalid
        """
        try:
            logger.debug(f"Creating project: name='{name}', user_id={user_id}")

            now = self.clock()
            project = validate_fields(Project, {
                "user_id": user_id,
                "name": name,
                "description": description,
                "color": color,
                "created_at": now,
                "updated_at": now,
            })

            project_orm = ProjectORM(
                user_id=project.user_id,
                name=project.name,
                description=project.description,
                color=project.color,
                created_at=project.created_at,
                updated_at=project.updated_at,
            )
            self.session.add(project_orm)
            await self.session.flush()

            logger.info(f"Created project: id={project_orm.id}, name='{project_orm.name}'")
            return Project.model_validate(project_orm)
        except CalTodoError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Failed to create project '{name}': {e}", exc_info=True)
            raise StorageError("Failed to create project") from e

    async def get_project(self, project_id: int, user_id: int) -> Project:
        """
        Get a project by ID.

        Raises:
            NotFoundError: If the project does not resolve for the user
        """
        project_orm = await self._get_project_or_raise(project_id, user_id)
        return Project.model_validate(project_orm)

    async def list_projects(self, user_id: int) -> List[Project]:
        """
        Get all projects of a user, newest first.

        Returns:
            List of Project instances
        """
        result = await self.session.execute(
            select(ProjectORM)
            .where(ProjectORM.user_id == user_id)
            .order_by(ProjectORM.created_at.desc(), ProjectORM.id.desc())
        )
        projects = [Project.model_validate(row) for row in result.scalars().all()]
        logger.debug(f"Retrieved {len(projects)} projects for user {user_id}")
        return projects

    async def update_project(
        self,
        project_id: int,
        user_id: int,
        name: Optional[str] = None,
        description: Optional[str] = None,
        color: Optional[str] = None
    ) -> Project:
        """
        Update a project's name, description or color.

        Raises:
            ValidationError: If no field is given or a field is invalid
            NotFoundError: If the project does not resolve for the user
        """
        if name is None and description is None and color is None:
            raise ValidationError("At least one of name, description, or color must be provided")

        try:
            project_orm = await self._get_project_or_raise(project_id, user_id)
            values = Project.model_validate(project_orm).model_dump()
            if name is not None:
                values["name"] = name
            if description is not None:
                values["description"] = description
            if color is not None:
                values["color"] = color
            project = validate_fields(Project, values)

            project_orm.name = project.name
            project_orm.description = project.description
            project_orm.color = project.color
            project_orm.updated_at = self.clock()
            await self.session.flush()

            logger.info(f"Updated project: id={project_id}, name='{project_orm.name}'")
            return Project.model_validate(project_orm)
        except CalTodoError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Failed to update project {project_id}: {e}", exc_info=True)
            raise StorageError(f"Failed to update project {project_id}") from e

    async def delete_project(self, project_id: int, user_id: int) -> bool:
        """
        Delete a project and all its tasks.

        Returns:
            True once the project is deleted

        Raises:
            NotFoundError: If the project does not resolve for the user
        """
        try:
            logger.debug(f"Deleting project {project_id}")

            project_orm = await self._get_project_or_raise(project_id, user_id)
            project_name = project_orm.name

            result = await self.session.execute(
                delete(TaskORM)
                .where(TaskORM.project_id == project_id, TaskORM.user_id == user_id)
                .execution_options(synchronize_session="fetch")
            )
            await self.session.delete(project_orm)
            await self.session.flush()

            logger.info(
                f"Deleted project: id={project_id}, name='{project_name}', "
                f"tasks={result.rowcount}"
            )
            return True
        except CalTodoError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Failed to delete project {project_id}: {e}", exc_info=True)
            raise StorageError(f"Failed to delete project {project_id}") from e

    async def get_task_count(self, project_id: int, user_id: int) -> int:
        """
        Get the number of tasks in a project.

        Raises:
            NotFoundError: If the project does not resolve for the user
        """
        await self._get_project_or_raise(project_id, user_id)
        result = await self.session.execute(
            select(func.count(TaskORM.id)).where(
                TaskORM.project_id == project_id,
                TaskORM.user_id == user_id
            )
        )
        return result.scalar_one()
