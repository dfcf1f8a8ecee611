"""
Parent/child hierarchy rules shared by tasks and documents.

Works on any ORM class exposing ``id``, ``user_id`` and ``parent_id``. Depth
is counted in hops to the root, so a root has depth 0 and a grandchild has
depth 2. Every lookup is scoped to the owning user; an entity owned by
someone else is indistinguishable from a missing one.
"""

from typing import List, Optional, Type, Union

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from caltodo.database import DocumentORM, TaskORM
from caltodo.exceptions import CycleDetectedError, NestingLimitError, NotFoundError
from caltodo.logging_config import get_logger

logger = get_logger(__name__)

HierarchicalORM = Union[TaskORM, DocumentORM]

# Lower bound on ancestor walks during cycle checks
MIN_CYCLE_ITERATIONS = 10

# Upper bound on breadth-first walks over (possibly corrupt) subtrees
MAX_SUBTREE_LEVELS = 64


class HierarchyValidator:
    """
    Depth, cycle and subtree queries over a self-referencing ORM model.
    """

    def __init__(
        self,
        session: AsyncSession,
        model: Type[HierarchicalORM],
        entity_name: str
    ) -> None:
        """
        Args:
            session: Active async database session
            model: ORM class with ``id``, ``user_id`` and ``parent_id`` columns
            entity_name: Name used in error messages ("Task", "Document")
        """
        self.session = session
        self.model = model
        self.entity_name = entity_name

    async def _fetch(self, entity_id: int, user_id: int) -> Optional[HierarchicalORM]:
        result = await self.session.execute(
            select(self.model).where(
                self.model.id == entity_id,
                self.model.user_id == user_id
            )
        )
        return result.scalar_one_or_none()

    async def get_or_raise(
        self,
        entity_id: int,
        user_id: int,
        field: Optional[str] = None
    ) -> HierarchicalORM:
        """
        Fetch an entity owned by the user.

        Raises:
            NotFoundError: If the entity is missing or not owned by the user
        """
        entity = await self._fetch(entity_id, user_id)
        if entity is None:
            logger.warning(f"{self.entity_name} {entity_id} not found for user {user_id}")
            raise NotFoundError(self.entity_name, entity_id, field=field)
        return entity

    # ==============================================================================
    # DEPTH
    # ==============================================================================

    async def depth_of(self, entity_id: int, user_id: int, max_depth: int) -> int:
        """
        Count the hops from an entity up to its root.

        The walk stops after ``max_depth + 1`` hops, so anything deeper (or a
        cyclic chain) reports ``max_depth + 1``.

        Args:
            entity_id: Entity to measure
            user_id: Owner of the entity
            max_depth: Configured limit, bounds the walk

        Returns:
            Depth of the entity, 0 for a root

        Raises:
            NotFoundError: If the entity does not resolve for the user
        """
        current = await self.get_or_raise(entity_id, user_id)
        depth = 0

        while current.parent_id is not None and depth <= max_depth:
            parent = await self._fetch(current.parent_id, user_id)
            if parent is None:
                logger.warning(
                    f"{self.entity_name} {current.id} points at missing parent "
                    f"{current.parent_id}"
                )
                break
            depth += 1
            current = parent

        return depth

    async def can_attach_child(self, parent_id: int, user_id: int, max_depth: int) -> bool:
        """
        Check whether a new child may be placed under ``parent_id``.

        Returns:
            True if the child's depth (parent depth + 1) stays within max_depth

        Raises:
            NotFoundError: If the parent does not resolve for the user
        """
        parent_depth = await self.depth_of(parent_id, user_id, max_depth)
        return parent_depth + 1 <= max_depth

    async def ensure_can_attach(
        self,
        parent_id: int,
        user_id: int,
        max_depth: int,
        subtree_height: int = 0
    ) -> int:
        """
        Raise unless a node (with ``subtree_height`` levels below it) fits
        under ``parent_id``.

        Returns:
            Depth of the parent

        Raises:
            NotFoundError: If the parent does not resolve for the user
            NestingLimitError: If the deepest resulting node exceeds max_depth
        """
        parent_depth = await self.depth_of(parent_id, user_id, max_depth)
        deepest = parent_depth + 1 + subtree_height
        if deepest > max_depth:
            logger.warning(
                f"Nesting limit reached: {self.entity_name.lower()} under {parent_id} "
                f"would reach depth {deepest} (max {max_depth})"
            )
            raise NestingLimitError(
                f"Maximum {self.entity_name.lower()} nesting depth of {max_depth} exceeded",
                field="parent_id",
            )
        return parent_depth

    # ==============================================================================
    # CYCLES
    # ==============================================================================

    @staticmethod
    def validate_self_parent(entity_id: int, proposed_parent_id: Optional[int]) -> bool:
        """Return True when an entity is proposed as its own parent."""
        return proposed_parent_id is not None and entity_id == proposed_parent_id

    async def would_create_cycle(
        self,
        entity_id: int,
        proposed_parent_id: int,
        user_id: int,
        max_depth: int = 0
    ) -> bool:
        """
        Check whether making ``proposed_parent_id`` the parent of
        ``entity_id`` would close a loop.

        Walks up from the proposed parent; reaching ``entity_id`` means the
        proposed parent is a descendant of the entity. The walk is capped at
        ``max(max_depth + 1, 10)`` steps so corrupt cyclic data terminates.
        """
        cap = max(max_depth + 1, MIN_CYCLE_ITERATIONS)
        current_id: Optional[int] = proposed_parent_id
        iterations = 0

        while current_id is not None and iterations < cap:
            if current_id == entity_id:
                return True
            current = await self._fetch(current_id, user_id)
            if current is None:
                break
            current_id = current.parent_id
            iterations += 1

        return False

    async def ensure_valid_parent(
        self,
        entity_id: int,
        proposed_parent_id: int,
        user_id: int,
        max_depth: int
    ) -> None:
        """
        Raises:
            CycleDetectedError: On self-parenting or a descendant as parent
        """
        if self.validate_self_parent(entity_id, proposed_parent_id):
            logger.warning(f"{self.entity_name} {entity_id} proposed as its own parent")
            raise CycleDetectedError(
                f"{self.entity_name} cannot be its own parent", field="parent_id"
            )
        if await self.would_create_cycle(entity_id, proposed_parent_id, user_id, max_depth):
            logger.warning(
                f"Rejected reparent of {self.entity_name.lower()} {entity_id} "
                f"under its descendant {proposed_parent_id}"
            )
            raise CycleDetectedError(
                "Cannot move a parent into its own descendant", field="parent_id"
            )

    # ==============================================================================
    # SUBTREES
    # ==============================================================================

    async def _child_ids(self, parent_ids: List[int], user_id: int) -> List[int]:
        result = await self.session.execute(
            select(self.model.id)
            .where(self.model.parent_id.in_(parent_ids), self.model.user_id == user_id)
            .order_by(self.model.id)
        )
        return list(result.scalars().all())

    async def subtree_height(self, entity_id: int, user_id: int) -> int:
        """
        Number of levels below an entity (0 for a leaf).
        """
        height = 0
        frontier = [entity_id]
        while frontier and height < MAX_SUBTREE_LEVELS:
            frontier = await self._child_ids(frontier, user_id)
            if frontier:
                height += 1
        return height

    async def descendant_ids(self, entity_id: int, user_id: int) -> List[int]:
        """
        Collect every descendant of an entity, breadth-first.

        Returns:
            Descendant IDs, nearest level first (the entity itself excluded)
        """
        descendants: List[int] = []
        seen = {entity_id}
        frontier = [entity_id]
        levels = 0

        while frontier and levels < MAX_SUBTREE_LEVELS:
            children = [
                child_id
                for child_id in await self._child_ids(frontier, user_id)
                if child_id not in seen
            ]
            seen.update(children)
            descendants.extend(children)
            frontier = children
            levels += 1

        return descendants

    async def children_count(self, entity_id: int, user_id: int) -> int:
        result = await self.session.execute(
            select(func.count(self.model.id)).where(
                self.model.parent_id == entity_id,
                self.model.user_id == user_id
            )
        )
        return result.scalar_one()
