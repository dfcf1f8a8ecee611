"""
Document service for caltodo.

Documents form a per-user tree through ``parent_id``. Creation and
reparenting keep the tree acyclic and within the configured nesting depth;
a document that still has children cannot be deleted.
"""

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from caltodo.database import DocumentORM
from caltodo.exceptions import CalTodoError, ConflictError, StorageError, ValidationError
from caltodo.logging_config import get_logger
from caltodo.models import Document, validate_fields
from caltodo.nesting_config import LimitsConfig
from caltodo.services.hierarchy import HierarchyValidator
from caltodo.utils.clock import Clock, utc_now

logger = get_logger(__name__)

MAX_PAGE_SIZE = 1000


class DocumentHierarchyService:
    """
    Service layer for document tree operations.
    """

    def __init__(
        self,
        session: AsyncSession,
        limits: Optional[LimitsConfig] = None,
        clock: Clock = utc_now
    ) -> None:
        """
        Initialize document service with database session.

        Args:
            session: Active async database session
            limits: Nesting limits (defaults when omitted)
            clock: Source of UTC timestamps
        """
        self.session = session
        self.limits = limits or LimitsConfig()
        self.clock = clock
        self.hierarchy = HierarchyValidator(session, DocumentORM, "Document")

    @property
    def max_depth(self) -> int:
        return self.limits.max_document_nesting_depth

    async def _get_document_or_raise(
        self,
        document_id: int,
        user_id: int,
        field: Optional[str] = None
    ) -> DocumentORM:
        return await self.hierarchy.get_or_raise(document_id, user_id, field=field)

    # ==============================================================================
    # CREATE OPERATIONS
    # ==============================================================================

    async def create_document(
        self,
        user_id: int,
        title: str,
        content: Optional[str] = None,
        parent_id: Optional[int] = None
    ) -> Document:
        """
        Create a new document, optionally under a parent document.

        Args:
            user_id: Owner of the document
            title: Document title (1 to 256 characters)
            content: Document body
            parent_id: Parent document

        Returns:
            Created Document instance

        Raises:
            NotFoundError: If the parent does not resolve for the user
            NestingLimitError: If the parent is already at the deepest level
            ValidationError: If a field is invalid
        """
        try:
            logger.debug(f"Creating document: title='{title}', parent_id={parent_id}")

            now = self.clock()
            document = validate_fields(Document, {
                "user_id": user_id,
                "parent_id": parent_id,
                "title": title,
                "content": content,
                "created_at": now,
                "updated_at": now,
            })

            if parent_id is not None:
                await self.hierarchy.ensure_can_attach(parent_id, user_id, self.max_depth)

            document_orm = DocumentORM(
                user_id=user_id,
                parent_id=parent_id,
                title=document.title,
                content=document.content,
                created_at=now,
                updated_at=now,
            )
            self.session.add(document_orm)
            await self.session.flush()

            logger.info(
                f"Created document: id={document_orm.id}, title='{document_orm.title}', "
                f"parent_id={parent_id}"
            )
            return Document.model_validate(document_orm)
        except CalTodoError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Failed to create document: {e}", exc_info=True)
            raise StorageError("Failed to create document") from e

    # ==============================================================================
    # READ OPERATIONS
    # ==============================================================================

    async def get_document(self, document_id: int, user_id: int) -> Document:
        document_orm = await self._get_document_or_raise(document_id, user_id)
        return Document.model_validate(document_orm)

    async def list_documents(
        self,
        user_id: int,
        parent_id: Optional[int] = None,
        roots_only: bool = False,
        limit: int = 1000,
        offset: int = 0
    ) -> List[Document]:
        """
        List a user's documents, newest first.

        Args:
            user_id: Owner
            parent_id: Only children of this document
            roots_only: Only documents without a parent (ignored with parent_id)
            limit: Page size (1 to 1000)
            offset: Rows to skip

        Returns:
            List of Document instances
        """
        if limit < 1 or limit > MAX_PAGE_SIZE:
            raise ValidationError(f"Limit must be between 1 and {MAX_PAGE_SIZE}", field="limit")
        if offset < 0:
            raise ValidationError("Offset must not be negative", field="offset")

        query = select(DocumentORM).where(DocumentORM.user_id == user_id)
        if parent_id is not None:
            query = query.where(DocumentORM.parent_id == parent_id)
        elif roots_only:
            query = query.where(DocumentORM.parent_id.is_(None))
        query = (
            query
            .order_by(DocumentORM.created_at.desc(), DocumentORM.id.desc())
            .limit(limit)
            .offset(offset)
        )

        result = await self.session.execute(query)
        return [Document.model_validate(row) for row in result.scalars().all()]

    async def get_children_count(self, document_id: int, user_id: int) -> int:
        await self._get_document_or_raise(document_id, user_id)
        return await self.hierarchy.children_count(document_id, user_id)

    # ==============================================================================
    # UPDATE OPERATIONS
    # ==============================================================================

    async def update_document(
        self,
        document_id: int,
        user_id: int,
        title: Optional[str] = None,
        content: Optional[str] = None
    ) -> Document:
        """
        Update a document's title or content.

        Raises:
            ValidationError: If no field is given or a field is invalid
            NotFoundError: If the document does not resolve for the user
        """
        if title is None and content is None:
            raise ValidationError("At least one of title or content must be provided")

        try:
            document_orm = await self._get_document_or_raise(document_id, user_id)
            values = Document.model_validate(document_orm).model_dump()
            if title is not None:
                values["title"] = title
            if content is not None:
                values["content"] = content
            document = validate_fields(Document, values)

            document_orm.title = document.title
            document_orm.content = document.content
            document_orm.updated_at = self.clock()
            await self.session.flush()

            logger.info(f"Updated document: id={document_id}, title='{document_orm.title}'")
            return Document.model_validate(document_orm)
        except CalTodoError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Failed to update document {document_id}: {e}", exc_info=True)
            raise StorageError(f"Failed to update document {document_id}") from e

    async def update_parent(
        self,
        document_id: int,
        new_parent_id: Optional[int],
        user_id: int
    ) -> Document:
        """
        Move a document (with its subtree) under another document.

        ``new_parent_id=None`` makes the document a root.

        Raises:
            NotFoundError: If the document or the new parent does not resolve
            CycleDetectedError: If the parent is the document or one of its descendants
            NestingLimitError: If the deepest moved document would exceed the limit
        """
        try:
            logger.debug(f"Moving document {document_id} under {new_parent_id}")

            document_orm = await self._get_document_or_raise(document_id, user_id)

            if new_parent_id is not None:
                await self.hierarchy.ensure_valid_parent(
                    document_id, new_parent_id, user_id, self.max_depth
                )
                await self._get_document_or_raise(new_parent_id, user_id, field="parent_id")
                height = await self.hierarchy.subtree_height(document_id, user_id)
                await self.hierarchy.ensure_can_attach(
                    new_parent_id, user_id, self.max_depth, subtree_height=height
                )

            old_parent_id = document_orm.parent_id
            document_orm.parent_id = new_parent_id
            document_orm.updated_at = self.clock()
            await self.session.flush()

            logger.info(f"Moved document {document_id}: parent {old_parent_id} -> {new_parent_id}")
            return Document.model_validate(document_orm)
        except CalTodoError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Failed to move document {document_id}: {e}", exc_info=True)
            raise StorageError(f"Failed to move document {document_id}") from e

    # ==============================================================================
    # DELETE OPERATIONS
    # ==============================================================================

    async def delete_document(self, document_id: int, user_id: int) -> bool:
        """
        Delete a document that has no children.

        Returns:
            True once the document is deleted

        Raises:
            NotFoundError: If the document does not resolve for the user
            ConflictError: If other documents still reference it as parent
        """
        try:
            document_orm = await self._get_document_or_raise(document_id, user_id)

            children = await self.hierarchy.children_count(document_id, user_id)
            if children:
                logger.warning(f"Refusing to delete document {document_id} with {children} children")
                raise ConflictError(
                    "Cannot delete document with child documents. "
                    "Please delete or move child documents first."
                )

            await self.session.delete(document_orm)
            await self.session.flush()

            logger.info(f"Deleted document: id={document_id}")
            return True
        except CalTodoError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Failed to delete document {document_id}: {e}", exc_info=True)
            raise StorageError(f"Failed to delete document {document_id}") from e
