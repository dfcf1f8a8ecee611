"""
Tests for DocumentHierarchyService - document tree operations.
"""

import pytest

from caltodo.exceptions import (
    ConflictError,
    CycleDetectedError,
    NestingLimitError,
    NotFoundError,
    ValidationError,
)
from caltodo.nesting_config import LimitsConfig
from caltodo.services.document_service import DocumentHierarchyService

from tests.helpers import OTHER_USER_ID, USER_ID


async def _chain(service, length, user_id=USER_ID):
    """Create Root -> L1 -> ... with ``length`` documents."""
    documents = [await service.create_document(user_id, "Root")]
    for level in range(1, length):
        documents.append(
            await service.create_document(user_id, f"L{level}", parent_id=documents[-1].id)
        )
    return documents


class TestDocumentCreate:
    """Tests for document creation."""

    @pytest.mark.asyncio
    async def test_create_root_document(self, document_service):
        document = await document_service.create_document(USER_ID, "Notes", content="# Heading")

        assert document.id is not None
        assert document.parent_id is None
        assert document.content == "# Heading"

    @pytest.mark.asyncio
    async def test_create_child_document(self, document_service):
        root = await document_service.create_document(USER_ID, "Root")

        child = await document_service.create_document(USER_ID, "Child", parent_id=root.id)

        assert child.parent_id == root.id

    @pytest.mark.asyncio
    async def test_depth_five_allowed_six_rejected(self, document_service):
        """Test that documents nest at most five levels below a root."""
        chain = await _chain(document_service, 6)

        assert len(chain) == 6

        with pytest.raises(NestingLimitError):
            await document_service.create_document(USER_ID, "Too deep", parent_id=chain[-1].id)

    @pytest.mark.asyncio
    async def test_nesting_limit_is_a_validation_error(self, db_session, clock):
        """Test the depth scenario with a limit of two."""
        service = DocumentHierarchyService(db_session, limits=LimitsConfig(max_document_nesting_depth=2), clock=clock)
        root, a, b = await _chain(service, 3)

        with pytest.raises(ValidationError):
            await service.create_document(USER_ID, "C", parent_id=b.id)

    @pytest.mark.asyncio
    async def test_create_under_missing_parent(self, document_service):
        with pytest.raises(NotFoundError):
            await document_service.create_document(USER_ID, "Orphan", parent_id=9999)

    @pytest.mark.asyncio
    async def test_create_under_other_users_parent(self, document_service):
        foreign = await document_service.create_document(OTHER_USER_ID, "Theirs")

        with pytest.raises(NotFoundError):
            await document_service.create_document(USER_ID, "Mine", parent_id=foreign.id)

    @pytest.mark.asyncio
    async def test_create_requires_title(self, document_service):
        with pytest.raises(ValidationError):
            await document_service.create_document(USER_ID, "")


class TestDocumentRead:
    """Tests for document retrieval."""

    @pytest.mark.asyncio
    async def test_list_newest_first(self, document_service):
        await document_service.create_document(USER_ID, "Old")
        await document_service.create_document(USER_ID, "New")
        await document_service.create_document(OTHER_USER_ID, "Theirs")

        documents = await document_service.list_documents(USER_ID)

        assert [d.title for d in documents] == ["New", "Old"]

    @pytest.mark.asyncio
    async def test_list_roots_and_children(self, document_service):
        root = await document_service.create_document(USER_ID, "Root")
        child = await document_service.create_document(USER_ID, "Child", parent_id=root.id)

        roots = await document_service.list_documents(USER_ID, roots_only=True)
        children = await document_service.list_documents(USER_ID, parent_id=root.id)

        assert [d.id for d in roots] == [root.id]
        assert [d.id for d in children] == [child.id]

    @pytest.mark.asyncio
    async def test_children_count(self, document_service):
        root = await document_service.create_document(USER_ID, "Root")
        await document_service.create_document(USER_ID, "One", parent_id=root.id)
        await document_service.create_document(USER_ID, "Two", parent_id=root.id)

        assert await document_service.get_children_count(root.id, USER_ID) == 2

    @pytest.mark.asyncio
    async def test_get_other_users_document(self, document_service):
        document = await document_service.create_document(USER_ID, "Private")

        with pytest.raises(NotFoundError):
            await document_service.get_document(document.id, OTHER_USER_ID)

    @pytest.mark.asyncio
    async def test_list_response_omits_content(self, document_service):
        document = await document_service.create_document(USER_ID, "Body", content="text")

        assert "content" not in document.to_response(include_content=False)
        assert document.to_response()["content"] == "text"


class TestDocumentUpdate:
    """Tests for title/content updates."""

    @pytest.mark.asyncio
    async def test_update_title(self, document_service):
        document = await document_service.create_document(USER_ID, "Draft", content="body")

        updated = await document_service.update_document(document.id, USER_ID, title="Final")

        assert updated.title == "Final"
        assert updated.content == "body"

    @pytest.mark.asyncio
    async def test_update_requires_a_field(self, document_service):
        document = await document_service.create_document(USER_ID, "Draft")

        with pytest.raises(ValidationError):
            await document_service.update_document(document.id, USER_ID)


class TestDocumentReparent:
    """Tests for moving documents in the tree."""

    @pytest.mark.asyncio
    async def test_move_under_other_root(self, document_service):
        first = await document_service.create_document(USER_ID, "First")
        second = await document_service.create_document(USER_ID, "Second")

        moved = await document_service.update_parent(second.id, first.id, USER_ID)

        assert moved.parent_id == first.id

    @pytest.mark.asyncio
    async def test_move_to_root(self, document_service):
        root = await document_service.create_document(USER_ID, "Root")
        child = await document_service.create_document(USER_ID, "Child", parent_id=root.id)

        moved = await document_service.update_parent(child.id, None, USER_ID)

        assert moved.parent_id is None

    @pytest.mark.asyncio
    async def test_move_under_descendant_rejected(self, document_service):
        """Test that a document cannot move into its own subtree."""
        root = await document_service.create_document(USER_ID, "Root")
        leaf = await document_service.create_document(USER_ID, "Leaf", parent_id=root.id)

        with pytest.raises(CycleDetectedError):
            await document_service.update_parent(root.id, leaf.id, USER_ID)

        assert (await document_service.get_document(root.id, USER_ID)).parent_id is None

    @pytest.mark.asyncio
    async def test_move_under_itself_rejected(self, document_service):
        root = await document_service.create_document(USER_ID, "Root")

        with pytest.raises(CycleDetectedError):
            await document_service.update_parent(root.id, root.id, USER_ID)

    @pytest.mark.asyncio
    async def test_move_subtree_past_depth_rejected(self, document_service):
        """Test that the deepest moved document counts toward the limit."""
        chain = await _chain(document_service, 4)
        subtree = await _chain(document_service, 3)

        # chain[-1] is at depth 3; the subtree would span depths 4..6
        with pytest.raises(NestingLimitError):
            await document_service.update_parent(subtree[0].id, chain[-1].id, USER_ID)

        moved = await document_service.update_parent(subtree[0].id, chain[1].id, USER_ID)
        assert moved.parent_id == chain[1].id

    @pytest.mark.asyncio
    async def test_move_under_missing_parent(self, document_service):
        document = await document_service.create_document(USER_ID, "Doc")

        with pytest.raises(NotFoundError):
            await document_service.update_parent(document.id, 9999, USER_ID)


class TestDocumentDelete:
    """Tests for deletion."""

    @pytest.mark.asyncio
    async def test_delete_with_children_conflicts(self, document_service):
        """Test that children must be removed before their parent."""
        root = await document_service.create_document(USER_ID, "Root")
        leaf = await document_service.create_document(USER_ID, "Leaf", parent_id=root.id)

        with pytest.raises(ConflictError) as exc_info:
            await document_service.delete_document(root.id, USER_ID)
        assert exc_info.value.status_code == 409

        assert await document_service.delete_document(leaf.id, USER_ID) is True
        assert await document_service.delete_document(root.id, USER_ID) is True

        with pytest.raises(NotFoundError):
            await document_service.get_document(root.id, USER_ID)

    @pytest.mark.asyncio
    async def test_delete_other_users_document(self, document_service):
        document = await document_service.create_document(USER_ID, "Mine")

        with pytest.raises(NotFoundError):
            await document_service.delete_document(document.id, OTHER_USER_ID)
