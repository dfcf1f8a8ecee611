"""
Tests for HierarchyValidator - depth, cycle and subtree rules.
"""

import pytest
import pytest_asyncio

from caltodo.database import DocumentORM, TaskORM
from caltodo.exceptions import CycleDetectedError, NestingLimitError, NotFoundError
from caltodo.services.hierarchy import HierarchyValidator

from tests.helpers import OTHER_USER_ID, USER_ID


@pytest.fixture
def add_document_row(db_session, clock):
    async def _add_document_row(title, parent_id=None, user_id=USER_ID):
        now = clock()
        document = DocumentORM(
            user_id=user_id,
            parent_id=parent_id,
            title=title,
            created_at=now,
            updated_at=now,
        )
        db_session.add(document)
        await db_session.flush()
        return document
    return _add_document_row


@pytest_asyncio.fixture
async def document_chain(add_document_row):
    """
    Create a chain of documents Root -> L1 -> L2 -> L3.

    Returns:
        List of DocumentORM rows, root first
    """
    chain = [await add_document_row("Root")]
    for level in range(1, 4):
        chain.append(await add_document_row(f"L{level}", parent_id=chain[-1].id))
    return chain


@pytest.fixture
def documents(db_session):
    return HierarchyValidator(db_session, DocumentORM, "Document")


class TestDepth:
    """Tests for depth measurement."""

    @pytest.mark.asyncio
    async def test_depth_counts_hops_to_root(self, documents, document_chain):
        depths = [await documents.depth_of(doc.id, USER_ID, 5) for doc in document_chain]

        assert depths == [0, 1, 2, 3]

    @pytest.mark.asyncio
    async def test_depth_walk_is_bounded(self, documents, document_chain):
        """Test that anything deeper than max_depth reports max_depth + 1."""
        deepest = document_chain[-1]

        assert await documents.depth_of(deepest.id, USER_ID, 1) == 2

    @pytest.mark.asyncio
    async def test_depth_of_missing_entity(self, documents):
        with pytest.raises(NotFoundError):
            await documents.depth_of(424242, USER_ID, 5)

    @pytest.mark.asyncio
    async def test_depth_of_other_users_entity(self, documents, add_document_row):
        """Test that another user's document is reported as missing."""
        foreign = await add_document_row("Foreign", user_id=OTHER_USER_ID)

        with pytest.raises(NotFoundError):
            await documents.depth_of(foreign.id, USER_ID, 5)


class TestAttach:
    """Tests for the child attachment rule."""

    @pytest.mark.asyncio
    async def test_can_attach_child_within_limit(self, documents, document_chain):
        """Test that a child may sit exactly at max_depth."""
        l1 = document_chain[1]

        assert await documents.can_attach_child(l1.id, USER_ID, 2) is True

    @pytest.mark.asyncio
    async def test_cannot_attach_child_past_limit(self, documents, document_chain):
        """Test that a parent at max_depth accepts no children."""
        l2 = document_chain[2]

        assert await documents.can_attach_child(l2.id, USER_ID, 2) is False

    @pytest.mark.asyncio
    async def test_can_attach_child_missing_parent_raises(self, documents):
        """Test that a missing parent is an error, never a silent False."""
        with pytest.raises(NotFoundError):
            await documents.can_attach_child(424242, USER_ID, 5)

    @pytest.mark.asyncio
    async def test_ensure_can_attach_counts_subtree(self, documents, document_chain, add_document_row):
        """Test that a moved subtree must fit below the new parent."""
        other_root = await add_document_row("Other")
        leaf_parent = await add_document_row("Mid", parent_id=other_root.id)
        await add_document_row("Leaf", parent_id=leaf_parent.id)
        height = await documents.subtree_height(other_root.id, USER_ID)

        # L1 sits at depth 1; Other + 2 levels below it would reach depth 4
        with pytest.raises(NestingLimitError):
            await documents.ensure_can_attach(document_chain[1].id, USER_ID, 3, subtree_height=height)

        assert await documents.ensure_can_attach(document_chain[0].id, USER_ID, 3, subtree_height=height) == 0


class TestCycles:
    """Tests for cycle detection."""

    @pytest.mark.asyncio
    async def test_descendant_as_parent_is_cycle(self, documents, document_chain):
        root, _, _, l3 = document_chain

        assert await documents.would_create_cycle(root.id, l3.id, USER_ID) is True

    @pytest.mark.asyncio
    async def test_unrelated_parent_is_not_cycle(self, documents, document_chain, add_document_row):
        other = await add_document_row("Other")

        assert await documents.would_create_cycle(document_chain[0].id, other.id, USER_ID) is False

    @pytest.mark.asyncio
    async def test_ancestor_as_parent_is_not_cycle(self, documents, document_chain):
        root, _, _, l3 = document_chain

        assert await documents.would_create_cycle(l3.id, root.id, USER_ID) is False

    @pytest.mark.asyncio
    async def test_walk_terminates_on_corrupt_cycle(self, db_session, documents, add_document_row):
        """Test that an existing loop in the data cannot hang the check."""
        a = await add_document_row("A")
        b = await add_document_row("B", parent_id=a.id)
        a.parent_id = b.id
        await db_session.flush()
        outsider = await add_document_row("Outsider")

        assert await documents.would_create_cycle(outsider.id, a.id, USER_ID) is False
        assert await documents.depth_of(a.id, USER_ID, 5) == 6

    def test_validate_self_parent(self):
        assert HierarchyValidator.validate_self_parent(3, 3) is True
        assert HierarchyValidator.validate_self_parent(3, 4) is False
        assert HierarchyValidator.validate_self_parent(3, None) is False

    @pytest.mark.asyncio
    async def test_ensure_valid_parent_rejects_self(self, documents, document_chain):
        root = document_chain[0]

        with pytest.raises(CycleDetectedError):
            await documents.ensure_valid_parent(root.id, root.id, USER_ID, 5)


class TestSubtree:
    """Tests for subtree queries."""

    @pytest.mark.asyncio
    async def test_subtree_height(self, documents, document_chain):
        heights = [await documents.subtree_height(doc.id, USER_ID) for doc in document_chain]

        assert heights == [3, 2, 1, 0]

    @pytest.mark.asyncio
    async def test_descendant_ids_breadth_first(self, documents, document_chain, add_document_row):
        root, l1, l2, l3 = document_chain
        sibling = await add_document_row("Sibling", parent_id=root.id)

        descendants = await documents.descendant_ids(root.id, USER_ID)

        assert descendants == [l1.id, sibling.id, l2.id, l3.id]

    @pytest.mark.asyncio
    async def test_children_count(self, documents, document_chain, add_document_row):
        root = document_chain[0]
        await add_document_row("Sibling", parent_id=root.id)

        assert await documents.children_count(root.id, USER_ID) == 2
        assert await documents.children_count(document_chain[-1].id, USER_ID) == 0

    @pytest.mark.asyncio
    async def test_works_for_tasks(self, db_session, add_task_row, sample_project):
        """Test the same validator over the task table."""
        parent = await add_task_row("Parent", 1, project_id=sample_project.id)
        child = await add_task_row("Child", 2, project_id=sample_project.id, parent_id=parent.id)
        tasks = HierarchyValidator(db_session, TaskORM, "Task")

        assert await tasks.depth_of(child.id, USER_ID, 2) == 1
        assert await tasks.descendant_ids(parent.id, USER_ID) == [child.id]
