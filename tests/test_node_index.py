"""
Tests for the per-document node lookup tables.
"""

from node_index import NodeIndex
from node_models import MindmapNode


class TestNodeIndex:

    def test_lookups(self, plan_document):
        index = plan_document.index
        assert len(index) == 5
        assert "api" in index
        assert "ghost" not in index
        assert index.get("ghost") is None
        assert index.parent_of("api").id == "build"
        assert index.parent_of("root") is None

    def test_positions_depth_and_paths(self, plan_document):
        index = plan_document.index
        assert index.positions["wireframes"] == (0, 0)
        assert index.depth("root") == 0
        assert index.depth("api") == 2
        assert index.path_of("api") == "root.children[1].children[0]"
        assert list(index.ancestors("wireframes")) == ["design", "root"]

    def test_index_is_cached_per_document(self, plan_document):
        assert plan_document.index is plan_document.index

    def test_first_duplicate_wins(self):
        first = MindmapNode(id="x", title="First")
        root = MindmapNode(
            id="root",
            title="R",
            children=(first, MindmapNode(id="y", title="Y", children=(MindmapNode(id="x", title="Second"),))),
        )
        index = NodeIndex.build(root)
        assert index.get("x") is first
        assert index.duplicates == ["x"]
        assert len(index) == 3

    def test_subtree_of_later_duplicate_keeps_its_own_parent(self):
        second = MindmapNode(id="x", title="Second", children=(MindmapNode(id="z", title="Z"),))
        root = MindmapNode(
            id="root",
            title="R",
            children=(MindmapNode(id="x", title="First"), MindmapNode(id="y", title="Y", children=(second,))),
        )
        index = NodeIndex.build(root)
        assert index.parent_of("z") is second
        assert list(index.ancestors("z")) == ["x", "y", "root"]
        assert index.path_of("z") == "root.children[1].children[0].children[0]"
