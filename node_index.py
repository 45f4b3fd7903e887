from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, Optional

from node_models import MindmapNode


@dataclass
class NodeIndex:
    """Flat lookup tables over one tree snapshot.

    ``positions`` holds the child-index path from the root to each node,
    which is what the copy-on-write mutators need to rebuild the spine.
    When ids are duplicated the first node in depth-first order wins;
    ``duplicates`` lists the ids that were seen more than once. Parents
    are resolved through ``at`` (position -> node) so a subtree under a
    duplicated id still reports its real parent.
    """

    root_id: str
    nodes: dict[str, MindmapNode] = field(default_factory=dict)
    positions: dict[str, tuple[int, ...]] = field(default_factory=dict)
    at: dict[tuple[int, ...], MindmapNode] = field(default_factory=dict)
    duplicates: list[str] = field(default_factory=list)

    @classmethod
    def build(cls, root: MindmapNode) -> "NodeIndex":
        index = cls(root_id=root.id)
        stack: list[tuple[MindmapNode, tuple[int, ...]]] = [(root, ())]
        while stack:
            node, position = stack.pop()
            index.at[position] = node
            if node.id in index.nodes:
                if node.id not in index.duplicates:
                    index.duplicates.append(node.id)
            else:
                index.nodes[node.id] = node
                index.positions[node.id] = position
            # Reversed so that pops happen in document order.
            for offset in range(len(node.children) - 1, -1, -1):
                stack.append((node.children[offset], position + (offset,)))
        return index

    def __contains__(self, node_id: object) -> bool:
        return node_id in self.nodes

    def __len__(self) -> int:
        return len(self.nodes)

    def get(self, node_id: str) -> Optional[MindmapNode]:
        return self.nodes.get(node_id)

    def parent_of(self, node_id: str) -> Optional[MindmapNode]:
        position = self.positions.get(node_id)
        if not position:
            return None
        return self.at[position[:-1]]

    def depth(self, node_id: str) -> int:
        return len(self.positions[node_id])

    def ancestors(self, node_id: str) -> Iterator[str]:
        position = self.positions.get(node_id, ())
        for length in range(len(position) - 1, -1, -1):
            yield self.at[position[:length]].id

    def path_of(self, node_id: str) -> str:
        """Dotted logical path, e.g. ``root.children[2].children[0]``."""
        parts = ["root"]
        parts.extend(f"children[{offset}]" for offset in self.positions[node_id])
        return ".".join(parts)
