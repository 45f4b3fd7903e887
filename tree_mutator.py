"""Copy-on-write edits on a ``MindmapDocument``.

Every function returns a new document and leaves its input untouched.
Only the nodes on the path from the root to the edited node are
rebuilt; every other subtree is shared with the input document.
"""

from __future__ import annotations

import secrets
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping, Optional

from node_models import Link, MindmapDocument, MindmapNode

Clock = Callable[[], str]

DEFAULT_CHILD_TITLE = "New idea"

# Wire names accepted in patches, mapped onto attribute names.
_PATCH_ALIASES = {
    "customFields": "custom_fields",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
}
_PATCHABLE = {
    "title",
    "description",
    "priority",
    "status",
    "deadline",
    "tags",
    "links",
    "collapsed",
    "custom_fields",
    "created_at",
    "updated_at",
    "extra",
}


class MutationError(Exception):
    """Base class for edits that cannot be applied."""

    def __init__(self, node_id: str, message: str) -> None:
        super().__init__(message)
        self.node_id = node_id


class NodeNotFound(MutationError):
    def __init__(self, node_id: str) -> None:
        super().__init__(node_id, f"Node '{node_id}' not found")


class RootHasNoSibling(MutationError):
    def __init__(self, node_id: str) -> None:
        super().__init__(node_id, f"Cannot add a sibling to the root node '{node_id}'")


class RootCannotBeRemoved(MutationError):
    def __init__(self, node_id: str) -> None:
        super().__init__(node_id, f"Cannot remove the root node '{node_id}'")


class DuplicateNodeId(MutationError):
    def __init__(self, node_id: str) -> None:
        super().__init__(node_id, f"Node id '{node_id}' is already used in this document")


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def _random_id() -> str:
    return f"node_{secrets.token_hex(6)}"


def generate_node_id(existing: Iterable[str]) -> str:
    """Draw ids until one is not already taken."""
    taken = existing if isinstance(existing, (set, frozenset, dict)) else set(existing)
    while True:
        candidate = _random_id()
        if candidate not in taken:
            return candidate


def new_node(title: str, *, node_id: str = "", now: Clock = utc_now, **attrs: Any) -> MindmapNode:
    """A fresh node stamped with creation time; an empty id is filled in on insert."""
    stamp = now()
    attrs.setdefault("created_at", stamp)
    attrs.setdefault("updated_at", stamp)
    return MindmapNode(id=node_id, title=title, **attrs)


# ============================================================
# INTERNAL HELPERS
# ============================================================


def _position(document: MindmapDocument, node_id: str) -> tuple[int, ...]:
    try:
        return document.index.positions[node_id]
    except KeyError:
        raise NodeNotFound(node_id) from None


def _rebuild(node: MindmapNode, position: tuple[int, ...], edit: Callable[[MindmapNode], MindmapNode]) -> MindmapNode:
    if not position:
        return edit(node)
    head, rest = position[0], position[1:]
    children = list(node.children)
    children[head] = _rebuild(children[head], rest, edit)
    return replace(node, children=tuple(children))


def _edit(document: MindmapDocument, node_id: str, edit: Callable[[MindmapNode], MindmapNode]) -> MindmapDocument:
    position = _position(document, node_id)
    return replace(document, root=_rebuild(document.root, position, edit))


def _assign_ids(node: MindmapNode, taken: set[str]) -> MindmapNode:
    """Give id-less nodes of an incoming subtree fresh ids, rejecting clashes."""
    if node.id:
        if node.id in taken:
            raise DuplicateNodeId(node.id)
        node_id = node.id
    else:
        node_id = generate_node_id(taken)
    taken.add(node_id)
    children = tuple(_assign_ids(child, taken) for child in node.children)
    if node_id == node.id and all(a is b for a, b in zip(children, node.children)):
        return node
    return replace(node, id=node_id, children=children)


def _prepare(document: MindmapDocument, node: Optional[MindmapNode], title: str, now: Clock) -> MindmapNode:
    if node is None:
        node = new_node(title, now=now)
    return _assign_ids(node, set(document.index.nodes))


def _normalize_patch(patch: Mapping[str, Any]) -> dict[str, Any]:
    changes: dict[str, Any] = {}
    for key, value in patch.items():
        attr = _PATCH_ALIASES.get(key, key)
        if attr not in _PATCHABLE:
            raise ValueError(f"Field '{key}' cannot be changed with update_fields")
        if attr == "title" and not (isinstance(value, str) and value.strip()):
            raise ValueError("title must be a non-empty string")
        if attr == "tags":
            value = tuple(str(tag) for tag in value or ())
        elif attr == "links":
            value = tuple(link if isinstance(link, Link) else Link.from_dict(link) for link in value or ())
        elif attr in ("custom_fields", "extra"):
            value = dict(value or {})
        elif attr == "collapsed":
            value = bool(value)
        changes[attr] = value
    return changes


# ============================================================
# OPERATIONS
# ============================================================


def add_child(
    document: MindmapDocument,
    parent_id: str,
    node: Optional[MindmapNode] = None,
    *,
    title: str = DEFAULT_CHILD_TITLE,
    now: Clock = utc_now,
) -> MindmapDocument:
    """Append ``node`` as the last child of ``parent_id``.

    A collapsed parent is expanded so the new child is visible.
    """
    position = _position(document, parent_id)
    child = _prepare(document, node, title, now)

    def edit(parent: MindmapNode) -> MindmapNode:
        if parent.collapsed:
            return replace(parent, children=parent.children + (child,), collapsed=False)
        return replace(parent, children=parent.children + (child,))

    return replace(document, root=_rebuild(document.root, position, edit))


def add_sibling(
    document: MindmapDocument,
    sibling_id: str,
    node: Optional[MindmapNode] = None,
    *,
    title: str = DEFAULT_CHILD_TITLE,
    now: Clock = utc_now,
) -> MindmapDocument:
    """Insert ``node`` right after ``sibling_id`` under the same parent."""
    position = _position(document, sibling_id)
    if not position:
        raise RootHasNoSibling(sibling_id)
    sibling = _prepare(document, node, title, now)
    offset = position[-1]

    def edit(parent: MindmapNode) -> MindmapNode:
        children = parent.children
        return replace(parent, children=children[: offset + 1] + (sibling,) + children[offset + 1 :])

    return replace(document, root=_rebuild(document.root, position[:-1], edit))


def update_fields(
    document: MindmapDocument, node_id: str, patch: Mapping[str, Any], *, now: Clock = utc_now
) -> MindmapDocument:
    changes = _normalize_patch(patch)
    changes["updated_at"] = now()
    return _edit(document, node_id, lambda node: replace(node, **changes))


def set_custom_field(
    document: MindmapDocument, node_id: str, name: str, value: Any, *, now: Clock = utc_now
) -> MindmapDocument:
    def edit(node: MindmapNode) -> MindmapNode:
        return replace(node, custom_fields={**node.custom_fields, name: value}, updated_at=now())

    return _edit(document, node_id, edit)


def remove_custom_field(
    document: MindmapDocument, node_id: str, name: str, *, now: Clock = utc_now
) -> MindmapDocument:
    node = document.index.get(node_id)
    if node is None:
        raise NodeNotFound(node_id)
    if name not in node.custom_fields:
        return document
    remaining = {key: value for key, value in node.custom_fields.items() if key != name}
    return _edit(document, node_id, lambda n: replace(n, custom_fields=remaining, updated_at=now()))


def add_tag(document: MindmapDocument, node_id: str, tag: str, *, now: Clock = utc_now) -> MindmapDocument:
    return _edit(document, node_id, lambda node: replace(node, tags=node.tags + (tag,), updated_at=now()))


def remove_tag(document: MindmapDocument, node_id: str, index: int, *, now: Clock = utc_now) -> MindmapDocument:
    """Remove the tag at ``index``; an out-of-range index leaves the document as is."""
    node = document.index.get(node_id)
    if node is None:
        raise NodeNotFound(node_id)
    if not 0 <= index < len(node.tags):
        return document
    tags = node.tags[:index] + node.tags[index + 1 :]
    return _edit(document, node_id, lambda n: replace(n, tags=tags, updated_at=now()))


def toggle_collapse(document: MindmapDocument, node_id: str) -> MindmapDocument:
    return _edit(document, node_id, lambda node: replace(node, collapsed=not node.collapsed))


def remove_node(document: MindmapDocument, node_id: str) -> MindmapDocument:
    """Drop ``node_id`` together with its whole subtree."""
    position = _position(document, node_id)
    if not position:
        raise RootCannotBeRemoved(node_id)
    offset = position[-1]

    def edit(parent: MindmapNode) -> MindmapNode:
        return replace(parent, children=parent.children[:offset] + parent.children[offset + 1 :])

    return replace(document, root=_rebuild(document.root, position[:-1], edit))
