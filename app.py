from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Any, Callable, Optional

from textual import events
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal
from textual.screen import ModalScreen
from textual.widgets import Footer, Header, Input, Static, TextArea, Tree
from textual.widgets._tree import TextType
from rich.text import Text

import tree_mutator
from doc_parser import detect_format
from node_models import Format, MindmapDocument, MindmapNode, ParseError
from sync import SyncCoordinator, SyncSnapshot, Problem
from tree_mutator import MutationError

logger = logging.getLogger(__name__)

LOG_LEVEL_ENV = "MINDMAP_LOG_LEVEL"
LOG_FILE_ENV = "MINDMAP_LOG_FILE"
DEFAULT_LOG_FILE = "mindmap.log"
MAX_STATUS_ERRORS = 5

STARTER_YAML = """\
version: "1.0"
title: Mind Map
root:
  id: root
  title: Central Idea
  children: []
"""


def configure_logging() -> None:
    """Send log records to a file; the terminal belongs to the UI."""
    level_name = os.getenv(LOG_LEVEL_ENV, "INFO").upper()
    level = getattr(logging, level_name, None)
    known = isinstance(level, int)
    logging.basicConfig(
        filename=os.getenv(LOG_FILE_ENV, DEFAULT_LOG_FILE),
        level=level if known else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if not known:
        logger.warning("Unknown %s=%r, using INFO", LOG_LEVEL_ENV, level_name)


def describe_problem(problem: Problem) -> str:
    if isinstance(problem, ParseError):
        return f"{problem.line}:{problem.column} {problem.message}"
    return f"{problem.path}: {problem.message}"


class MindmapTree(Tree[MindmapNode]):
    """Read-only view of the published document; edits go through the app."""

    BINDINGS = [
        Binding("a", "app.add_child", "Child"),
        Binding("b", "app.add_sibling", "Sibling"),
        Binding("e", "app.rename_node", "Rename"),
        Binding("t", "app.add_tag", "Tag"),
        Binding("x", "app.remove_last_tag", "Untag"),
        Binding("c", "app.toggle_collapse", "Collapse"),
        Binding("0", "app.delete_node", "(del)"),
    ]

    def process_label(self, label: TextType) -> Text:
        if isinstance(label, str):
            return Text.from_markup(label, justify="left")
        return label


class TextPromptScreen(ModalScreen[Optional[str]]):
    """Single-line prompt used for renaming and tagging."""

    DEFAULT_CSS = """
    TextPromptScreen {
        align: center middle;
        background: transparent;
    }

    #prompt-field {
        width: 60;
        border: round $secondary;
        background: $surface;
    }
    """

    def __init__(self, initial_value: str, placeholder: str) -> None:
        super().__init__()
        self._initial_value = initial_value
        self._placeholder = placeholder

    def compose(self) -> ComposeResult:
        yield Input(value=self._initial_value, placeholder=self._placeholder, id="prompt-field")

    def on_mount(self) -> None:
        self.query_one("#prompt-field", Input).focus()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        event.stop()
        self.dismiss(event.value)

    def on_key(self, event: events.Key) -> None:
        if event.key == "escape":
            event.stop()
            self.dismiss(None)


class MindmapApp(App[None]):
    """Side-by-side raw text editor and outline for a JSON/YAML mind map."""

    TITLE = "mindmap-sync"

    CSS = """
    #panes {
        height: 1fr;
    }
    #editor {
        width: 1fr;
    }
    #mindmap-tree {
        width: 1fr;
    }
    #status {
        height: auto;
        max-height: 7;
        color: $warning;
    }
    """

    BINDINGS = [
        Binding("ctrl+s", "save", "Save"),
        Binding("ctrl+r", "sync_now", "Sync"),
        Binding("ctrl+q", "quit", "Quit"),
    ]

    def __init__(
        self,
        path: str | Path | None = None,
        *,
        fmt: Optional[Format] = None,
        sync_delay: Optional[float] = None,
    ) -> None:
        super().__init__()
        self._path: Optional[Path] = Path(path).expanduser() if path else None
        self._requested_format = fmt
        self._sync_delay = sync_delay
        self._tree_widget: Optional[MindmapTree] = None
        self._select_after: Optional[str] = None
        self.coordinator: Optional[SyncCoordinator] = None

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        with Horizontal(id="panes"):
            yield TextArea(id="editor")
            tree = MindmapTree("Mind Map", id="mindmap-tree")
            tree.show_root = True
            self._tree_widget = tree
            yield tree
        yield Static("", id="status")
        yield Footer()

    def on_mount(self) -> None:
        text = self._read_initial_text()
        filename = str(self._path) if self._path else None
        fmt = self._requested_format or detect_format(text, filename) or "yaml"
        self.coordinator = SyncCoordinator(fmt, sync_delay=self._sync_delay, on_text=self._write_back)
        self.coordinator.subscribe(self._on_snapshot)
        self.query_one("#editor", TextArea).load_text(text)
        self.coordinator.text_changed(text)
        self.coordinator.flush()
        logger.info("Opened %s as %s", self._path or "<new document>", fmt)

    def on_unmount(self) -> None:
        if self.coordinator is not None:
            self.coordinator.close()

    def _read_initial_text(self) -> str:
        if self._path is None or not self._path.exists():
            return STARTER_YAML
        return self._path.read_text(encoding="utf-8")

    def require_tree(self) -> MindmapTree:
        if self._tree_widget is None:
            raise RuntimeError("Tree widget not initialised")
        return self._tree_widget

    def require_coordinator(self) -> SyncCoordinator:
        if self.coordinator is None:
            raise RuntimeError("Coordinator not initialised")
        return self.coordinator

    # ------------------------------------------------------------
    # Text <-> tree
    # ------------------------------------------------------------

    def on_text_area_changed(self, event: TextArea.Changed) -> None:
        if self.coordinator is not None:
            self.coordinator.text_changed(event.text_area.text)

    def _write_back(self, text: str) -> None:
        editor = self.query_one("#editor", TextArea)
        if editor.text != text:
            editor.load_text(text)

    def _on_snapshot(self, snapshot: SyncSnapshot) -> None:
        if snapshot.document is not None:
            self.rebuild_tree(snapshot.document)
        elif not snapshot.errors:
            self.require_tree().clear()
        self.show_errors(snapshot.errors)

    def rebuild_tree(self, document: MindmapDocument) -> None:
        tree = self.require_tree()
        keep_id = self._select_after or self._selected_node_id()
        self._select_after = None
        tree.clear()
        root_node = tree.root
        root_node.set_label(self._format_node_label(document.root))
        root_node.data = document.root
        self.populate_tree(root_node, document.root)
        if document.root.collapsed:
            root_node.collapse()
        else:
            root_node.expand()
        tree.select_node(self._find_tree_node(keep_id) or root_node)
        tree.refresh(layout=True)

    def populate_tree(self, tree_node: Tree.Node[MindmapNode], mindmap_node: MindmapNode) -> None:
        for child in mindmap_node.children:
            label = self._format_node_label(child)
            if child.children:
                child_tree_node = tree_node.add(label, data=child, expand=not child.collapsed)
                self.populate_tree(child_tree_node, child)
            else:
                tree_node.add_leaf(label, data=child)

    def _find_tree_node(self, node_id: Optional[str]) -> Optional[Tree.Node[MindmapNode]]:
        if node_id is None:
            return None
        stack = [self.require_tree().root]
        while stack:
            candidate = stack.pop()
            if isinstance(candidate.data, MindmapNode) and candidate.data.id == node_id:
                return candidate
            stack.extend(candidate.children)
        return None

    def _format_node_label(self, node: MindmapNode) -> Text:
        label = Text(node.title)
        if node.tags:
            label.append("  " + " ".join(f"#{tag}" for tag in node.tags), style="dim")
        if node.collapsed and node.children:
            label.append(f"  (+{len(node.children)})", style="dim italic")
        return label

    # ------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------

    def _selected_node_id(self) -> Optional[str]:
        cursor = self.require_tree().cursor_node
        if cursor is None or not isinstance(cursor.data, MindmapNode):
            return None
        return cursor.data.id

    def _apply(
        self,
        op: Callable[..., MindmapDocument],
        *args: Any,
        select: Optional[Callable[[MindmapDocument], Optional[str]]] = None,
    ) -> Optional[MindmapDocument]:
        coordinator = self.require_coordinator()
        if coordinator.has_pending and not coordinator.paused:
            coordinator.flush()
        snapshot = coordinator.snapshot
        if snapshot is not None and snapshot.parse_errors:
            # The tree still shows the last good document, not the current text.
            self.bell()
            self.show_status("Fix the text errors before editing the tree.")
            return None
        try:
            updated = coordinator.mutate(op, *args)
        except (MutationError, ValueError, RuntimeError) as exc:
            self.bell()
            self.show_status(str(exc))
            return None
        if select is not None:
            self._select_after = select(updated)
        # Parse the written-back text right away instead of waiting for the debounce.
        coordinator.flush()
        return updated

    def _require_selection(self) -> Optional[str]:
        node_id = self._selected_node_id()
        if node_id is None:
            self.bell()
            self.show_status("No node selected.")
        return node_id

    def action_add_child(self) -> None:
        parent_id = self._require_selection()
        if parent_id is None:
            return

        def last_child(document: MindmapDocument) -> Optional[str]:
            parent = document.index.get(parent_id)
            return parent.children[-1].id if parent and parent.children else None

        if self._apply(tree_mutator.add_child, parent_id, select=last_child) is not None:
            self.show_status("Added child node.")

    def action_add_sibling(self) -> None:
        sibling_id = self._require_selection()
        if sibling_id is None:
            return

        def next_sibling(document: MindmapDocument) -> Optional[str]:
            parent = document.index.parent_of(sibling_id)
            offset = document.index.positions[sibling_id][-1] + 1
            return parent.children[offset].id if parent else None

        if self._apply(tree_mutator.add_sibling, sibling_id, select=next_sibling) is not None:
            self.show_status("Added sibling node.")

    def action_rename_node(self) -> None:
        node_id = self._require_selection()
        if node_id is None:
            return
        document = self.require_coordinator().document
        current = document.index.get(node_id) if document else None

        def apply_title(value: Optional[str]) -> None:
            if value is None:
                return
            if self._apply(tree_mutator.update_fields, node_id, {"title": value.strip()}) is not None:
                self.show_status("Node title updated.")

        self.push_screen(TextPromptScreen(current.title if current else "", "Node title"), apply_title)

    def action_add_tag(self) -> None:
        node_id = self._require_selection()
        if node_id is None:
            return

        def apply_tag(value: Optional[str]) -> None:
            if not value or not value.strip():
                return
            if self._apply(tree_mutator.add_tag, node_id, value.strip()) is not None:
                self.show_status(f"Tagged with '{value.strip()}'.")

        self.push_screen(TextPromptScreen("", "Tag"), apply_tag)

    def action_remove_last_tag(self) -> None:
        node_id = self._require_selection()
        if node_id is None:
            return
        document = self.require_coordinator().document
        node = document.index.get(node_id) if document else None
        if node is None or not node.tags:
            self.bell()
            self.show_status("No tags to remove.")
            return
        self._apply(tree_mutator.remove_tag, node_id, len(node.tags) - 1)

    def action_toggle_collapse(self) -> None:
        node_id = self._require_selection()
        if node_id is not None:
            self._apply(tree_mutator.toggle_collapse, node_id)

    def action_delete_node(self) -> None:
        node_id = self._require_selection()
        if node_id is None:
            return
        document = self.require_coordinator().document
        parent = document.index.parent_of(node_id) if document else None
        parent_id = parent.id if parent else None
        if self._apply(tree_mutator.remove_node, node_id, select=lambda _: parent_id) is not None:
            self.show_status("Node deleted.")

    def action_sync_now(self) -> None:
        self.require_coordinator().flush()

    def action_save(self) -> None:
        coordinator = self.require_coordinator()
        path = self._path or Path("mindmap.json" if coordinator.fmt == "json" else "mindmap.yaml")
        path.write_text(self.query_one("#editor", TextArea).text, encoding="utf-8")
        self._path = path
        logger.info("Saved %s", path)
        self.show_status(f"Saved to {path}")

    # ------------------------------------------------------------
    # Status
    # ------------------------------------------------------------

    def show_errors(self, errors: tuple[Problem, ...]) -> None:
        status = self.query_one("#status", Static)
        if not errors:
            status.update("")
            self.show_status("No problems.")
            return
        lines = [describe_problem(problem) for problem in errors[:MAX_STATUS_ERRORS]]
        if len(errors) > MAX_STATUS_ERRORS:
            lines.append(f"… and {len(errors) - MAX_STATUS_ERRORS} more")
        status.update(Text("\n".join(lines)))
        self.show_status(f"{len(errors)} problem(s).")

    def show_status(self, message: str | None = None) -> None:
        coordinator = self.coordinator
        fmt = coordinator.fmt if coordinator else "?"
        name = self._path.name if self._path else "untitled"
        composed = f"{name} [{fmt}]"
        if message:
            composed = f"{composed} · {message}"
        self.sub_title = composed


def main() -> None:
    configure_logging()
    initial_path = sys.argv[1] if len(sys.argv) > 1 else None
    MindmapApp(initial_path).run()


if __name__ == "__main__":
    main()
