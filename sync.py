"""Debounced text -> tree pipeline for one open document.

A ``SyncCoordinator`` owns the latest published snapshot of a single
document. Raw text (typed by the user or written back after a tree
edit) enters through one internal event handler, is debounced, parsed,
validated and published to subscribers.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Literal, Optional, Protocol, Union

from doc_parser import parse
from doc_serializer import serialize
from node_models import CustomSchema, Format, MindmapDocument, ParseError, ParseResult, SchemaError
from schema_validator import check_unique_ids, validate
from tree_mutator import MutationError

logger = logging.getLogger(__name__)

DEFAULT_SYNC_DELAY = 0.3
SYNC_DELAY_ENV = "MINDMAP_SYNC_DELAY"

Problem = Union[ParseError, SchemaError]


def get_sync_delay() -> float:
    raw = os.getenv(SYNC_DELAY_ENV)
    if raw is None or not raw.strip():
        return DEFAULT_SYNC_DELAY
    try:
        delay = float(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r (not a number)", SYNC_DELAY_ENV, raw)
        return DEFAULT_SYNC_DELAY
    if delay < 0:
        logger.warning("Ignoring %s=%r (negative)", SYNC_DELAY_ENV, raw)
        return DEFAULT_SYNC_DELAY
    return delay


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


Scheduler = Callable[[float, Callable[[], None]], TimerHandle]


def asyncio_scheduler(delay: float, callback: Callable[[], None]) -> TimerHandle:
    """Default scheduler; must be called from inside a running event loop."""
    return asyncio.get_running_loop().call_later(delay, callback)


class SyncState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    PARSING = "parsing"
    VALIDATING = "validating"
    PUBLISHED = "published"


@dataclass(frozen=True)
class SyncSnapshot:
    document: Optional[MindmapDocument]
    errors: tuple[Problem, ...]
    generation: int
    source_text: str

    @property
    def parse_errors(self) -> list[ParseError]:
        return [error for error in self.errors if isinstance(error, ParseError)]

    @property
    def schema_errors(self) -> list[SchemaError]:
        return [error for error in self.errors if isinstance(error, SchemaError)]


@dataclass(frozen=True)
class TextEdited:
    """The single internal event: new raw text from the host or from a tree edit."""

    content: str
    origin: Literal["external", "mutation"] = "external"


@dataclass
class SyncStats:
    total_syncs: int = 0
    successful_syncs: int = 0
    failed_syncs: int = 0
    average_sync_time: float = 0.0

    def record(self, duration: float, ok: bool) -> None:
        self.total_syncs += 1
        if ok:
            self.successful_syncs += 1
        else:
            self.failed_syncs += 1
        self.average_sync_time += (duration - self.average_sync_time) / self.total_syncs


Subscriber = Callable[[SyncSnapshot], None]


class SyncCoordinator:
    def __init__(
        self,
        fmt: Format,
        *,
        schema: Optional[CustomSchema] = None,
        sync_delay: Optional[float] = None,
        scheduler: Optional[Scheduler] = None,
        on_text: Optional[Callable[[str], None]] = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        if fmt not in ("json", "yaml"):
            raise ValueError(f"Unsupported format: {fmt!r}")
        self.fmt: Format = fmt
        self.sync_delay = get_sync_delay() if sync_delay is None else sync_delay
        self.stats = SyncStats()
        self._schema = schema
        self._scheduler = scheduler or asyncio_scheduler
        self._on_text = on_text
        self._clock = clock
        self._subscribers: list[Subscriber] = []
        self._state = SyncState.IDLE
        self._generation = 0
        self._timer: Optional[TimerHandle] = None
        self._pending_text: Optional[str] = None
        self._processed_text: Optional[str] = None
        self._snapshot: Optional[SyncSnapshot] = None
        self._paused = False

    # ------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def snapshot(self) -> Optional[SyncSnapshot]:
        return self._snapshot

    @property
    def document(self) -> Optional[MindmapDocument]:
        return self._snapshot.document if self._snapshot else None

    @property
    def source_text(self) -> Optional[str]:
        return self._processed_text

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def has_pending(self) -> bool:
        return self._pending_text is not None

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    # ------------------------------------------------------------
    # Write side
    # ------------------------------------------------------------

    def text_changed(self, content: str) -> None:
        self._dispatch(TextEdited(content, "external"))

    def set_schema(self, schema: Optional[CustomSchema]) -> None:
        """Replace the external schema and re-validate the current document."""
        self._schema = schema
        snapshot = self._snapshot
        if snapshot is None or snapshot.document is None or snapshot.parse_errors:
            return
        errors = self._validate(snapshot.document)
        self._publish(SyncSnapshot(snapshot.document, errors, snapshot.generation, snapshot.source_text))

    def mutate(self, op: Callable[..., MindmapDocument], *args: Any, **kwargs: Any) -> MindmapDocument:
        """Apply a ``tree_mutator`` operation and feed the result back as text.

        Pending text is parsed first so the edit applies to what the user
        last typed. Mutation errors propagate to the caller and leave the
        published document untouched.
        """
        if self._pending_text is not None and not self._paused:
            self.flush()
        document = self.document
        if document is None:
            raise RuntimeError("There is no document to edit")
        try:
            updated = op(document, *args, **kwargs)
        except MutationError as exc:
            logger.warning("Mutation %s rejected: %s", getattr(op, "__name__", op), exc)
            raise
        if updated is document:
            return document
        text = serialize(updated, self.fmt, previous_text=self._processed_text)
        self._dispatch(TextEdited(text, "mutation"))
        if self._on_text is not None:
            self._on_text(text)
        return updated

    def flush(self) -> None:
        """Parse pending text now instead of waiting for the timer."""
        if self._pending_text is None:
            return
        self._cancel_timer()
        self._run(self._generation, self._pending_text)

    def pause(self) -> None:
        self._paused = True
        self._cancel_timer()

    def resume(self) -> None:
        if not self._paused:
            return
        self._paused = False
        if self._pending_text is not None:
            self._arm()

    def close(self) -> None:
        self._cancel_timer()
        self._pending_text = None
        self._subscribers.clear()

    # ------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------

    def _dispatch(self, event: TextEdited) -> None:
        content = event.content
        if content == self._pending_text:
            logger.debug("Ignoring %s text identical to pending text", event.origin)
            return
        if content == self._processed_text:
            if self._pending_text is not None:
                # Back to what is already published: drop the pending parse.
                self._cancel_timer()
                self._pending_text = None
                self._generation += 1
                self._state = SyncState.PUBLISHED
            logger.debug("Ignoring %s text identical to published text", event.origin)
            return

        self._generation += 1
        self._pending_text = content
        logger.debug("Accepted %s text, generation %d", event.origin, self._generation)
        if not self._paused:
            self._arm()

    def _arm(self) -> None:
        self._cancel_timer()
        generation = self._generation
        self._state = SyncState.PENDING
        self._timer = self._scheduler(self.sync_delay, lambda: self._on_timer(generation))

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self, generation: int) -> None:
        if generation != self._generation or self._pending_text is None:
            logger.debug("Timer for generation %d fired after being superseded", generation)
            return
        self._timer = None
        self._run(generation, self._pending_text)

    def _validate(self, document: MindmapDocument) -> tuple[Problem, ...]:
        schema = document.schema if document.schema is not None else self._schema
        try:
            result = validate(document, schema)
            duplicates = check_unique_ids(document)
        except Exception as exc:
            logger.exception("Validation failed for %r", document.title)
            return (SchemaError("root", f"Validation failed: {exc}", None, "VALIDATOR_FAILED"),)
        return tuple(result.errors) + tuple(duplicates)

    def _run(self, generation: int, text: str) -> None:
        started = self._clock()
        self._state = SyncState.PARSING
        try:
            result = parse(text, self.fmt)
        except Exception as exc:
            logger.exception("Parser failed on generation %d", generation)
            result = ParseResult(errors=(ParseError(1, 1, f"Parser failed: {exc}", code="PARSER_FAILED"),))

        if result.errors:
            previous = self.document
            snapshot = SyncSnapshot(previous, result.errors, generation, text)
            ok = False
        else:
            errors: tuple[Problem, ...] = ()
            if result.document is not None:
                self._state = SyncState.VALIDATING
                errors = self._validate(result.document)
            snapshot = SyncSnapshot(result.document, errors, generation, text)
            ok = True

        if generation != self._generation:
            logger.warning("Dropping stale result for generation %d (current %d)", generation, self._generation)
            self._state = SyncState.PENDING if self._pending_text is not None else SyncState.PUBLISHED
            return

        self._pending_text = None
        self._processed_text = text
        self.stats.record(self._clock() - started, ok)
        self._publish(snapshot)

    def _publish(self, snapshot: SyncSnapshot) -> None:
        self._snapshot = snapshot
        self._state = SyncState.PUBLISHED
        logger.info(
            "Published generation %d: %s, %d problem(s)",
            snapshot.generation,
            "document" if snapshot.document is not None else "no document",
            len(snapshot.errors),
        )
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception:
                logger.exception("Subscriber %r failed", callback)
