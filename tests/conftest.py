"""
Shared fixtures for the mindmap-sync test suite.

Provides:
- Sample documents in JSON and YAML
- A custom-field schema
- A manual scheduler so debounce behaviour can be tested without sleeping
"""

from typing import Callable, List, Optional

import pytest

from doc_parser import parse
from node_models import CustomSchema, MindmapDocument

SIMPLE_JSON = '{"version":"1.0","title":"T","root":{"id":"root","title":"R","children":[]}}'

PLAN_YAML = """\
version: "1.0"
title: Plan
root:
  id: root
  title: Plan
  customFields:
    priority: high
  children:
    - id: design
      title: Design
      tags: [ux, research]
      customFields:
        priority: medium
        estimate: 5
      children:
        - id: wireframes
          title: Wireframes
          customFields:
            priority: low
    - id: build
      title: Build
      collapsed: true
      customFields:
        priority: high
      children:
        - id: api
          title: API
          customFields:
            priority: medium
"""

SCHEMA_DATA = {
    "version": "1.0",
    "customFields": [
        {
            "name": "priority",
            "label": "Priority",
            "type": "select",
            "options": ["high", "medium", "low"],
            "required": True,
        },
        {
            "name": "estimate",
            "label": "Estimate",
            "type": "number",
            "validation": [{"type": "range", "min": 0, "max": 40}],
        },
        {
            "name": "owner",
            "label": "Owner",
            "type": "string",
            "validation": [{"type": "length", "min": 2, "max": 20}],
        },
        {"name": "approved", "label": "Approved", "type": "boolean"},
        {"name": "due", "label": "Due", "type": "date"},
        {
            "name": "areas",
            "label": "Areas",
            "type": "multiselect",
            "options": ["web", "mobile", "backend"],
        },
    ],
    "displayRules": [{"field": "priority", "displayType": "badge"}],
}


# ============================================================
# DOCUMENT FIXTURES
# ============================================================

@pytest.fixture
def simple_document() -> MindmapDocument:
    result = parse(SIMPLE_JSON, "json")
    assert result.ok
    return result.document


@pytest.fixture
def plan_document() -> MindmapDocument:
    result = parse(PLAN_YAML, "yaml")
    assert result.ok, result.errors
    return result.document


@pytest.fixture
def schema() -> CustomSchema:
    return CustomSchema.from_dict(SCHEMA_DATA)


@pytest.fixture
def fixed_clock() -> Callable[[], str]:
    return lambda: "2024-05-01T12:00:00Z"


# ============================================================
# SCHEDULER
# ============================================================

class FakeTimer:
    def __init__(self, due: float, callback: Callable[[], None]) -> None:
        self.due = due
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Drop-in for the coordinator's scheduler driven by ``advance()``."""

    def __init__(self) -> None:
        self.now = 0.0
        self.timers: List[FakeTimer] = []

    def __call__(self, delay: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(self.now + delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def armed(self) -> List[FakeTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def advance(self, seconds: float) -> None:
        self.now += seconds
        while True:
            due = [t for t in self.armed if t.due <= self.now]
            if not due:
                return
            timer = min(due, key=lambda t: t.due)
            timer.fired = True
            timer.callback()

    def last(self) -> Optional[FakeTimer]:
        return self.timers[-1] if self.timers else None


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()
