"""Task text helpers: signatures, keyword category inference, backfill.

All functions here are pure (apart from ``backfill_task`` stamping a
timestamp when one is missing) so they can be tested in isolation.
"""

from __future__ import annotations

import datetime
import re

from vigil.manifest_types import CATEGORIES, Task

_PUNCT_RE = re.compile(r"[^\w\s-]")
_SPACE_RE = re.compile(r"[\s_-]+")

# Category inference, checked top to bottom -- first match wins. The order
# mirrors CATEGORIES so a task that mentions both "boot" and "cleanup" is
# treated as survival work.
_CATEGORY_RULES: list[tuple[re.Pattern, str]] = [
    (
        re.compile(
            r"\b(boot\w*|critical|broken|fix missing|can'?t function|blocker)\b"
        ),
        "survival",
    ),
    (
        re.compile(
            r"\b(memory|consolidat\w*|organi[sz]\w*|index\w*|daily|"
            r"session log|weight\w*|manifest)\b"
        ),
        "memory",
    ),
    (
        re.compile(r"\b(skill\w*|tool\w*|script\w*|infra\w*|pipeline\w*|cron|"
                   r"automat\w*|system\w*)\b"),
        "infrastructure",
    ),
    (
        re.compile(r"\b(build\w*|expand\w*|new capabilit\w*|implement\w*|"
                   r"create\w*|design\w*)\b"),
        "expansion",
    ),
    (
        re.compile(r"\b(research\w*|investigat\w*|analy[sz]\w*|monitor\w*|"
                   r"scan\w*|review\w*|explor\w*)\b"),
        "research",
    ),
    (
        re.compile(r"\b(clean\w*|refactor\w*|update\w*|minor|tidy|renam\w*|"
                   r"reorgani[sz]\w*)\b"),
        "maintenance",
    ),
]

FALLBACK_CATEGORY = "nice-to-have"


def task_signature(text: str) -> str:
    """Normalize task text into a signature key.

    Lowercases, drops punctuation, and collapses whitespace, underscores and
    hyphens into single hyphens, so "Fix the boot script!" and
    "fix  the boot-script" share a signature.
    """
    slug = _PUNCT_RE.sub("", text.lower()).strip()
    return _SPACE_RE.sub("-", slug).strip("-")


def task_key(task: Task) -> str:
    """Identity of one task instance: signature plus creation timestamp."""
    stamp = task.created_at.isoformat() if task.created_at else "undated"
    return f"{task_signature(task.text)}@{stamp}"


def duplicate_key(text: str) -> str:
    """Key used to spot exact-duplicate task text within one pass."""
    return text.strip().lower()


def infer_category(text: str) -> str:
    """Infer a task category from its text using the fixed rule table."""
    lower = text.lower()
    for pattern, category in _CATEGORY_RULES:
        if pattern.search(lower):
            return category
    return FALLBACK_CATEGORY


def backfill_task(task: Task, now: datetime.datetime) -> Task:
    """Fill in category, tags and created_at on a malformed task, in place.

    Never rejects a task: missing fields are recovered locally.

    Returns:
        The same task, for chaining.
    """
    if task.category not in CATEGORIES:
        task.category = infer_category(task.text)
    if not task.tags:
        task.tags = {task.category}
    if task.created_at is None:
        task.created_at = now
    return task
