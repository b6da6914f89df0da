"""File-based task list contract shared with the agent."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class TaskListError(ValueError):
    """Raised when a task list document is malformed."""


@dataclass(slots=True)
class UserStory:
    """One story the agent works through."""

    id: str
    title: str
    description: str = ""
    acceptance_criteria: list[str] = field(default_factory=list)
    priority: int = 0
    passes: bool = False
    notes: str = ""


@dataclass(slots=True)
class TaskList:
    """Top-level task list document (``prd.json``)."""

    project: str
    branch_name: str
    description: str = ""
    user_stories: list[UserStory] = field(default_factory=list)


def read_branch_name(path: Path) -> str:
    """Return ``branchName`` from the task list, or an empty string.

    A missing file, unparsable JSON or an absent/non-string field all mean
    "no branch".
    """

    if not path.exists():
        return ""
    try:
        payload = json.loads(path.read_text("utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as error:
        logger.warning("Cannot read branchName from %s: %s", path, error)
        return ""
    if not isinstance(payload, dict):
        return ""
    value = payload.get("branchName")
    if not isinstance(value, str):
        return ""
    return value.strip()


def load_task_list(path: Path) -> TaskList:
    """Load and parse a task list document."""

    try:
        payload = json.loads(path.read_text("utf-8"))
    except json.JSONDecodeError as error:
        raise TaskListError(f"Task list is not valid JSON: {path}: {error}") from error
    return parse_task_list(payload)


def parse_task_list(payload: Any) -> TaskList:
    """Build a typed task list view, rejecting duplicate story ids."""

    if not isinstance(payload, dict):
        raise TaskListError("Task list must be a JSON object.")
    raw_stories = payload.get("userStories", [])
    if not isinstance(raw_stories, list):
        raise TaskListError("userStories must be a list.")

    stories: list[UserStory] = []
    seen: set[str] = set()
    for raw in raw_stories:
        story = _parse_story(raw)
        if story.id in seen:
            raise TaskListError(f"Duplicate user story id: {story.id!r}")
        seen.add(story.id)
        stories.append(story)

    return TaskList(
        project=str(payload.get("project", "")),
        branch_name=str(payload.get("branchName") or ""),
        description=str(payload.get("description", "")),
        user_stories=stories,
    )


def _parse_story(raw: Any) -> UserStory:
    if not isinstance(raw, dict):
        raise TaskListError("Each user story must be a JSON object.")
    story_id = raw.get("id")
    if not isinstance(story_id, str) or not story_id.strip():
        raise TaskListError("User story id must be a non-empty string.")
    criteria = raw.get("acceptanceCriteria", [])
    if not isinstance(criteria, list):
        raise TaskListError(f"acceptanceCriteria must be a list for story {story_id!r}")
    try:
        priority = int(raw.get("priority", 0))
    except (TypeError, ValueError) as error:
        raise TaskListError(f"priority must be an integer for story {story_id!r}") from error
    return UserStory(
        id=story_id,
        title=str(raw.get("title", "")),
        description=str(raw.get("description", "")),
        acceptance_criteria=[str(item) for item in criteria],
        priority=priority,
        passes=bool(raw.get("passes", False)),
        notes=str(raw.get("notes", "")),
    )
