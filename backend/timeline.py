"""
Activity timeline for a todo.

There is no history table, so the timeline is rebuilt from what the todo row
still carries: its creation and the last note written for each status. Status
entries use ``updated_at`` as their timestamp and the creator as actor, which
is only an approximation.
"""

from datetime import datetime, timezone
from typing import List

import config

UNKNOWN_USER = "Unbekannt"

# Order in which a todo normally passes through the noted statuses
_NOTE_SEQUENCE = (
    config.TODO_STATUS_IN_PROGRESS,
    config.TODO_STATUS_QUESTION,
    config.TODO_STATUS_DONE,
)


def _as_utc(value):
    if value is None:
        return datetime.min.replace(tzinfo=timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def build_activities(todo) -> List[dict]:
    """
    Return timeline entries for ``todo`` sorted chronologically.

    Each entry has id, timestamp, type ("created" or "status_change"), user
    (name, email) and, for status changes, old_value, new_value and note.
    """
    creator = todo.creator
    actor = {
        "name": (creator.full_name if creator else None) or UNKNOWN_USER,
        "email": (creator.email if creator else None) or "",
    }

    activities = [{
        "id": f"created-{todo.id}",
        "timestamp": todo.created_at,
        "type": "created",
        "user": actor,
    }]

    previous = config.TODO_STATUS_OPEN
    for status in _NOTE_SEQUENCE:
        note = getattr(todo, config.STATUS_NOTE_FIELDS[status])
        if not note:
            continue
        activities.append({
            "id": f"status-{status}-{todo.id}",
            "timestamp": todo.updated_at,
            "type": "status_change",
            "user": actor,
            "old_value": previous,
            "new_value": status,
            "note": note,
        })
        previous = status

    # sorted() is stable, so entries sharing updated_at keep status order
    return sorted(activities, key=lambda a: _as_utc(a["timestamp"]))
