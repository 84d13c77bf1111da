"""
Application Configuration File

This file centralizes all configuration variables so that:
- deployment changes do not require code changes
- every value can be overridden through a TODO_* environment variable
- feature flags live in one place
"""

import os
from pathlib import Path


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# -------------------------------------------------
# BASE DIRECTORY
# -------------------------------------------------
BASE_DIR = Path(__file__).resolve().parent

# -------------------------------------------------
# DATABASE CONFIGURATION
# -------------------------------------------------
DATABASE_NAME = "todos.db"
DATABASE_PATH = BASE_DIR / DATABASE_NAME

DATABASE_URL = os.environ.get("TODO_DATABASE_URL", f"sqlite:///{DATABASE_PATH}")

# -------------------------------------------------
# APPLICATION SETTINGS
# -------------------------------------------------
APP_NAME = "Firmen-ToDo"
APP_VERSION = "1.0"
DEBUG = _env_flag("TODO_DEBUG", False)

LOG_DIR = Path(os.environ.get("TODO_LOG_DIR", BASE_DIR / "logs"))

# -------------------------------------------------
# AUTHENTICATION SETTINGS
# -------------------------------------------------
SESSION_TIMEOUT_MINUTES = int(os.environ.get("TODO_SESSION_TIMEOUT_MINUTES", "480"))  # 8 hours
SESSION_TOKEN_LENGTH = 32
SESSION_HEADER = "X-Session-Token"

# -------------------------------------------------
# FEATURE FLAGS
# -------------------------------------------------
# False: only existing company admins can create users.
# True: anyone can register an account.
ALLOW_PUBLIC_REGISTRATION = _env_flag("TODO_ALLOW_PUBLIC_REGISTRATION", False)

# False: only users who already administer a company can create companies.
# True: every user can create their own company.
ALLOW_USER_CREATE_COMPANY = _env_flag("TODO_ALLOW_USER_CREATE_COMPANY", False)

# -------------------------------------------------
# TODO CONSTANTS
# -------------------------------------------------
TODO_STATUS_OPEN = "open"
TODO_STATUS_IN_PROGRESS = "in_progress"
TODO_STATUS_QUESTION = "question"
TODO_STATUS_DONE = "done"

TODO_STATUSES = (
    TODO_STATUS_OPEN,
    TODO_STATUS_IN_PROGRESS,
    TODO_STATUS_QUESTION,
    TODO_STATUS_DONE,
)

TODO_PRIORITIES = ("low", "medium", "high", "urgent")

# Status -> column holding the note written when entering that status
STATUS_NOTE_FIELDS = {
    TODO_STATUS_IN_PROGRESS: "in_progress_note",
    TODO_STATUS_QUESTION: "question_note",
    TODO_STATUS_DONE: "done_note",
}

# -------------------------------------------------
# NOTIFICATION TYPES
# -------------------------------------------------
NOTIFICATION_TODO_ASSIGNED = "todo_assigned"
NOTIFICATION_TODO_STATUS_CHANGED = "todo_status_changed"
NOTIFICATION_TODO_COMMENT = "todo_comment"
NOTIFICATION_TODO_COMPLETED = "todo_completed"
NOTIFICATION_TODO_DEADLINE_APPROACHING = "todo_deadline_approaching"

NOTIFICATION_TYPES = (
    NOTIFICATION_TODO_ASSIGNED,
    NOTIFICATION_TODO_STATUS_CHANGED,
    NOTIFICATION_TODO_COMMENT,
    NOTIFICATION_TODO_COMPLETED,
    NOTIFICATION_TODO_DEADLINE_APPROACHING,
)

DEFAULT_NOTIFICATION_LIMIT = 50

# -------------------------------------------------
# UPLOAD SETTINGS (company documents)
# -------------------------------------------------
UPLOAD_DIR = Path(os.environ.get("TODO_UPLOAD_DIR", BASE_DIR / "uploads" / "documents"))
MAX_UPLOAD_SIZE = 10 * 1024 * 1024  # 10 MB

# -------------------------------------------------
# COMPANY SLUGS
# -------------------------------------------------
SLUG_PATTERN = r"^[a-z0-9]+(?:-[a-z0-9]+)*$"
