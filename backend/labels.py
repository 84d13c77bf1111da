"""
Display labels.

Companies may rename the word used for "company" and the names of the four
roles. Custom values are stored in ``companies.settings["labels"]``; anything
missing or empty falls back to the defaults below.
"""

from typing import Dict, Optional

from permissions import Role

DEFAULT_COMPANY_LABEL = "Firma"

DEFAULT_ROLE_LABELS = {
    Role.ADMIN.value: "Administrator",
    Role.GL.value: "Geschäftsleitung",
    Role.SUPERUSER.value: "Superuser",
    Role.USER.value: "Benutzer",
}

STATUS_LABELS = {
    "open": "Offen",
    "in_progress": "In Bearbeitung",
    "question": "Rückfrage",
    "done": "Erledigt",
}


def _as_dict(value) -> dict:
    return value if isinstance(value, dict) else {}


def _text(value) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


def get_company_label(custom_labels: Optional[dict] = None) -> str:
    return _text(_as_dict(custom_labels).get("company")) or DEFAULT_COMPANY_LABEL


def get_role_label(role, custom_labels: Optional[dict] = None) -> str:
    """Custom label for a role, the default label, or the raw role value."""
    key = role.value if isinstance(role, Role) else str(role)
    custom_roles = _as_dict(_as_dict(custom_labels).get("roles"))
    return _text(custom_roles.get(key)) or DEFAULT_ROLE_LABELS.get(key, key)


def get_all_role_labels(custom_labels: Optional[dict] = None) -> Dict[str, str]:
    return {role.value: get_role_label(role, custom_labels) for role in Role}


def get_status_label(status: str) -> str:
    return STATUS_LABELS.get(status, status)


def merge_labels(custom_labels: Optional[dict] = None) -> dict:
    """Complete label set with every custom value applied over the defaults."""
    return {
        "company": get_company_label(custom_labels),
        "roles": get_all_role_labels(custom_labels),
    }


def labels_from_settings(settings: Optional[dict]) -> dict:
    """Labels stored in company settings; malformed values fall back to the defaults."""
    return merge_labels(_as_dict(settings).get("labels"))
