"""
Session Management for Authentication

Sessions only identify the user. Company and role are resolved per request
from the company in the URL, so switching companies needs no new session.
"""

from fastapi import HTTPException, status, Request
from typing import Dict, Optional
from datetime import datetime, timedelta, timezone
import secrets
import logging

import config

logger = logging.getLogger(__name__)

# In-memory session store (single process)
# For several workers, use Redis or database
sessions: Dict[str, dict] = {}


def _is_expired(session_data: dict, now: datetime) -> bool:
    return now - session_data["last_active"] > timedelta(minutes=config.SESSION_TIMEOUT_MINUTES)


def create_session(user_id: int, username: str) -> str:
    """
    Create a new session for a user.
    Returns a session token.
    """
    session_token = secrets.token_urlsafe(config.SESSION_TOKEN_LENGTH)
    now = datetime.now(timezone.utc)

    sessions[session_token] = {
        "user_id": user_id,
        "username": username,
        "created_at": now,
        "last_active": now,
    }

    logger.info(f"Session created for user {username} (ID: {user_id})")
    return session_token


def get_session(session_token: str) -> Optional[dict]:
    """
    Retrieve session data by token.
    Returns None if session doesn't exist or has expired.
    """
    session_data = sessions.get(session_token)
    if session_data is None:
        return None

    now = datetime.now(timezone.utc)
    if _is_expired(session_data, now):
        del sessions[session_token]
        logger.info(f"Session expired for user {session_data['username']}")
        return None

    # Sliding expiry
    session_data["last_active"] = now

    return session_data


def delete_session(session_token: str) -> bool:
    """
    Delete a session (logout).
    Returns True if session was found and deleted.
    """
    session_data = sessions.pop(session_token, None)
    if session_data is None:
        return False
    logger.info(f"Session deleted for user {session_data.get('username', 'unknown')}")
    return True


def delete_user_sessions(user_id: int) -> int:
    """Drop every session of a user (e.g. after a password change)."""
    tokens = [token for token, data in list(sessions.items()) if data["user_id"] == user_id]
    for token in tokens:
        del sessions[token]
    if tokens:
        logger.info(f"Deleted {len(tokens)} sessions of user {user_id}")
    return len(tokens)


def verify_session(request: Request) -> dict:
    """
    Verify the session token sent in the X-Session-Token header.
    Raises HTTPException if session is invalid.
    Returns session data if valid.
    """
    session_token = request.headers.get(config.SESSION_HEADER)

    if not session_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No session token provided"
        )

    session_data = get_session(session_token)

    if not session_data:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired session"
        )

    return session_data


def cleanup_expired_sessions() -> int:
    """
    Remove all expired sessions from memory.
    Returns the number of removed sessions.
    """
    now = datetime.now(timezone.utc)
    expired_tokens = [token for token, data in list(sessions.items()) if _is_expired(data, now)]

    for token in expired_tokens:
        username = sessions[token].get("username", "unknown")
        del sessions[token]
        logger.info(f"Cleaned up expired session for user {username}")

    if expired_tokens:
        logger.info(f"Cleaned up {len(expired_tokens)} expired sessions")

    return len(expired_tokens)


def get_active_sessions_count() -> int:
    return len(sessions)
