#!/usr/bin/env python3
"""
Session Manager for multi-turn support chats.

Keeps each chat session's conversation history in memory with TTL-based
cleanup. The history is what the pipeline forwards to the prompt; the
rest of the record (title, status, rating) backs the session endpoints.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from threading import RLock
from typing import Any, Dict, List, Optional

import orjson
from loguru import logger

from support_rag.models import ConversationMessage

DEFAULT_TITLE = "New Conversation"
TITLE_CHARS = 50
RATING_MIN = 1
RATING_MAX = 5
TRANSCRIPT_FORMATS = ("txt", "json")


def _title_from(content: str) -> str:
    content = content.strip()
    return content[:TITLE_CHARS] + ("..." if len(content) > TITLE_CHARS else "")


def render_transcript(session: Dict[str, Any], fmt: str = "txt") -> str:
    """
    Render a session as a downloadable transcript.

    Args:
        session: Record returned by SessionManager
        fmt: "txt" (human readable) or "json"

    Raises:
        ValueError: unsupported format
    """
    messages: List[ConversationMessage] = list(session["messages"])
    if fmt == "json":
        return orjson.dumps({
            "session_id": session["session_id"],
            "title": session["title"],
            "status": session["status"],
            "created_at": session["created_at"].isoformat(),
            "rating": session["rating"],
            "message_count": len(messages),
            "messages": [m.model_dump(mode="json") for m in messages],
            "exported_at": datetime.now(timezone.utc).isoformat(),
        }, option=orjson.OPT_INDENT_2).decode()
    if fmt != "txt":
        raise ValueError(f"Unsupported transcript format {fmt!r}; use one of {TRANSCRIPT_FORMATS}")

    lines = [
        f"Chat Conversation - {session['title']}",
        f"Session ID: {session['session_id']}",
        f"Date: {session['created_at']:%Y-%m-%d %H:%M:%S} UTC",
        f"Messages: {len(messages)}",
        "",
        "=" * 50,
        "",
    ]
    for msg in messages:
        sender = "You" if msg.role == "user" else "Support Agent"
        lines.append(f"[{msg.timestamp:%Y-%m-%d %H:%M:%S}] {sender}:")
        lines.append(msg.content)
        lines.append("")
    return "\n".join(lines)


class SessionManager:
    """
    Manage chat sessions with conversation history.

    Sessions expire after TTL (default: 1 hour) of inactivity. Each session
    keeps at most `max_messages` messages; the oldest are dropped first.
    """

    def __init__(self, ttl_seconds: int = 3600, max_sessions: int = 1000, max_messages: int = 200):
        """
        Initialize session manager.

        Args:
            ttl_seconds: Time-to-live for inactive sessions (default: 1 hour)
            max_sessions: Maximum number of concurrent sessions (default: 1000)
            max_messages: Messages kept per session (default: 200)
        """
        if max_messages < 1:
            raise ValueError(f"max_messages must be >= 1, got {max_messages}")
        self._sessions: Dict[str, Dict[str, Any]] = {}
        self._lock = RLock()
        self.ttl_seconds = ttl_seconds
        self.max_sessions = max_sessions
        self.max_messages = max_messages
        logger.info(
            f"SessionManager initialized: ttl={ttl_seconds}s, max_sessions={max_sessions}, "
            f"max_messages={max_messages}"
        )

    def create_session(self, session_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Create a new chat session.

        Args:
            session_id: Use this id instead of generating one

        Returns:
            The new session record
        """
        with self._lock:
            self.cleanup_expired()

            if len(self._sessions) >= self.max_sessions:
                oldest_id = min(
                    self._sessions.keys(),
                    key=lambda sid: self._sessions[sid]["last_accessed"]
                )
                logger.warning(f"Max sessions reached ({self.max_sessions}), removing oldest: {oldest_id}")
                del self._sessions[oldest_id]

            session_id = session_id or str(uuid.uuid4())
            now = datetime.now(timezone.utc)
            session = {
                "session_id": session_id,
                "title": DEFAULT_TITLE,
                "status": "active",
                "created_at": now,
                "last_accessed": now,
                "messages": [],
                "rating": None,
                "feedback": None,
                "ttl_seconds": self.ttl_seconds,
            }
            self._sessions[session_id] = session

        logger.info(f"Created session: {session_id}")
        return session

    def _is_expired(self, session: Dict[str, Any], now: datetime) -> bool:
        return now - session["last_accessed"] > timedelta(seconds=session["ttl_seconds"])

    def get_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        """
        Retrieve a session by ID and refresh its last_accessed time.

        Returns:
            Session record, or None if not found/expired
        """
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None

            now = datetime.now(timezone.utc)
            if self._is_expired(session, now):
                logger.info(f"Session {session_id} expired, removing")
                del self._sessions[session_id]
                return None

            session["last_accessed"] = now
            return session

    def get_or_create(self, session_id: Optional[str]) -> Dict[str, Any]:
        if session_id:
            session = self.get_session(session_id)
            if session is not None:
                return session
        return self.create_session(session_id)

    def get_history(self, session_id: str) -> List[ConversationMessage]:
        session = self.get_session(session_id)
        if session is None:
            return []
        with self._lock:
            return list(session["messages"])

    def add_message(self, session_id: str, role: str, content: str) -> bool:
        """
        Append a message to a session, dropping the oldest past `max_messages`.

        Returns:
            True if added, False if session not found
        """
        session = self.get_session(session_id)
        if session is None:
            logger.warning(f"Cannot add message: session {session_id} not found")
            return False

        with self._lock:
            messages = session["messages"]
            messages.append(ConversationMessage(role=role, content=content))
            if role == "user" and session["title"] == DEFAULT_TITLE:
                session["title"] = _title_from(content)
            overflow = len(messages) - self.max_messages
            if overflow > 0:
                del messages[:overflow]
            count = len(messages)
        logger.debug(f"Session {session_id}: {role} message, {count} kept")
        return True

    def close_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        """Mark a session closed; its history stays readable until it expires."""
        session = self.get_session(session_id)
        if session is None:
            return None
        with self._lock:
            session["status"] = "closed"
        logger.info(f"Closed session: {session_id}")
        return session

    def rate_session(self, session_id: str, rating: int, feedback: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """
        Record a 1-5 rating (and optional feedback) for a session.

        Returns:
            Updated session record, or None if not found

        Raises:
            ValueError: rating outside 1-5
        """
        if not RATING_MIN <= rating <= RATING_MAX:
            raise ValueError(f"Rating must be between {RATING_MIN} and {RATING_MAX}, got {rating}")
        session = self.get_session(session_id)
        if session is None:
            return None
        with self._lock:
            session["rating"] = rating
            session["feedback"] = feedback
        logger.info(f"Session {session_id} rated {rating}")
        return session

    def delete_session(self, session_id: str) -> bool:
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            logger.warning(f"Cannot delete: session {session_id} not found")
            return False
        logger.info(f"Deleted session: {session_id} ({len(session['messages'])} messages)")
        return True

    def cleanup_expired(self) -> int:
        """
        Remove expired sessions.

        Returns:
            Number of sessions removed
        """
        now = datetime.now(timezone.utc)
        with self._lock:
            expired = [sid for sid, s in self._sessions.items() if self._is_expired(s, now)]
            for session_id in expired:
                del self._sessions[session_id]

        if expired:
            logger.info(f"Cleanup: removed {len(expired)} expired sessions")
        return len(expired)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            sessions = list(self._sessions.values())
            total_messages = sum(len(s["messages"]) for s in sessions)
            active = sum(1 for s in sessions if s["status"] == "active")
            ratings = [s["rating"] for s in sessions if s["rating"] is not None]
        return {
            "total_sessions": len(sessions),
            "active_sessions": active,
            "total_messages": total_messages,
            "rated_sessions": len(ratings),
            "average_rating": round(sum(ratings) / len(ratings), 2) if ratings else 0.0,
            "max_sessions": self.max_sessions,
            "ttl_seconds": self.ttl_seconds,
        }
