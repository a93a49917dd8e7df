# sessions.py
"""
Per-browser-session bot state.

One BotSession per logged-in browser. The signed session cookie only carries
the session id; tokens and channel info stay in this process and are gone
after a restart.
"""

# =====================================================================
# IMPORTS
# =====================================================================
import secrets
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from commands import CommandContext

if TYPE_CHECKING:
    from poller import ChatPoller

# =====================================================================
# SESSION OBJECT
# =====================================================================

@dataclass
class BotSession:
    session_id: str
    access_token: str | None = None
    refresh_token: str | None = None
    channel_id: str | None = None
    channel_title: str | None = None
    subscriber_count: int | str | None = None
    live_chat_id: str | None = None
    # platform cursor for liveChat/messages; None until the first fetch
    page_token: str | None = None
    cursor_primed: bool = False
    poller: "ChatPoller | None" = field(default=None, repr=False)

    @property
    def authenticated(self) -> bool:
        return bool(self.access_token)

    @property
    def bot_running(self) -> bool:
        return self.poller is not None and self.poller.running

    def store_tokens(self, token: dict) -> None:
        self.access_token = token.get("access_token")
        # Google only returns a refresh token on the first consent
        self.refresh_token = token.get("refresh_token") or self.refresh_token

    def store_channel(self, channel: dict | None) -> None:
        if not channel:
            return
        snippet = channel.get("snippet", {})
        stats = channel.get("statistics", {})
        self.channel_id = channel.get("id")
        self.channel_title = snippet.get("title")
        self.subscriber_count = stats.get("subscriberCount", 0)

    def attach_live_chat(self, live_chat_id: str) -> None:
        """Point the session at a (possibly new) live chat and reset the cursor."""
        if live_chat_id != self.live_chat_id:
            self.page_token = None
            self.cursor_primed = False
        self.live_chat_id = live_chat_id

    def command_context(self) -> CommandContext:
        return CommandContext(
            authenticated=self.authenticated,
            channel_id=self.channel_id,
            channel_title=self.channel_title,
            subscriber_count=self.subscriber_count,
            live_chat_id=self.live_chat_id,
        )

    def describe(self) -> dict[str, Any]:
        return {
            "authenticated": self.authenticated,
            "channel_id": self.channel_id,
            "channel_title": self.channel_title,
            "subscriber_count": self.subscriber_count,
            "live_chat_id": self.live_chat_id,
            "bot_running": self.bot_running,
        }

# =====================================================================
# STORE
# =====================================================================

class SessionStore:
    """In-memory map of session id -> BotSession."""

    def __init__(self) -> None:
        self._sessions: dict[str, BotSession] = {}

    def get(self, session_id: str | None) -> BotSession | None:
        if not session_id:
            return None
        return self._sessions.get(session_id)

    def create(self) -> BotSession:
        session = BotSession(session_id=secrets.token_urlsafe(16))
        self._sessions[session.session_id] = session
        return session

    def get_or_create(self, session_id: str | None) -> BotSession:
        return self.get(session_id) or self.create()

    def drop(self, session_id: str | None) -> BotSession | None:
        if not session_id:
            return None
        return self._sessions.pop(session_id, None)

    def all(self) -> list[BotSession]:
        return list(self._sessions.values())

    def clear(self) -> None:
        self._sessions.clear()


STORE = SessionStore()
