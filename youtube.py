# youtube.py
"""
YouTube platform integration.

Split the same way as the rest of the project:
- Descriptor functions (pure logic: build URLs, parse API payloads)
- Action functions (network calls to Google OAuth and the YouTube Data API)

Every call takes the access token (or the BotSession that holds it)
explicitly; nothing in here keeps a process-wide token.
"""

# =====================================================================
# IMPORTS
# =====================================================================
import logging
import os
import secrets
import time
import urllib.parse
from dataclasses import dataclass

import requests
from dotenv import load_dotenv

from sessions import BotSession

load_dotenv()

log = logging.getLogger("ytchatbot.youtube")

# =====================================================================
# CONFIG / CONSTANTS
# =====================================================================
OAUTH_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
OAUTH_TOKEN_URL = "https://oauth2.googleapis.com/token"
API_HOST = "https://www.googleapis.com/youtube/v3"

SCOPES = [
    "https://www.googleapis.com/auth/youtube.readonly",
    # needed to post into live chat
    "https://www.googleapis.com/auth/youtube.force-ssl",
]

REQUIRED_ENV = ("GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_SECRET", "APP_URL")
HTTP_TIMEOUT = 20
MAX_CHAT_LENGTH = 200


def require_env(names=REQUIRED_ENV) -> dict[str, str]:
    """
    Read required env vars, or stop the process with a clear message.

    Raises:
        SystemExit when any of them is missing or empty
    """
    values = {name: os.getenv(name, "").strip() for name in names}
    missing = [name for name, value in values.items() if not value]
    if missing:
        msg = f"Missing required env vars: {', '.join(missing)}"
        log.critical(msg)
        raise SystemExit(1)
    return values


_env = require_env()
CLIENT_ID = _env["GOOGLE_CLIENT_ID"]
CLIENT_SECRET = _env["GOOGLE_CLIENT_SECRET"]
APP_URL = _env["APP_URL"].rstrip("/")
REDIRECT_URI = f"{APP_URL}/oauth2callback"

# OAuth state -> pending login (in-memory, expires after STATE_TTL_SECONDS)
STATE_TTL_SECONDS = 600
MAX_PENDING_LOGINS = 1000
STATE_STORE: dict[str, "PendingLogin"] = {}


class YouTubeError(Exception):
    """A Google / YouTube API call returned an error."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class PendingLogin:
    # None when the browser had no bot session yet; one is made on callback
    session_id: str | None
    issued_at: float


@dataclass(frozen=True)
class ChatMessage:
    message_id: str
    author_name: str
    text: str
    author_channel_id: str | None = None

# =====================================================================
# DESCRIPTOR FUNCTIONS
# (Pure logic: build, parse, decide — no side effects)
# =====================================================================

def build_auth_url(state: str) -> str:
    """
    Construct the Google OAuth authorization URL.
    Pure function: state → URL string.
    """
    q = {
        "response_type": "code",
        "client_id": CLIENT_ID,
        "redirect_uri": REDIRECT_URI,
        "scope": " ".join(SCOPES),
        "access_type": "offline",
        "prompt": "consent",
        "include_granted_scopes": "true",
        "state": state,
    }
    return f"{OAUTH_AUTHORIZE_URL}?{urllib.parse.urlencode(q)}"


def prune_states(now: float | None = None) -> None:
    """Drop expired login states, then the oldest ones beyond MAX_PENDING_LOGINS."""
    now = time.time() if now is None else now
    for state, pending in list(STATE_STORE.items()):
        if now - pending.issued_at > STATE_TTL_SECONDS:
            del STATE_STORE[state]
    # dicts keep insertion order, so the first keys are the oldest
    while len(STATE_STORE) > MAX_PENDING_LOGINS:
        del STATE_STORE[next(iter(STATE_STORE))]


def start_login(session_id: str | None = None) -> tuple[str, str]:
    """
    Descriptor for initiating a login flow.

    session_id is the browser's existing bot session, if it has one.

    Returns:
        (auth_url, state)
    """
    prune_states()
    state = secrets.token_urlsafe(16)
    STATE_STORE[state] = PendingLogin(session_id=session_id, issued_at=time.time())
    return build_auth_url(state), state


def pop_state(state: str | None) -> PendingLogin | None:
    """
    Retrieve and remove a pending login.
    Prevents replay of the same callback; expired states count as unknown.
    """
    if not state:
        return None
    pending = STATE_STORE.pop(state, None)
    if pending is None or time.time() - pending.issued_at > STATE_TTL_SECONDS:
        return None
    return pending


def error_message(r: requests.Response) -> str:
    """Pull a human readable message out of a Google error response."""
    try:
        body = r.json()
    except ValueError:
        return r.text or f"HTTP {r.status_code}"

    err = body.get("error")
    if isinstance(err, dict):
        # Data API: {"error": {"code": 403, "message": "..."}}
        return err.get("message") or f"HTTP {r.status_code}"
    if isinstance(err, str):
        # OAuth endpoint: {"error": "invalid_grant", "error_description": "..."}
        desc = body.get("error_description")
        return f"{err}: {desc}" if desc else err
    return f"HTTP {r.status_code}"


def format_for_chat(text: str) -> str:
    """Live chat is single line and capped at MAX_CHAT_LENGTH characters."""
    flat = " | ".join(line.strip() for line in text.splitlines() if line.strip())
    if len(flat) > MAX_CHAT_LENGTH:
        flat = flat[: MAX_CHAT_LENGTH - 1] + "…"
    return flat


def parse_chat_message(item: dict) -> ChatMessage:
    snippet = item.get("snippet", {})
    author = item.get("authorDetails", {})
    text = snippet.get("displayMessage")
    if text is None:
        text = snippet.get("textMessageDetails", {}).get("messageText", "")
    return ChatMessage(
        message_id=item.get("id", ""),
        author_name=author.get("displayName", "unknown"),
        text=text,
        author_channel_id=author.get("channelId"),
    )


def _auth_headers(access_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {access_token}"}


def _check(r: requests.Response) -> dict:
    if r.status_code >= 400:
        raise YouTubeError(error_message(r), status_code=r.status_code)
    return r.json() if r.content else {}

# =====================================================================
# ACTION FUNCTIONS
# (Side effects: HTTP requests to Google)
# =====================================================================

def exchange_code_for_token(code: str) -> dict:
    """
    Exchange an OAuth authorization code for an access/refresh token pair.

    Side effects:
    - Network call to Google OAuth

    Raises:
        YouTubeError when Google rejects the code
        requests.RequestException on transport failure
    """
    data = {
        "grant_type": "authorization_code",
        "client_id": CLIENT_ID,
        "client_secret": CLIENT_SECRET,
        "redirect_uri": REDIRECT_URI,
        "code": code,
    }

    r = requests.post(
        OAUTH_TOKEN_URL,
        data=data,
        headers={"Content-Type": "application/x-www-form-urlencoded"},
        timeout=HTTP_TIMEOUT,
    )
    return _check(r)


def api_get(access_token: str, path: str, params: dict) -> dict:
    r = requests.get(
        f"{API_HOST}/{path}",
        params=params,
        headers=_auth_headers(access_token),
        timeout=HTTP_TIMEOUT,
    )
    return _check(r)


def get_my_channel(access_token: str) -> dict | None:
    """Return the authenticated user's channel resource (id, snippet, statistics)."""
    data = api_get(access_token, "channels", {"part": "id,snippet,statistics", "mine": "true"})
    items = data.get("items") or []
    return items[0] if items else None


def search_channel(access_token: str, query: str) -> dict | None:
    """
    Find a channel by name and return its full channel resource.

    Two calls: search.list to resolve the name, channels.list for details.
    """
    found = api_get(
        access_token,
        "search",
        {"part": "snippet", "q": query, "type": "channel", "maxResults": 1},
    )
    items = found.get("items") or []
    if not items:
        return None

    channel_id = items[0].get("snippet", {}).get("channelId")
    data = api_get(access_token, "channels", {"part": "snippet,statistics", "id": channel_id})
    channels = data.get("items") or []
    return channels[0] if channels else None


def find_live_chat_id(access_token: str) -> str | None:
    """Return the live chat id of the user's currently active broadcast, if any."""
    data = api_get(
        access_token,
        "liveBroadcasts",
        {"part": "snippet", "broadcastStatus": "active", "broadcastType": "all"},
    )
    for item in data.get("items") or []:
        live_chat_id = item.get("snippet", {}).get("liveChatId")
        if live_chat_id:
            return live_chat_id
    return None


def list_chat_messages(
    access_token: str, live_chat_id: str, page_token: str | None = None
) -> tuple[list[ChatMessage], str | None]:
    """
    One page of live chat messages.

    Returns:
        (messages, next_page_token)
    """
    params = {"liveChatId": live_chat_id, "part": "snippet,authorDetails"}
    if page_token:
        params["pageToken"] = page_token

    data = api_get(access_token, "liveChat/messages", params)
    messages = [parse_chat_message(item) for item in data.get("items") or []]
    return messages, data.get("nextPageToken")


def fetch_new_messages(session: BotSession) -> list[ChatMessage]:
    """
    Messages that arrived since the previous call for this session.

    The platform cursor lives on the session. The very first call only primes
    the cursor, so chat history from before the bot started is not answered.

    Raises:
        YouTubeError when the session has no token or live chat
    """
    if not session.authenticated or not session.live_chat_id:
        raise YouTubeError("Session has no access token or live chat attached")

    first = not session.cursor_primed
    messages, next_token = list_chat_messages(
        session.access_token, session.live_chat_id, session.page_token
    )
    if next_token:
        session.page_token = next_token
    session.cursor_primed = True

    if first:
        log.info("Primed chat cursor for %s (%d old messages skipped)", session.live_chat_id, len(messages))
        return []
    return messages


def send_chat_message(session: BotSession, text: str) -> str | None:
    """
    Post a message to the session's live chat.

    Side effects:
    - Network call to liveChatMessages.insert

    Returns:
        id of the posted message
    """
    if not session.authenticated or not session.live_chat_id:
        raise YouTubeError("Session has no access token or live chat attached")

    body = {
        "snippet": {
            "liveChatId": session.live_chat_id,
            "type": "textMessageEvent",
            "textMessageDetails": {"messageText": format_for_chat(text)},
        }
    }
    r = requests.post(
        f"{API_HOST}/liveChat/messages",
        params={"part": "snippet"},
        json=body,
        headers=_auth_headers(session.access_token),
        timeout=HTTP_TIMEOUT,
    )
    return _check(r).get("id")
