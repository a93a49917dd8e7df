# app.py
"""
YouTube chat command bot.

Layout follows the usual sections (imports → config → helpers → startup →
routes):
- youtube.py owns Google OAuth and the YouTube Data API
- commands.py turns a chat line into a reply
- poller.py runs the live chat loop
- sessions.py holds per-browser bot state

This file is the web server: login flow, command test API and the
operational triggers for the live chat bot.
"""

# =====================================================================
# IMPORTS
# =====================================================================
import asyncio
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

import requests
import uvicorn
from colorlog import ColoredFormatter
from dotenv import load_dotenv
from fastapi import Body, FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from starlette.middleware.sessions import SessionMiddleware

import commands
import youtube  # local module (youtube.py)
from poller import ChatPoller
from sessions import STORE, BotSession

# =====================================================================
# CONFIG / CONSTANTS
# =====================================================================
# Load environment variables from .env (must happen before reading os.environ / os.getenv)
load_dotenv()

# ---------- Logging ----------
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

handler = logging.StreamHandler()
handler.setFormatter(
    ColoredFormatter(
        "%(log_color)s%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        log_colors={
            "DEBUG": "cyan",
            "INFO": "green",
            "WARNING": "yellow",
            "ERROR": "red",
            "CRITICAL": "bold_red",
        },
    )
)

logging.basicConfig(level=getattr(logging, LOG_LEVEL, logging.INFO), handlers=[handler])
log = logging.getLogger("ytchatbot")

# ---------- Server ----------
SESSION_SECRET = os.getenv("SESSION_SECRET", "change_this")
PORT = int(os.getenv("PORT", "3000"))
DISABLE_DOCS = os.getenv("DISABLE_DOCS", "0") == "1"

BASE_DIR = Path(__file__).resolve().parent
WEB_DIR = BASE_DIR / "web"

TEST_MESSAGE = "Bot connected ✅ Type !cmdslist to see what I can do."

if SESSION_SECRET == "change_this":
    log.warning("SESSION_SECRET is not set; using the insecure default")

# =====================================================================
# SESSION HELPERS
# =====================================================================

def current_session(request: Request) -> BotSession | None:
    """Look up the BotSession for this browser (None before the first login)."""
    return STORE.get(request.session.get("sid"))


def not_authenticated() -> JSONResponse:
    return JSONResponse({"error": "not authenticated"}, status_code=401)


def platform_error(e: Exception) -> JSONResponse:
    log.error("YouTube API call failed: %s", e)
    return JSONResponse({"error": str(e)}, status_code=502)

# =====================================================================
# STARTUP / SHUTDOWN
# =====================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    log.info("Server started on port %s (callback %s)", PORT, youtube.REDIRECT_URI)
    yield
    for session in STORE.all():
        if session.poller is not None:
            await session.poller.stop()

# =====================================================================
# FASTAPI APP SETUP
# =====================================================================
app = FastAPI(
    lifespan=lifespan,
    docs_url=None if DISABLE_DOCS else "/docs",
    redoc_url=None if DISABLE_DOCS else "/redoc",
    openapi_url=None if DISABLE_DOCS else "/openapi.json",
)
app.add_middleware(SessionMiddleware, secret_key=SESSION_SECRET, same_site="lax")

# Serve templates/static from ./web
app.mount("/static", StaticFiles(directory=WEB_DIR / "static"), name="static")
templates = Jinja2Templates(directory=str(WEB_DIR))

# =====================================================================
# ROUTES — UI / AUTH FLOW
# =====================================================================

@app.get("/", response_class=HTMLResponse)
def home(request: Request):
    session = current_session(request)
    user = session.describe() if session and session.authenticated else None
    return templates.TemplateResponse(request, "index.html", {"user": user})


@app.get("/login", response_class=HTMLResponse)
def login_page(request: Request):
    session = current_session(request)
    auth_url, _state = youtube.start_login(session.session_id if session else None)
    return templates.TemplateResponse(request, "login.html", {"auth_url": auth_url})


@app.get("/auth")
def auth(request: Request):
    session = current_session(request)
    auth_url, _state = youtube.start_login(session.session_id if session else None)
    return RedirectResponse(auth_url, status_code=302)


@app.get("/logout")
async def logout(request: Request):
    session = STORE.drop(request.session.get("sid"))
    if session is not None and session.poller is not None:
        await session.poller.stop()
    request.session.clear()
    return RedirectResponse("/", status_code=302)

# =====================================================================
# ROUTES — OAUTH CALLBACK
# =====================================================================

@app.get("/oauth2callback")
def oauth2callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
):
    if error:
        log.error("OAuth provider returned an error: %s", error)
        return HTMLResponse(f"OAuth exchange failed: {error}", status_code=500)

    if not code:
        return HTMLResponse("No code in query", status_code=400)

    pending = youtube.pop_state(state)
    if pending is None:
        return HTMLResponse("Invalid or expired login session.", status_code=400)

    try:
        token = youtube.exchange_code_for_token(code)
        if not token.get("access_token"):
            raise youtube.YouTubeError("no access token returned")
        channel = youtube.get_my_channel(token["access_token"])
    except (youtube.YouTubeError, requests.RequestException) as e:
        log.error("Token exchange failed: %s", e)
        return HTMLResponse(f"OAuth exchange failed: {e}", status_code=500)

    session = STORE.get_or_create(pending.session_id)
    request.session["sid"] = session.session_id
    session.store_tokens(token)
    session.store_channel(channel)
    log.info("Logged in as %s (%s)", session.channel_title, session.channel_id)

    return RedirectResponse("/", status_code=302)

# =====================================================================
# ROUTES — COMMAND API
# =====================================================================

@app.post("/api/command")
def api_command(request: Request, payload: dict | None = Body(None)):
    """
    body: { "user": "username", "message": "@someone !hello" }
    returns: { "reply": "..." }
    """
    payload = payload or {}
    message = payload.get("message")
    if not isinstance(message, str) or not message.strip():
        return JSONResponse({"error": "message required"}, status_code=400)

    user = str(payload.get("user") or "anonymous")
    session = current_session(request)
    ctx = session.command_context() if session else None

    return {"reply": commands.dispatch(user, message, ctx)}

# =====================================================================
# ROUTES — OPERATIONAL TRIGGERS
# =====================================================================

@app.get("/status")
def status(request: Request):
    session = current_session(request)
    if session is None:
        return {"authenticated": False, "bot_running": False}
    return session.describe()


@app.get("/channel/{name}")
def channel_lookup(request: Request, name: str):
    session = current_session(request)
    if session is None or not session.authenticated:
        return not_authenticated()

    try:
        channel = youtube.search_channel(session.access_token, name)
    except (youtube.YouTubeError, requests.RequestException) as e:
        return platform_error(e)

    if channel is None:
        return {"found": False}
    return {"found": True, "channel": channel}


@app.get("/find-live")
def find_live(request: Request):
    session = current_session(request)
    if session is None or not session.authenticated:
        return not_authenticated()

    try:
        live_chat_id = youtube.find_live_chat_id(session.access_token)
    except (youtube.YouTubeError, requests.RequestException) as e:
        return platform_error(e)

    if not live_chat_id:
        return JSONResponse({"found": False, "error": "no active live broadcast"}, status_code=404)

    session.attach_live_chat(live_chat_id)
    log.info("Found live chat %s", live_chat_id)
    return {"found": True, "liveChatId": live_chat_id}


@app.get("/send-test")
def send_test(request: Request):
    session = current_session(request)
    if session is None or not session.authenticated:
        return not_authenticated()
    if not session.live_chat_id:
        return JSONResponse({"error": "no live chat; call /find-live first"}, status_code=400)

    try:
        message_id = youtube.send_chat_message(session, TEST_MESSAGE)
    except (youtube.YouTubeError, requests.RequestException) as e:
        return platform_error(e)

    return {"sent": True, "messageId": message_id}


@app.get("/start-bot")
async def start_bot(request: Request):
    session = current_session(request)
    if session is None or not session.authenticated:
        return not_authenticated()

    if not session.live_chat_id:
        try:
            live_chat_id = await asyncio.to_thread(youtube.find_live_chat_id, session.access_token)
        except (youtube.YouTubeError, requests.RequestException) as e:
            return platform_error(e)
        if not live_chat_id:
            return JSONResponse({"started": False, "error": "no active live broadcast"}, status_code=404)
        session.attach_live_chat(live_chat_id)

    if session.poller is None:
        session.poller = ChatPoller(session)

    if not session.poller.start():
        return {"started": False, "message": "Bot already running", "liveChatId": session.live_chat_id}
    return {"started": True, "liveChatId": session.live_chat_id}


@app.get("/stop-bot")
async def stop_bot(request: Request):
    session = current_session(request)
    if session is None or session.poller is None:
        return {"stopped": False}
    return {"stopped": await session.poller.stop()}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=PORT)
