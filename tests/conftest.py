"""Shared fixtures. Env vars must exist before youtube.py is imported."""

import os

os.environ.setdefault("GOOGLE_CLIENT_ID", "test-client-id")
os.environ.setdefault("GOOGLE_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("APP_URL", "http://testserver")
os.environ.setdefault("SESSION_SECRET", "test-secret")

import pytest

import poller
import youtube
from sessions import STORE, BotSession


@pytest.fixture(autouse=True)
def clean_state():
    STORE.clear()
    youtube.STATE_STORE.clear()
    poller.RUNNING.clear()
    yield
    STORE.clear()
    youtube.STATE_STORE.clear()
    poller.RUNNING.clear()


@pytest.fixture
def live_session() -> BotSession:
    session = STORE.create()
    session.access_token = "access"
    session.channel_id = "UC123"
    session.channel_title = "Vortex"
    session.subscriber_count = "42"
    session.live_chat_id = "chat-1"
    return session
