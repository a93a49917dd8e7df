import urllib.parse
from unittest.mock import Mock

import pytest

import commands
import youtube
from youtube import ChatMessage, YouTubeError


def _response(status_code=200, payload=None, text=""):
    r = Mock()
    r.status_code = status_code
    r.content = b"{}" if payload is not None else text.encode()
    r.text = text
    if payload is None:
        r.json.side_effect = ValueError("no json")
    else:
        r.json.return_value = payload
    return r


def _chat_item(i, author, text, channel="UCviewer"):
    return {
        "id": f"m{i}",
        "snippet": {"displayMessage": text},
        "authorDetails": {"displayName": author, "channelId": channel},
    }


def test_build_auth_url_has_scopes_and_state():
    url = youtube.build_auth_url("abc")
    query = urllib.parse.parse_qs(urllib.parse.urlparse(url).query)

    assert url.startswith(youtube.OAUTH_AUTHORIZE_URL)
    assert query["state"] == ["abc"]
    assert query["redirect_uri"] == ["http://testserver/oauth2callback"]
    assert query["access_type"] == ["offline"]
    assert set(query["scope"][0].split()) == set(youtube.SCOPES)


def test_state_is_single_use():
    _url, state = youtube.start_login("sid-1")
    assert youtube.pop_state(state).session_id == "sid-1"
    assert youtube.pop_state(state) is None
    assert youtube.pop_state(None) is None


def test_require_env_exits_on_missing(monkeypatch, caplog):
    monkeypatch.delenv("GOOGLE_CLIENT_SECRET", raising=False)
    monkeypatch.setenv("APP_URL", "")
    with pytest.raises(SystemExit):
        youtube.require_env()

    records = [r for r in caplog.records if r.name == "ytchatbot.youtube"]
    assert [r.getMessage() for r in records] == ["Missing required env vars: GOOGLE_CLIENT_SECRET, APP_URL"]
    assert records[0].levelname == "CRITICAL"


def test_error_message_variants():
    assert youtube.error_message(_response(400, {"error": "invalid_grant", "error_description": "Bad code"})) == "invalid_grant: Bad code"
    assert youtube.error_message(_response(403, {"error": {"code": 403, "message": "quota"}})) == "quota"
    assert youtube.error_message(_response(502, None, "bad gateway")) == "bad gateway"


def test_exchange_code_raises_provider_message(monkeypatch):
    post = Mock(return_value=_response(400, {"error": "invalid_grant", "error_description": "Bad code"}))
    monkeypatch.setattr(youtube.requests, "post", post)

    with pytest.raises(YouTubeError, match="invalid_grant"):
        youtube.exchange_code_for_token("c")
    assert post.call_args.kwargs["timeout"] == youtube.HTTP_TIMEOUT
    assert post.call_args.kwargs["data"]["code"] == "c"


def test_get_my_channel(monkeypatch):
    channel = {"id": "UC1", "snippet": {"title": "Vortex"}, "statistics": {"subscriberCount": "3"}}
    get = Mock(return_value=_response(200, {"items": [channel]}))
    monkeypatch.setattr(youtube.requests, "get", get)

    assert youtube.get_my_channel("tok") == channel
    assert get.call_args.kwargs["headers"] == {"Authorization": "Bearer tok"}
    assert get.call_args.kwargs["params"]["mine"] == "true"


def test_search_channel_not_found(monkeypatch):
    monkeypatch.setattr(youtube.requests, "get", Mock(return_value=_response(200, {"items": []})))
    assert youtube.search_channel("tok", "nobody") is None


def test_search_channel_resolves_details(monkeypatch):
    get = Mock(side_effect=[
        _response(200, {"items": [{"snippet": {"channelId": "UC9"}}]}),
        _response(200, {"items": [{"id": "UC9", "snippet": {"title": "VortexWizrd"}}]}),
    ])
    monkeypatch.setattr(youtube.requests, "get", get)

    assert youtube.search_channel("tok", "VortexWizrd")["id"] == "UC9"
    assert get.call_args.kwargs["params"]["id"] == "UC9"


def test_find_live_chat_id(monkeypatch):
    payload = {"items": [{"snippet": {}}, {"snippet": {"liveChatId": "chat-7"}}]}
    monkeypatch.setattr(youtube.requests, "get", Mock(return_value=_response(200, payload)))
    assert youtube.find_live_chat_id("tok") == "chat-7"


def test_find_live_chat_id_none(monkeypatch):
    monkeypatch.setattr(youtube.requests, "get", Mock(return_value=_response(200, {"items": []})))
    assert youtube.find_live_chat_id("tok") is None


def test_fetch_new_messages_primes_then_returns(monkeypatch, live_session):
    get = Mock(side_effect=[
        _response(200, {"items": [_chat_item(1, "old", "!ping")], "nextPageToken": "p1"}),
        _response(200, {"items": [_chat_item(2, "alice", "!hello")], "nextPageToken": "p2"}),
    ])
    monkeypatch.setattr(youtube.requests, "get", get)

    assert youtube.fetch_new_messages(live_session) == []
    assert live_session.page_token == "p1"

    messages = youtube.fetch_new_messages(live_session)
    assert messages == [ChatMessage(message_id="m2", author_name="alice", text="!hello", author_channel_id="UCviewer")]
    assert get.call_args.kwargs["params"]["pageToken"] == "p1"
    assert live_session.page_token == "p2"


def test_fetch_requires_live_chat(live_session):
    live_session.live_chat_id = None
    with pytest.raises(YouTubeError):
        youtube.fetch_new_messages(live_session)


def test_send_chat_message(monkeypatch, live_session):
    post = Mock(return_value=_response(200, {"id": "new-1"}))
    monkeypatch.setattr(youtube.requests, "post", post)

    assert youtube.send_chat_message(live_session, "line one\nline two") == "new-1"
    snippet = post.call_args.kwargs["json"]["snippet"]
    assert snippet["liveChatId"] == "chat-1"
    assert snippet["textMessageDetails"]["messageText"] == "line one | line two"


def test_send_chat_message_api_error(monkeypatch, live_session):
    monkeypatch.setattr(
        youtube.requests, "post", Mock(return_value=_response(403, {"error": {"message": "liveChatEnded"}}))
    )
    with pytest.raises(YouTubeError, match="liveChatEnded") as exc:
        youtube.send_chat_message(live_session, "hi")
    assert exc.value.status_code == 403


def test_format_for_chat_truncates():
    text = youtube.format_for_chat("x" * 500)
    assert len(text) == youtube.MAX_CHAT_LENGTH
    assert text.endswith("…")


def test_expired_state_is_rejected(monkeypatch):
    _url, state = youtube.start_login(None)
    later = youtube.time.time() + youtube.STATE_TTL_SECONDS + 1
    monkeypatch.setattr(youtube.time, "time", lambda: later)
    assert youtube.pop_state(state) is None


def test_pending_logins_are_pruned(monkeypatch):
    monkeypatch.setattr(youtube, "MAX_PENDING_LOGINS", 5)
    states = [youtube.start_login(None)[1] for _ in range(20)]

    assert len(youtube.STATE_STORE) <= 6
    assert states[-1] in youtube.STATE_STORE
    assert states[0] not in youtube.STATE_STORE

    later = youtube.time.time() + youtube.STATE_TTL_SECONDS + 1
    youtube.prune_states(now=later)
    assert youtube.STATE_STORE == {}


def test_fetch_primes_once_without_next_page_token(monkeypatch, live_session):
    get = Mock(side_effect=[
        _response(200, {"items": [_chat_item(1, "old", "!ping")]}),
        _response(200, {"items": [_chat_item(2, "alice", "!hello")]}),
    ])
    monkeypatch.setattr(youtube.requests, "get", get)

    assert youtube.fetch_new_messages(live_session) == []
    assert [m.text for m in youtube.fetch_new_messages(live_session)] == ["!hello"]


def test_new_live_chat_primes_again(monkeypatch, live_session):
    live_session.cursor_primed = True
    live_session.page_token = "p9"
    live_session.attach_live_chat("chat-2")

    assert live_session.page_token is None
    assert live_session.cursor_primed is False


def test_cmdslist_fits_one_chat_message():
    posted = youtube.format_for_chat(commands.dispatch("alice", "!cmdslist"))

    assert not posted.endswith("…")
    assert len(posted) <= youtube.MAX_CHAT_LENGTH
    for key in commands.COMMAND_TABLE:
        assert f"!{key}" in posted
