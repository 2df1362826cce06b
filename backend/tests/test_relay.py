"""
Relay endpoint tests.

The Discord side is replaced with httpx.MockTransport and the dedup cache is
injected through FastAPI dependency overrides, so every test starts from an
empty cache and no real network calls are made.

Coverage:
  - note and abuse-report forwarding (201)
  - duplicate suppression and eviction (200 / 201)
  - envelope rejections and payload parse errors (400, no outbound call)
  - body size and JSON errors (413 / 400)
  - Discord error responses and transport failures (500)
"""

import json
from unittest.mock import patch

import httpx
import pytest
from fastapi.testclient import TestClient

from notehook.routers.relay import get_dedup_cache, get_http_client
from notehook.services.dedup import DedupCache
from notehook.services.delivery import build_http_client

WEBHOOK_ID = 123456789012345678
WEBHOOK_TOKEN = "discord-token"
RELAY_PATH = f"/discord/{WEBHOOK_ID}/{WEBHOOK_TOKEN}/misskey"


# ---------------------------------------------------------------------------
# Payload builder helpers
# ---------------------------------------------------------------------------

def _make_user(username: str = "alice", host: str | None = None) -> dict:
    return {
        "name": "Alice",
        "username": username,
        "host": host,
        "avatarUrl": f"https://misskey.example/avatar/{username}.png",
    }


def _make_note_envelope(
    note_id: str = "9k2abcdef0",
    event_type: str = "note",
    server: str = "https://misskey.example",
    files: list | None = None,
) -> dict:
    return {
        "server": server,
        "type": event_type,
        "hookId": "9hook00001",
        "createdAt": 1714566896789,
        "body": {
            "note": {
                "id": note_id,
                "createdAt": "2024-05-01T12:34:56.789Z",
                "text": "hello @everyone",
                "user": _make_user(),
                "files": files or [],
            }
        },
    }


def _make_abuse_report_envelope(reporter: dict | None = None, target: dict | None = None) -> dict:
    return {
        "server": "https://misskey.example",
        "type": "abuseReport",
        "body": {
            "targetUser": target,
            "reporter": reporter,
            "comment": "spam account",
        },
    }


# ---------------------------------------------------------------------------
# Fake Discord
# ---------------------------------------------------------------------------

class FakeDiscord:
    """Records outbound requests and answers with a configurable response."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.status_code = 204
        self.text = ""
        self.error: Exception | None = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status_code, text=self.text)

    def last_json(self) -> dict:
        return json.loads(self.requests[-1].content)


# ---------------------------------------------------------------------------
# App fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def discord():
    return FakeDiscord()


@pytest.fixture()
def dedup_cache():
    return DedupCache(capacity=4)


@pytest.fixture()
def client(discord, dedup_cache):
    """Return a TestClient with the cache and outbound client overridden."""
    from notehook.main import app

    http_client = build_http_client(
        user_agent="notehook-tests/1.0",
        transport=httpx.MockTransport(discord.handler),
    )
    app.dependency_overrides[get_dedup_cache] = lambda: dedup_cache
    app.dependency_overrides[get_http_client] = lambda: http_client
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


# ===========================================================================
# Notes
# ===========================================================================

class TestNoteForwarding:

    def test_note_is_forwarded_as_embed(self, client, discord):
        response = client.post(RELAY_PATH, json=_make_note_envelope())

        assert response.status_code == 201
        assert response.text == "successfully created"
        assert len(discord.requests) == 1

        request = discord.requests[0]
        assert str(request.url) == (
            f"https://discord.com/api/webhooks/{WEBHOOK_ID}/{WEBHOOK_TOKEN}"
        )
        body = discord.last_json()
        assert body["allowed_mentions"] == {"parse": []}
        assert "content" not in body
        embed = body["embeds"][0]
        assert embed["title"] == "Alice (@alice)"
        assert embed["description"] == "hello @everyone"
        assert embed["url"] == "https://misskey.example/notes/9k2abcdef0"
        assert embed["timestamp"].startswith("2024-05-01T12:34:56.789")
        assert embed["author"] == {
            "name": "@alice",
            "url": "https://misskey.example/@alice",
            "icon_url": "https://misskey.example/avatar/alice.png",
        }
        assert "image" not in embed

    @pytest.mark.parametrize("event_type", ["reply", "mention", "renote", "note@bob@remote.example"])
    def test_other_note_types_are_forwarded(self, client, discord, event_type):
        response = client.post(RELAY_PATH, json=_make_note_envelope(event_type=event_type))

        assert response.status_code == 201
        assert len(discord.requests) == 1

    def test_embed_image_skips_non_embeddable_attachment(self, client, discord):
        files = [
            {"url": "https://files.example/logo.svg", "type": "image/svg+xml"},
            {"url": "https://files.example/photo.png", "type": "image/png"},
        ]
        client.post(RELAY_PATH, json=_make_note_envelope(files=files))

        assert discord.last_json()["embeds"][0]["image"] == {"url": "https://files.example/photo.png"}

    def test_uses_configured_discord_base(self, client, discord):
        with patch("notehook.config.DISCORD_API_BASE", "http://discord.local/api"):
            client.post(RELAY_PATH, json=_make_note_envelope())

        assert str(discord.requests[0].url).startswith("http://discord.local/api/webhooks/")


class TestNoteDeduplication:

    def test_second_identical_note_is_not_forwarded(self, client, discord):
        first = client.post(RELAY_PATH, json=_make_note_envelope())
        second = client.post(RELAY_PATH, json=_make_note_envelope(event_type="mention"))

        assert first.status_code == 201
        assert second.status_code == 200
        assert second.text == "duplicated note so not sent to discord"
        assert len(discord.requests) == 1

    def test_trailing_slash_origin_is_the_same_note(self, client, discord):
        client.post(RELAY_PATH, json=_make_note_envelope(server="https://example.test/"))
        response = client.post(RELAY_PATH, json=_make_note_envelope(server="https://example.test"))

        assert response.status_code == 200
        assert len(discord.requests) == 1

    def test_same_note_id_from_another_server_is_forwarded(self, client, discord):
        client.post(RELAY_PATH, json=_make_note_envelope(server="https://a.example"))
        response = client.post(RELAY_PATH, json=_make_note_envelope(server="https://b.example"))

        assert response.status_code == 201
        assert len(discord.requests) == 2

    def test_same_note_to_another_webhook_is_forwarded(self, client, discord):
        client.post(RELAY_PATH, json=_make_note_envelope())
        response = client.post("/discord/42/other-token/misskey", json=_make_note_envelope())

        assert response.status_code == 201
        assert len(discord.requests) == 2

    def test_evicted_note_is_forwarded_again(self, client, discord, dedup_cache):
        # Capacity 4: the fifth distinct note evicts the first
        for n in range(1, dedup_cache.capacity + 2):
            client.post(RELAY_PATH, json=_make_note_envelope(note_id=f"note-{n}"))
        assert len(discord.requests) == dedup_cache.capacity + 1

        again = client.post(RELAY_PATH, json=_make_note_envelope(note_id="note-1"))

        assert again.status_code == 201
        assert len(discord.requests) == dedup_cache.capacity + 2

    def test_resident_notes_stay_duplicates_after_overflow(self, client, discord, dedup_cache):
        for n in range(1, dedup_cache.capacity + 2):
            client.post(RELAY_PATH, json=_make_note_envelope(note_id=f"note-{n}"))

        for n in range(2, dedup_cache.capacity + 2):
            response = client.post(RELAY_PATH, json=_make_note_envelope(note_id=f"note-{n}"))
            assert response.status_code == 200
        assert len(discord.requests) == dedup_cache.capacity + 1

    def test_malformed_note_does_not_occupy_cache(self, client, discord, dedup_cache):
        envelope = _make_note_envelope()
        del envelope["body"]["note"]["createdAt"]

        response = client.post(RELAY_PATH, json=envelope)

        assert response.status_code == 400
        assert len(dedup_cache) == 0

    def test_failed_delivery_still_counts_as_seen(self, client, discord):
        discord.status_code = 500
        client.post(RELAY_PATH, json=_make_note_envelope())
        discord.status_code = 204

        response = client.post(RELAY_PATH, json=_make_note_envelope())

        assert response.status_code == 200
        assert len(discord.requests) == 1


# ===========================================================================
# Abuse reports
# ===========================================================================

class TestAbuseReportForwarding:

    def test_report_is_forwarded_as_plain_text(self, client, discord):
        envelope = _make_abuse_report_envelope(
            reporter=_make_user(),
            target=_make_user(username="spammer", host="remote.example"),
        )
        response = client.post(RELAY_PATH, json=envelope)

        assert response.status_code == 201
        body = discord.last_json()
        assert body["embeds"] == []
        assert body["allowed_mentions"] == {"parse": []}
        assert body["content"] == (
            "New abuse report created!\n"
            "Reporter: @alice\n"
            "Target User: @spammer@remote.example\n"
            "Comment\n"
            "spam account"
        )

    def test_report_without_users(self, client, discord):
        response = client.post(RELAY_PATH, json=_make_abuse_report_envelope())

        assert response.status_code == 201
        assert discord.last_json()["content"].count("unknown_user") == 2

    def test_reports_are_never_deduplicated(self, client, discord):
        client.post(RELAY_PATH, json=_make_abuse_report_envelope())
        response = client.post(RELAY_PATH, json=_make_abuse_report_envelope())

        assert response.status_code == 201
        assert len(discord.requests) == 2

    def test_report_with_null_body_is_a_parse_error(self, client, discord):
        envelope = _make_abuse_report_envelope()
        envelope["body"] = None

        response = client.post(RELAY_PATH, json=envelope)

        assert response.status_code == 400
        assert response.text == "webhook payload parse error"
        assert discord.requests == []

    def test_report_without_body_is_rejected(self, client, discord):
        envelope = _make_abuse_report_envelope()
        del envelope["body"]

        response = client.post(RELAY_PATH, json=envelope)

        assert response.status_code == 400
        assert response.text == "webhook payload not found"
        assert discord.requests == []


# ===========================================================================
# Rejections
# ===========================================================================

class TestRejections:

    def test_missing_type(self, client, discord):
        envelope = _make_note_envelope()
        del envelope["type"]

        response = client.post(RELAY_PATH, json=envelope)

        assert response.status_code == 400
        assert response.text == "type field not found"
        assert discord.requests == []

    def test_missing_server(self, client, discord):
        envelope = _make_note_envelope()
        del envelope["server"]

        response = client.post(RELAY_PATH, json=envelope)

        assert response.status_code == 400
        assert "misskey 2023.9.0-beta.2" in response.text
        assert discord.requests == []

    def test_unsupported_type(self, client, discord):
        response = client.post(RELAY_PATH, json={"server": "https://misskey.example", "type": "follow", "body": {}})

        assert response.status_code == 400
        assert response.text == "Unsupported event type: follow"
        assert discord.requests == []

    def test_unknown_type(self, client, discord):
        response = client.post(RELAY_PATH, json={"server": "https://misskey.example", "type": "subscribe", "body": {}})

        assert response.status_code == 400
        assert response.text == "Unknown event type: subscribe"
        assert discord.requests == []

    def test_note_without_note_object(self, client, discord):
        response = client.post(RELAY_PATH, json={"server": "https://misskey.example", "type": "note", "body": {}})

        assert response.status_code == 400
        assert response.text == "webhook payload not found"

    def test_malformed_note(self, client, discord):
        envelope = _make_note_envelope()
        envelope["body"]["note"]["user"] = "alice"

        response = client.post(RELAY_PATH, json=envelope)

        assert response.status_code == 400
        assert response.text == "webhook payload parse error"
        assert discord.requests == []

    def test_invalid_json(self, client, discord):
        response = client.post(
            RELAY_PATH,
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.text == "invalid JSON payload"

    def test_json_array_body(self, client, discord):
        response = client.post(RELAY_PATH, json=[_make_note_envelope()])
        assert response.status_code == 400

    def test_oversized_body(self, client, discord):
        envelope = _make_note_envelope()
        envelope["body"]["note"]["text"] = "x" * 5000

        response = client.post(RELAY_PATH, json=envelope)

        assert response.status_code == 413
        assert discord.requests == []

    def test_declared_length_over_limit_is_rejected_before_reading(self, client, discord):
        response = client.post(
            RELAY_PATH,
            content=json.dumps(_make_note_envelope()).encode(),
            headers={"Content-Type": "application/json", "Content-Length": "1000000"},
        )

        assert response.status_code == 413
        assert response.text == "payload too large"
        assert discord.requests == []

    def test_chunked_body_stops_reading_past_limit(self, client, discord):
        chunks_sent = []

        def body():
            for _ in range(2000):
                chunks_sent.append(1024)
                yield b" " * 1024

        response = client.post(RELAY_PATH, content=body())

        assert response.status_code == 413
        # 4096-byte limit: reading stops on the fifth 1 KiB chunk
        assert sum(chunks_sent) <= 8 * 1024
        assert discord.requests == []

    @pytest.mark.parametrize("webhook_id", ["abc", "-1", str(2**64)])
    def test_invalid_webhook_id(self, client, discord, webhook_id):
        response = client.post(f"/discord/{webhook_id}/token/misskey", json=_make_note_envelope())

        assert response.status_code == 422
        assert discord.requests == []

    def test_max_snowflake_is_accepted(self, client, discord):
        response = client.post(f"/discord/{2**64 - 1}/token/misskey", json=_make_note_envelope())
        assert response.status_code == 201


# ===========================================================================
# Downstream failures
# ===========================================================================

class TestDownstreamFailures:

    def test_discord_error_maps_to_500(self, client, discord, caplog):
        discord.status_code = 400
        discord.text = '{"message": "Invalid Form Body", "code": 50035}'

        response = client.post(RELAY_PATH, json=_make_note_envelope())

        assert response.status_code == 500
        assert response.text == "discord returns error"
        assert "50035" not in response.text
        assert "Invalid Form Body" in caplog.text

    def test_transport_failure_maps_to_500(self, client, discord):
        discord.error = httpx.ConnectError("connection refused")

        response = client.post(RELAY_PATH, json=_make_abuse_report_envelope())

        assert response.status_code == 500
        assert response.text == "failed to deliver to discord"

    def test_service_keeps_working_after_transport_failure(self, client, discord):
        discord.error = httpx.ConnectError("connection refused")
        client.post(RELAY_PATH, json=_make_abuse_report_envelope())

        discord.error = None
        response = client.post(RELAY_PATH, json=_make_abuse_report_envelope())

        assert response.status_code == 201


# ===========================================================================
# Application lifecycle
# ===========================================================================

class TestApplication:

    def test_health_reports_cache_size(self):
        from notehook.main import app

        with TestClient(app) as client:
            response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "dedup_entries": 0}

    def test_startup_creates_shared_state(self):
        from notehook import config
        from notehook.main import app

        with TestClient(app):
            assert app.state.dedup_cache.capacity == config.DEDUP_CAPACITY
            assert app.state.http_client.headers["user-agent"] == config.USER_AGENT
