"""
Misskey → Discord relay router.

Misskey is configured with a webhook URL of the form

  https://<relay>/discord/{webhook_id}/{webhook_token}/misskey

where {webhook_id}/{webhook_token} are taken from the Discord webhook URL
(https://discord.com/api/webhooks/{webhook_id}/{webhook_token}).

Endpoints:
  POST /discord/{webhook_id}/{webhook_token}/misskey

Response codes (plain-text bodies):
  201  forwarded to Discord
  200  duplicate note, not forwarded
  400  envelope rejected or body did not match the event schema
  413  request body too large
  500  Discord answered with an error, or could not be reached
"""

import json
import logging

import httpx
from fastapi import APIRouter, Depends, Path, Request
from fastapi.responses import PlainTextResponse

from notehook import config
from notehook.models.discord import WebhookMessage
from notehook.services.classifier import EventRejected, Pipeline, Route, classify
from notehook.services.dedup import DedupCache, DedupKey, DedupResult
from notehook.services.delivery import DeliveryStatus, Destination, deliver
from notehook.services.translator import (
    PayloadParseError,
    build_abuse_report_message,
    build_note_message,
    parse_abuse_report,
    parse_note,
    translate_abuse_report,
    translate_note,
)

logger = logging.getLogger(__name__)

router = APIRouter()

# Discord snowflakes are unsigned 64-bit integers
_MAX_SNOWFLAKE = 2**64 - 1


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_dedup_cache(request: Request) -> DedupCache:
    """The process-wide cache created in the application lifespan."""
    return request.app.state.dedup_cache


def get_http_client(request: Request) -> httpx.AsyncClient:
    """The shared outbound client created in the application lifespan."""
    return request.app.state.http_client


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _text(status_code: int, message: str) -> PlainTextResponse:
    return PlainTextResponse(message, status_code=status_code)


async def _read_envelope(request: Request) -> dict:
    """
    Read and decode the JSON request body.

    The body is read chunk by chunk and reading stops as soon as it passes
    MAX_BODY_BYTES, so an oversized request is never buffered in full.

    Raises:
        PayloadParseError: "payload_too_large" or "invalid_json".
    """
    limit = config.MAX_BODY_BYTES

    content_length = request.headers.get("content-length", "")
    if content_length.isdigit() and int(content_length) > limit:
        raise PayloadParseError("payload too large", "payload_too_large")

    chunks: list[bytes] = []
    received = 0
    async for chunk in request.stream():
        received += len(chunk)
        if received > limit:
            raise PayloadParseError("payload too large", "payload_too_large")
        chunks.append(chunk)
    raw = b"".join(chunks)

    try:
        envelope = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError, RecursionError):
        raise PayloadParseError("invalid JSON payload", "invalid_json")

    if not isinstance(envelope, dict):
        raise PayloadParseError("invalid JSON payload", "invalid_json")
    return envelope


def _build_note_message(
    envelope: dict,
    route: Route,
    webhook_id: int,
    dedup_cache: DedupCache,
) -> WebhookMessage | None:
    """
    Validate a note event and render it, or return None for a duplicate.

    Validation happens before the cache is touched so malformed payloads
    never occupy a slot.
    """
    note = parse_note(envelope.get("body"))

    key = DedupKey(webhook_id, route.origin, note.id)
    if dedup_cache.check_and_insert(key) is DedupResult.DUPLICATE:
        logger.info(
            f"Duplicate note {note.id!r} from {route.origin} "
            f"for webhook {webhook_id}; not forwarded"
        )
        return None

    return build_note_message(translate_note(note, route.origin))


def _build_abuse_report_message(envelope: dict) -> WebhookMessage:
    # A present but null body falls through to validation
    if "body" not in envelope:
        raise PayloadParseError("webhook payload not found", "payload_not_found")

    report = parse_abuse_report(envelope["body"])
    return build_abuse_report_message(translate_abuse_report(report))


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post(
    "/discord/{webhook_id}/{webhook_token}/misskey",
    response_class=PlainTextResponse,
    responses={
        200: {"description": "Duplicate note, not forwarded"},
        201: {"description": "Forwarded to Discord"},
        400: {"description": "Unsupported, unknown or malformed event"},
        413: {"description": "Request body too large"},
        500: {"description": "Discord returned an error or was unreachable"},
    },
)
async def relay_misskey_to_discord(
    request: Request,
    webhook_token: str,
    webhook_id: int = Path(ge=0, le=_MAX_SNOWFLAKE),
    dedup_cache: DedupCache = Depends(get_dedup_cache),
    http_client: httpx.AsyncClient = Depends(get_http_client),
) -> PlainTextResponse:
    """
    Receive one Misskey webhook event and forward it to a Discord webhook.

    Steps:
    1. Decode the JSON envelope.
    2. Classify it by ``type`` (see services.classifier).
    3. Validate the body for the selected pipeline.
    4. Notes only: drop duplicates via the dedup cache.
    5. Translate to a Discord message and POST it once.
    """
    try:
        envelope = await _read_envelope(request)
    except PayloadParseError as exc:
        status = 413 if exc.error_code == "payload_too_large" else 400
        logger.warning(f"Rejected webhook {webhook_id}: {exc.message}")
        return _text(status, exc.message)

    try:
        route = classify(envelope)
        if route.pipeline is Pipeline.NOTE:
            message = _build_note_message(envelope, route, webhook_id, dedup_cache)
            if message is None:
                return _text(200, "duplicated note so not sent to discord")
        else:
            message = _build_abuse_report_message(envelope)
    except EventRejected as exc:
        logger.warning(f"Rejected event for webhook {webhook_id} ({exc.reason.value}): {exc.message}")
        return _text(400, exc.message)
    except PayloadParseError as exc:
        logger.warning(f"Rejected {envelope.get('type')!r} event for webhook {webhook_id}: {exc.message}")
        return _text(400, exc.message)

    outcome = await deliver(
        http_client,
        Destination(webhook_id, webhook_token),
        message,
        api_base=config.DISCORD_API_BASE,
    )

    if outcome.status is DeliveryStatus.REJECTED:
        return _text(500, "discord returns error")
    if outcome.status is DeliveryStatus.FAILED:
        return _text(500, "failed to deliver to discord")

    logger.info(f"Forwarded {route.event_type!r} event from {route.origin} to webhook {webhook_id}")
    return _text(201, "successfully created")
