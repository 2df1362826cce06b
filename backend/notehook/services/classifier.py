"""
Misskey webhook event classifier.

Inspects the top-level envelope of an inbound Misskey webhook request and
decides which pipeline handles it. See
https://misskey-hub.net/docs/features/webhook.html for the envelope format:

  {"server": "https://misskey.example", "type": "note", "body": {...}}

The ``server`` field was added in misskey 2023.9.0-beta.2
(misskey-dev/misskey#11752); older servers are rejected because every link
the relay builds is rooted at that URL.

Public API:
  normalize_origin(server) -> str
  classify(envelope)       -> Route   (raises EventRejected)
"""

from dataclasses import dataclass
from enum import Enum


# ---------------------------------------------------------------------------
# Event type tables
# ---------------------------------------------------------------------------

# Known Misskey event types this relay deliberately does not forward
UNSUPPORTED_TYPES = frozenset({"follow", "followed", "unfollow"})

NOTE_TYPES = frozenset({"note", "reply", "mention", "renote"})

# Extension: "note@<user>" marks notes from a specific watched remote user
WATCHED_NOTE_PREFIX = "note@"

ABUSE_REPORT_TYPE = "abuseReport"


# ---------------------------------------------------------------------------
# Results and exceptions
# ---------------------------------------------------------------------------

class Pipeline(str, Enum):
    NOTE = "note"
    ABUSE_REPORT = "abuse_report"


class RejectionReason(str, Enum):
    MISSING_ORIGIN = "missing_origin"
    MISSING_TYPE = "missing_type"
    UNSUPPORTED_TYPE = "unsupported_type"
    UNKNOWN_TYPE = "unknown_type"


class EventRejected(Exception):
    """Raised when an envelope cannot be routed to any pipeline."""
    def __init__(self, message: str, reason: RejectionReason):
        super().__init__(message)
        self.reason = reason
        self.message = message


@dataclass(frozen=True)
class Route:
    """Where an accepted envelope goes next."""
    pipeline: Pipeline
    event_type: str
    origin: str         # normalized server URL


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

def normalize_origin(server: str) -> str:
    """
    Canonicalize a server base URL by stripping trailing slashes.

    "https://example.test/" and "https://example.test" map to the same
    origin, so they build identical links and dedup keys.
    """
    return server.rstrip("/")


def classify(envelope: dict) -> Route:
    """
    Route a parsed webhook envelope.

    Rules are evaluated in order; the first one that applies wins:
    1. ``server`` missing or not a string      -> MISSING_ORIGIN
    2. ``type`` missing or not a string        -> MISSING_TYPE
    3. follow / followed / unfollow            -> UNSUPPORTED_TYPE
    4. note / reply / mention / renote / note@ -> note pipeline
    5. abuseReport                             -> abuse-report pipeline
    6. anything else                           -> UNKNOWN_TYPE

    Raises:
        EventRejected: with a message suitable for a 400 response body.
    """
    server = envelope.get("server")
    if not isinstance(server, str):
        raise EventRejected(
            "No 'server' payload found. "
            "this proxy requires misskey 2023.9.0-beta.2 or later.",
            RejectionReason.MISSING_ORIGIN,
        )

    event_type = envelope.get("type")
    if not isinstance(event_type, str):
        raise EventRejected("type field not found", RejectionReason.MISSING_TYPE)

    if event_type in UNSUPPORTED_TYPES:
        raise EventRejected(
            f"Unsupported event type: {event_type}",
            RejectionReason.UNSUPPORTED_TYPE,
        )

    origin = normalize_origin(server)

    if event_type in NOTE_TYPES or event_type.startswith(WATCHED_NOTE_PREFIX):
        return Route(Pipeline.NOTE, event_type, origin)

    if event_type == ABUSE_REPORT_TYPE:
        return Route(Pipeline.ABUSE_REPORT, event_type, origin)

    raise EventRejected(
        f"Unknown event type: {event_type}",
        RejectionReason.UNKNOWN_TYPE,
    )
