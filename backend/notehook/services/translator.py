"""
Misskey → Discord payload translation.

Public API:
  parse_note(body)                      -> Note         (raises PayloadParseError)
  parse_abuse_report(body)              -> AbuseReport  (raises PayloadParseError)
  translate_note(note, server)          -> Embed
  build_note_message(embed)             -> WebhookMessage
  describe_user(user)                   -> str
  translate_abuse_report(report)        -> str
  build_abuse_report_message(content)   -> WebhookMessage

Parsing always happens before translation, so the translate_* functions can
assume a well-formed model and are pure.
"""

import logging
from typing import Any, Optional

from pydantic import ValidationError

from notehook.models.discord import (
    AllowedMentions,
    Embed,
    EmbedAuthor,
    EmbedImage,
    WebhookMessage,
)
from notehook.models.misskey import AbuseReport, DriveFile, MisskeyUser, Note

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Media types Discord renders inline as an embed image
EMBEDDABLE_IMAGE_TYPES = frozenset({
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
})

NO_CONTENT = "(no content)"

UNKNOWN_USER = "unknown_user"

_ABUSE_REPORT_TEMPLATE = (
    "New abuse report created!\n"
    "Reporter: {reporter}\n"
    "Target User: {target}\n"
    "Comment\n"
    "{comment}"
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class PayloadParseError(Exception):
    """Raised when an event body does not match the selected pipeline's schema."""
    def __init__(self, message: str, error_code: str):
        super().__init__(message)
        self.error_code = error_code
        self.message = message


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def parse_note(body: Any) -> Note:
    """
    Validate the ``body.note`` object of a note-type event.

    Raises:
        PayloadParseError: error_code "payload_not_found" when ``body`` or
            ``body.note`` is missing, "payload_invalid" when the note does
            not validate.
    """
    if not isinstance(body, dict) or "note" not in body:
        raise PayloadParseError("webhook payload not found", "payload_not_found")

    try:
        return Note.model_validate(body["note"])
    except ValidationError as exc:
        logger.warning(f"Note payload failed validation: {exc.error_count()} error(s)")
        raise PayloadParseError("webhook payload parse error", "payload_invalid") from exc


def parse_abuse_report(body: Any) -> AbuseReport:
    """
    Validate the ``body`` object of an abuseReport event.

    A present but null or non-object ``body`` is a parse error; callers
    handle a missing ``body`` key themselves.

    Raises:
        PayloadParseError: error_code "payload_invalid".
    """
    try:
        return AbuseReport.model_validate(body)
    except ValidationError as exc:
        logger.warning(f"Abuse report payload failed validation: {exc.error_count()} error(s)")
        raise PayloadParseError("webhook payload parse error", "payload_invalid") from exc


# ---------------------------------------------------------------------------
# Notes
# ---------------------------------------------------------------------------

def _first_embeddable_image(files: list[DriveFile]) -> Optional[EmbedImage]:
    for file in files:
        if file.type in EMBEDDABLE_IMAGE_TYPES:
            return EmbedImage(url=file.url)
    return None


def _profile_url(user: MisskeyUser, server: str) -> str:
    if user.host is None:
        return f"{server}/@{user.username}"
    return f"{server}/@{user.username}@{user.host}"


def translate_note(note: Note, server: str) -> Embed:
    """
    Render a note as a Discord embed.

    ``server`` must already be normalized (no trailing slash). Only the
    first attachment with an embeddable image type becomes the embed image;
    other files are dropped.
    """
    user = note.user
    display_name = user.name or user.username

    return Embed(
        title=f"{display_name} (@{user.username})",
        description=note.text or NO_CONTENT,
        url=f"{server}/notes/{note.id}",
        timestamp=note.created_at,
        author=EmbedAuthor(
            name=f"@{user.username}",
            url=_profile_url(user, server),
            icon_url=user.avatar_url,
        ),
        image=_first_embeddable_image(note.files),
    )


def build_note_message(embed: Embed) -> WebhookMessage:
    return WebhookMessage(embeds=[embed], allowed_mentions=AllowedMentions())


# ---------------------------------------------------------------------------
# Abuse reports
# ---------------------------------------------------------------------------

def describe_user(user: Optional[MisskeyUser]) -> str:
    """Return "@user", "@user@host", or "unknown_user" when absent."""
    if user is None:
        return UNKNOWN_USER
    if user.host is None:
        return f"@{user.username}"
    return f"@{user.username}@{user.host}"


def translate_abuse_report(report: AbuseReport) -> str:
    return _ABUSE_REPORT_TEMPLATE.format(
        reporter=describe_user(report.reporter),
        target=describe_user(report.target_user),
        comment=report.comment,
    )


def build_abuse_report_message(content: str) -> WebhookMessage:
    return WebhookMessage(content=content, allowed_mentions=AllowedMentions())
