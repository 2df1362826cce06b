"""
Pydantic models for Misskey webhook payloads.

Models:
  MisskeyUser   — a user as embedded in notes and abuse reports
  DriveFile     — a file attached to a note
  Note          — the ``body.note`` object of note-type events
  AbuseReport   — the ``body`` object of abuseReport events

Misskey uses camelCase keys; the models expose snake_case attributes and
accept the wire names through aliases. Unknown fields are ignored so newer
Misskey releases that add fields keep working.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


_PAYLOAD_CONFIG = {"extra": "ignore", "populate_by_name": True}


class MisskeyUser(BaseModel):
    """
    A Misskey user.

    ``host`` is None for users local to the server that sent the webhook and
    set to the remote instance host for federated users.
    """
    model_config = _PAYLOAD_CONFIG

    name: Optional[str] = None
    username: str
    host: Optional[str] = None
    avatar_url: str = Field(alias="avatarUrl")


class DriveFile(BaseModel):
    """A single drive file attached to a note."""
    model_config = _PAYLOAD_CONFIG

    url: str
    type: str       # MIME type, e.g. "image/png"


class Note(BaseModel):
    """
    A Misskey note.

    ``cw`` is the optional content-warning extension field. Servers that do
    not send it produce the same model with ``cw`` left as None.
    """
    model_config = _PAYLOAD_CONFIG

    id: str
    created_at: datetime = Field(alias="createdAt")
    text: Optional[str] = None
    cw: Optional[str] = None
    user: MisskeyUser
    files: list[DriveFile] = []


class AbuseReport(BaseModel):
    """Body of an ``abuseReport`` webhook event."""
    model_config = _PAYLOAD_CONFIG

    target_user: Optional[MisskeyUser] = Field(default=None, alias="targetUser")
    reporter: Optional[MisskeyUser] = None
    comment: str
