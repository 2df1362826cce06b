"""
Pydantic models for Discord "execute webhook" request bodies.

Only the subset of fields this relay sends is modelled. See
https://discord.com/developers/docs/resources/webhook#execute-webhook
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class AllowedMentions(BaseModel):
    """An empty ``parse`` list stops Discord from pinging anyone."""
    parse: list[str] = Field(default_factory=list)


class EmbedAuthor(BaseModel):
    name: str
    url: str
    icon_url: str


class EmbedImage(BaseModel):
    url: str


class Embed(BaseModel):
    """A rich embed rendering a single note."""
    title: str
    description: str
    url: str
    timestamp: datetime
    author: EmbedAuthor
    image: Optional[EmbedImage] = None


class WebhookMessage(BaseModel):
    """
    Body of an execute-webhook request.

    The relay uses two forms and never mixes them:
      - embed form:       one embed, no content
      - plain-text form:  content, no embeds
    Mentions are always suppressed.
    """
    embeds: list[Embed] = Field(default_factory=list)
    allowed_mentions: AllowedMentions = Field(default_factory=AllowedMentions)
    content: Optional[str] = None

    def to_request_json(self) -> dict:
        """Serialize for the wire, omitting unset optional fields."""
        return self.model_dump(mode="json", exclude_none=True)
