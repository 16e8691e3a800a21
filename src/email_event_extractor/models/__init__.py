"""Data models for the email event extractor.

This module contains Pydantic models for the records kept in the persistent
store: senders, messages, events and the permanent ignore ledger.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from email_event_extractor.models.incoming import IncomingMessage


class MessageStatus(str, Enum):
    """Processing state of a stored message."""

    UNPROCESSED = "unprocessed"
    PROCESSING = "processing"
    PROCESSED = "processed"


class EventSource(str, Enum):
    """Where an event record came from."""

    BROADCAST_EMAIL = "broadcast_email"


class Sender(BaseModel):
    """Sender of a message."""

    email: str = Field(description="Sender email address")
    name: str = Field(description="Display name (falls back to the address)")


class Message(BaseModel):
    """A message that passed validation and the relevance gate."""

    message_id: str = Field(description="Globally unique Message-ID")
    scraped_by: str = Field(description="Scraper identity that fetched this message")
    uid: str = Field(description="Transport sequence number within the scraper's mailbox")
    sender: Sender = Field(description="Message sender")
    subject: str = Field(description="Message subject")
    body: str = Field(description="Message body (HTML)")
    received_at: datetime = Field(description="When the message was received")
    in_reply_to_id: Optional[str] = Field(default=None, description="Parent Message-ID")
    status: MessageStatus = Field(default=MessageStatus.UNPROCESSED)
    extractor_version: Optional[str] = Field(
        default=None,
        description="Extractor version of the last processing attempt",
    )

    def is_processed_with(self, version: str) -> bool:
        """Return True if this message was fully processed by ``version``."""
        return self.status == MessageStatus.PROCESSED and self.extractor_version == version

    def to_incoming(self) -> IncomingMessage:
        """Rebuild the transport view of a stored message so it can be reprocessed
        without being fetched again."""
        from email_event_extractor.text import html_to_text

        return IncomingMessage(
            uid=self.uid,
            message_id=self.message_id,
            in_reply_to_id=self.in_reply_to_id,
            sender_email=self.sender.email,
            sender_name=self.sender.name,
            subject=self.subject,
            html=self.body,
            text=html_to_text(self.body),
            received_at=self.received_at,
        )


class Event(BaseModel):
    """An extracted event, anchored to the root message of its thread."""

    id: Optional[int] = Field(default=None, description="Store-assigned identifier")
    title: str = Field(description="Event title")
    date_time: datetime = Field(description="Start time; all-day events are encoded as midnight")
    location: str = Field(default="unknown", description="Location; 'unknown' matches anything")
    organizer: str = Field(default="unknown", description="Organizing person or group")
    duration_minutes: int = Field(default=60, ge=0, description="Duration in minutes")
    source: EventSource = Field(default=EventSource.BROADCAST_EMAIL)
    text: str = Field(default="", description="Supporting message text")
    anchor_message_id: str = Field(description="Message-ID of the thread root")
    anchor_received_at: Optional[datetime] = Field(
        default=None,
        description="received_at of the anchor message (populated on reads)",
    )


class IgnoredMessage(BaseModel):
    """Tombstone for a message that must never be fetched or processed again."""

    scraped_by: str
    uid: str
    received_at: datetime


__all__ = [
    "Event",
    "EventSource",
    "IgnoredMessage",
    "IncomingMessage",
    "Message",
    "MessageStatus",
    "Sender",
]
