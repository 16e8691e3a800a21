"""Mailbox transport: listing, fetching and parsing raw messages."""

from .client import GmailMailboxSource
from .parsing import parse_raw_message

__all__ = ["GmailMailboxSource", "parse_raw_message"]
