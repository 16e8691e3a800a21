"""Email Event Extractor - turns broadcast campus email into a deduplicated event list.

This package filters a mailbox for broadcast announcements, extracts events
from them with an Ollama-hosted LLM, and merges duplicate announcements using
nearest-neighbour search over event-title embeddings.
"""

__version__ = "0.1.0"

from email_event_extractor.config import Settings, get_settings

__all__ = ["Settings", "get_settings", "__version__"]
