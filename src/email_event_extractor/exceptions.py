"""Custom exceptions for the email event extractor."""


class EventExtractorError(Exception):
    """Base exception for all event extractor errors."""


class MailboxError(EventExtractorError):
    """Exception raised for mailbox transport (Gmail API) errors."""


class OllamaConnectionError(EventExtractorError):
    """Exception raised when unable to reach Ollama."""


class OllamaInferenceError(EventExtractorError):
    """Exception raised when Ollama answers with an unusable response."""


class EmbeddingError(EventExtractorError):
    """Exception raised when an embedding cannot be produced or stored."""


class StoreError(EventExtractorError):
    """Exception raised for persistent store errors."""


class ConfigurationError(EventExtractorError):
    """Exception raised for configuration related errors."""


class AuthenticationError(EventExtractorError):
    """Exception raised for authentication failures."""
