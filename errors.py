"""Error taxonomy shared by the extraction pipeline and the services.

Everything except ``TransportError`` derives from ``ValueError`` so that the
HTTP layer can keep mapping ``ValueError`` to a client error.
"""


class TransportError(RuntimeError):
    """An AI endpoint was unreachable, timed out or answered non-2xx."""


class MalformedResponse(ValueError):
    """The AI answer held no JSON object, or the JSON did not decode."""


class ValidationError(ValueError):
    """A mandatory field is missing or out of range."""


class ExtractionFailed(ValueError):
    """The deterministic fallback could not find an amount."""


class NotFoundError(ValueError):
    pass


class ConflictError(ValueError):
    pass


class PromptError(ValueError):
    """A prompt template is unknown or could not be rendered."""
