"""
Error taxonomy for the classification core.

Provider and parsing errors escalate to the next fallback tier at the
"classify this idea" boundary and are swallowed (logged) at the cache
population boundary. Router outcomes such as NoMatch are not errors and
live in classification.router.RouteOutcome.
"""


class ClassificationError(Exception):
    """Base class for every error raised by the classification core."""


class EmptyInput(ClassificationError):
    """Text to embed was empty after trimming."""


class ProviderUnavailable(ClassificationError):
    """No credential is configured for the embedding or LLM provider."""


class ProviderError(ClassificationError):
    """Transport, timeout or response-shape failure from a provider."""


class DimensionMismatch(ClassificationError):
    """Two vectors of different length were compared."""

    def __init__(self, left: int, right: int):
        super().__init__(
            f"Cannot compare vectors of different length: {left} vs {right}"
        )
        self.left = left
        self.right = right


class MalformedResponse(ClassificationError):
    """LLM output did not contain a JSON payload of the expected shape."""

    def __init__(self, message: str = "Malformed JSON from LLM", raw_text: str = None):
        super().__init__(message)
        self.raw_text = raw_text


class PersistenceError(ClassificationError):
    """The storage collaborator failed to read or write a record."""


class NotFound(PersistenceError):
    """A record with the requested id does not exist."""

    def __init__(self, resource: str, record_id: str = None):
        message = (
            f"{resource} with id '{record_id}' not found"
            if record_id else f"{resource} not found"
        )
        super().__init__(message)
        self.resource = resource
        self.record_id = record_id
