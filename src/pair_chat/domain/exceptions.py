"""Error taxonomy shared by services and the API layer."""


class ChatError(Exception):
    """Base class for chat errors carrying an HTTP status."""

    status_code = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


class ValidationError(ChatError):
    """A required field is missing or malformed."""

    status_code = 400


class ForbiddenError(ChatError):
    """The caller may not perform the requested action."""

    status_code = 403


class NotFoundError(ChatError):
    """The referenced chat, message or chat-list entry does not exist."""

    status_code = 404


class StoreError(ChatError):
    """Transaction or I/O failure in the document store."""

    status_code = 500


class DocumentMissingError(StoreError):
    """An update targeted a document that does not exist."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Document {path} does not exist")
        self.path = path


class TransactionConflictError(StoreError):
    """A transaction kept conflicting until its attempts ran out."""

    def __init__(self, attempts: int) -> None:
        super().__init__(f"Transaction aborted after {attempts} conflicting attempts")
        self.attempts = attempts
