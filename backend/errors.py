"""Service-level exceptions mapped to HTTP status codes by main.py."""


class NotFoundError(LookupError):
    """A referenced record does not exist (404)."""

    def __init__(self, collection: str, record_id):
        super().__init__(f"{collection} record not found: {record_id}")
        self.collection = collection
        self.record_id = record_id


class ImportValidationError(ValueError):
    """An import payload failed validation before any record was written (400)."""

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = errors or []
