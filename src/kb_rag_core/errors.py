from __future__ import annotations


class RagError(RuntimeError):
    """Base class for every failure raised by the knowledge base core."""

    kind = "internal"
    status_code = 500


class InputError(RagError, ValueError):
    kind = "input"
    status_code = 400

    def __init__(self, message: str, *, invalid: list[str] | None = None):
        super().__init__(message)
        self.invalid = list(invalid or [])


class ProviderError(RagError):
    kind = "unavailable"
    status_code = 503

    def __init__(self, message: str, *, provider: str | None = None, reason: str | None = None):
        super().__init__(message)
        self.provider = provider
        self.reason = reason


class ProviderTimeoutError(RagError, TimeoutError):
    kind = "unavailable"
    status_code = 504

    def __init__(self, message: str, *, provider: str | None = None, timeout_s: float | None = None):
        super().__init__(message)
        self.provider = provider
        self.timeout_s = timeout_s


class NotFoundError(RagError, LookupError):
    kind = "not_found"
    status_code = 404


class ConflictError(RagError):
    kind = "conflict"
    status_code = 409


class ValidationMismatchError(RagError):
    """Cited document ids that do not resolve to an active document."""

    kind = "not_found"
    status_code = 404

    def __init__(self, missing: list[str], existing: list[str]):
        super().__init__(
            f"{len(missing)} cited document(s) do not exist or are not active: {', '.join(missing)}"
        )
        self.missing = list(missing)
        self.existing = list(existing)
