from typing import Optional


class CallCheckError(Exception):
    """Base error carrying the HTTP status the API layer reports it with"""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


class ValidationError(CallCheckError):
    status_code = 400
    code = "validation_error"


class NotFoundError(CallCheckError):
    status_code = 404
    code = "not_found"


class ConfigurationError(CallCheckError):
    status_code = 503
    code = "configuration_error"


class StorageError(CallCheckError):
    status_code = 500
    code = "storage_error"


class ProviderError(CallCheckError):
    status_code = 502
    code = "provider_error"


class ProviderRequestError(ProviderError):
    """The provider rejected the request with a non-retryable status"""

    code = "provider_request_error"

    def __init__(self, message: str, upstream_status: Optional[int] = None):
        super().__init__(message)
        self.upstream_status = upstream_status


class ProviderUnavailableError(ProviderError):
    """Retries exhausted against a transient provider failure"""

    status_code = 503
    code = "provider_unavailable"

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


class ResponseFormatError(ProviderError):
    code = "response_format_error"


class TranscriptionError(CallCheckError):
    status_code = 500
    code = "transcription_error"


# Raised by provider implementations, consumed by the retry wrapper.

class ProviderCallError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None, retryable: Optional[bool] = None):
        super().__init__(message)
        self.status_code = status_code
        self._retryable = retryable

    @property
    def retryable(self) -> bool:
        if self._retryable is not None:
            return self._retryable
        if self.status_code is None:
            return True
        return self.status_code == 429 or self.status_code >= 500


class ProviderTimeoutError(ProviderCallError):
    def __init__(self, message: str = "Provider call timed out"):
        super().__init__(message, status_code=None, retryable=True)
