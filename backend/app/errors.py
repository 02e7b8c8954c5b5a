from __future__ import annotations


class ServiceError(Exception):
    """Domain specific error that can be translated to HTTP responses."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class MalformedExtractionOutput(ServiceError):
    """Extraction result does not parse into the expected record shape."""

    def __init__(self, message: str):
        super().__init__(message, status_code=500)


class ExternalServiceFailure(ServiceError):
    """Extraction or summarization capability unreachable or timed out."""

    def __init__(self, message: str):
        super().__init__(message, status_code=500)


class UnknownRfq(ServiceError):
    def __init__(self, rfq_id: str):
        super().__init__("Not found", status_code=404)
        self.rfq_id = rfq_id
