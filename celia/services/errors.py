"""
Error types for the Zureo sync pipeline.

Fetch and auth errors abort a sync run. Batch write errors are captured
per batch and only show up as counts in the run summary.
"""


class ZureoError(Exception):
    """Base class for all sync pipeline errors"""


class ConfigurationError(ZureoError):
    """Required Zureo settings are missing"""


class AuthenticationError(ZureoError):
    """Zureo rejected the login request"""

    def __init__(self, status_code, body):
        self.status_code = status_code
        self.body = body
        super().__init__(f"Zureo authentication failed: {status_code} - {body}")


class TransientRateLimitError(ZureoError):
    """Zureo answered 429; the same page is retried after a cooldown"""

    def __init__(self, offset, body=None):
        self.offset = offset
        self.body = body
        super().__init__(f"Rate limit exceeded at offset {offset}")


class RateLimitExhaustedError(ZureoError):
    """Still rate limited after all retries"""

    def __init__(self, offset, attempts):
        self.offset = offset
        self.attempts = attempts
        super().__init__(
            f"Rate limit retries exhausted at offset {offset} after {attempts} attempts"
        )


class MalformedResponseError(ZureoError):
    """Zureo returned a body that is not JSON or lacks the expected shape"""

    def __init__(self, page, detail):
        self.page = page
        self.detail = detail
        super().__init__(f"Malformed response on page {page}: {detail}")


class ZureoAPIError(ZureoError):
    """Any other non-2xx response from Zureo"""

    def __init__(self, page, status_code, body):
        self.page = page
        self.status_code = status_code
        self.body = body
        super().__init__(f"Zureo request failed on page {page}: {status_code} - {body}")


class MalformedProductError(ZureoError):
    """A single product cannot be turned into catalog rows"""


class BatchWriteError(ZureoError):
    """One insert/upsert batch failed; its rows were not written"""

    def __init__(self, batch_number, size, cause):
        self.batch_number = batch_number
        self.size = size
        self.cause = cause
        super().__init__(f"Batch {batch_number} ({size} rows) failed: {cause}")


class SyncInProgressError(ZureoError):
    """Another sync run holds the lease"""
