"""Exception types raised by the crawl and indexing pipelines."""

from typing import Optional


class IndexingError(Exception):
    """Base class for crawl, extraction and indexing failures."""


class SeedValidationError(IndexingError):
    """The seed URL of a crawl is malformed, unreachable or returned a non-2xx status."""

    def __init__(self, url: str, reason: str, status_code: Optional[int] = None):
        self.url = url
        self.reason = reason
        self.status_code = status_code
        super().__init__(f"Seed URL rejected ({url}): {reason}")


class NoActiveSitesError(IndexingError):
    """No active site is configured for the requested search types."""

    def __init__(self, search_types):
        self.search_types = list(search_types)
        super().__init__(f"No active sites configured for search types: {', '.join(self.search_types)}")


class ExtractionError(IndexingError):
    """A single extraction tier could not produce a page."""


class IndexWriteError(IndexingError):
    """Writing vectors to the index failed after every retry attempt."""

    def __init__(self, document_id: str, attempts: int, cause: Optional[BaseException] = None):
        self.document_id = document_id
        self.attempts = attempts
        self.cause = cause
        super().__init__(f"Failed to index {document_id} after {attempts} attempts: {cause}")
