"""Error taxonomy for the corpus engine.

ValidationError   : bad input, rejected before any provider call.
ProviderError     : embedding/generation boundary failures:
                      RateLimited, NetworkError  (transient, retried)
                      AuthError                  (permanent, aborts the batch)
StorageError      : persistence failure, fatal to the current operation.
PartialIndexError : some chunks of a source failed; attached to outcomes, never raised
                    past the indexer.
"""

from __future__ import annotations


class NestCorpusError(Exception):
    """Base class for all nestcorpus errors."""


class ValidationError(NestCorpusError, ValueError):
    """Raised for empty or invalid input."""


class StorageError(NestCorpusError):
    """Raised when the backing database fails."""


class ProviderError(NestCorpusError):
    """Raised when an embedding or generation provider call fails.

    Attributes:
        retryable: Whether the gateway may retry the call.
        provider: Model string of the failing provider, if known.
    """

    retryable: bool = False

    def __init__(self, message: str, provider: str | None = None) -> None:
        super().__init__(message)
        self.provider = provider


class RateLimited(ProviderError):
    retryable = True


class NetworkError(ProviderError):
    retryable = True


class AuthError(ProviderError):
    retryable = False


class PartialIndexError(NestCorpusError):
    """Some chunks of a source could not be embedded after retries.

    The source stays queryable with reduced coverage; the failed chunk
    indices are retried on the next indexing pass.
    """

    def __init__(self, source_id: str, failed_chunks: list[int]) -> None:
        self.source_id = source_id
        self.failed_chunks = list(failed_chunks)
        super().__init__(
            f"Source '{source_id}' is partially indexed: "
            f"{len(self.failed_chunks)} chunk(s) pending retry {self.failed_chunks}"
        )
