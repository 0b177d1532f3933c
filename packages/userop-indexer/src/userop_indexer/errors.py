#!/usr/bin/env python3
"""Exception hierarchy for the UserOperationEvent indexer.

Decode errors are recoverable: the offending log is reported and skipped.
Persistence, subscription and setup errors are fatal to the phase that
raised them and surface to the indexer, which moves to the FAILED state.
"""


class IndexerError(Exception):
    """Base class for all indexer errors."""


class DecodeError(IndexerError):
    """A raw log does not have the UserOperationEvent shape."""


class TopicCountMismatch(DecodeError):
    """The log does not carry exactly the expected number of topics."""

    def __init__(self, expected: int, actual: int) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(f"Invalid number of topics: expected {expected}, got {actual}")


class TopicLengthMismatch(DecodeError):
    """A topic is not a single 32-byte word."""

    def __init__(self, index: int, expected: int, actual: int) -> None:
        self.index = index
        self.expected = expected
        self.actual = actual
        super().__init__(f"Invalid length for topic {index}: expected {expected} bytes, got {actual}")


class PayloadLengthMismatch(DecodeError):
    """The non-indexed data payload has the wrong length."""

    def __init__(self, expected: int, actual: int) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(f"Unexpected data length: expected {expected} bytes, got {actual}")


class MissingBlockNumber(DecodeError):
    """The log envelope carries no block number (e.g. a pending log)."""

    def __init__(self) -> None:
        super().__init__("Log has no block number")


class PersistenceError(IndexerError):
    """The storage layer failed; the write must be assumed not to have happened."""


class SubscriptionError(IndexerError):
    """The live log subscription failed or ended."""


class SetupError(IndexerError):
    """Node or storage access could not be established."""
