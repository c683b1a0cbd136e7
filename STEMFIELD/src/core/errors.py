"""Failures raised while decoding and aggregating a block stream. All are fatal to a run."""

from __future__ import annotations


class StreamError(Exception):
    pass


class OpenFailure(StreamError, OSError):
    """The byte source could not be opened."""


class TruncatedRecord(StreamError, ValueError):
    """The source ended part way through a header or payload."""


class InvalidHeader(StreamError, ValueError):
    """A header whose fields cannot describe a valid block."""


class ConfigMismatch(StreamError, ValueError):
    """Output dimensions disagree with the decoded stream."""


class WorkerFailure(StreamError, RuntimeError):
    """A dispatched block task raised; the original exception is chained."""
