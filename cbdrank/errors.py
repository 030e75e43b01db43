"""
Error kinds raised by the ranking core.
"""

from typing import Optional


class CbdRankError(Exception):
    """Base class for all cbdrank errors."""


class MalformedGraph(CbdRankError, ValueError):
    """
    Structural inconsistency in the input arrays.

    Raised for out-of-range indices, mismatched array lengths and negative
    counts. Never retried internally.
    """


class NonConvergence(CbdRankError):
    """
    The iteration bound was reached before the tolerance was met.

    The best-effort result is attached as ``result`` so the caller can
    accept it explicitly or retry with relaxed parameters.
    """

    def __init__(self, message: str, result=None):
        super().__init__(message)
        self.result = result

    @property
    def iterations(self) -> Optional[int]:
        return self.result.iterations if self.result is not None else None

    @property
    def delta(self) -> Optional[float]:
        return self.result.delta if self.result is not None else None


class BackendDispatchFailure(CbdRankError):
    """A compute backend failed to execute a call."""

    def __init__(self, message: str, backend: Optional[str] = None):
        super().__init__(message)
        self.backend = backend
