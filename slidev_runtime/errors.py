"""Failure kinds raised by the Slidev runtime.

Each kind carries the HTTP status the API layer answers with, so route
handlers never translate errors by hand.
"""

from __future__ import annotations

from typing import Any, Optional


class SlidevError(Exception):
    status_code = 500

    def __init__(self, message: str, details: Optional[Any] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class InvalidArgument(SlidevError):
    status_code = 400


class PathTraversal(SlidevError):
    status_code = 400


class NotFound(SlidevError):
    status_code = 404


class ResourceExhausted(SlidevError):
    pass


class SpawnFailure(SlidevError):
    pass


class BuildFailure(SlidevError):
    pass


class GenerationFailure(SlidevError):
    pass
