from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    FETCH_FAILED = "FETCH_FAILED"
    NOT_FOUND = "NOT_FOUND"
    EXTRACT_FAILED = "EXTRACT_FAILED"
    BUILD_FAILED = "BUILD_FAILED"
    CONFIG_INVALID = "CONFIG_INVALID"


class DocsrvError(Exception):
    """Base for every expected failure raised by docsrv components.

    The router turns NotFoundError into the not-found redirect and everything
    else into the internal-error one. Never retried inside a request: the next
    request tries again.
    """

    code: ErrorCode = ErrorCode.FETCH_FAILED

    def __init__(self, message: str, *, recoverable: bool = False) -> None:
        super().__init__(message)
        self.message = message
        self.recoverable = recoverable


class FetchError(DocsrvError):
    """Network failure reaching the release API or a source archive."""

    code = ErrorCode.FETCH_FAILED

    def __init__(self, message: str, *, recoverable: bool = True) -> None:
        super().__init__(message, recoverable=recoverable)


class NotFoundError(DocsrvError):
    """No known release matches the request."""

    code = ErrorCode.NOT_FOUND


class ExtractError(DocsrvError):
    code = ErrorCode.EXTRACT_FAILED


class BuildError(DocsrvError):
    """The external build command could not run or exited with a non-zero status."""

    code = ErrorCode.BUILD_FAILED

    def __init__(self, message: str, *, output: str = "", returncode: int | None = None) -> None:
        super().__init__(message)
        self.output = output
        self.returncode = returncode


class ConfigError(DocsrvError):
    code = ErrorCode.CONFIG_INVALID
