"""Uniform execution of remote storage requests.

Every call to the storage backend goes through :func:`execute`. The caller
supplies two handlers: one turning a successful response into a result, and
one turning a classified :class:`RemoteError` into an optional log level plus
a default result. Backend exceptions therefore never cross this boundary; each
call site decides whether a failure is silent, a warning, or an error.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Optional, Tuple, TypeVar

from botocore.exceptions import BotoCoreError, ClientError

if TYPE_CHECKING:
    from s3cache.config import CacheContext

T = TypeVar("T")
R = TypeVar("R")

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound", "NoSuchBucket"}


class CacheLogAdapter(logging.LoggerAdapter):
    """Prefix every log message with the cache object key.

    Examples:
        >>> log = CacheLogAdapter(logging.getLogger("s3cache"), "linux/main.cache")
        >>> log.process("Restoring cache.", {})
        ('<linux/main.cache> - Restoring cache.', {})
    """

    def __init__(self, logger: logging.Logger, object_key: str):
        super().__init__(logger, {"object_key": object_key})
        self.object_key = object_key

    def process(self, msg, kwargs):
        return f"<{self.object_key}> - {msg}", kwargs


class ErrorKind(Enum):
    """Classification of backend failures."""

    NOT_FOUND = "not_found"
    TRANSPORT = "transport"


@dataclass(frozen=True)
class RemoteError:
    """A failure reported by the storage backend.

    Attributes:
        kind: NOT_FOUND for missing objects, TRANSPORT for everything else
        message: Human readable description
        code: Backend error code, e.g. 'NoSuchKey' or 'AccessDenied'
        status: HTTP status code if the backend answered
        cause: Original exception
    """

    kind: ErrorKind
    message: str
    code: Optional[str] = None
    status: Optional[int] = None
    cause: Optional[BaseException] = None

    @property
    def is_not_found(self) -> bool:
        return self.kind is ErrorKind.NOT_FOUND

    @classmethod
    def from_exception(cls, exc: BaseException) -> "RemoteError":
        """Classify a botocore exception.

        Raises:
            TypeError: If ``exc`` is not a botocore exception
        """
        if isinstance(exc, ClientError):
            error = exc.response.get("Error", {})
            code = str(error.get("Code", ""))
            status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
            if code in _NOT_FOUND_CODES or status == 404:
                kind = ErrorKind.NOT_FOUND
            else:
                kind = ErrorKind.TRANSPORT
            return cls(
                kind=kind,
                message=error.get("Message") or str(exc),
                code=code or None,
                status=status,
                cause=exc,
            )
        if isinstance(exc, BotoCoreError):
            return cls(kind=ErrorKind.TRANSPORT, message=str(exc), cause=exc)
        raise TypeError(f"Not a storage backend error: {exc!r}")

    def __str__(self) -> str:
        details = ", ".join(
            part
            for part in (self.code, f"HTTP {self.status}" if self.status else None)
            if part
        )
        if details:
            return f"S3 error ({details}): {self.message}"
        return f"S3 error: {self.message}"


def execute(
    context: "CacheContext",
    request: Callable[[Any], T],
    on_error: Callable[[RemoteError], Tuple[Optional[int], R]],
    on_success: Callable[[T], R],
) -> R:
    """Run one backend request and apply the caller's outcome policy.

    Args:
        context: Operation context; ``request`` receives ``context.client``
        request: Callable performing the backend call
        on_error: Maps a classified error to ``(log level or None, default)``
        on_success: Maps the response to the result

    Returns:
        ``on_success(response)``, or the default chosen by ``on_error``
    """
    try:
        response = request(context.client)
    except (ClientError, BotoCoreError) as e:
        error = RemoteError.from_exception(e)
        level, default = on_error(error)
        if level is not None:
            context.logger.log(level, str(error))
        return default
    return on_success(response)


def _discard(_error: RemoteError) -> Tuple[Optional[int], None]:
    return logging.ERROR, None


def execute_discarding_result(
    context: "CacheContext", request: Callable[[Any], Any]
) -> None:
    """Run a request for its side effect; errors are logged at ERROR level."""
    execute(context, request, _discard, lambda _response: None)
