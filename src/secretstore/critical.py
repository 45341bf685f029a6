"""Critical exception filters.

By default the secret store treats a failing provider as a miss and moves on
to the next one. A critical exception filter marks certain failures as
critical instead: they are collected during the lookup and surfaced to the
caller when no provider returns the secret.

Example:
    >>> policy = CriticalExceptionPolicy([
    ...     CriticalExceptionFilter(PermissionError),
    ...     CriticalExceptionFilter(OSError, lambda e: e.errno == 13),
    ... ])
    >>> policy.is_critical(PermissionError("denied"))
    True
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Sequence

from secretstore.observability import SecretStoreLogger, as_logger

ExceptionPredicate = Callable[[BaseException], bool]


def _always(exception: BaseException) -> bool:
    return True


class CriticalExceptionFilter:
    """Marks exceptions of a given type, optionally narrowed by a predicate, as critical.

    The type check runs first, so the predicate only ever receives exceptions
    of the declared type (or a subclass).
    """

    def __init__(
        self,
        exception_type: type[BaseException],
        predicate: ExceptionPredicate | None = None,
    ) -> None:
        if exception_type is None:
            raise ValueError("Requires an exception type for the critical exception filter")
        if not isinstance(exception_type, type) or not issubclass(exception_type, BaseException):
            raise TypeError(
                f"Requires an exception type, got {exception_type!r}"
            )
        if predicate is not None and not callable(predicate):
            raise TypeError("Requires a callable exception predicate")

        self._exception_type = exception_type
        self._predicate = predicate or _always

    @property
    def exception_type(self) -> type[BaseException]:
        return self._exception_type

    def is_critical(self, exception: BaseException) -> bool:
        """Determine whether the exception is critical for this filter.

        Exceptions raised by the predicate propagate to the caller.
        """
        if exception is None:
            raise ValueError("Requires an exception to determine whether it is critical")

        if not isinstance(exception, self._exception_type):
            return False
        return bool(self._predicate(exception))

    def __repr__(self) -> str:
        return f"CriticalExceptionFilter({self._exception_type.__name__})"


class CriticalExceptionPolicy:
    """An ordered set of critical exception filters.

    An exception is critical when any filter considers it critical. A filter
    whose predicate raises is logged and considered not to match.
    """

    def __init__(
        self,
        filters: Iterable[CriticalExceptionFilter] = (),
        logger: logging.Logger | SecretStoreLogger | None = None,
    ) -> None:
        filters = tuple(filters)
        if any(f is None for f in filters):
            raise ValueError("Requires all critical exception filters to be non-null")

        self._filters: Sequence[CriticalExceptionFilter] = filters
        self._logger = as_logger(logger, __name__)

    @property
    def filters(self) -> tuple[CriticalExceptionFilter, ...]:
        return tuple(self._filters)

    def __len__(self) -> int:
        return len(self._filters)

    def is_critical(self, exception: BaseException) -> bool:
        for exception_filter in self._filters:
            try:
                if exception_filter.is_critical(exception):
                    return True
            except Exception as error:
                self._logger.warning(
                    "Failed to determine critical exception for exception type '%s'",
                    exception_filter.exception_type.__name__,
                    exc_info=error,
                )
        return False
