from __future__ import annotations

from collections.abc import Callable, Coroutine
from functools import wraps
from typing import Any


def status_tuple[T](
    fn: Callable[..., Coroutine[Any, Any, T]],
) -> Callable[..., Coroutine[Any, Any, tuple[bool, T | str]]]:
    """Wrap an async adapter method to return ``(True, result)`` or ``(False, error_str)``.

    The error string keeps the node's revert reason (e.g. ``BELOW_MIN_BURN_VALUE``)
    so callers can classify it. Exceptions are logged via ``self.logger``.
    """

    @wraps(fn)
    async def wrapper(self: Any, *args: Any, **kwargs: Any) -> tuple[bool, T | str]:
        try:
            result = await fn(self, *args, **kwargs)
            return (True, result)
        except Exception as exc:
            self.logger.error(f"Error in {fn.__name__}: {exc}")
            return (False, _error_text(exc))

    return wrapper  # type: ignore[return-value]


def _error_text(exc: Exception) -> str:
    # web3's ContractLogicError carries the decoded revert string in ``message``
    # while ``str(exc)`` may only show the raw payload.
    message = getattr(exc, "message", None)
    text = str(exc)
    if isinstance(message, str) and message and message not in text:
        return f"{message} {text}".strip()
    return text
