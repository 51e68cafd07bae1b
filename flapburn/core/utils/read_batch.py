from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

from loguru import logger

ReadCallFactory = Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class ReadError:
    field: str
    message: str


@dataclass(frozen=True)
class ReadResult[T]:
    value: T
    error: ReadError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class FieldRead:
    """One contract read plus the value it degrades to when the call fails."""

    name: str
    call: ReadCallFactory
    fallback: Any


async def read_field(read: FieldRead) -> ReadResult[Any]:
    try:
        return ReadResult(value=await read.call())
    except Exception as exc:  # noqa: BLE001
        logger.debug(f"Read {read.name} failed, using fallback {read.fallback!r}: {exc}")
        return ReadResult(
            value=read.fallback,
            error=ReadError(field=read.name, message=str(exc)),
        )


async def read_fields(*reads: FieldRead) -> dict[str, ReadResult[Any]]:
    """
    Issue independent reads concurrently; each one fails on its own.

    Usage:
        results = await read_fields(
            FieldRead("symbol", lambda: token.functions.symbol().call(), "TOKEN"),
            FieldRead("balance", lambda: token.functions.balanceOf(a).call(), 0),
        )
        results["symbol"].value

    A failing call never cancels its siblings; it resolves to its fallback and
    carries a ``ReadError`` instead.
    """

    if not reads:
        return {}

    names = [r.name for r in reads]
    if len(set(names)) != len(names):
        raise ValueError(f"Duplicate field names in read batch: {names}")

    results = await asyncio.gather(*(read_field(r) for r in reads))
    return dict(zip(names, results, strict=True))


def values(results: Mapping[str, ReadResult[Any]]) -> dict[str, Any]:
    return {name: result.value for name, result in results.items()}


def errors(results: Mapping[str, ReadResult[Any]]) -> list[ReadError]:
    return [r.error for r in results.values() if r.error is not None]
