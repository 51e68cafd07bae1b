from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from flapburn.core.constants.base import NATIVE_SYMBOL
from flapburn.core.utils.units import format_native

MAX_RAW_MESSAGE_CHARS = 100

BELOW_MIN_BURN_VALUE_MARKER = "BELOW_MIN_BURN_VALUE"
INSUFFICIENT_LIQUIDITY_MARKER = "PancakeLibrary: INSUFFICIENT_INPUT_AMOUNT"
ALLOWANCE_MARKER = "exceeds allowance"


class TxErrorKind(StrEnum):
    BELOW_MIN_BURN_VALUE = "BELOW_MIN_BURN_VALUE"
    INSUFFICIENT_LIQUIDITY = "INSUFFICIENT_LIQUIDITY"
    ALLOWANCE = "ALLOWANCE"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class ClassifiedError:
    kind: TxErrorKind
    message: str
    raw: str


def classify_transaction_error(
    raw: object, min_burn_value: int | None = None
) -> ClassifiedError:
    text = "" if raw is None else str(raw)

    if BELOW_MIN_BURN_VALUE_MARKER in text:
        floor = (
            f" of {format_native(min_burn_value)} {NATIVE_SYMBOL}"
            if min_burn_value
            else ""
        )
        return ClassifiedError(
            TxErrorKind.BELOW_MIN_BURN_VALUE,
            f"Burn value fell below the protocol minimum{floor}. The contract "
            "values the burn after swap slippage, so a large burn against a "
            "shallow pool is worth less than its quoted holding value.",
            text,
        )
    if INSUFFICIENT_LIQUIDITY_MARKER in text:
        return ClassifiedError(
            TxErrorKind.INSUFFICIENT_LIQUIDITY,
            "Could not price the burn: pool liquidity is too shallow for this "
            "amount, or the amount is too small for the pool.",
            text,
        )
    if ALLOWANCE_MARKER in text:
        return ClassifiedError(
            TxErrorKind.ALLOWANCE,
            "Token allowance is insufficient. Wait for the approval to confirm "
            "or refresh and retry.",
            text,
        )
    return ClassifiedError(
        TxErrorKind.UNKNOWN,
        f"Transaction failed: {text[:MAX_RAW_MESSAGE_CHARS]}... see logs for details",
        text,
    )
