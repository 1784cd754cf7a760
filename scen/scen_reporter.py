"""
Error Reporter Adapter.

Maps the raw failure discriminants returned by the invocation boundary to a
stable `{code, detail}` pair. Each external module (Comptroller, BToken, ...)
gets its own table. Decoding never raises: anything it does not recognise
comes back as `UnknownFailure` carrying the raw message.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

UNKNOWN_FAILURE = "UnknownFailure"
REVERT = "Revert"


@dataclass(frozen=True)
class DecodedFailure:
    code: str
    detail: str

    def __str__(self) -> str:
        return f"{self.code}: {self.detail}" if self.detail else self.code


class ErrorReporter:
    """Decodes Compound-style `Failure(error, info, detail)` discriminants."""

    def __init__(self, name: str, errors: Sequence[str], infos: Sequence[str]):
        self.name = name
        self.errors: List[str] = list(errors)
        self.infos: List[str] = list(infos)

    def _lookup(self, table: List[str], key: Any) -> Optional[str]:
        if isinstance(key, bool):
            return None
        if isinstance(key, int):
            return table[key] if 0 <= key < len(table) else None
        if isinstance(key, str):
            if key in table:
                return key
            if key.isdigit():
                return self._lookup(table, int(key))
        return None

    def decode(self, raw: Any) -> DecodedFailure:
        try:
            return self._decode(raw)
        except Exception as e:  # decoding must never fail
            return DecodedFailure(UNKNOWN_FAILURE, f"{raw!r} ({e})")

    def _decode(self, raw: Any) -> DecodedFailure:
        if isinstance(raw, str):
            return self._decode_message(raw)
        if not isinstance(raw, Mapping):
            return DecodedFailure(UNKNOWN_FAILURE, str(raw))

        if 'error' in raw:
            error = self._lookup(self.errors, raw['error'])
            if error is None:
                return DecodedFailure(UNKNOWN_FAILURE, self._raw_message(raw))
            parts = []
            if 'info' in raw and raw['info'] is not None:
                info = self._lookup(self.infos, raw['info'])
                parts.append(info if info is not None else f"info={raw['info']}")
            detail = raw.get('detail')
            if detail not in (None, 0, "0"):
                parts.append(f"detail={detail}")
            return DecodedFailure(error, " ".join(parts))

        if 'message' in raw:
            return self._decode_message(str(raw['message']))
        return DecodedFailure(UNKNOWN_FAILURE, self._raw_message(raw))

    def _decode_message(self, message: str) -> DecodedFailure:
        text = message.strip()
        marker = "revert"
        idx = text.find(marker)
        if idx >= 0:
            reason = text[idx + len(marker):].strip()
            return DecodedFailure(REVERT, reason)
        return DecodedFailure(UNKNOWN_FAILURE, text)

    def _raw_message(self, raw: Mapping) -> str:
        msg = raw.get('message')
        return str(msg) if msg is not None else repr(dict(raw))

    def __repr__(self) -> str:
        return f"<ErrorReporter {self.name}>"


ComptrollerErrorReporter = ErrorReporter(
    "Comptroller",
    errors=[
        "NO_ERROR",
        "UNAUTHORIZED",
        "COMPTROLLER_MISMATCH",
        "INSUFFICIENT_SHORTFALL",
        "INSUFFICIENT_LIQUIDITY",
        "INVALID_CLOSE_FACTOR",
        "INVALID_COLLATERAL_FACTOR",
        "INVALID_LIQUIDATION_INCENTIVE",
        "MARKET_NOT_ENTERED",
        "MARKET_NOT_LISTED",
        "MARKET_ALREADY_LISTED",
        "MATH_ERROR",
        "NONZERO_BORROW_BALANCE",
        "PRICE_ERROR",
        "REJECTION",
        "SNAPSHOT_ERROR",
        "TOO_MANY_ASSETS",
        "TOO_MUCH_REPAY",
    ],
    infos=[
        "ACCEPT_ADMIN_PENDING_ADMIN_CHECK",
        "ACCEPT_PENDING_IMPLEMENTATION_ADDRESS_CHECK",
        "EXIT_MARKET_BALANCE_OWED",
        "EXIT_MARKET_REJECTION",
        "SET_CLOSE_FACTOR_OWNER_CHECK",
        "SET_CLOSE_FACTOR_VALIDATION",
        "SET_COLLATERAL_FACTOR_OWNER_CHECK",
        "SET_COLLATERAL_FACTOR_NO_EXISTS",
        "SET_COLLATERAL_FACTOR_VALIDATION",
        "SET_COLLATERAL_FACTOR_WITHOUT_PRICE",
        "SET_IMPLEMENTATION_OWNER_CHECK",
        "SET_LIQUIDATION_INCENTIVE_OWNER_CHECK",
        "SET_LIQUIDATION_INCENTIVE_VALIDATION",
        "SET_MAX_ASSETS_OWNER_CHECK",
        "SET_PENDING_ADMIN_OWNER_CHECK",
        "SET_PENDING_IMPLEMENTATION_OWNER_CHECK",
        "SET_PRICE_ORACLE_OWNER_CHECK",
        "SUPPORT_MARKET_EXISTS",
        "SUPPORT_MARKET_OWNER_CHECK",
        "SET_PAUSE_GUARDIAN_OWNER_CHECK",
    ],
)

TokenErrorReporter = ErrorReporter(
    "BToken",
    errors=[
        "NO_ERROR",
        "UNAUTHORIZED",
        "BAD_INPUT",
        "COMPTROLLER_REJECTION",
        "COMPTROLLER_CALCULATION_ERROR",
        "INTEREST_RATE_MODEL_ERROR",
        "INVALID_ACCOUNT_PAIR",
        "INVALID_CLOSE_AMOUNT_REQUESTED",
        "INVALID_COLLATERAL_FACTOR",
        "MATH_ERROR",
        "MARKET_NOT_FRESH",
        "MARKET_NOT_LISTED",
        "TOKEN_INSUFFICIENT_ALLOWANCE",
        "TOKEN_INSUFFICIENT_BALANCE",
        "TOKEN_INSUFFICIENT_CASH",
        "TOKEN_TRANSFER_IN_FAILED",
        "TOKEN_TRANSFER_OUT_FAILED",
    ],
    infos=[
        "ACCEPT_ADMIN_PENDING_ADMIN_CHECK",
        "ACCRUE_INTEREST_ACCUMULATED_INTEREST_CALCULATION_FAILED",
        "ACCRUE_INTEREST_BORROW_RATE_CALCULATION_FAILED",
        "ACCRUE_INTEREST_NEW_BORROW_INDEX_CALCULATION_FAILED",
        "ACCRUE_INTEREST_NEW_TOTAL_BORROWS_CALCULATION_FAILED",
        "ACCRUE_INTEREST_NEW_TOTAL_RESERVES_CALCULATION_FAILED",
        "ACCRUE_INTEREST_SIMPLE_INTEREST_FACTOR_CALCULATION_FAILED",
        "BORROW_ACCUMULATED_BALANCE_CALCULATION_FAILED",
        "BORROW_ACCRUE_INTEREST_FAILED",
        "BORROW_CASH_NOT_AVAILABLE",
        "BORROW_FRESHNESS_CHECK",
        "BORROW_NEW_TOTAL_BALANCE_CALCULATION_FAILED",
        "BORROW_NEW_ACCOUNT_BORROW_BALANCE_CALCULATION_FAILED",
        "BORROW_MARKET_NOT_LISTED",
        "BORROW_COMPTROLLER_REJECTION",
        "LIQUIDATE_ACCRUE_BORROW_INTEREST_FAILED",
        "LIQUIDATE_ACCRUE_COLLATERAL_INTEREST_FAILED",
        "LIQUIDATE_COLLATERAL_FRESHNESS_CHECK",
        "LIQUIDATE_COMPTROLLER_REJECTION",
        "LIQUIDATE_COMPTROLLER_CALCULATE_AMOUNT_SEIZE_FAILED",
        "LIQUIDATE_CLOSE_AMOUNT_IS_UINT_MAX",
        "LIQUIDATE_CLOSE_AMOUNT_IS_ZERO",
        "LIQUIDATE_FRESHNESS_CHECK",
        "LIQUIDATE_LIQUIDATOR_IS_BORROWER",
        "LIQUIDATE_REPAY_BORROW_FRESH_FAILED",
        "LIQUIDATE_SEIZE_BALANCE_INCREMENT_FAILED",
        "LIQUIDATE_SEIZE_BALANCE_DECREMENT_FAILED",
        "LIQUIDATE_SEIZE_COMPTROLLER_REJECTION",
        "LIQUIDATE_SEIZE_LIQUIDATOR_IS_BORROWER",
        "LIQUIDATE_SEIZE_TOO_MUCH",
        "MINT_ACCRUE_INTEREST_FAILED",
        "MINT_COMPTROLLER_REJECTION",
        "MINT_EXCHANGE_CALCULATION_FAILED",
        "MINT_EXCHANGE_RATE_READ_FAILED",
        "MINT_FRESHNESS_CHECK",
        "MINT_NEW_ACCOUNT_BALANCE_CALCULATION_FAILED",
        "MINT_NEW_TOTAL_SUPPLY_CALCULATION_FAILED",
        "MINT_TRANSFER_IN_FAILED",
        "MINT_TRANSFER_IN_NOT_POSSIBLE",
        "REDEEM_ACCRUE_INTEREST_FAILED",
        "REDEEM_COMPTROLLER_REJECTION",
        "REDEEM_EXCHANGE_TOKENS_CALCULATION_FAILED",
        "REDEEM_EXCHANGE_AMOUNT_CALCULATION_FAILED",
        "REDEEM_EXCHANGE_RATE_READ_FAILED",
        "REDEEM_FRESHNESS_CHECK",
        "REDEEM_NEW_ACCOUNT_BALANCE_CALCULATION_FAILED",
        "REDEEM_NEW_TOTAL_SUPPLY_CALCULATION_FAILED",
        "REDEEM_TRANSFER_OUT_NOT_POSSIBLE",
    ],
)

NoErrorReporter = ErrorReporter("None", errors=[], infos=[])

REPORTERS: Dict[str, ErrorReporter] = {
    "Comptroller": ComptrollerErrorReporter,
    "BToken": TokenErrorReporter,
}


def reporter_for(module: str) -> ErrorReporter:
    return REPORTERS.get(module, NoErrorReporter)
