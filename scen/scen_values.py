"""
Defines the Value system of the scenario interpreter.

A raw script token is either a `str` or a nested list of tokens (an Event).
The getters in this module coerce such tokens into tagged, self-describing
Values. Every Value exposes `encode()` (the form handed to the invocation
boundary) and `show()` (the display form used in action descriptions).
"""

import re
import functools
from abc import ABC, abstractmethod
from decimal import Decimal, Context, DecimalException, InvalidOperation, MAX_PREC, ROUND_DOWN
from typing import Any, List, Optional, Sequence, Tuple, Union

from scen.scen_errors import MalformedValue, IncompatibleScale

Token = Union[str, list]

# Exact for everything but division: no digit of a script literal is ever rounded.
NUMBER_CONTEXT = Context(prec=MAX_PREC)
# Quotients by a plain scalar can be non-terminating, so they are cut here.
DIVISION_CONTEXT = Context(prec=80)
EXP_SCALE = 18

_NUMBER_RE = re.compile(r"^[+-]?\d[\d_]*(\.\d+)?([eE][+-]?\d+)?$")
_ADDRESS_RE = re.compile(r"^0[xX][0-9a-fA-F]{40}$")

_TRUE_WORDS = ("true", "yes")
_FALSE_WORDS = ("false", "no")


def _fmt_decimal(d: Decimal) -> str:
    if d == d.to_integral_value():
        return str(int(d))
    return format(d.normalize(NUMBER_CONTEXT), 'f')


# =================================================================
# Value variants
# =================================================================

class Value(ABC):
    """Abstract base class for every scenario Value."""
    tag: str = "value"

    @abstractmethod
    def encode(self) -> Any:
        raise NotImplementedError

    @abstractmethod
    def show(self) -> str:
        raise NotImplementedError

    def __str__(self) -> str:
        return self.show()


@functools.total_ordering
class NumberV(Value):
    """An arbitrary-precision number with a declared fixed-point scale.

    `val` is the already-scaled mantissa (what gets encoded) and `scale` the
    number of implied decimal places: 0 for raw numbers, 18 for exp numbers.
    Comparisons between scales compare the real quantities exactly; `+` and
    `-` refuse mixed scales; `*` and `/` accept an unscaled operand as a
    plain scalar.
    """
    tag = "number"

    def __init__(self, val: Union[int, str, Decimal], scale: int = 0):
        if isinstance(val, float):
            val = str(val)
        self.val: Decimal = NUMBER_CONTEXT.create_decimal(val)
        self.scale = int(scale)

    @classmethod
    def decode(cls, text: Union[str, int], scale: int = 0) -> 'NumberV':
        """Inverse of `encode` for a known scale."""
        try:
            return cls(Decimal(str(text)), scale)
        except InvalidOperation:
            raise MalformedValue("encoded number", text)

    def real(self) -> Decimal:
        return self.val.scaleb(-self.scale, NUMBER_CONTEXT)

    def encode(self) -> str:
        return _fmt_decimal(self.val)

    def show(self) -> str:
        if self.scale == 0:
            return _fmt_decimal(self.val)
        return f"{_fmt_decimal(self.real())}e{self.scale}"

    def __repr__(self) -> str:
        return f"NumberV({self.show()})"

    def __eq__(self, other):
        if not isinstance(other, NumberV):
            return NotImplemented
        return self.real() == other.real()

    def __lt__(self, other):
        if not isinstance(other, NumberV):
            return NotImplemented
        return self.real() < other.real()

    def __hash__(self):
        return hash(self.real())

    # --- Arithmetic ---
    def _scalar(self, other) -> Optional[Decimal]:
        if isinstance(other, NumberV):
            return other.val if other.scale == 0 else None
        if isinstance(other, (int, Decimal)):
            return NUMBER_CONTEXT.create_decimal(other)
        return None

    def __add__(self, other):
        if not isinstance(other, NumberV):
            return NotImplemented
        if other.scale != self.scale:
            raise IncompatibleScale("add", self.scale, other.scale)
        return NumberV(NUMBER_CONTEXT.add(self.val, other.val), self.scale)

    def __sub__(self, other):
        if not isinstance(other, NumberV):
            return NotImplemented
        if other.scale != self.scale:
            raise IncompatibleScale("subtract", self.scale, other.scale)
        return NumberV(NUMBER_CONTEXT.subtract(self.val, other.val), self.scale)

    def __mul__(self, other):
        scalar = self._scalar(other)
        if scalar is not None:
            return NumberV(NUMBER_CONTEXT.multiply(self.val, scalar), self.scale)
        if not isinstance(other, NumberV):
            return NotImplemented
        if self.scale == 0:
            return NumberV(NUMBER_CONTEXT.multiply(self.val, other.val), other.scale)
        if other.scale != self.scale:
            raise IncompatibleScale("multiply", self.scale, other.scale)
        product = NUMBER_CONTEXT.multiply(self.val, other.val).scaleb(-self.scale, NUMBER_CONTEXT)
        return NumberV(product.to_integral_value(rounding=ROUND_DOWN), self.scale)

    __rmul__ = __mul__

    def __truediv__(self, other):
        scalar = self._scalar(other)
        if scalar is not None:
            return NumberV(DIVISION_CONTEXT.divide(self.val, scalar), self.scale)
        if not isinstance(other, NumberV):
            return NotImplemented
        if other.scale != self.scale or self.scale == 0:
            raise IncompatibleScale("divide", self.scale, other.scale)
        # Truncating integer division stays exact at any width
        quotient = NUMBER_CONTEXT.divide_int(self.val.scaleb(self.scale, NUMBER_CONTEXT), other.val)
        return NumberV(quotient, self.scale)


class AddressV(Value):
    """A 20-byte identifier, normalized to lowercase hex."""
    tag = "address"

    def __init__(self, val: str):
        if not isinstance(val, str) or not _ADDRESS_RE.match(val):
            raise MalformedValue("address", val)
        self.val = val.lower()

    def encode(self) -> str:
        return self.val

    def show(self) -> str:
        return self.val

    def __repr__(self) -> str:
        return f"AddressV({self.val})"

    def __eq__(self, other):
        return isinstance(other, AddressV) and self.val == other.val

    def __hash__(self):
        return hash(("address", self.val))


class BoolV(Value):
    tag = "bool"

    def __init__(self, val: bool):
        self.val = bool(val)

    def encode(self) -> bool:
        return self.val

    def show(self) -> str:
        return "True" if self.val else "False"

    def __repr__(self) -> str:
        return f"BoolV({self.show()})"

    def __eq__(self, other):
        return isinstance(other, BoolV) and self.val == other.val

    def __hash__(self):
        return hash(("bool", self.val))


class StringV(Value):
    tag = "string"

    def __init__(self, val: str):
        self.val = str(val)

    def encode(self) -> str:
        return self.val

    def show(self) -> str:
        return self.val

    def __repr__(self) -> str:
        return f"StringV({self.val!r})"

    def __eq__(self, other):
        return isinstance(other, StringV) and self.val == other.val

    def __hash__(self):
        return hash(("string", self.val))


class ListV(Value):
    """An ordered, possibly heterogeneous list of Values."""
    tag = "list"

    def __init__(self, items: Sequence[Value]):
        self.items: Tuple[Value, ...] = tuple(items)

    @property
    def val(self) -> Tuple[Value, ...]:
        return self.items

    def encode(self) -> list:
        return [item.encode() for item in self.items]

    def show(self) -> str:
        return "(" + " ".join(item.show() for item in self.items) + ")"

    def __iter__(self):
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    def __getitem__(self, index):
        return self.items[index]

    def __repr__(self) -> str:
        return f"ListV({list(self.items)!r})"

    def __eq__(self, other):
        return isinstance(other, ListV) and self.items == other.items

    def __hash__(self):
        return hash(("list", self.items))


class EventV(Value):
    """A nested scoped instruction carried as a value (e.g. the body of `From`)."""
    tag = "event"

    def __init__(self, val: List[Token]):
        self.val = _copy_event(val)

    def encode(self) -> list:
        return _copy_event(self.val)

    def show(self) -> str:
        return format_event(self.val)

    def __repr__(self) -> str:
        return f"EventV({self.show()})"

    def __eq__(self, other):
        return isinstance(other, EventV) and self.val == other.val

    def __hash__(self):
        return hash(("event", self.show()))


def _copy_event(event: List[Token]) -> list:
    return [_copy_event(t) if isinstance(t, list) else t for t in event]


def format_event(event: List[Token]) -> str:
    """Renders an Event back into script syntax."""
    parts = []
    for tok in event:
        if isinstance(tok, list):
            parts.append("(" + format_event(tok) + ")")
        elif tok == "" or any(c.isspace() or c in '()"' for c in tok):
            parts.append(f'"{tok}"')
        else:
            parts.append(tok)
    return " ".join(parts)


# =================================================================
# Getters: (world, token) -> Value
# =================================================================

def _require_str(expected: str, token: Token) -> str:
    if not isinstance(token, str):
        raise MalformedValue(expected, token, "expected a single token, not a list")
    return token


def _parse_decimal(expected: str, text: str) -> Decimal:
    if not _NUMBER_RE.match(text):
        raise MalformedValue(expected, text)
    try:
        return NUMBER_CONTEXT.create_decimal(text.replace("_", ""))
    except DecimalException:
        raise MalformedValue(expected, text)


def get_number_v(world, token: Token) -> NumberV:
    text = _require_str("number", token)
    return NumberV(_parse_decimal("number", text), 0)


def get_exp_number_v(world, token: Token) -> NumberV:
    """A number pre-scaled by 1e18 (fixed-point 'exp' mantissa)."""
    text = _require_str("exp number", token)
    d = _parse_decimal("exp number", text)
    return NumberV(d.scaleb(EXP_SCALE, NUMBER_CONTEXT), EXP_SCALE)


def get_percent_v(world, token: Token) -> NumberV:
    """Accepts `20%` or `0.2`; stored as an exp number."""
    text = _require_str("percent", token)
    if text.endswith("%"):
        d = _parse_decimal("percent", text[:-1]).scaleb(-2, NUMBER_CONTEXT)
    else:
        d = _parse_decimal("percent", text)
    return NumberV(d.scaleb(EXP_SCALE, NUMBER_CONTEXT), EXP_SCALE)


def get_bool_v(world, token: Token) -> BoolV:
    if isinstance(token, bool):
        return BoolV(token)
    text = _require_str("bool", token).lower()
    if text in _TRUE_WORDS:
        return BoolV(True)
    if text in _FALSE_WORDS:
        return BoolV(False)
    raise MalformedValue("bool", token)


def get_string_v(world, token: Token) -> StringV:
    return StringV(_require_str("string", token))


def get_address_v(world, token: Token) -> AddressV:
    """Hex addresses, or any account/alias/contract name the World knows."""
    text = _require_str("address", token)
    if _ADDRESS_RE.match(text):
        return AddressV(text)
    if world is not None:
        resolved = world.resolve_address(text)
        if resolved is not None:
            return AddressV(resolved)
    raise MalformedValue("address", token, "not a hex address or known name")


def get_event_v(world, token: Token) -> EventV:
    if isinstance(token, list):
        # `From Geoff (Comptroller AcceptAdmin)`: a lone group is the event itself
        if len(token) == 1 and isinstance(token[0], list):
            token = token[0]
        return EventV(token)
    return EventV([token])


def get_core_value(world, token: Token) -> Value:
    """Infers a Value from a raw token.

    `(Address Geoff)`-style typed forms are coerced with the named getter,
    other lists become ListV of inferred values.
    """
    if isinstance(token, list):
        if len(token) == 2 and isinstance(token[0], str) and token[0] in TYPED_GETTERS:
            return TYPED_GETTERS[token[0]](world, token[1])
        return ListV([get_core_value(world, t) for t in token])
    lowered = token.lower()
    if lowered in ("true", "false"):
        return BoolV(lowered == "true")
    if _NUMBER_RE.match(token):
        return get_number_v(world, token)
    if _ADDRESS_RE.match(token):
        return AddressV(token)
    return StringV(token)


TYPED_GETTERS = {
    "Address": get_address_v,
    "Bool": get_bool_v,
    "Exp": get_exp_number_v,
    "Number": get_number_v,
    "Percent": get_percent_v,
    "String": get_string_v,
}


def raw_values(values) -> list:
    """Encodes a sequence of Values for the invocation boundary."""
    return [v.encode() for v in values]
