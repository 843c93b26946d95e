"""Value coercion for feed text.

Every parser returns ``None`` for text it cannot read, so an absent value
stays distinguishable from a real zero downstream.
"""

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation

_STRIP_RE = re.compile(r"[\s €$£]|EUR|eur")
_GROUPED_DOT_RE = re.compile(r"^[+-]?\d{1,3}(\.\d{3})+$")
_GROUPED_COMMA_RE = re.compile(r"^[+-]?\d{1,3}(,\d{3})+$")

# Values of 10**16 and above are treated as unparseable.
_MAX_ADJUSTED_EXPONENT = 15

TRUE_WORDS = frozenset({"1", "true", "yes", "y", "on", "si", "sì", "vero", "ja", "oui"})
FALSE_WORDS = frozenset({"0", "false", "no", "n", "off", "falso", "nein", "non"})

Number = int | float


def _normalise_separators(cleaned: str) -> str:
    has_dot = "." in cleaned
    has_comma = "," in cleaned
    if has_dot and has_comma:
        # Whichever separator comes last is the decimal mark.
        if cleaned.rfind(",") > cleaned.rfind("."):
            return cleaned.replace(".", "").replace(",", ".")
        return cleaned.replace(",", "")
    if has_comma:
        if _GROUPED_COMMA_RE.match(cleaned):
            return cleaned.replace(",", "")
        return cleaned.replace(",", ".")
    if has_dot and _GROUPED_DOT_RE.match(cleaned):
        return cleaned.replace(".", "")
    return cleaned


def to_decimal(value: object) -> Decimal | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        cleaned = str(value)
    else:
        text = str(value).strip()
        if not text:
            return None
        cleaned = _normalise_separators(_STRIP_RE.sub("", text))
        if not cleaned:
            return None
    try:
        parsed = Decimal(cleaned)
    except InvalidOperation:
        return None
    if not parsed.is_finite() or parsed.adjusted() > _MAX_ADJUSTED_EXPONENT:
        return None
    return parsed


def parse_number(value: object) -> Number | None:
    """Parse currency/thousands formatted text; integral values come back as int."""
    parsed = to_decimal(value)
    if parsed is None:
        return None
    if parsed == parsed.to_integral_value():
        return int(parsed)
    return float(parsed)


def parse_int(value: object) -> int | None:
    parsed = to_decimal(value)
    if parsed is None or parsed != parsed.to_integral_value():
        return None
    return int(parsed)


def parse_float(value: object) -> float | None:
    parsed = to_decimal(value)
    return None if parsed is None else float(parsed)


def parse_bool(value: object) -> bool | None:
    """Tri-state: True, False, or None when the text is outside the vocabulary."""
    if isinstance(value, bool):
        return value
    if value is None:
        return None
    text = str(value).strip().lower()
    if text in TRUE_WORDS:
        return True
    if text in FALSE_WORDS:
        return False
    return None


def collapse_whitespace(value: str | None) -> str | None:
    if value is None:
        return None
    collapsed = " ".join(value.split())
    return collapsed or None
