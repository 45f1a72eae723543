"""
Amount parsing for deal workbook cells.

Operating statements, valuation schedules and LOIs carry numbers typed as
text in a handful of US conventions:

- Dollars: $1,234.56, USD 2,500, ($1.5M), 1,200-
- Scale words: 123K, 1.2M, 100MM, 2.5B, 3 million
- Rates: 12.5%, 50 bps
- Multiples: 8.5x
- Unit prices: $95,000/bed, $120 per unit

``parse_cell`` is the single entry point the extraction layers use to turn a
worksheet cell into an optional float.
"""
import math
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional, Tuple

import structlog

logger = structlog.get_logger(__name__)


class AmountKind(str, Enum):
    """What a parsed figure measures."""
    NUMBER = "number"
    CURRENCY = "currency"
    PERCENT = "percent"
    BASIS_POINTS = "basis_points"
    MULTIPLE = "multiple"


@dataclass
class ParsedAmount:
    """A figure recovered from cell text."""

    value: Optional[Decimal]
    text: str
    confidence: float
    kind: AmountKind = AmountKind.NUMBER
    negative: bool = False
    scale: int = 1
    per_unit: Optional[str] = None

    @property
    def as_fraction(self) -> Optional[float]:
        """Rates as fractions ("8.5%" -> 0.085, "50 bps" -> 0.005); other kinds unchanged."""
        if self.value is None:
            return None
        if self.kind == AmountKind.PERCENT:
            return float(self.value) / 100.0
        if self.kind == AmountKind.BASIS_POINTS:
            return float(self.value) / 10_000.0
        return float(self.value)


class NumericParser:
    """
    Parser for amounts typed as text.

    Each ``parse`` call peels markers off the text in a fixed order (sign
    wrappers, currency, per-unit suffix, rate or multiple marker, scale word)
    and reads what is left as a plain or comma-grouped decimal. Confidence
    drops for irregular digit grouping.
    """

    SCALES = {
        "k": 1_000,
        "thousand": 1_000,
        "m": 1_000_000,
        "mm": 1_000_000,
        "mil": 1_000_000,
        "million": 1_000_000,
        "b": 1_000_000_000,
        "bn": 1_000_000_000,
        "billion": 1_000_000_000,
    }

    PARENS = re.compile(r"^\((.*)\)$")
    CURRENCY = re.compile(r"^(usd|\$)\s*", re.IGNORECASE)
    PER_UNIT = re.compile(r"\s*(?:/|\bper\s+)(bed|unit|room|sf|sq\.?\s*ft)\.?$", re.IGNORECASE)
    PERCENT = re.compile(r"\s*%$")
    BPS = re.compile(r"\s*(?:bps|bp|basis\s+points?)$", re.IGNORECASE)
    MULTIPLE = re.compile(r"(?<=\d)\s*x$", re.IGNORECASE)
    SCALE = re.compile(r"(?<=[\d\s])(thousand|million|billion|mil|mm|bn|[kmb])s?$", re.IGNORECASE)
    GROUPED = re.compile(r"^\d{1,3}(?:,\d{3})+(?:\.\d+)?$")
    PLAIN = re.compile(r"^(?:\d+(?:\.\d*)?|\.\d+)$")
    DIGIT = re.compile(r"\d")

    def parse(self, text: str) -> ParsedAmount:
        """
        Parse cell text into an amount.

        Args:
            text: Raw cell text.

        Returns:
            ParsedAmount; ``value`` is None when the text is not a figure.
        """
        if not text or not self.DIGIT.search(text):
            return ParsedAmount(value=None, text=text or "", confidence=0.0)

        body = text.strip()
        negative, body = self._strip_sign(body)

        kind = AmountKind.NUMBER
        match = self.CURRENCY.match(body)
        if match:
            kind = AmountKind.CURRENCY
            body = body[match.end():]
            # $-1,234
            inner_negative, body = self._strip_sign(body)
            negative = negative or inner_negative

        per_unit = None
        match = self.PER_UNIT.search(body)
        if match:
            per_unit = re.sub(r"[\s.]", "", match.group(1).lower())
            body = body[:match.start()]

        for pattern, marker in ((self.PERCENT, AmountKind.PERCENT),
                                (self.BPS, AmountKind.BASIS_POINTS),
                                (self.MULTIPLE, AmountKind.MULTIPLE)):
            match = pattern.search(body)
            if match:
                kind = marker
                body = body[:match.start()]
                break

        scale = 1
        match = self.SCALE.search(body)
        if match:
            scale = self.SCALES[match.group(1).lower()]
            body = body[:match.start()]

        value, confidence = self._read_decimal(body)
        if value is not None:
            value = value * scale
            if negative:
                value = -value

        return ParsedAmount(
            value=value,
            text=text,
            confidence=confidence,
            kind=kind,
            negative=negative,
            scale=scale,
            per_unit=per_unit,
        )

    def _strip_sign(self, body: str) -> Tuple[bool, str]:
        """Remove accounting parentheses, a leading sign or a trailing minus."""
        body = body.strip()
        match = self.PARENS.match(body)
        if match:
            return True, match.group(1).strip()
        if body[:1] in ("-", "−"):
            return True, body[1:].strip()
        if body.startswith("+"):
            return False, body[1:].strip()
        if len(body) > 1 and body.endswith("-"):
            return True, body[:-1].strip()
        return False, body

    def _read_decimal(self, body: str) -> Tuple[Optional[Decimal], float]:
        digits = body.replace(" ", "")
        if not digits:
            return None, 0.0
        try:
            if self.PLAIN.match(digits):
                return Decimal(digits), 1.0
            if self.GROUPED.match(digits):
                return Decimal(digits.replace(",", "")), 0.95
            # 12,34,567
            ungrouped = digits.replace(",", "")
            if self.PLAIN.match(ungrouped):
                return Decimal(ungrouped), 0.7
        except InvalidOperation as e:
            logger.debug("Unreadable amount", text=body, error=str(e))
        return None, 0.0

    def parse_cell(self, cell: Any) -> Optional[float]:
        """
        Convert a worksheet cell to a float.

        Native numbers pass through. Text goes through ``parse`` and rates
        come back as fractions.

        Args:
            cell: Cell value (str, int, float, Decimal or None).

        Returns:
            Float value, or None when the cell is blank or not a figure.
        """
        if cell is None or isinstance(cell, bool):
            return None
        if isinstance(cell, (int, float, Decimal)):
            value = float(cell)
            return None if math.isnan(value) or math.isinf(value) else value
        if not isinstance(cell, str):
            return None
        return self.parse(cell).as_fraction


_parser_instance: Optional[NumericParser] = None


def get_numeric_parser() -> NumericParser:
    """Get singleton NumericParser instance."""
    global _parser_instance
    if _parser_instance is None:
        _parser_instance = NumericParser()
    return _parser_instance
