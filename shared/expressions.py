"""Side-effect-free condition expressions used by action conditions and branches.

Two forms are understood::

    "<fieldPath> is_empty" / "<fieldPath> is_not_empty"
    "<fieldPath> <op> <value>"   op in equals, not_equals, contains,
                                 not_contains, gt, lt

The first dotted segment of a field path selects a bucket of the evaluation
context (``triggerPayload``, ``contact`` or ``opportunity``); the remaining
segments are nested key lookups, or positions in a list
(``triggerPayload.tags.0``). Operand text must not itself contain an
operator token surrounded by spaces, because the first operator found (in
the order above) splits the expression.

Examples::

    contact.email contains '@gmail.com'
    triggerPayload.status equals "active"
    opportunity.value gt 1000
    contact.phone is_not_empty
"""
import logging
import math
import re
from typing import Any, Dict, Mapping, Optional, Union

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

OPERATORS = (
    "equals",
    "not_equals",
    "contains",
    "not_contains",
    "gt",
    "lt",
    "is_empty",
    "is_not_empty",
)
UNARY_OPERATORS = ("is_empty", "is_not_empty")

_QUOTES = re.compile(r"^['\"]|['\"]$")


class _Missing:
    """Marker for a path that resolved to nothing"""

    def __repr__(self) -> str:
        return "<missing>"


MISSING = _Missing()


class EvaluationContext(BaseModel):
    """Data an expression may read"""
    tenant_id: str = ""
    job_id: str = ""
    trigger_payload: Dict[str, Any] = Field(default_factory=dict)
    contact: Optional[Dict[str, Any]] = None
    opportunity: Optional[Dict[str, Any]] = None


ContextLike = Union[EvaluationContext, Mapping[str, Any]]


def _buckets(context: ContextLike) -> Dict[str, Any]:
    if isinstance(context, EvaluationContext):
        return {
            "triggerPayload": context.trigger_payload,
            "contact": context.contact or {},
            "opportunity": context.opportunity or {},
        }
    return {
        "triggerPayload": context.get("triggerPayload") or {},
        "contact": context.get("contact") or {},
        "opportunity": context.get("opportunity") or {},
    }


def resolve_field(field_path: str, context: ContextLike) -> Any:
    """Resolve a dotted path against the context; MISSING when absent."""
    root, *rest = field_path.split(".")
    buckets = _buckets(context)
    if root not in buckets:
        return MISSING

    value: Any = buckets[root]
    for key in rest:
        if isinstance(value, Mapping) and key in value:
            value = value[key]
        elif (isinstance(value, (list, tuple)) and key.isdigit()
              and int(key) < len(value)):
            value = value[int(key)]
        else:
            return MISSING
    return value


# ============================================================================
# Coercion helpers (string/number semantics of the JSON payloads)
# ============================================================================


def to_text(value: Any) -> str:
    """Coerce a payload value to text the way a JSON consumer would print it."""
    if value is MISSING:
        return "undefined"
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if math.isnan(value):
            return "NaN"
        if math.isinf(value):
            return "Infinity" if value > 0 else "-Infinity"
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, (list, tuple)):
        return ",".join("" if v is None else to_text(v) for v in value)
    if isinstance(value, Mapping):
        return "[object Object]"
    return str(value)


def to_number(value: Any) -> Optional[float]:
    """Numeric value of ``value``, or None when it is not numeric."""
    if isinstance(value, bool) or value is None or value is MISSING:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        number = _parse_number(value.strip())
        if number is None:
            return None
    else:
        return None
    return None if math.isnan(number) else number


_DECIMAL = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
_RADIX = re.compile(r"0(?:[xX][0-9a-fA-F]+|[oO][0-7]+|[bB][01]+)")
_RADIX_BASES = {"x": 16, "o": 8, "b": 2}


def _parse_number(text: str) -> Optional[float]:
    """Numeric text in JSON-consumer notation: decimals, exponents,
    ``Infinity`` and unsigned 0x/0o/0b literals. Python-only spellings
    such as ``1_000`` or ``inf`` are not numbers here.
    """
    if not text:
        return None
    if _DECIMAL.fullmatch(text):
        return float(text)
    if text in ("Infinity", "+Infinity"):
        return math.inf
    if text == "-Infinity":
        return -math.inf
    if _RADIX.fullmatch(text):
        digits = int(text[2:], _RADIX_BASES[text[1].lower()])
        try:
            return float(digits)
        except OverflowError:
            return math.inf
    return None


def _is_empty(value: Any) -> bool:
    return value is MISSING or value is None or value == ""


def compare(actual: Any, operator: str, expected: str) -> bool:
    if operator == "is_empty":
        return _is_empty(actual)
    if operator == "is_not_empty":
        return not _is_empty(actual)
    if operator == "equals":
        return to_text(actual) == expected
    if operator == "not_equals":
        return to_text(actual) != expected
    if operator == "contains":
        return isinstance(actual, str) and expected in actual
    if operator == "not_contains":
        return isinstance(actual, str) and expected not in actual
    if operator in ("gt", "lt"):
        left = to_number(actual)
        right = to_number(expected)
        if left is None or right is None:
            return False
        return left > right if operator == "gt" else left < right
    return False


def evaluate(expression: str, context: ContextLike) -> bool:
    """Evaluate an expression. Never raises; invalid input yields False."""
    try:
        text = expression.strip()

        for op in UNARY_OPERATORS:
            if text.endswith(f" {op}"):
                field = text[:-(len(op) + 1)].strip()
                return compare(resolve_field(field, context), op, "")

        for op in OPERATORS:
            marker = f" {op} "
            idx = expression.find(marker)
            if idx != -1:
                field = expression[:idx].strip()
                raw_value = expression[idx + len(marker):].strip()
                value = _QUOTES.sub("", raw_value)
                return compare(resolve_field(field, context), op, value)

        return False
    except Exception as e:
        logger.debug(f"Expression {expression!r} evaluated to false: {e}")
        return False
