"""Field-level anonymization strategies.

Every strategy lets None through unchanged. Generalization buckets
precise values (age, dates, rates, durations) so that statistics
survive while individuals can no longer be singled out.
"""

import math
import secrets
import string
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from enum import StrEnum
from typing import Any

from reved_compliance.services.crypto import CryptoGateway

DEFAULT_MASK_CHAR = "*"
GENERALIZED_MARKER = "[GENERALIZED]"
ANONYMIZED_MARKER = "[ANONYMIZED]"

# (keyword, replacement) checked in order against field name then value
SUBSTITUTIONS: tuple[tuple[str, str], ...] = (
    ("name", "Anonymous User"),
    ("email", "anonymous@example.com"),
    ("phone", "+33123456789"),
    ("address", "123 Anonymous Street"),
)

# (exclusive upper age, bucket)
AGE_BUCKETS: tuple[tuple[int, str], ...] = (
    (6, "3-5"),
    (9, "6-8"),
    (12, "9-11"),
    (15, "12-14"),
)


class AnonymizationStrategy(StrEnum):
    """Available field strategies."""

    HASH = "hash"
    RANDOMIZE = "randomize"
    MASK = "mask"
    REMOVE = "remove"
    GENERALIZE = "generalize"
    SUBSTITUTE = "substitute"


@dataclass(frozen=True)
class AnonymizationRule:
    """Strategy to apply to one field.

    Attributes:
        field_name: Field the rule applies to.
        strategy: Strategy to apply.
        preserve_format: Keep separators and character classes.
        custom_pattern: Replacement text (substitute) or mask character.
        preserve_length: Keep the original length (randomize).
    """

    field_name: str
    strategy: AnonymizationStrategy
    preserve_format: bool = False
    custom_pattern: str | None = None
    preserve_length: bool = False


def apply_anonymization_strategy(value: Any, rule: AnonymizationRule) -> Any:
    """Anonymize a value according to a rule.

    Args:
        value: Original value (None passes through).
        rule: Rule to apply.

    Returns:
        Anonymized value.
    """
    if value is None:
        return None

    strategy = AnonymizationStrategy(rule.strategy)
    if strategy == AnonymizationStrategy.HASH:
        return CryptoGateway.sha256(str(value))
    if strategy == AnonymizationStrategy.RANDOMIZE:
        return _randomize(str(value), rule)
    if strategy == AnonymizationStrategy.MASK:
        return _mask(str(value), rule)
    if strategy == AnonymizationStrategy.REMOVE:
        return None
    if strategy == AnonymizationStrategy.GENERALIZE:
        return generalize_field(value, rule.field_name)
    return _substitute(value, rule)


def _randomize(text: str, rule: AnonymizationRule) -> str:
    """Random replacement, optionally shaped like the original."""
    if rule.preserve_format:
        return "".join(_random_like(char) for char in text)
    if rule.preserve_length:
        alphabet = string.ascii_letters + string.digits
        return "".join(secrets.choice(alphabet) for _ in text)
    return str(uuid.uuid4())


def _random_like(char: str) -> str:
    """Random character of the same class (digit, lower, upper)."""
    if char.isdigit():
        return secrets.choice(string.digits)
    if char.isalpha():
        letter = secrets.choice(string.ascii_lowercase)
        return letter.upper() if char.isupper() else letter
    return char


def _mask(text: str, rule: AnonymizationRule) -> str:
    """Keep the first and last characters, mask the interior."""
    mask_char = rule.custom_pattern[0] if rule.custom_pattern else DEFAULT_MASK_CHAR
    if len(text) <= 2:
        return mask_char * len(text)

    interior = text[1:-1]
    if rule.preserve_format:
        masked = "".join(char if not char.isalnum() else mask_char for char in interior)
    else:
        masked = mask_char * len(interior)
    return f"{text[0]}{masked}{text[-1]}"


def _substitute(value: Any, rule: AnonymizationRule) -> str:
    """Constant replacement chosen from the field name or the value."""
    if rule.custom_pattern:
        return rule.custom_pattern

    for haystack in (rule.field_name.lower(), str(value).lower()):
        for keyword, replacement in SUBSTITUTIONS:
            if keyword in haystack:
                return replacement
    return ANONYMIZED_MARKER


def generalize_field(value: Any, field_name: str) -> Any:
    """Replace a precise value with a coarser bucket.

    Args:
        value: Original value.
        field_name: Field the value belongs to.

    Returns:
        Generalized value.
    """
    if value is None:
        return None

    if field_name == "age":
        return _age_bucket(int(value))
    if field_name == "birth_date":
        return _year_start(value)
    if field_name == "grade_level":
        return value
    if field_name == "completion_rate":
        return _completion_band(float(value))
    if field_name == "avg_score":
        return int(math.floor(float(value) / 10 + 0.5) * 10)
    if field_name in ("duration_seconds", "time_spent_seconds"):
        return int(value) // 60 * 60
    return GENERALIZED_MARKER


def _completion_band(rate: float) -> str:
    """Band of a completion rate (0..1)."""
    if rate < 0.25:
        return "low"
    if rate < 0.75:
        return "medium"
    return "high"


def _age_bucket(age: int) -> str:
    """Age range of an age."""
    for upper, bucket in AGE_BUCKETS:
        if age < upper:
            return bucket
    return "15+"


def _year_start(value: Any) -> Any:
    """January 1st of the same year, in the input's type."""
    if isinstance(value, datetime):
        return value.replace(month=1, day=1, hour=0, minute=0, second=0, microsecond=0)
    if isinstance(value, date):
        return date(value.year, 1, 1)
    parsed = date.fromisoformat(str(value)[:10])
    return date(parsed.year, 1, 1).isoformat()
