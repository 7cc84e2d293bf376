"""
Identifier & Validation Kernel

Shared validators used at the boundary of every public operation.

DESIGN DECISION: Each validator checks rules in a fixed order:

1. REQUIRED   - the value is present at all
2. WRONG_TYPE - the value has the expected Python type
3. EMPTY      - strings are non-blank after trimming
4. MALFORMED  - the value parses (id format, date format, decimals)
5. RANGE      - the parsed value is within bounds

The first violated rule raises InvalidArgument with a stable message and
the rule attached. Callers classify errors by that rule (or by the exact
text, for older clients), so the wording here must not drift.

IMPORTANT: Validators never silently fix input. Trimming whitespace and
lower-casing ids are the only normalisations applied.
"""

import re
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable
from uuid import uuid4

from splitledger.errors import ErrorRule, InvalidArgument


OBJECT_ID_PATTERN = re.compile(r"^[0-9a-f]{24}$")
DATE_PATTERN = re.compile(r"^\d{2}/\d{2}/\d{4}$")
PERSON_NAME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z'\-]*$")
LOGIN_HANDLE_PATTERN = re.compile(r"^[A-Za-z0-9]+$")

MONEY_QUANTUM = Decimal("0.01")
DATE_FORMAT = "%m/%d/%Y"

GROUP_NAME_MIN = 5
GROUP_NAME_MAX = 50
GROUP_DESCRIPTION_MAX = 20000


def new_id() -> str:
    """Generate a canonical 24-character hex identifier."""
    return uuid4().hex[:24]


def to_money(value: Any) -> Decimal:
    """Quantize a number to two decimal places (half-up)."""
    if isinstance(value, Decimal):
        amount = value
    else:
        amount = Decimal(str(value))
    return amount.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def format_date(value: date) -> str:
    """Render a date the way snapshots and change-log details store it."""
    return value.strftime(DATE_FORMAT)


def validate_string(value: Any, label: str) -> str:
    """Validate a required, non-blank string and return it trimmed."""
    if value is None:
        raise InvalidArgument(f"{label} is required.", field=label, rule=ErrorRule.REQUIRED)
    if not isinstance(value, str):
        raise InvalidArgument(f"{label} must be a string.", field=label, rule=ErrorRule.WRONG_TYPE)
    value = value.strip()
    if not value:
        raise InvalidArgument(f"{label} cannot be empty.", field=label, rule=ErrorRule.EMPTY)
    return value


def validate_id(value: Any, label: str = "Object") -> str:
    """
    Validate a canonical identifier.

    Args:
        value: Candidate id
        label: Entity name used in messages ("Group" -> "Group ID is required.")

    Returns:
        The trimmed, lower-cased id

    Raises:
        InvalidArgument: If the id is missing, not a string, blank or malformed
    """
    field = f"{label} ID"
    if value is None:
        raise InvalidArgument(f"{field} is required.", field=field, rule=ErrorRule.REQUIRED)
    if not isinstance(value, str):
        raise InvalidArgument(f"{field} must be a string.", field=field, rule=ErrorRule.WRONG_TYPE)
    value = value.strip()
    if not value:
        raise InvalidArgument(
            f"{field} cannot be an empty string or just spaces.",
            field=field,
            rule=ErrorRule.EMPTY,
        )
    value = value.lower()
    if not OBJECT_ID_PATTERN.match(value):
        raise InvalidArgument(f"{field} is not a valid ID.", field=field, rule=ErrorRule.MALFORMED)
    return value


def validate_id_list(values: Any, label: str) -> list[str]:
    """Validate every id in a list, preserving order."""
    if values is None:
        raise InvalidArgument(f"{label} IDs are required.", field=label, rule=ErrorRule.REQUIRED)
    if not isinstance(values, (list, tuple)):
        raise InvalidArgument(f"{label} IDs must be a list.", field=label, rule=ErrorRule.WRONG_TYPE)
    return [validate_id(value, label) for value in values]


def _parse_decimal(value: Any) -> Decimal:
    # bool is an int subclass; it is never a valid amount
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        raise TypeError(type(value).__name__)
    amount = value if isinstance(value, Decimal) else Decimal(str(value))
    if not amount.is_finite():
        raise TypeError("non-finite")
    return amount


def _has_at_most_two_decimals(amount: Decimal) -> bool:
    try:
        return amount == amount.quantize(MONEY_QUANTUM)
    except InvalidOperation:
        return False


def validate_money(value: Any, label: str = "Cost") -> Decimal:
    """
    Validate a positive monetary amount with at most two decimal places.

    Returns:
        The amount as a Decimal quantized to 0.01
    """
    if value is None:
        raise InvalidArgument(f"{label} is required.", field=label, rule=ErrorRule.REQUIRED)
    try:
        amount = _parse_decimal(value)
    except TypeError:
        raise InvalidArgument(f"{label} must be a number.", field=label, rule=ErrorRule.WRONG_TYPE)
    if not _has_at_most_two_decimals(amount):
        raise InvalidArgument(
            f"{label} should be a number with up to 2 decimal places.",
            field=label,
            rule=ErrorRule.MALFORMED,
        )
    if amount <= 0:
        raise InvalidArgument(
            f"{label} must be greater than 0.",
            field=label,
            rule=ErrorRule.OUT_OF_RANGE,
        )
    return to_money(amount)


def validate_payment_amount(value: Any) -> Decimal:
    """Validate a payment amount: a non-negative number with at most two decimals."""
    try:
        amount = _parse_decimal(value)
    except TypeError:
        rule = ErrorRule.REQUIRED if value is None else ErrorRule.WRONG_TYPE
        raise InvalidArgument("Invalid payment amount", field="amount", rule=rule)
    if amount < 0 or not _has_at_most_two_decimals(amount):
        raise InvalidArgument("Invalid payment amount", field="amount", rule=ErrorRule.OUT_OF_RANGE)
    return to_money(amount)


def validate_date(value: Any, label: str = "Deadline") -> date:
    """
    Validate a calendar date.

    Accepts a date object or an MM/DD/YYYY string.
    """
    if value is None:
        raise InvalidArgument(f"{label} is required.", field=label, rule=ErrorRule.REQUIRED)
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise InvalidArgument(f"{label} must be a string.", field=label, rule=ErrorRule.WRONG_TYPE)
    value = value.strip()
    if not value:
        raise InvalidArgument(f"{label} cannot be empty.", field=label, rule=ErrorRule.EMPTY)
    if not DATE_PATTERN.match(value):
        raise InvalidArgument(f"{label} is an invalid date.", field=label, rule=ErrorRule.MALFORMED)
    try:
        return datetime.strptime(value, DATE_FORMAT).date()
    except ValueError:
        raise InvalidArgument(f"{label} is an invalid date.", field=label, rule=ErrorRule.MALFORMED)


def validate_person_name(value: Any, label: str) -> str:
    """Validate a first or last name: 2-20 letters (apostrophes and hyphens allowed)."""
    value = validate_string(value, label)
    if not 2 <= len(value) <= 20:
        raise InvalidArgument(
            f"{label} must be 2-20 characters.",
            field=label,
            rule=ErrorRule.OUT_OF_RANGE,
        )
    if not PERSON_NAME_PATTERN.match(value):
        raise InvalidArgument(
            f"{label} may only contain letters.",
            field=label,
            rule=ErrorRule.MALFORMED,
        )
    return value


def validate_login_handle(value: Any) -> str:
    """Validate a login handle and return it lower-cased."""
    value = validate_string(value, "userId")
    if not 5 <= len(value) <= 10:
        raise InvalidArgument(
            "userId must be 5-10 characters.",
            field="userId",
            rule=ErrorRule.OUT_OF_RANGE,
        )
    if not LOGIN_HANDLE_PATTERN.match(value):
        raise InvalidArgument(
            "userId may only contain letters and numbers.",
            field="userId",
            rule=ErrorRule.MALFORMED,
        )
    return value.lower()


def validate_password(value: Any) -> str:
    """Validate password strength. The password is never trimmed."""
    if value is None:
        raise InvalidArgument("Password is required.", field="password", rule=ErrorRule.REQUIRED)
    if not isinstance(value, str):
        raise InvalidArgument("Password must be a string.", field="password", rule=ErrorRule.WRONG_TYPE)
    checks = [
        (len(value) >= 8, "Password must be at least 8 characters.", ErrorRule.OUT_OF_RANGE),
        (" " not in value, "Password cannot contain spaces.", ErrorRule.MALFORMED),
        (any(c.isupper() for c in value), "Password needs an uppercase letter.", ErrorRule.MALFORMED),
        (any(c.isdigit() for c in value), "Password needs a number.", ErrorRule.MALFORMED),
        (any(not c.isalnum() for c in value), "Password needs a special character.", ErrorRule.MALFORMED),
    ]
    for passed, message, rule in checks:
        if not passed:
            raise InvalidArgument(message, field="password", rule=rule)
    return value


def validate_group_name(value: Any) -> str:
    value = validate_string(value, "Group Name")
    if not GROUP_NAME_MIN <= len(value) <= GROUP_NAME_MAX:
        raise InvalidArgument(
            "Invalid group name length",
            field="Group Name",
            rule=ErrorRule.OUT_OF_RANGE,
        )
    return value


def validate_group_description(value: Any) -> str:
    value = validate_string(value, "Group Description")
    if len(value) > GROUP_DESCRIPTION_MAX:
        raise InvalidArgument(
            "Invalid group description length",
            field="Group Description",
            rule=ErrorRule.OUT_OF_RANGE,
        )
    return value


def validate_currency_code(value: Any, supported: Iterable[str]) -> str:
    """Validate a currency code against the converter's supported set."""
    value = validate_string(value, "Currency").upper()
    if value not in set(supported):
        raise InvalidArgument(
            f"Invalid currency code: {value}",
            field="Currency",
            rule=ErrorRule.OUT_OF_RANGE,
        )
    return value
