"""Identifier and validation kernel."""

from splitledger.validation.validator import (
    DATE_FORMAT,
    MONEY_QUANTUM,
    OBJECT_ID_PATTERN,
    format_date,
    new_id,
    to_money,
    validate_currency_code,
    validate_date,
    validate_group_description,
    validate_group_name,
    validate_id,
    validate_id_list,
    validate_login_handle,
    validate_money,
    validate_password,
    validate_payment_amount,
    validate_person_name,
    validate_string,
)

__all__ = [
    "DATE_FORMAT",
    "MONEY_QUANTUM",
    "OBJECT_ID_PATTERN",
    "format_date",
    "new_id",
    "to_money",
    "validate_currency_code",
    "validate_date",
    "validate_group_description",
    "validate_group_name",
    "validate_id",
    "validate_id_list",
    "validate_login_handle",
    "validate_money",
    "validate_password",
    "validate_payment_amount",
    "validate_person_name",
    "validate_string",
]
