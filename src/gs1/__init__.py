"""GS1 identifier codec and business-step vocabulary."""

from src.gs1.identifiers import (
    Identifier,
    IdentifierKind,
    check_digit,
    extract_container_code,
    is_valid_check_digit,
    location_or_raw,
    normalize_length,
    parse_identifier,
    parse_location,
    parse_logistic_unit,
    parse_trade_item,
    strip_serial,
)
from src.gs1.vocabulary import (
    BizStep,
    classify_biz_step,
    is_receiving_biz_step,
    is_shipping_biz_step,
)

__all__ = [
    # Identifiers
    "Identifier",
    "IdentifierKind",
    "check_digit",
    "is_valid_check_digit",
    "normalize_length",
    "parse_location",
    "parse_trade_item",
    "parse_logistic_unit",
    "extract_container_code",
    "strip_serial",
    "parse_identifier",
    "location_or_raw",
    # Vocabulary
    "BizStep",
    "classify_biz_step",
    "is_shipping_biz_step",
    "is_receiving_biz_step",
]
