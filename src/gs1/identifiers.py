"""GS1 identifier codec.

Reconstructs canonical, check-digited GLN / GTIN / SSCC codes from the two
encodings found in EPCIS documents:

- EPC pure-identity URNs, e.g. ``urn:epc:id:sgln:0614141.12345.0``
- GS1 Digital Link URIs, e.g. ``https://id.gs1.org/414/0614141123452``

Every function here is pure. Unparseable input never raises; it yields an
empty string and the caller decides whether that matters (usually by
falling back to the raw value for display).

Example:
    >>> parse_location("urn:epc:id:sgln:030001.111111.0")
    '0300011111116'
    >>> parse_trade_item("urn:epc:id:sgtin:0368462.050165.123456")
    '00368462501658'
"""

from dataclasses import dataclass
from enum import Enum

SGLN_PREFIX = "urn:epc:id:sgln:"
SGTIN_PREFIX = "urn:epc:id:sgtin:"
SGTIN_PATTERN_PREFIX = "urn:epc:idpat:sgtin:"
SSCC_PREFIX = "urn:epc:id:sscc:"

# Digital Link application identifiers
AI_SSCC = "/00/"
AI_GTIN = "/01/"
AI_SHIP_TO_GLN = "/414/"
AI_LOCATION_GLN = "/417/"

GLN_LENGTH = 13
GTIN_LENGTH = 14
SSCC_LENGTH = 18

_DIGITS = frozenset("0123456789")


class IdentifierKind(str, Enum):
    """Kinds of GS1 identifiers handled by the codec."""

    location = "location"  # GLN
    trade_item = "trade_item"  # GTIN
    logistic_unit = "logistic_unit"  # SSCC


@dataclass(frozen=True)
class Identifier:
    """A parsed GS1 identifier in canonical numeric form.

    Attributes:
        kind: Which GS1 key this is.
        code: Fixed-width digit string, check digit included where the
            calling convention requires one.
    """

    kind: IdentifierKind
    code: str

    def __str__(self) -> str:
        return self.code


def check_digit(base: str) -> str:
    """Compute the GS1 Modulo-10 check digit for a numeric base.

    Digits are weighted from the right: the rightmost digit and every digit
    at an even distance from it get weight 3, the others weight 1.
    Non-digit characters are skipped.

    Args:
        base: Identifier digits without the check digit.

    Returns:
        A single-character digit string, or "" for empty input.

    Example:
        >>> check_digit("030001111111")
        '6'
    """
    if not base:
        return ""

    total = 0
    for distance, char in enumerate(reversed(base)):
        if char not in _DIGITS:
            continue
        weight = 3 if distance % 2 == 0 else 1
        total += int(char) * weight

    return str((10 - total % 10) % 10)


def is_valid_check_digit(code: str) -> bool:
    """Return True when the last digit of ``code`` is its GS1 check digit."""
    if len(code) < 2 or not code.isdigit():
        return False
    return check_digit(code[:-1]) == code[-1]


def normalize_length(value: str, length: int) -> str:
    """Left-pad with zeros, or keep the rightmost ``length`` characters.

    GS1 numeric fields are right-justified, so over-long input loses its
    leading characters, never its trailing ones.
    """
    if len(value) >= length:
        return value[len(value) - length:]
    return value.zfill(length)


def _urn_segments(value: str, prefix: str) -> list[str]:
    return value[len(prefix):].split(".")


def _digital_link_value(value: str, ai: str) -> str:
    """Return the path element following a Digital Link AI, or ""."""
    index = value.find(ai)
    if index == -1:
        return ""
    rest = value[index + len(ai):]
    return rest.split("/", 1)[0]


def parse_location(value: str) -> str:
    """Parse an SGLN URN or Digital Link (AI 414/417) into a 13-digit GLN.

    Only the company prefix and location reference of the URN are used;
    the extension is discarded. A Digital Link GLN is already check-digited
    and is returned unchanged.

    Returns:
        The GLN, or "" when the input is not recognized.
    """
    if value.startswith(SGLN_PREFIX):
        segments = _urn_segments(value, SGLN_PREFIX)
        if len(segments) < 2:
            return ""
        base = normalize_length(segments[0] + segments[1], GLN_LENGTH - 1)
        return base + check_digit(base)

    for ai in (AI_SHIP_TO_GLN, AI_LOCATION_GLN):
        gln = _digital_link_value(value, ai)
        if len(gln) == GLN_LENGTH and gln.isdigit():
            return gln

    return ""


def parse_trade_item(value: str) -> str:
    """Parse an SGTIN URN (serial or ``idpat`` wildcard) or AI 01 link into a GTIN-14.

    The first character of the second URN segment is the indicator digit;
    an empty segment means indicator "0" with no item reference. The serial
    segment never influences the result.

    Returns:
        The GTIN, or "" when the input is not recognized.
    """
    for prefix in (SGTIN_PREFIX, SGTIN_PATTERN_PREFIX):
        if value.startswith(prefix):
            segments = _urn_segments(value, prefix)
            if len(segments) < 2:
                return ""
            company_prefix = segments[0]
            indicator, item_ref = "0", ""
            if segments[1]:
                indicator, item_ref = segments[1][0], segments[1][1:]
            base = normalize_length(
                indicator + company_prefix + item_ref, GTIN_LENGTH - 1
            )
            return base + check_digit(base)

    gtin = _digital_link_value(value, AI_GTIN)
    if len(gtin) >= GTIN_LENGTH and gtin[:GTIN_LENGTH].isdigit():
        return gtin[:GTIN_LENGTH]

    return ""


def parse_logistic_unit(value: str, include_check_digit: bool = True) -> str:
    """Parse an SSCC URN or AI 00 link.

    Args:
        value: ``urn:epc:id:sscc:CP.SERIAL`` or a Digital Link URI.
        include_check_digit: When True (identifier use) the 18-digit SSCC
            is returned. When False (inbound container extraction) the
            17-digit form without check digit is returned.

    Returns:
        The SSCC, or "" when the input is not recognized.
    """
    if value.startswith(SSCC_PREFIX):
        segments = _urn_segments(value, SSCC_PREFIX)
        if len(segments) < 2:
            return ""
        base = normalize_length(segments[0] + segments[1], SSCC_LENGTH - 1)
        if not include_check_digit:
            return base
        return base + check_digit(base)

    sscc = _digital_link_value(value, AI_SSCC)
    if len(sscc) >= SSCC_LENGTH and sscc[:SSCC_LENGTH].isdigit():
        if not include_check_digit:
            return sscc[:SSCC_LENGTH - 1]
        return sscc[:SSCC_LENGTH]

    return ""


def extract_container_code(value: str) -> str:
    """Container code used when matching inbound aggregation parents.

    Inbound extraction keys containers on the unchecked 17-digit SSCC.
    """
    return parse_logistic_unit(value, include_check_digit=False)


def strip_serial(value: str) -> str:
    """Drop the serial from an SGTIN URN.

    ``urn:epc:id:sgtin:0614141.012345.400`` becomes
    ``urn:epc:id:sgtin:0614141.012345`` so serialized units of the same
    product group together.
    """
    if not value.startswith(SGTIN_PREFIX):
        return ""
    segments = _urn_segments(value, SGTIN_PREFIX)
    if len(segments) < 2:
        return ""
    return f"{SGTIN_PREFIX}{segments[0]}.{segments[1]}"


def parse_identifier(value: str) -> Identifier | None:
    """Parse any supported encoding into a typed Identifier.

    Tries location, trade item, then logistic unit. Returns None when no
    parser recognizes the input.
    """
    parsers = (
        (IdentifierKind.location, parse_location),
        (IdentifierKind.trade_item, parse_trade_item),
        (IdentifierKind.logistic_unit, parse_logistic_unit),
    )
    for kind, parser in parsers:
        code = parser(value)
        if code:
            return Identifier(kind=kind, code=code)
    return None


def location_or_raw(value: str) -> str:
    """GLN for display: the parsed code, or the raw value when unparseable."""
    return parse_location(value) or value
