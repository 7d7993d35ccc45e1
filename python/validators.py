"""
Input validation for registrations, missing reports, searches and confirmations.

Every public operation of the matching core validates its input here before
touching the datastore. Failures raise InputValidationError carrying a field
name, a machine-readable code and a suggestion for the caller.
"""

import logging
import re
import unicodedata
from typing import Any, Optional

from config_manager import InputValidationConfig
from database.models import Gender, NIC_PATTERN, normalize_nic
from text_utils import sanitize_for_logging

logger = logging.getLogger(__name__)

# Sri Lankan phone numbers: 10 digits with a leading zero, or +94 and 9 digits
PHONE_PATTERN = re.compile(r'^(0\d{9}|\+94\d{9})$')

# Zero-width joiners are part of Sinhala conjunct spelling
_ALLOWED_FORMAT_CHARS = {'\u200c', '\u200d'}

MIN_AGE = 0
MAX_AGE = 120


class InputValidationError(ValueError):
    """Raised when input validation fails

    Attributes:
        field: The field that failed validation
        code: Error code for programmatic handling
        suggestion: Optional suggestion for fixing the error
    """
    def __init__(self, message: str, field: str = "unknown", code: str = "VALIDATION_ERROR", suggestion: str = ""):
        self.field = field
        self.code = code
        self.suggestion = suggestion
        super().__init__(message)


def validate_name(name: Optional[str], config: Optional[InputValidationConfig] = None,
                  field: str = "full_name") -> str:
    """Validate a person's name

    Names in any script are accepted; blocked characters and control
    characters are rejected.

    Args:
        name: Raw name as entered
        config: Validation settings (defaults used if omitted)
        field: Field name reported in errors

    Returns:
        The name with surrounding whitespace removed

    Raises:
        InputValidationError: If validation fails
    """
    iv_config = config or InputValidationConfig()
    name = name or ""
    name_stripped = name.strip()

    if len(name_stripped) < iv_config.name_min_length:
        raise InputValidationError(
            f"Name too short ({len(name_stripped)} chars, minimum {iv_config.name_min_length})",
            field=field,
            code="NAME_TOO_SHORT",
            suggestion=f"Provide a name with at least {iv_config.name_min_length} characters"
        )

    if len(name_stripped) > iv_config.name_max_length:
        raise InputValidationError(
            f"Name too long ({len(name_stripped)} chars, maximum {iv_config.name_max_length})",
            field=field,
            code="NAME_TOO_LONG",
            suggestion=f"Shorten the name to {iv_config.name_max_length} characters or less"
        )

    found_blocked = [c for c in name_stripped if c in iv_config.blocked_characters]
    if found_blocked:
        logger.warning("SECURITY: Blocked characters detected in %s input: %s",
                       field, sanitize_for_logging(name_stripped))
        raise InputValidationError(
            f"Name contains blocked characters: {found_blocked}",
            field=field,
            code="BLOCKED_CHARACTERS",
            suggestion="Remove special characters like < > { } [ ] | \\ ; ` $"
        )

    for char in name_stripped:
        if unicodedata.category(char).startswith('C') and char not in _ALLOWED_FORMAT_CHARS:
            logger.warning("SECURITY: Control character detected in %s: %s",
                           field, sanitize_for_logging(name_stripped))
            raise InputValidationError(
                f"Name contains invalid control character (code: {ord(char)})",
                field=field,
                code="CONTROL_CHARACTER",
                suggestion="Remove invisible or control characters from the name"
            )

    return name_stripped


def validate_age(age: Any, field: str = "age") -> int:
    """Validate an age in whole years (0-120)."""
    if isinstance(age, bool) or not isinstance(age, int):
        raise InputValidationError(
            f"Age must be a whole number, got {type(age).__name__}",
            field=field,
            code="INVALID_AGE",
            suggestion="Provide the age in years, e.g. 34"
        )
    if not MIN_AGE <= age <= MAX_AGE:
        raise InputValidationError(
            f"Age out of range ({age}, expected {MIN_AGE}-{MAX_AGE})",
            field=field,
            code="AGE_OUT_OF_RANGE",
            suggestion=f"Provide an age between {MIN_AGE} and {MAX_AGE}"
        )
    return age


def validate_gender(gender: Any, field: str = "gender") -> Gender:
    """Coerce a gender value (enum or string) into Gender."""
    if isinstance(gender, Gender):
        return gender
    try:
        return Gender(str(gender).strip().upper())
    except ValueError:
        raise InputValidationError(
            f"Unknown gender: {sanitize_for_logging(str(gender))}",
            field=field,
            code="INVALID_GENDER",
            suggestion="Use one of: MALE, FEMALE, OTHER"
        )


def validate_nic(nic: Optional[str], field: str = "nic", required: bool = False) -> Optional[str]:
    """Validate a Sri Lankan NIC and return it in canonical upper-case form

    Old-format NICs are 9 digits followed by V or X; new-format NICs are
    12 digits. Lower-case v/x is accepted.

    Args:
        nic: Raw NIC (may be None or blank when not required)
        field: Field name reported in errors
        required: Whether a blank NIC is an error

    Returns:
        Canonical NIC, or None when blank and not required
    """
    canonical = normalize_nic(nic)
    if not canonical:
        if required:
            raise InputValidationError(
                "NIC number is required",
                field=field,
                code="NIC_REQUIRED",
                suggestion="Provide a NIC such as 123456789V or 200012345678"
            )
        return None

    if not NIC_PATTERN.match(canonical):
        raise InputValidationError(
            f"Invalid NIC format: '{sanitize_for_logging(canonical)}'",
            field=field,
            code="INVALID_NIC_FORMAT",
            suggestion="Use 9 digits followed by V or X, or 12 digits"
        )
    return canonical


def validate_phone(phone: Optional[str], field: str = "reporter_phone",
                   required: bool = True) -> Optional[str]:
    """Validate a phone number, ignoring spaces and hyphens."""
    cleaned = re.sub(r'[\s-]', '', phone or '')
    if not cleaned:
        if required:
            raise InputValidationError(
                "Phone number is required",
                field=field,
                code="PHONE_REQUIRED",
                suggestion="Provide a contact number such as 0771234567"
            )
        return None

    if not PHONE_PATTERN.match(cleaned):
        raise InputValidationError(
            f"Invalid phone number: '{sanitize_for_logging(cleaned)}'",
            field=field,
            code="INVALID_PHONE",
            suggestion="Use 10 digits starting with 0, or +94 followed by 9 digits"
        )
    return cleaned


def validate_search_query(query: Optional[str], min_length: int = 2) -> str:
    """Validate a free-text name search query and return it trimmed and single-spaced."""
    stripped = " ".join((query or "").split())
    if len(stripped) < min_length:
        raise InputValidationError(
            f"Search query too short ({len(stripped)} chars, minimum {min_length})",
            field="query",
            code="QUERY_TOO_SHORT",
            suggestion=f"Enter at least {min_length} characters of the name"
        )
    return stripped


def validate_confidence(confidence: Any) -> float:
    """Validate a match confidence percentage (0-100)."""
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        raise InputValidationError(
            "Confidence must be a number",
            field="confidence",
            code="INVALID_CONFIDENCE",
            suggestion="Provide a value between 0 and 100"
        )
    if confidence != confidence or not 0 <= confidence <= 100:
        raise InputValidationError(
            f"Confidence out of range ({confidence}, expected 0-100)",
            field="confidence",
            code="CONFIDENCE_OUT_OF_RANGE",
            suggestion="Provide a value between 0 and 100"
        )
    return float(confidence)
