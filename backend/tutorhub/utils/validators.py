import re
from typing import Tuple, Optional

SA_MOBILE_RE = re.compile(r'^(\+?27|0)(6[0-9]|7[0-9]|8[0-9])[0-9]{7}$')

def format_phone_to_27(phone: str) -> str:
    """
    Convert a South African phone number to 27XXXXXXXXX format for Clickatell.

    Handles formats like:
    - 0821234567 -> 27821234567
    - +27821234567 -> 27821234567
    - 27821234567 -> 27821234567
    - 821234567 -> 27821234567
    """
    # Remove spaces, dashes and brackets
    cleaned = re.sub(r'[\s\-\(\)]', '', phone)

    if cleaned.startswith('0'):
        return '27' + cleaned[1:]
    if cleaned.startswith('+27'):
        return cleaned[1:]
    if cleaned.startswith('27'):
        return cleaned
    return '27' + cleaned


def is_valid_sa_phone_number(phone: str) -> bool:
    """South African mobile number (06x/07x/08x) in local or international form"""
    if not phone:
        return False
    cleaned = re.sub(r'[\s\-\(\)]', '', phone)
    return bool(SA_MOBILE_RE.match(cleaned))


def validate_phone(phone: Optional[str]) -> Tuple[bool, Optional[str], Optional[str]]:
    """
    Validate an optional South African mobile number.

    Returns: (is_valid, formatted_phone, error_message)
    """
    if not phone:
        return True, None, None

    if not is_valid_sa_phone_number(phone):
        return False, None, "Phone must be a valid South African mobile number"

    return True, format_phone_to_27(phone), None

