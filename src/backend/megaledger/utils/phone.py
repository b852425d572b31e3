"""
Phone number and chat id helpers.

The gateway reports authors as chat ids ("258841234567@c.us"), sometimes
with a device suffix ("258841234567-1612345678@g.us") or a doubled country
code. The ledger keys buyers by "+258" plus the 9-digit subscriber number.
"""

import re

from megaledger.config import settings

CHAT_ID_SUFFIXES = ('@c.us', '@g.us', '@s.whatsapp.net')
LOCAL_NUMBER_LENGTH = 9


def strip_chat_suffix(chat_id: str) -> str:
    """Remove the gateway domain suffix from a chat id."""
    for suffix in CHAT_ID_SUFFIXES:
        chat_id = chat_id.replace(suffix, '')
    return chat_id


def sender_digits(raw_id: str) -> str:
    """Digits of an author id without suffixes, e.g. '258841234567'."""
    cleaned = strip_chat_suffix(raw_id or '')
    if '-' in cleaned:
        cleaned = cleaned.split('-')[0]
    return re.sub(r'\D', '', cleaned)


def local_subscriber_number(raw_id: str, country_code: str = None) -> str:
    """
    Reduce an author id to the 9-digit local subscriber number.

    Examples:
        >>> local_subscriber_number('258841234567@c.us')
        '841234567'
        >>> local_subscriber_number('258258841234567')
        '841234567'
    """
    country_code = country_code or settings.COUNTRY_CODE
    digits = sender_digits(raw_id)

    doubled = country_code * 2
    if digits.startswith(doubled):
        digits = digits[len(country_code):]

    if len(digits) > LOCAL_NUMBER_LENGTH:
        digits = digits[-LOCAL_NUMBER_LENGTH:]

    return digits


def to_phone_number(local_number: str, country_code: str = None) -> str:
    """Ledger key for a local subscriber number, e.g. '+258841234567'."""
    country_code = country_code or settings.COUNTRY_CODE
    return f"+{country_code}{local_number}"


def to_chat_id(phone: str) -> str:
    """User chat id for a phone number, used for mentions."""
    return f"{phone.lstrip('+')}@c.us"


def is_valid_local_number(phone: str, country_code: str = None) -> bool:
    """
    True if the number belongs to the home country.

    Requires the country code prefix followed by at least 9 digits.
    """
    country_code = country_code or settings.COUNTRY_CODE
    digits = re.sub(r'\D', '', phone or '')
    return digits.startswith(country_code) and len(digits) >= len(country_code) + LOCAL_NUMBER_LENGTH
