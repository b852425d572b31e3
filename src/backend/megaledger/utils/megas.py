"""
Data-bundle quantity helpers.

Confirmations state quantities in megabytes:
- "Megas: 1024 MB"
- "Dados 500MB"
- "2 048 MB" is NOT accepted (digits must be contiguous)
"""

from typing import Optional


MEGABYTES_PER_GIGABYTE = 1024


def parse_megabytes(value: str, max_megabytes: int = 50000) -> Optional[int]:
    """
    Parse a megabyte count, rejecting implausible values.

    Args:
        value: Digit string captured from a confirmation (e.g., "1024")
        max_megabytes: Upper bound; larger values are treated as OCR noise

    Returns:
        Integer megabytes or None if out of range (0, max_megabytes]

    Examples:
        >>> parse_megabytes("1024")
        1024
        >>> parse_megabytes("0")
        >>> parse_megabytes("999999")
    """
    if not value or not isinstance(value, str):
        return None

    cleaned = value.strip()
    if not cleaned.isdigit():
        return None

    megabytes = int(cleaned)
    if megabytes <= 0 or megabytes > max_megabytes:
        return None

    return megabytes


def format_megabytes(megabytes: int) -> str:
    """
    Format a megabyte count for chat messages.

    Examples:
        >>> format_megabytes(500)
        '500 MB'
        >>> format_megabytes(1536)
        '1.5 GB'
    """
    if megabytes is None:
        return '0 MB'

    if megabytes >= MEGABYTES_PER_GIGABYTE:
        gigabytes = megabytes / MEGABYTES_PER_GIGABYTE
        return f"{gigabytes:.1f} GB"

    return f"{megabytes:,} MB"
