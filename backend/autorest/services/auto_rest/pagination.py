"""
Pagination math shared by the query builders and the response envelope
"""
from typing import Any

MIN_PAGE_SIZE = 1
MAX_PAGE_SIZE = 200
DEFAULT_PAGE_SIZE = 25
# Largest offset every backend accepts as a signed 64-bit integer
MAX_OFFSET = 2 ** 63 - 1


def _to_int(value: Any):
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        try:
            return int(float(value))
        except (TypeError, ValueError, OverflowError):
            return None


def normalize_page(page: Any) -> int:
    """Pages start at 1; anything unparseable or smaller means page 1."""
    number = _to_int(page)
    return number if number is not None and number >= 1 else 1


def clamp_page_size(page_size: Any, default: int = DEFAULT_PAGE_SIZE) -> int:
    """Clamp to [1, 200]. Out-of-range values are clamped, never rejected."""
    number = _to_int(page_size)
    if number is None:
        number = default
    return max(MIN_PAGE_SIZE, min(number, MAX_PAGE_SIZE))


def compute_offset(page: Any, page_size: Any) -> int:
    """Rows to skip; pages past the largest offset read an empty page."""
    return min(MAX_OFFSET, max(0, (normalize_page(page) - 1) * clamp_page_size(page_size)))


def has_next(page: int, page_size: int, returned: int, total: int) -> bool:
    return (page - 1) * page_size + returned < total
