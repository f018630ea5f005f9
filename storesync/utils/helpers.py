"""
Helper utilities
"""
from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Iterator, List


def safe_divide(numerator: float, denominator: float, default: float = 0.0) -> float:
    """Safely divide two numbers"""
    try:
        return numerator / denominator if denominator and denominator > 0 else default
    except (TypeError, ZeroDivisionError):
        return default


def round_money(value, places: int = 2) -> float:
    """Round half away from zero (Decimal ROUND_HALF_UP on the repr, not the binary float)."""
    if value is None:
        return 0.0
    try:
        quantum = Decimal(1).scaleb(-places)
        return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))
    except (InvalidOperation, ValueError):
        return 0.0


def sanitize_error(text, limit: int = 500) -> str:
    """Strip null bytes and truncate provider text before storing or returning it."""
    if text is None:
        return ""
    cleaned = str(text).replace("\x00", "")
    return cleaned[:limit]


def date_range(start: date, end: date) -> List[date]:
    """Inclusive list of calendar dates, oldest first."""
    if end < start:
        return []
    return [start + timedelta(days=i) for i in range((end - start).days + 1)]


def chunk_list(lst: List, chunk_size: int) -> List[List]:
    """Split list into chunks"""
    return [lst[i:i + chunk_size] for i in range(0, len(lst), chunk_size)]


def iter_chunks(values, chunk_size: int) -> Iterator[list]:
    """Yield successive chunks from any iterable."""
    batch = []
    for value in values:
        batch.append(value)
        if len(batch) >= chunk_size:
            yield batch
            batch = []
    if batch:
        yield batch
