"""
Core validators for canonical data rows.
Pure functions - no IO, network, or side effects.
"""

import math
from datetime import date, datetime
from typing import Dict, Any


class ValidationError(ValueError):
    """Raised when data validation fails."""
    pass


def _check_positive_number(row: Dict[str, Any], field: str) -> None:
    value = row[field]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{field} must be numeric, got {type(value)}")

    if not math.isfinite(value):
        raise ValidationError(f"{field} must be finite, got {value}")

    if value <= 0:
        raise ValidationError(f"{field} must be positive, got {value}")


def validate_prices_row(row: Dict[str, Any]) -> None:
    """
    Validate a canonical prices row.

    Args:
        row: Dictionary containing price data

    Raises:
        ValidationError: If validation fails
    """
    required_keys = {
        'ticker', 'date', 'open', 'high', 'low', 'close',
        'volume', 'source', 'as_of', 'ingested_at'
    }

    missing = required_keys - set(row.keys())
    if missing:
        raise ValidationError(f"Missing required keys: {missing}")

    if not isinstance(row['ticker'], str):
        raise ValidationError(f"ticker must be string, got {type(row['ticker'])}")

    if not isinstance(row['date'], date):
        raise ValidationError(f"date must be date, got {type(row['date'])}")

    if not isinstance(row['as_of'], date):
        raise ValidationError(f"as_of must be date, got {type(row['as_of'])}")

    if not isinstance(row['ingested_at'], datetime):
        raise ValidationError(f"ingested_at must be datetime, got {type(row['ingested_at'])}")

    if not isinstance(row['source'], str):
        raise ValidationError(f"source must be string, got {type(row['source'])}")

    for field in ['open', 'high', 'low', 'close']:
        _check_positive_number(row, field)

    if row.get('adj_close') is not None:
        _check_positive_number(row, 'adj_close')

    volume = row['volume']
    if not isinstance(volume, int):
        raise ValidationError(f"volume must be integer, got {type(volume)}")

    if volume < 0:
        raise ValidationError(f"volume must be non-negative, got {volume}")

    # Price logic validations
    high = row['high']
    low = row['low']

    if high < low:
        raise ValidationError(f"high ({high}) must be >= low ({low})")

    for field in ['open', 'close']:
        if not low <= row[field] <= high:
            raise ValidationError(f"{field} ({row[field]}) must be within [low, high] ({low}, {high})")


def validate_current_price_row(row: Dict[str, Any]) -> None:
    """
    Validate a canonical current price row.

    Raises:
        ValidationError: If validation fails
    """
    required_keys = {'ticker', 'price', 'updated_at', 'source'}

    missing = required_keys - set(row.keys())
    if missing:
        raise ValidationError(f"Missing required keys: {missing}")

    if not isinstance(row['ticker'], str) or not row['ticker']:
        raise ValidationError(f"ticker must be non-empty string, got {row['ticker']!r}")

    if not isinstance(row['updated_at'], datetime):
        raise ValidationError(f"updated_at must be datetime, got {type(row['updated_at'])}")

    _check_positive_number(row, 'price')
