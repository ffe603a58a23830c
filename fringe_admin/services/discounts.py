"""Offer pricing helpers."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping, Optional

from ..utils.dates import parse_datetime, utcnow


def is_offer_valid(offer: Mapping[str, Any], now: Optional[datetime] = None) -> bool:
    """Active, inside its validity window and below its usage limit."""

    if not offer.get('is_active'):
        return False
    now = now or utcnow()
    valid_from = parse_datetime(offer.get('valid_from'))
    valid_until = parse_datetime(offer.get('valid_until'))
    if valid_from and now < valid_from:
        return False
    if valid_until and now > valid_until:
        return False
    usage_limit = offer.get('usage_limit')
    if usage_limit is not None and (offer.get('usage_count') or 0) >= usage_limit:
        return False
    return True


def calculate_discounted_price(
    original_price: float, offer: Optional[Mapping[str, Any]], now: Optional[datetime] = None
) -> float:
    if not offer or not is_offer_valid(offer, now):
        return original_price

    value = float(offer.get('discount_value') or 0)
    if offer.get('discount_type') == 'percentage':
        discounted = original_price * (1 - value / 100)
    else:
        discounted = original_price - value
    return max(0.0, round(discounted, 2))


def calculate_discount_amount(
    original_price: float, offer: Optional[Mapping[str, Any]], now: Optional[datetime] = None
) -> float:
    return round(original_price - calculate_discounted_price(original_price, offer, now), 2)


def format_discount_text(offer: Mapping[str, Any]) -> str:
    value = float(offer.get('discount_value') or 0)
    shown = int(value) if value.is_integer() else value
    if offer.get('discount_type') == 'percentage':
        return f'{shown}% off'
    return f'${shown} off'
