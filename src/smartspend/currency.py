"""
Amount parsing and currency formatting.

Parsing understands Turkish receipt conventions (``1.234,56``, ``*25,50``,
``₺`` / ``TL`` markers). Formatting only affects how derived amounts are
displayed and never feeds back into parsing.
"""

import re
import logging
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Dict, Optional, Union

from .text import normalize_numeric

logger = logging.getLogger(__name__)

CURRENCY_INFO: Dict[str, Dict[str, Union[str, int]]] = {
    'TRY': {'name': 'Turkish Lira', 'symbol': '₺', 'decimal_places': 2},
    'USD': {'name': 'US Dollar', 'symbol': '$', 'decimal_places': 2},
    'EUR': {'name': 'Euro', 'symbol': '€', 'decimal_places': 2},
    'GBP': {'name': 'British Pound', 'symbol': '£', 'decimal_places': 2},
}

# Locale -> (decimal separator, thousands separator, symbol first)
LOCALE_FORMATS = {
    'tr_TR': (',', '.', True),
    'en_US': ('.', ',', True),
    'en_GB': ('.', ',', True),
    'de_DE': (',', '.', False),
}

_CURRENCY_MARKERS = re.compile(r'(₺|\bTRY\b|\bTL\b|\$|€|£)', re.IGNORECASE)


def parse_amount(value: Union[str, int, float, Decimal, None]) -> Optional[Decimal]:
    """Parse a monetary amount written in Turkish or international notation.

    Args:
        value: Raw amount, e.g. "1.234,56", "*25,50", "125.50 TL", 12.5

    Returns:
        Decimal amount or None if the value cannot be parsed
    """
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))

    cleaned = _CURRENCY_MARKERS.sub('', normalize_numeric(value.strip()))
    cleaned = re.sub(r'[^\d.,\-]', '', cleaned)
    if not cleaned or not re.search(r'\d', cleaned):
        return None

    if ',' in cleaned and '.' in cleaned:
        # The right-most separator is the decimal separator
        if cleaned.rfind(',') > cleaned.rfind('.'):
            cleaned = cleaned.replace('.', '').replace(',', '.')
        else:
            cleaned = cleaned.replace(',', '')
    elif ',' in cleaned:
        parts = cleaned.split(',')
        if len(parts) == 2 and len(parts[1]) <= 2:
            cleaned = cleaned.replace(',', '.')
        else:
            cleaned = cleaned.replace(',', '')
    elif cleaned.count('.') > 1:
        # 1.234.567 style thousands grouping
        head, _, tail = cleaned.rpartition('.')
        if len(tail) == 3:
            cleaned = cleaned.replace('.', '')
        else:
            cleaned = head.replace('.', '') + '.' + tail
    elif '.' in cleaned:
        head, tail = cleaned.split('.')
        # "1.250" on a Turkish receipt is one thousand two hundred fifty
        if len(tail) == 3 and head not in ('', '0', '-'):
            cleaned = head + tail

    try:
        return Decimal(cleaned)
    except (InvalidOperation, ValueError) as e:
        logger.debug(f"Failed to parse amount '{value}': {e}")
        return None


def get_currency_info(currency_code: str) -> Dict[str, Union[str, int]]:
    """Get display information about a currency.

    Args:
        currency_code: 3-letter currency code

    Returns:
        Dictionary with name, symbol and decimal places
    """
    return CURRENCY_INFO.get(currency_code, {
        'name': currency_code,
        'symbol': currency_code,
        'decimal_places': 2
    })


def format_amount(amount: Union[Decimal, float, int], currency: str = 'TRY',
                  locale: str = 'tr_TR') -> str:
    """Format an amount for display, e.g. ``₺1.234,56``.

    Args:
        amount: Amount to format
        currency: Currency code
        locale: Locale name controlling separators and symbol position

    Returns:
        Formatted amount string
    """
    info = get_currency_info(currency)
    places = int(info['decimal_places'])
    decimal_sep, thousands_sep, symbol_first = LOCALE_FORMATS.get(locale, LOCALE_FORMATS['en_US'])

    quantum = Decimal(1).scaleb(-places)
    value = Decimal(str(amount)).quantize(quantum, rounding=ROUND_HALF_UP)
    sign = '-' if value < 0 else ''
    integer_part, _, fraction = f"{abs(value):.{places}f}".partition('.')

    groups = []
    while len(integer_part) > 3:
        groups.insert(0, integer_part[-3:])
        integer_part = integer_part[:-3]
    groups.insert(0, integer_part)
    number = thousands_sep.join(groups)
    if places:
        number = f"{number}{decimal_sep}{fraction}"

    symbol = str(info['symbol'])
    if symbol_first:
        return f"{sign}{symbol}{number}"
    return f"{sign}{number} {symbol}"
