from typing import Mapping
from app.core.config import settings

# ISO 4217 minor units. Anything not listed falls back to
# settings.DEFAULT_DECIMAL_PLACES.
ISO_4217_DECIMALS: dict[str, int] = {
    # zero decimal
    "BIF": 0,
    "CLP": 0,
    "DJF": 0,
    "GNF": 0,
    "ISK": 0,
    "JPY": 0,
    "KMF": 0,
    "KRW": 0,
    "PYG": 0,
    "RWF": 0,
    "UGX": 0,
    "VND": 0,
    "VUV": 0,
    "XAF": 0,
    "XOF": 0,
    "XPF": 0,
    # three decimal
    "BHD": 3,
    "IQD": 3,
    "JOD": 3,
    "KWD": 3,
    "LYD": 3,
    "OMR": 3,
    "TND": 3,
    # two decimal
    "USD": 2,
    "EUR": 2,
    "GBP": 2,
    "AUD": 2,
    "CAD": 2,
    "CHF": 2,
    "CNY": 2,
    "HKD": 2,
    "INR": 2,
    "MXN": 2,
    "NZD": 2,
    "SEK": 2,
    "SGD": 2,
    "THB": 2,
}


def get_decimal_places(
    currency_code: str,
    table: Mapping[str, int] | None = None,
) -> int:
    lookup = ISO_4217_DECIMALS if table is None else table
    return lookup.get(currency_code.upper(), settings.DEFAULT_DECIMAL_PLACES)


def supported_currencies() -> list[str]:
    return sorted(ISO_4217_DECIMALS)
