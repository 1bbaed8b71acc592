from app.core.config import settings
from app.core.currency import get_decimal_places, supported_currencies


async def system_health():
    return {
        "status": "ok",
        "service": settings.APP_NAME,
        "settlement_strategy": settings.SETTLEMENT_STRATEGY,
    }


async def currency_table():
    return {code: get_decimal_places(code) for code in supported_currencies()}
