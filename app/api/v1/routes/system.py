from fastapi import APIRouter
from app.services.system_services import currency_table, system_health

router = APIRouter()

@router.get("/health")
async def health():
    return await system_health()

@router.get("/currencies")
async def currencies():
    return await currency_table()
