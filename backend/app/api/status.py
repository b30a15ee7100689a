# backend/app/api/status.py
from fastapi import APIRouter

from backend.app.status import pipeline_status

router = APIRouter()


@router.get("/status")
async def status() -> dict:
    return {"ok": True, "status": pipeline_status.snapshot()}
