from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.orm import Session

from weatherpush.database import get_db

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(request: Request, db: Session = Depends(get_db)) -> dict:
    push = "enabled" if getattr(request.app.state, "coordinator", None) is not None else "disabled"
    try:
        db.execute(text("SELECT 1"))
        return {"status": "healthy", "database": "connected", "push": push}
    except Exception as exc:
        return {"status": "unhealthy", "database": "disconnected", "push": push, "error": str(exc)}
