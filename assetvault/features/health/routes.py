from fastapi import APIRouter, Request
from sqlalchemy import text

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Liveness plus a database round-trip."""
    database = "ok"
    try:
        async with request.app.state.session_factory() as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        database = f"error: {type(e).__name__}"
    return {"status": "ok" if database == "ok" else "degraded", "database": database}
