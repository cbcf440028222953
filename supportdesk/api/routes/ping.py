from fastapi import APIRouter, Request

router = APIRouter(prefix="/api/health", tags=["health"])


@router.get("", summary="Public health probe")
async def health(request: Request) -> dict[str, str]:
    store_ready = getattr(request.app.state, "store", None) is not None
    return {"status": "ok" if store_ready else "degraded"}
