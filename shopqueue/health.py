# shopqueue/health.py
from fastapi import APIRouter, Depends

from shopqueue.dependencies.services import get_engine
from shopqueue.services import BookingEngine

router = APIRouter()


@router.get("/mcp/info")
def mcp_info():
    return {"status": "ok", "transport": "streamable-http", "path": "/mcp"}


@router.get("/mcp/health")
def mcp_health():
    return {"ok": True}


@router.get("/health")
def engine_health(engine: BookingEngine = Depends(get_engine)):
    return {
        "ok": True,
        "store": type(engine.store).__name__,
        "subscribers": engine.notifier.subscriber_count,
        "bridge": engine.bridge.mode if engine.bridge is not None else None,
    }
