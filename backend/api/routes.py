from fastapi import APIRouter, HTTPException, Request
from datetime import datetime

import settings

router = APIRouter()


# Dependencies: gateway services are created in the app lifespan and kept on app.state

def get_session_manager(request: Request):
    return request.app.state.session_manager


def get_dispatcher(request: Request):
    return request.app.state.webhook_dispatcher


def get_message_service(request: Request):
    return request.app.state.message_service


def get_event_log(request: Request):
    event_log = getattr(request.app.state, "event_log", None)
    if event_log is None:
        raise HTTPException(status_code=503, detail="Event log is not initialized yet")
    return event_log


@router.get("/api/health")
def health_check(request: Request):
    """Health check endpoint with service metadata"""
    manager = getattr(request.app.state, "session_manager", None)
    sessions = manager.get_all_sessions() if manager else []

    return {
        "success": True,
        "status": "healthy",
        "service": settings.SERVICE_NAME,
        "version": settings.SERVICE_VERSION,
        "sessions": len(sessions),
        "connected": sum(1 for s in sessions if s["status"] == "connected"),
        "timestamp": datetime.utcnow().isoformat() + "Z"
    }
