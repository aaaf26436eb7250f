"""
API Routes for WhatsApp Session Management
"""

import logging
from fastapi import APIRouter, Depends, HTTPException

from api.routes import get_session_manager
from schemas import SessionCreate, SessionInfo

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api/sessions",
    tags=["Sessions"],
    redirect_slashes=False
)


@router.get("")
async def list_sessions(manager=Depends(get_session_manager)):
    """List every known session with its status."""
    sessions = [SessionInfo(**s) for s in manager.get_all_sessions()]
    return {"success": True, "data": [s.model_dump() for s in sessions]}


@router.post("")
async def create_session(data: SessionCreate, manager=Depends(get_session_manager)):
    """Create a session (or restart it if it already exists) and start pairing."""
    try:
        handler = await manager.create_session(data.session_id)
    except OSError as e:
        logger.error(f"Failed to create session {data.session_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to create session: {e}")

    return {
        "success": True,
        "message": f"Session {data.session_id} created",
        "data": handler.to_dict(),
    }


@router.get("/{session_id}")
async def get_session(session_id: str, manager=Depends(get_session_manager)):
    handler = manager.get_session(session_id)
    if handler is None:
        raise HTTPException(status_code=404, detail="Session not found")

    return {
        "success": True,
        "data": {
            "id": handler.session_id,
            "status": handler.status,
            "user": handler.user,
            "qr": handler.qr,
        },
    }


@router.delete("/{session_id}")
async def delete_session(session_id: str, manager=Depends(get_session_manager)):
    """Log out, forget the session and wipe its credentials."""
    deleted = await manager.delete_session(session_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Session not found")
    return {"success": True, "message": f"Session {session_id} deleted"}


@router.post("/{session_id}/logout")
async def logout_session(session_id: str, manager=Depends(get_session_manager)):
    handler = manager.get_session(session_id)
    if handler is None:
        raise HTTPException(status_code=404, detail="Session not found")

    await handler.logout()
    return {"success": True, "message": f"Session {session_id} logged out"}
