"""
API Routes for sending messages through a session
"""

import logging
from fastapi import APIRouter, Depends, HTTPException

from api.routes import get_message_service
from schemas import (
    SendDocumentRequest,
    SendImageRequest,
    SendLocationRequest,
    SendTextRequest,
    TypingRequest,
)

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api/messages",
    tags=["Messages"],
    redirect_slashes=False
)


@router.post("/send-text")
async def send_text(data: SendTextRequest, service=Depends(get_message_service)):
    result = await service.send_text(data.session_id, data.chat_id, data.text,
                                     quoted_message_id=data.quoted_message_id)
    return {"success": True, "message": "Message sent", **result}


@router.post("/send-image")
async def send_image(data: SendImageRequest, service=Depends(get_message_service)):
    result = await service.send_image(data.session_id, data.chat_id, image=data.image,
                                      image_url=data.image_url, caption=data.caption)
    return {"success": True, "message": "Image sent", **result}


@router.post("/send-document")
async def send_document(data: SendDocumentRequest, service=Depends(get_message_service)):
    result = await service.send_document(
        data.session_id,
        data.chat_id,
        document=data.document,
        document_url=data.document_url,
        filename=data.filename,
        mimetype=data.mimetype,
        caption=data.caption,
    )
    return {"success": True, "message": "Document sent", **result}


@router.post("/send-location")
async def send_location(data: SendLocationRequest, service=Depends(get_message_service)):
    result = await service.send_location(data.session_id, data.chat_id,
                                         data.latitude, data.longitude, address=data.address)
    return {"success": True, "message": "Location sent", **result}


@router.post("/typing/start")
async def start_typing(data: TypingRequest, service=Depends(get_message_service)):
    await service.send_presence(data.session_id, data.chat_id, "composing")
    return {"success": True, "message": "Typing indicator started"}


@router.post("/typing/stop")
async def stop_typing(data: TypingRequest, service=Depends(get_message_service)):
    await service.send_presence(data.session_id, data.chat_id, "paused")
    return {"success": True, "message": "Typing indicator stopped"}


@router.get("/status/{message_id}")
async def get_message_status(message_id: str, service=Depends(get_message_service)):
    """Delivery status of a message previously sent through the API."""
    message = service.get_message_status(message_id)
    if message is None:
        raise HTTPException(status_code=404, detail="Message not found")

    return {
        "success": True,
        "messageId": message["message_id"],
        "status": message["status"],
        "sessionId": message["session_id"],
        "recipient": message["recipient"],
        "messageType": message["message_type"],
        "createdAt": message["created_at"],
        "updatedAt": message["updated_at"],
    }
