from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any, Literal


# Sessions

class SessionCreate(BaseModel):
    session_id: str = Field(..., alias="sessionId", min_length=1, max_length=100,
                            pattern=r"^[A-Za-z0-9_-]+$")

    class Config:
        populate_by_name = True
        json_schema_extra = {"example": {"sessionId": "sales"}}


class SessionInfo(BaseModel):
    id: str
    status: str
    user: Optional[Dict[str, Any]] = None


# Webhooks

class WebhookConfigUpdate(BaseModel):
    """An empty or missing webhookUrl removes the configuration."""
    webhook_url: Optional[str] = Field(None, alias="webhookUrl")
    events: List[str] = Field(default_factory=list)

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "webhookUrl": "https://example.com/hooks/whatsapp",
                "events": ["messages.upsert", "connection.update"],
            }
        }


# Messages

class SendTextRequest(BaseModel):
    session_id: str = Field(..., alias="sessionId")
    chat_id: str = Field(..., alias="chatId")
    text: str
    quoted_message_id: Optional[str] = Field(None, alias="quotedMessageId")

    class Config:
        populate_by_name = True


class SendImageRequest(BaseModel):
    session_id: str = Field(..., alias="sessionId")
    chat_id: str = Field(..., alias="chatId")
    image: Optional[str] = None  # base64 or data URL
    image_url: Optional[str] = Field(None, alias="imageUrl")
    caption: Optional[str] = None

    class Config:
        populate_by_name = True


class SendDocumentRequest(BaseModel):
    session_id: str = Field(..., alias="sessionId")
    chat_id: str = Field(..., alias="chatId")
    document: Optional[str] = None  # base64 or data URL
    document_url: Optional[str] = Field(None, alias="documentUrl")
    filename: Optional[str] = None
    mimetype: Optional[str] = None
    caption: Optional[str] = None

    class Config:
        populate_by_name = True


class SendLocationRequest(BaseModel):
    session_id: str = Field(..., alias="sessionId")
    chat_id: str = Field(..., alias="chatId")
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    address: Optional[str] = None

    class Config:
        populate_by_name = True


class TypingRequest(BaseModel):
    session_id: str = Field(..., alias="sessionId")
    chat_id: str = Field(..., alias="chatId")

    class Config:
        populate_by_name = True


# Logs

class MessageStatusUpdate(BaseModel):
    status: Literal["pending", "sent", "delivered", "read", "failed"]


class LogSettingsUpdate(BaseModel):
    logging_enabled: Optional[bool] = None
    retention_days: Optional[int] = Field(None, ge=1)
    max_records: Optional[int] = Field(None, ge=1)
