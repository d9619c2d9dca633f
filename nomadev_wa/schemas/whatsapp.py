"""
Modelos del webhook de WhatsApp Cloud API.

ref: https://developers.facebook.com/docs/whatsapp/cloud-api/webhooks/payload-examples

Cada mensaje entrante se decodifica una sola vez en su variante concreta
(texto, imagen, audio, video, documento o desconocido).
"""
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# MENSAJES ENTRANTES
# ============================================================================

class TextBody(BaseModel):
    body: str = ""


class MediaObject(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    mime_type: Optional[str] = None
    caption: Optional[str] = None
    filename: Optional[str] = None


class _InboundBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    from_: str = Field(..., alias="from")
    id: str
    timestamp: Optional[str] = None


class TextMessage(_InboundBase):
    type: Literal["text"] = "text"
    text: TextBody = Field(default_factory=TextBody)


class ImageMessage(_InboundBase):
    type: Literal["image"] = "image"
    image: MediaObject = Field(default_factory=MediaObject)


class AudioMessage(_InboundBase):
    type: Literal["audio"] = "audio"
    audio: MediaObject = Field(default_factory=MediaObject)


class VideoMessage(_InboundBase):
    type: Literal["video"] = "video"
    video: MediaObject = Field(default_factory=MediaObject)


class DocumentMessage(_InboundBase):
    type: Literal["document"] = "document"
    document: MediaObject = Field(default_factory=MediaObject)


class UnknownMessage(_InboundBase):
    """Sticker, location, reaction, interactive... lo que no manejamos."""
    type: str = "unknown"


InboundMessage = Union[
    TextMessage, ImageMessage, AudioMessage, VideoMessage, DocumentMessage, UnknownMessage
]

_MESSAGE_MODELS = {
    "text": TextMessage,
    "image": ImageMessage,
    "audio": AudioMessage,
    "video": VideoMessage,
    "document": DocumentMessage,
}


def parse_inbound_message(raw: Dict[str, Any]) -> InboundMessage:
    """Raises pydantic.ValidationError si faltan from/id."""
    model = _MESSAGE_MODELS.get(raw.get("type"), UnknownMessage)
    return model.model_validate(raw)


# ============================================================================
# ESTADOS / CONTACTOS / CAMBIOS
# ============================================================================

class StatusUpdate(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    status: str
    timestamp: Optional[str] = None
    recipient_id: Optional[str] = None


class ContactProfile(BaseModel):
    name: Optional[str] = None


class Contact(BaseModel):
    model_config = ConfigDict(extra="allow")

    wa_id: Optional[str] = None
    profile: ContactProfile = Field(default_factory=ContactProfile)


class ChangeMetadata(BaseModel):
    model_config = ConfigDict(extra="allow")

    phone_number_id: Optional[str] = None
    display_phone_number: Optional[str] = None


class ChangeValue(BaseModel):
    """`entry[].changes[].value` con field == "messages"."""
    model_config = ConfigDict(extra="allow")

    metadata: ChangeMetadata = Field(default_factory=ChangeMetadata)
    contacts: List[Contact] = Field(default_factory=list)
    # crudos: cada uno se decodifica por separado
    messages: List[Dict[str, Any]] = Field(default_factory=list)
    statuses: List[Dict[str, Any]] = Field(default_factory=list)


# ============================================================================
# ENVÍO MANUAL (API interna)
# ============================================================================

class SendMessageRequest(BaseModel):
    agent_id: str
    to: str
    text: str = Field(..., min_length=1)


class SendMessageResponse(BaseModel):
    message_id: str
    conversation_id: str
    whatsapp_message_id: Optional[str] = None
    status: str
