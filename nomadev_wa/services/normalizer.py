"""
Recorre el payload del webhook (entry -> changes -> value) y traduce cada
mensaje entrante a (contenido, tipo, adjuntos) para guardarlo.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from nomadev_wa.schemas.whatsapp import (
    AudioMessage,
    ChangeValue,
    DocumentMessage,
    ImageMessage,
    InboundMessage,
    TextMessage,
    VideoMessage,
)
from nomadev_wa.services.results import StageResult

logger = logging.getLogger(__name__)

DEFAULT_CONTACT_NAME = "Usuario"


class InvalidPayload(ValueError):
    """El cuerpo no tiene un array `entry`."""


def extract_changes(payload: Any) -> Tuple[List[ChangeValue], List[StageResult]]:
    """
    Devuelve los `value` de cada change con field == "messages" y
    phone_number_id, más los descartes como StageResult.

    Raises:
        InvalidPayload: si falta `entry` o no es una lista.
    """
    if not isinstance(payload, dict) or not isinstance(payload.get("entry"), list):
        raise InvalidPayload("Invalid payload")

    values: List[ChangeValue] = []
    skipped: List[StageResult] = []

    for entry in payload["entry"]:
        changes = entry.get("changes") if isinstance(entry, dict) else None
        if not isinstance(changes, list):
            continue

        for change in changes:
            if not isinstance(change, dict) or change.get("field") != "messages":
                continue

            try:
                value = ChangeValue.model_validate(change.get("value") or {})
            except ValidationError as e:
                logger.error("Change con value inválido: %s", e)
                skipped.append(StageResult.fail("normalize", f"invalid change value: {e.error_count()} errors"))
                continue

            if not value.metadata.phone_number_id:
                skipped.append(StageResult.skip("normalize", "missing_phone_number_id"))
                continue

            values.append(value)

    return values, skipped


def contact_name_for(value: ChangeValue, phone: str) -> str:
    for contact in value.contacts:
        if contact.wa_id == phone and contact.profile.name:
            return contact.profile.name
    if value.contacts and value.contacts[0].profile.name:
        return value.contacts[0].profile.name
    return DEFAULT_CONTACT_NAME


def _attachment(kind: str, media) -> List[Dict[str, Any]]:
    item = {"type": kind, **media.model_dump(exclude_none=True)}
    return [item] if len(item) > 1 else []


def message_content(msg: InboundMessage) -> Tuple[str, str, List[Dict[str, Any]]]:
    """(content, message_type, attachments) para guardar en `messages`."""
    if isinstance(msg, TextMessage):
        return msg.text.body, "text", []
    if isinstance(msg, ImageMessage):
        return "[Imagen]", "image", _attachment("image", msg.image)
    if isinstance(msg, AudioMessage):
        return "[Audio]", "audio", _attachment("audio", msg.audio)
    if isinstance(msg, VideoMessage):
        return "[Video]", "video", _attachment("video", msg.video)
    if isinstance(msg, DocumentMessage):
        filename: Optional[str] = msg.document.filename
        return f"[Documento: {filename or 'archivo'}]", "document", _attachment("document", msg.document)

    # UnknownMessage: se guarda para no perderlo, pero nunca se responde
    logger.warning(
        "Tipo de mensaje no soportado: %s",
        msg.type,
        extra={"wamid": msg.id, "message_type": msg.type},
    )
    return f"[Mensaje no soportado: {msg.type}]", "text", []
