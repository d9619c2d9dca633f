"""
Pipeline del webhook de WhatsApp:

    payload -> changes -> agente (por phone_number_id)
        mensajes: conversación -> guardar entrante -> respuesta IA -> envío
        estados:  actualizar whatsapp_status / delivered_at / read_at

Cada mensaje y cada estado devuelve un StageResult; un fallo en uno no
corta el resto del lote.
"""
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import ValidationError

from nomadev_wa.db.queries import (
    apply_status_update,
    get_agent_by_phone_id,
    get_recent_messages,
    insert_message,
    mark_message_failed,
    mark_message_sent,
)
from nomadev_wa.db.wa_dedupe import mark_processed, unmark_processed
from nomadev_wa.schemas.records import Agent, Conversation
from nomadev_wa.schemas.whatsapp import (
    ChangeValue,
    StatusUpdate,
    TextMessage,
    parse_inbound_message,
)
from nomadev_wa.services.conversations import resolve_conversation
from nomadev_wa.services.llm_client import LLMError, chat_completion
from nomadev_wa.services.normalizer import contact_name_for, extract_changes, message_content
from nomadev_wa.services.prompt_builder import build_chat_messages, build_system_prompt
from nomadev_wa.services.results import BatchReport, StageResult
from nomadev_wa.services.wa_sender import WhatsAppSendError, send_text_message
from nomadev_wa.settings import Settings

logger = logging.getLogger(__name__)


def _parse_unix(ts: Optional[str]) -> Optional[datetime]:
    try:
        return datetime.fromtimestamp(int(ts), tz=timezone.utc).replace(tzinfo=None)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def _is_stale(ts: Optional[str], max_age_seconds: int) -> bool:
    if max_age_seconds <= 0 or not ts:
        return False
    try:
        return time.time() - int(ts) > max_age_seconds
    except ValueError:
        return False


def _release_wamid(db, settings: Settings, wamid: str) -> None:
    # el entrante no quedó guardado: el reintento de WhatsApp no es un duplicado
    if not settings.DEDUPE_INBOUND:
        return
    try:
        unmark_processed(db, wamid)
    except Exception:
        logger.error("No se pudo liberar el wamid", exc_info=True, extra={"wamid": wamid})


# =========================
# LOTE
# =========================

def handle_webhook(db, settings: Settings, payload: Any) -> BatchReport:
    """
    Procesa un POST completo del webhook.

    Raises:
        InvalidPayload: sin `entry` (el gateway responde 400).
    """
    values, discarded = extract_changes(payload)
    report = BatchReport()
    report.extend(discarded)

    for value in values:
        phone_number_id = value.metadata.phone_number_id

        try:
            row = get_agent_by_phone_id(db, phone_number_id)
        except Exception as e:
            logger.error("Error buscando agente: %s", e, exc_info=True)
            report.add(StageResult.fail("resolve_agent", str(e), ref=phone_number_id))
            continue

        if not row:
            logger.warning("Agent not found for phone_number_id: %s", phone_number_id)
            report.add(StageResult.skip("resolve_agent", "agent_not_found", ref=phone_number_id))
            continue

        agent = Agent.model_validate(row)

        for raw in value.messages:
            report.add(process_inbound_message(db, settings, agent, value, raw))

        for raw in value.statuses:
            report.add(process_status_update(db, raw))

    logger.info("Webhook procesado", extra={"summary": report.summary()})
    return report


# =========================
# MENSAJES ENTRANTES
# =========================

def process_inbound_message(
    db,
    settings: Settings,
    agent: Agent,
    value: ChangeValue,
    raw: Dict[str, Any],
) -> StageResult:
    try:
        msg = parse_inbound_message(raw)
    except ValidationError as e:
        logger.error("Mensaje entrante inválido: %s", e)
        return StageResult.fail("decode", f"invalid message: {e.error_count()} errors", ref=raw.get("id"))

    try:
        return _process_inbound(db, settings, agent, value, msg)
    except Exception as e:
        logger.error("Error processing incoming message: %s", e, exc_info=True, extra={"wamid": msg.id})
        return StageResult.fail("inbound", str(e), ref=msg.id)


def _process_inbound(db, settings: Settings, agent: Agent, value: ChangeValue, msg) -> StageResult:
    if _is_stale(msg.timestamp, settings.MAX_MESSAGE_AGE_SECONDS):
        logger.info("Mensaje viejo ignorado", extra={"wamid": msg.id})
        return StageResult.skip("dedupe", "stale", ref=msg.id)

    if settings.DEDUPE_INBOUND and not mark_processed(db, msg.id):
        logger.info("Mensaje duplicado ignorado", extra={"wamid": msg.id})
        return StageResult.skip("dedupe", "duplicate", ref=msg.id)

    phone = msg.from_
    contact_name = contact_name_for(value, phone)

    try:
        conversation = resolve_conversation(db, agent, phone, contact_name)
    except Exception as e:
        logger.error("Error creating conversation: %s", e, exc_info=True)
        _release_wamid(db, settings, msg.id)
        return StageResult.fail("resolve_conversation", str(e), ref=msg.id)

    content, message_type, attachments = message_content(msg)

    try:
        incoming = insert_message(
            db,
            conversation_id=conversation.id,
            agent_id=agent.id,
            content=content,
            direction="inbound",
            message_type=message_type,
            sender_phone=phone,
            sender_name=contact_name,
            whatsapp_message_id=msg.id,
            ai_generated=False,
            metadata={} if message_type == msg.type else {"original_type": msg.type},
            attachments=attachments,
        )
    except Exception as e:
        logger.error("Error saving incoming message: %s", e, exc_info=True)
        _release_wamid(db, settings, msg.id)
        return StageResult.fail("store_inbound", str(e), ref=msg.id)

    if not agent.is_active:
        return StageResult.ok("store_inbound", "agent_inactive", ref=msg.id)
    if not isinstance(msg, TextMessage):
        return StageResult.ok("store_inbound", "not_text", ref=msg.id)

    return generate_and_send_reply(
        db, settings, agent, conversation, content, phone,
        exclude_id=incoming["id"], ref=msg.id,
    )


# =========================
# RESPUESTA IA + ENVÍO
# =========================

def generate_and_send_reply(
    db,
    settings: Settings,
    agent: Agent,
    conversation: Conversation,
    user_message: str,
    recipient_phone: str,
    exclude_id: Optional[str] = None,
    ref: Optional[str] = None,
) -> StageResult:
    history = get_recent_messages(db, conversation.id, settings.HISTORY_LIMIT, exclude_id=exclude_id)
    messages = build_chat_messages(build_system_prompt(agent, conversation), history, user_message)

    try:
        completion = chat_completion(
            settings,
            messages,
            model=agent.ai_model,
            temperature=agent.ai_temperature,
            max_tokens=agent.ai_max_tokens,
        )
    except LLMError as e:
        logger.error("LLM API error: %s", e, extra={"agent_id": agent.id})
        return StageResult.fail("generate_reply", str(e), ref=ref)

    try:
        reply = insert_message(
            db,
            conversation_id=conversation.id,
            agent_id=agent.id,
            content=completion.content,
            direction="outbound",
            message_type="text",
            ai_generated=True,
            ai_model=completion.model,
            ai_tokens_used=completion.total_tokens,
            ai_confidence=completion.confidence,
        )
    except Exception as e:
        logger.error("Error saving AI reply: %s", e, exc_info=True)
        return StageResult.fail("store_reply", str(e), ref=ref)

    return dispatch_message(db, settings, agent, reply, recipient_phone)


def dispatch_message(db, settings: Settings, agent: Agent, message: Dict[str, Any], to: str) -> StageResult:
    """
    Envía un mensaje saliente ya guardado. OK => ref es el wamid.
    Si falla, la fila queda con whatsapp_status = "failed".
    """
    try:
        wamid = send_text_message(settings, agent, to, message["content"])
    except WhatsAppSendError as e:
        logger.error("Error sending WhatsApp message: %s", e, extra={"message_id": message["id"]})
        try:
            mark_message_failed(db, message["id"], str(e))
        except Exception:
            logger.error("No se pudo marcar el mensaje como fallido", exc_info=True)
        return StageResult.fail("dispatch", str(e), ref=message["id"])

    try:
        mark_message_sent(db, message["id"], wamid)
    except Exception as e:
        logger.error("Error guardando wamid %s: %s", wamid, e, exc_info=True)
        return StageResult.fail("record_send", str(e), ref=wamid)

    return StageResult.ok("dispatch", ref=wamid)


# =========================
# ESTADOS (delivered / read)
# =========================

def process_status_update(db, raw: Dict[str, Any]) -> StageResult:
    try:
        status = StatusUpdate.model_validate(raw)
    except ValidationError as e:
        logger.error("Estado inválido: %s", e)
        return StageResult.fail("status_decode", f"invalid status: {e.error_count()} errors", ref=raw.get("id"))

    values: Dict[str, Any] = {"whatsapp_status": status.status}
    if status.status in ("delivered", "read"):
        when = _parse_unix(status.timestamp)
        if when is None:
            logger.warning("Estado sin timestamp válido", extra={"wamid": status.id})
        else:
            values["delivered_at" if status.status == "delivered" else "read_at"] = when

    try:
        updated = apply_status_update(db, status.id, values)
    except Exception as e:
        logger.error("Error processing status update: %s", e, exc_info=True)
        return StageResult.fail("status_update", str(e), ref=status.id)

    if updated == 0:
        logger.info("Estado sin mensaje asociado", extra={"wamid": status.id})
        return StageResult.skip("status_update", "no_matching_message", ref=status.id)

    return StageResult.ok("status_update", status.status, ref=status.id)
