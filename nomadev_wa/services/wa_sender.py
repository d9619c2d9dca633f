"""
Envío de mensajes de texto por WhatsApp Business Cloud API.
Sin reintentos: si falla, se loguea y el llamador decide.
"""
import logging

import requests

from nomadev_wa.schemas.records import Agent
from nomadev_wa.settings import Settings

logger = logging.getLogger(__name__)


class WhatsAppSendError(Exception):
    pass


def send_text_message(settings: Settings, agent: Agent, to: str, body: str) -> str:
    """
    Envía `body` a `to` desde el número del agente.

    Returns:
        El id de mensaje asignado por WhatsApp (wamid).

    Raises:
        WhatsAppSendError: credenciales faltantes, HTTP != 2xx o respuesta
            sin `messages[0].id`.
    """
    if not agent.whatsapp_phone_id or not agent.whatsapp_access_token:
        raise WhatsAppSendError(f"Agente {agent.id} sin credenciales de WhatsApp")

    endpoint = (
        f"{settings.WHATSAPP_API_BASE}/{settings.WHATSAPP_API_VERSION}/"
        f"{agent.whatsapp_phone_id}/messages"
    )
    payload = {
        "messaging_product": "whatsapp",
        "recipient_type": "individual",
        "to": to,
        "type": "text",
        "text": {"body": body},
    }

    try:
        r = requests.post(
            endpoint,
            headers={
                "Authorization": f"Bearer {agent.whatsapp_access_token}",
                "Content-Type": "application/json",
            },
            json=payload,
            timeout=settings.WHATSAPP_TIMEOUT_SECONDS,
        )
    except requests.RequestException as e:
        raise WhatsAppSendError(f"HTTP request failed: {e}") from e

    try:
        data = r.json()
    except ValueError:
        data = None

    if not r.ok:
        logger.error(
            "WhatsApp API error: %s",
            r.status_code,
            extra={"status_code": r.status_code, "error_body": r.text, "agent_id": agent.id},
        )
        raise WhatsAppSendError(f"WhatsApp API returned {r.status_code}")

    try:
        wamid = data["messages"][0]["id"]
    except (TypeError, KeyError, IndexError):
        raise WhatsAppSendError(f"Respuesta de WhatsApp sin message id: {data}")

    logger.info("Mensaje enviado", extra={"agent_id": agent.id, "to": to, "wamid": wamid})
    return wamid
