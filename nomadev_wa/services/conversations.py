import logging

from sqlalchemy.exc import IntegrityError

from nomadev_wa.db.queries import find_active_conversation, insert_conversation
from nomadev_wa.schemas.records import Agent, Conversation

logger = logging.getLogger(__name__)


def resolve_conversation(db, agent: Agent, phone: str, contact_name: str) -> Conversation:
    """
    Busca la conversación activa (agente, teléfono) o la crea.

    Si otro request la creó entre el SELECT y el INSERT, la unique
    (agent_id, active_phone) rechaza el insert y se devuelve la existente.
    """
    row = find_active_conversation(db, agent.id, phone)
    if row:
        return Conversation.model_validate(row)

    try:
        row = insert_conversation(db, agent.id, agent.user_id, phone, contact_name)
    except IntegrityError:
        row = find_active_conversation(db, agent.id, phone)
        if not row:
            raise
        logger.info(
            "Conversación creada en paralelo, se reutiliza",
            extra={"agent_id": agent.id, "conversation_id": row["id"]},
        )
        return Conversation.model_validate(row)

    logger.info(
        "Nueva conversación",
        extra={"agent_id": agent.id, "conversation_id": row["id"]},
    )
    return Conversation.model_validate(row)
