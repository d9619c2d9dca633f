import uuid
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List

from sqlalchemy import select, insert, update

from nomadev_wa.db.tables import agents, conversations, messages


def _now() -> datetime:
    # UTC sin tzinfo, igual en MySQL y SQLite
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _new_id() -> str:
    return str(uuid.uuid4())


def _fetch_one_dict(db, stmt) -> Optional[Dict[str, Any]]:
    row = db.execute(stmt).mappings().first()
    return dict(row) if row else None


def _fetch_all_dicts(db, stmt) -> List[Dict[str, Any]]:
    rows = db.execute(stmt).mappings().all()
    return [dict(r) for r in rows]


# =========================
# AGENTES (solo lectura)
# =========================

def get_agent_by_phone_id(db, phone_number_id: str) -> Optional[Dict[str, Any]]:
    return _fetch_one_dict(
        db,
        select(agents).where(agents.c.whatsapp_phone_id == phone_number_id).limit(1),
    )


def get_agent(db, agent_id: str) -> Optional[Dict[str, Any]]:
    return _fetch_one_dict(db, select(agents).where(agents.c.id == agent_id).limit(1))


# =========================
# CONVERSACIONES
# =========================

def find_active_conversation(db, agent_id: str, phone: str) -> Optional[Dict[str, Any]]:
    return _fetch_one_dict(
        db,
        select(conversations)
        .where(conversations.c.agent_id == agent_id)
        .where(conversations.c.contact_phone == phone)
        .where(conversations.c.status == "active")
        .limit(1),
    )


def insert_conversation(
    db,
    agent_id: str,
    user_id: Optional[str],
    phone: str,
    contact_name: Optional[str],
) -> Dict[str, Any]:
    """
    Inserta una conversación activa. La unique (agent_id, active_phone)
    hace que un segundo insert concurrente falle con IntegrityError.
    """
    conv_id = _new_id()
    now = _now()
    try:
        db.execute(
            insert(conversations).values(
                id=conv_id,
                agent_id=agent_id,
                user_id=user_id,
                contact_phone=phone,
                contact_name=contact_name,
                whatsapp_conversation_id=phone,
                status="active",
                context={},
                lead_score=0,
                created_at=now,
                updated_at=now,
                **{"metadata": {}},
            )
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    return _fetch_one_dict(db, select(conversations).where(conversations.c.id == conv_id))


# =========================
# MENSAJES
# =========================

def insert_message(
    db,
    conversation_id: str,
    agent_id: str,
    content: str,
    direction: str,
    message_type: str = "text",
    sender_phone: Optional[str] = None,
    sender_name: Optional[str] = None,
    whatsapp_message_id: Optional[str] = None,
    ai_generated: bool = False,
    ai_model: Optional[str] = None,
    ai_tokens_used: Optional[int] = None,
    ai_confidence: Optional[float] = None,
    metadata: Optional[Dict[str, Any]] = None,
    attachments: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    msg_id = _new_id()
    now = _now()
    try:
        db.execute(
            insert(messages).values(
                id=msg_id,
                conversation_id=conversation_id,
                agent_id=agent_id,
                content=content,
                message_type=message_type,
                direction=direction,
                sender_phone=sender_phone,
                sender_name=sender_name,
                whatsapp_message_id=whatsapp_message_id,
                ai_generated=ai_generated,
                ai_model=ai_model,
                ai_tokens_used=ai_tokens_used,
                ai_confidence=ai_confidence,
                attachments=attachments or [],
                created_at=now,
                **{"metadata": metadata or {}},
            )
        )
        db.execute(
            update(conversations)
            .where(conversations.c.id == conversation_id)
            .values(last_message_at=now, updated_at=now)
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    return _fetch_one_dict(db, select(messages).where(messages.c.id == msg_id))


def get_recent_messages(
    db,
    conversation_id: str,
    limit: int = 10,
    exclude_id: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """
    Los `limit` mensajes más recientes de la conversación, devueltos del
    más viejo al más nuevo.
    """
    stmt = (
        select(messages.c.id, messages.c.content, messages.c.direction, messages.c.created_at)
        .where(messages.c.conversation_id == conversation_id)
        .order_by(messages.c.created_at.desc())
        .limit(limit)
    )
    if exclude_id:
        stmt = stmt.where(messages.c.id != exclude_id)

    rows = _fetch_all_dicts(db, stmt)
    rows.reverse()
    return rows


def mark_message_sent(db, message_id: str, whatsapp_message_id: str) -> None:
    try:
        db.execute(
            update(messages)
            .where(messages.c.id == message_id)
            .values(whatsapp_message_id=whatsapp_message_id, whatsapp_status="sent")
        )
        db.commit()
    except Exception:
        db.rollback()
        raise


def mark_message_failed(db, message_id: str, error: str) -> None:
    row = _fetch_one_dict(db, select(messages.c["metadata"]).where(messages.c.id == message_id))
    meta = dict((row or {}).get("metadata") or {})
    meta["send_error"] = error
    try:
        db.execute(
            update(messages)
            .where(messages.c.id == message_id)
            .values(whatsapp_status="failed", **{"metadata": meta})
        )
        db.commit()
    except Exception:
        db.rollback()
        raise


def apply_status_update(db, whatsapp_message_id: str, values: Dict[str, Any]) -> int:
    """
    Actualiza los mensajes con ese wamid. Devuelve filas afectadas
    (0 si todavía no lo registramos).
    """
    try:
        result = db.execute(
            update(messages)
            .where(messages.c.whatsapp_message_id == whatsapp_message_id)
            .values(**values)
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    return result.rowcount or 0
