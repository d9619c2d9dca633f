from sqlalchemy import delete, insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from nomadev_wa.db.queries import _now
from nomadev_wa.db.tables import wa_processed_messages


def mark_processed(db: Session, wamid: str) -> bool:
    """
    True  => primera vez (insert OK)
    False => duplicado (ya existía)
    """
    if not wamid:
        return True  # sin wamid no deduplicamos

    try:
        db.execute(
            insert(wa_processed_messages).values(wamid=wamid, created_at=_now())
        )
        db.commit()
        return True
    except IntegrityError:
        db.rollback()
        return False


def unmark_processed(db: Session, wamid: str) -> None:
    """Libera el wamid para que el reintento de WhatsApp se procese."""
    if not wamid:
        return

    try:
        db.execute(delete(wa_processed_messages).where(wa_processed_messages.c.wamid == wamid))
        db.commit()
    except Exception:
        db.rollback()
        raise
