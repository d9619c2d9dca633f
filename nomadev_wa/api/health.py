import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import SQLAlchemyError

from nomadev_wa.db.db import get_db, ping_db

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
def health(db=Depends(get_db)):
    try:
        db_status = ping_db(db)
    except SQLAlchemyError as e:
        logger.error("DB no disponible: %s", e)
        raise HTTPException(status_code=503, detail="Database unavailable")
    return {"status": "ok", "db": db_status}
