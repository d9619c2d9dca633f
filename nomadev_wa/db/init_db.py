"""Crea las tablas del webhook: python -m nomadev_wa.db.init_db"""
import logging

from nomadev_wa.db.db import engine
from nomadev_wa.db.tables import metadata

logger = logging.getLogger(__name__)


def create_schema(bind=None) -> None:
    bind = bind if bind is not None else engine
    metadata.create_all(bind)
    logger.info("Schema listo", extra={"tables": sorted(metadata.tables)})


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    create_schema()
