import logging

from fastapi import FastAPI

from nomadev_wa.api.health import router as health_router
from nomadev_wa.api.wa import router as wa_router
from nomadev_wa.api.webhook import router as webhook_router
from nomadev_wa.core.cors import CORSExceptPaths
from nomadev_wa.settings import get_settings

settings = get_settings()

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title=settings.APP_NAME)

app.add_middleware(
    CORSExceptPaths,
    exclude_prefixes=("/whatsapp/",),
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(health_router)
app.include_router(webhook_router)
app.include_router(wa_router)
