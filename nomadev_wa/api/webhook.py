import json
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.concurrency import run_in_threadpool

from nomadev_wa.core.meta_signature import verify_meta_signature
from nomadev_wa.db.db import get_db
from nomadev_wa.services.normalizer import InvalidPayload
from nomadev_wa.services.wa_gateway import handle_webhook
from nomadev_wa.settings import Settings, get_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/whatsapp", tags=["WhatsApp webhook"])

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}


@router.options("/webhook")
def webhook_preflight():
    return Response(status_code=200, headers=CORS_HEADERS)


@router.get("/webhook", response_class=PlainTextResponse)
def webhook_verify(
    hub_mode: str = Query(default="", alias="hub.mode"),
    hub_verify_token: str = Query(default="", alias="hub.verify_token"),
    hub_challenge: str = Query(default="", alias="hub.challenge"),
    settings: Settings = Depends(get_settings),
):
    if hub_mode == "subscribe" and hub_verify_token == settings.WHATSAPP_VERIFY_TOKEN:
        logger.info("Webhook verified successfully")
        return PlainTextResponse(hub_challenge, headers=CORS_HEADERS)

    logger.warning("Verificación de webhook rechazada", extra={"hub_mode": hub_mode})
    return PlainTextResponse("Forbidden", status_code=403, headers=CORS_HEADERS)


@router.post("/webhook")
async def webhook_receive(
    request: Request,
    x_hub_signature_256: str = Header(default="", alias="X-Hub-Signature-256"),
    settings: Settings = Depends(get_settings),
    db=Depends(get_db),
):
    raw = await request.body()

    # 1) Firma (solo si hay app secret configurado)
    if settings.WHATSAPP_APP_SECRET:
        if not verify_meta_signature(x_hub_signature_256, raw, settings.WHATSAPP_APP_SECRET):
            raise HTTPException(status_code=401, detail="Invalid signature")

    # 2) Parsear JSON
    try:
        payload = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        raise HTTPException(status_code=400, detail="Invalid JSON")

    # 3) Procesar el lote
    try:
        report = await run_in_threadpool(handle_webhook, db, settings, payload)
    except InvalidPayload:
        raise HTTPException(status_code=400, detail="Invalid payload")
    except Exception as e:
        logger.error("Error processing webhook: %s", e, exc_info=True)
        return JSONResponse(status_code=500, content={"error": str(e)}, headers=CORS_HEADERS)

    return JSONResponse(content={"success": True, **report.to_dict()}, headers=CORS_HEADERS)
