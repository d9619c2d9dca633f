from fastapi import APIRouter, Depends, HTTPException

from nomadev_wa.core.security import require_internal_api_key
from nomadev_wa.db.db import get_db
from nomadev_wa.db.queries import get_agent, insert_message
from nomadev_wa.schemas.records import Agent
from nomadev_wa.schemas.whatsapp import SendMessageRequest, SendMessageResponse
from nomadev_wa.services.conversations import resolve_conversation
from nomadev_wa.services.results import Outcome
from nomadev_wa.services.wa_gateway import dispatch_message
from nomadev_wa.settings import Settings, get_settings

router = APIRouter()


@router.post("/wa/send", response_model=SendMessageResponse, dependencies=[Depends(require_internal_api_key)])
def wa_send(req: SendMessageRequest, db=Depends(get_db), settings: Settings = Depends(get_settings)):
    """Envío manual desde el dashboard (no generado por IA)."""
    row = get_agent(db, req.agent_id)
    if not row:
        raise HTTPException(status_code=404, detail="Agent not found")
    agent = Agent.model_validate(row)

    conversation = resolve_conversation(db, agent, req.to, contact_name=None)
    message = insert_message(
        db,
        conversation_id=conversation.id,
        agent_id=agent.id,
        content=req.text,
        direction="outbound",
        message_type="text",
        ai_generated=False,
    )

    result = dispatch_message(db, settings, agent, message, req.to)
    if result.outcome == Outcome.FAILED:
        raise HTTPException(status_code=502, detail=f"WhatsApp send failed: {result.reason}")

    return SendMessageResponse(
        message_id=message["id"],
        conversation_id=conversation.id,
        whatsapp_message_id=result.ref,
        status="sent",
    )
