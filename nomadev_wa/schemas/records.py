from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict


class Agent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    user_id: Optional[str] = None
    name: str = ""
    status: str = "inactive"
    ai_model: Optional[str] = None
    ai_temperature: Optional[float] = None
    ai_max_tokens: Optional[int] = None
    ai_system_prompt: Optional[str] = None
    ai_context: Optional[str] = None
    personality: Optional[Dict[str, Any]] = None
    whatsapp_phone_id: Optional[str] = None
    whatsapp_access_token: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status == "active"


class Conversation(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    agent_id: str
    user_id: Optional[str] = None
    contact_phone: str
    contact_name: Optional[str] = None
    status: str = "active"
    context: Optional[Dict[str, Any]] = None
    lead_score: int = 0
    created_at: Optional[datetime] = None
