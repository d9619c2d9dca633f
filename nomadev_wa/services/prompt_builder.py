from typing import Dict, List

from nomadev_wa.schemas.records import Agent, Conversation

INSTRUCTIONS = (
    "\nInstrucciones importantes:\n"
    "- Responde de manera natural y conversacional\n"
    "- Mantén las respuestas concisas y relevantes\n"
    "- Sé empático y profesional\n"
)

_PERSONALITY_LABELS = (
    ("tone", "Tono"),
    ("language", "Idioma"),
    ("style", "Estilo"),
)


def build_system_prompt(agent: Agent, conversation: Conversation) -> str:
    """
    Orden: prompt propio (o genérico con el nombre del agente),
    personalidad, contexto adicional, nombre del contacto, instrucciones.
    """
    if agent.ai_system_prompt:
        prompt = agent.ai_system_prompt + "\n\n"
    else:
        prompt = f"Eres {agent.name}, un asistente de IA.\n\n"

    personality = agent.personality or {}
    lines = [f"- {label}: {personality[key]}" for key, label in _PERSONALITY_LABELS if personality.get(key)]
    if lines:
        prompt += "Tu personalidad:\n" + "\n".join(lines) + "\n\n"

    if agent.ai_context:
        prompt += f"Contexto adicional:\n{agent.ai_context}\n\n"

    if conversation.contact_name:
        prompt += f"Estás hablando con: {conversation.contact_name}\n"

    return prompt + INSTRUCTIONS


def build_chat_messages(
    system_prompt: str,
    history: List[Dict],
    user_message: str,
) -> List[Dict[str, str]]:
    messages = [{"role": "system", "content": system_prompt}]
    for m in history:
        role = "user" if m.get("direction") == "inbound" else "assistant"
        messages.append({"role": role, "content": m.get("content") or ""})
    messages.append({"role": "user", "content": user_message})
    return messages
