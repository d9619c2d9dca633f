import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional

import requests

from nomadev_wa.settings import Settings

logger = logging.getLogger(__name__)


class LLMError(RuntimeError):
    pass


@dataclass
class Completion:
    content: str
    model: str
    total_tokens: Optional[int] = None
    confidence: Optional[float] = None


def _confidence_from_logprobs(choice: dict) -> Optional[float]:
    """exp(promedio de logprobs de los tokens generados), o None."""
    tokens = ((choice.get("logprobs") or {}).get("content")) or []
    values = [t["logprob"] for t in tokens if isinstance(t, dict) and "logprob" in t]
    if not values:
        return None
    return round(math.exp(sum(values) / len(values)), 4)


def _openai_chat(settings: Settings, model: str, messages: List[Dict[str, str]],
                 temperature: float, max_tokens: int) -> Completion:
    if not settings.OPENAI_API_KEY:
        raise LLMError("Falta OPENAI_API_KEY en variables de entorno.")

    payload = {
        "model": model,
        "messages": messages,
        "temperature": temperature,
        "max_tokens": max_tokens,
    }
    if settings.OPENAI_LOGPROBS:
        payload["logprobs"] = True

    try:
        r = requests.post(
            f"{settings.OPENAI_API_BASE}/chat/completions",
            headers={
                "Authorization": f"Bearer {settings.OPENAI_API_KEY}",
                "Content-Type": "application/json",
            },
            json=payload,
            timeout=settings.LLM_TIMEOUT_SECONDS,
        )
    except requests.RequestException as e:
        raise LLMError(f"OpenAI request failed: {e}") from e

    if not r.ok:
        raise LLMError(f"OpenAI HTTP {r.status_code}: {r.text}")

    try:
        data = r.json()
        choice = data["choices"][0]
        content = choice["message"]["content"]
    except (ValueError, KeyError, IndexError, TypeError) as e:
        raise LLMError(f"Respuesta de OpenAI inválida: {e}") from e

    return Completion(
        content=content or "",
        model=model,
        total_tokens=(data.get("usage") or {}).get("total_tokens"),
        confidence=_confidence_from_logprobs(choice),
    )


def _ollama_chat(settings: Settings, model: str, messages: List[Dict[str, str]],
                 temperature: float, max_tokens: int) -> Completion:
    if not settings.OLLAMA_API_KEY:
        raise LLMError("Falta OLLAMA_API_KEY en variables de entorno.")

    payload = {
        "model": model,
        "messages": messages,
        "stream": False,
        "options": {"temperature": temperature, "num_predict": max_tokens},
    }

    try:
        r = requests.post(
            f"{settings.OLLAMA_API_BASE}/chat",
            headers={
                "Authorization": f"Bearer {settings.OLLAMA_API_KEY}",
                "Content-Type": "application/json",
            },
            json=payload,
            timeout=settings.LLM_TIMEOUT_SECONDS,
        )
    except requests.RequestException as e:
        raise LLMError(f"Ollama request failed: {e}") from e

    if not r.ok:
        raise LLMError(f"Ollama Cloud HTTP {r.status_code}: {r.text}")

    try:
        data = r.json()
        content = data["message"]["content"]
    except (ValueError, KeyError, TypeError) as e:
        raise LLMError(f"Respuesta de Ollama inválida: {e}") from e

    prompt_tokens = data.get("prompt_eval_count")
    eval_tokens = data.get("eval_count")
    total = None
    if prompt_tokens is not None or eval_tokens is not None:
        total = (prompt_tokens or 0) + (eval_tokens or 0)

    return Completion(content=content or "", model=model, total_tokens=total)


_PROVIDERS = {
    "openai": _openai_chat,
    "ollama": _ollama_chat,
}


def chat_completion(
    settings: Settings,
    messages: List[Dict[str, str]],
    model: Optional[str] = None,
    temperature: Optional[float] = None,
    max_tokens: Optional[int] = None,
) -> Completion:
    """
    Llama al proveedor configurado (LLM_PROVIDER). Los valores None caen a
    los DEFAULT_AI_* de settings.

    Raises:
        LLMError: proveedor desconocido, sin API key, HTTP != 2xx o
            respuesta mal formada.
    """
    provider = _PROVIDERS.get(settings.LLM_PROVIDER)
    if provider is None:
        raise LLMError(f"LLM_PROVIDER desconocido: {settings.LLM_PROVIDER}")

    model = model or settings.DEFAULT_AI_MODEL
    temperature = settings.DEFAULT_AI_TEMPERATURE if temperature is None else temperature
    max_tokens = max_tokens or settings.DEFAULT_AI_MAX_TOKENS

    logger.debug("LLM request", extra={"provider": settings.LLM_PROVIDER, "model": model})
    return provider(settings, model, messages, temperature, max_tokens)
