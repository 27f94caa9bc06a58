"""
Free-text reply generation for general conversation.

The model decides between answering directly (`reply`) and handing the
conversation to staff (`escalate`).
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional, Protocol

from app.clients.llm import ChatCompletionClient, extract_json_object
from app.core.errors import DownstreamUnavailableError


class ReplyAction(str, enum.Enum):
    reply = "reply"
    escalate = "escalate"


@dataclass(frozen=True)
class ReplyDecision:
    action: ReplyAction
    reply: str
    reason: Optional[str] = None
    summary: Optional[str] = None
    priority: int = 2


class ReplyGenerator(Protocol):
    def generate(self, patient_name: str, text: str, emergency: bool = False) -> ReplyDecision: ...


_SYSTEM_PROMPT = """Você é o assistente virtual de uma clínica de endocrinologia.
Seu tom é acolhedor, profissional e prestativo. Seja breve.

Decida a ação:
- escalate: qualquer menção a sintomas, medicamentos, dosagens ou estado emocional
  muito negativo. Responda com uma mensagem curta e tranquilizadora dizendo que a
  equipe foi notificada, e descreva o motivo para a equipe.
- reply: para todo o resto, responda de forma direta e útil.

Nunca dê conselhos médicos ou diagnósticos. Na dúvida, escale.

Responda apenas com JSON:
{"decision": "reply" | "escalate", "reply": "...", "reason": "...", "summary": "...", "priority": 1-3}"""


class LLMReplyGenerator:
    def __init__(self, client: ChatCompletionClient):
        self.client = client

    def generate(self, patient_name: str, text: str, emergency: bool = False) -> ReplyDecision:
        message = f"[EMERGÊNCIA] {text}" if emergency else text
        raw = self.client.complete(
            [
                {"role": "system", "content": _SYSTEM_PROMPT},
                {"role": "user", "content": f'Paciente: {patient_name}\nMensagem: "{message}"'},
            ],
            temperature=0.3,
        )
        payload = extract_json_object(raw)
        if not payload or not str(payload.get("reply") or "").strip():
            raise DownstreamUnavailableError("reply_generator", "missing reply in model output")
        try:
            action = ReplyAction(str(payload.get("decision", "reply")).strip().lower())
        except ValueError:
            action = ReplyAction.escalate
        try:
            priority = int(payload.get("priority") or 2)
        except (TypeError, ValueError):
            priority = 2
        return ReplyDecision(
            action=action,
            reply=str(payload["reply"]).strip(),
            reason=payload.get("reason"),
            summary=payload.get("summary"),
            priority=min(max(priority, 1), 3),
        )
