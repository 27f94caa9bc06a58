"""
Message intent classification.

LLMIntentClassifier asks an OpenAI-compatible model for a JSON verdict.
It raises on transport or payload problems; the intent router turns any
failure into the fail-safe `question` classification.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional, Protocol

from app.clients.llm import ChatCompletionClient, extract_json_object
from app.core.errors import DownstreamUnavailableError


class Intent(str, enum.Enum):
    emergency = "emergency"
    social = "social"
    question = "question"
    checkin_response = "checkin_response"
    off_topic = "off_topic"


@dataclass(frozen=True)
class MessageContext:
    has_active_checkin: bool
    checkin_title: Optional[str] = None


@dataclass(frozen=True)
class Classification:
    intent: Intent
    confidence: float
    reason: str


class IntentClassifier(Protocol):
    def classify(self, text: str, context: MessageContext) -> Classification: ...


_SYSTEM_PROMPT = """Você é um classificador de mensagens de pacientes em uma clínica de saúde.

Classifique a intenção da mensagem em UMA das categorias:
- emergency: sintomas, dor, medicamentos, dosagens ou efeitos colaterais.
- social: saudações ou agradecimentos curtos ("olá", "bom dia", "obrigado").
- question: perguntas sobre o programa ou dúvidas gerais.
- checkin_response: resposta direta ao check-in pendente ("A", "sim", "85kg", emojis).
  Nunca use esta categoria se não houver check-in pendente.
- off_topic: qualquer outra coisa.

Qualquer menção a sintoma de saúde tem prioridade máxima (emergency).

Responda apenas com JSON:
{"intent": "...", "confidence": 0.0-1.0, "reason": "breve explicação"}"""


def _user_prompt(text: str, context: MessageContext) -> str:
    lines = [
        f'Mensagem do paciente: "{text}"',
        f"Tem check-in pendente: {'sim' if context.has_active_checkin else 'não'}",
    ]
    if context.checkin_title:
        lines.append(f'Título do check-in: "{context.checkin_title}"')
    return "\n".join(lines)


def parse_classification(payload: Optional[dict]) -> Classification:
    """Validate a model verdict. Raises DownstreamUnavailableError on anything malformed."""
    if not payload:
        raise DownstreamUnavailableError("classifier", "response was not a JSON object")
    try:
        intent = Intent(str(payload.get("intent", "")).strip().lower())
    except ValueError as exc:
        raise DownstreamUnavailableError("classifier", f"unknown intent {payload.get('intent')!r}") from exc
    try:
        confidence = float(payload.get("confidence"))
    except (TypeError, ValueError) as exc:
        raise DownstreamUnavailableError("classifier", "confidence is not a number") from exc
    if not 0.0 <= confidence <= 1.0:
        raise DownstreamUnavailableError("classifier", f"confidence {confidence} out of range")
    return Classification(intent=intent, confidence=confidence, reason=str(payload.get("reason") or ""))


class LLMIntentClassifier:
    def __init__(self, client: ChatCompletionClient):
        self.client = client

    def classify(self, text: str, context: MessageContext) -> Classification:
        raw = self.client.complete(
            [
                {"role": "system", "content": _SYSTEM_PROMPT},
                {"role": "user", "content": _user_prompt(text, context)},
            ],
            temperature=0.1,
        )
        return parse_classification(extract_json_object(raw))
