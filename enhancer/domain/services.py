"""
===============================================================================
TARJETA CRC — domain/services.py
===============================================================================

Módulo:
    Puertos de Servicios Externos (Protocols) + DTOs del proveedor

Responsabilidades:
    - Definir el contrato del cliente generativo (EnhancementClient).
    - Definir el contrato del splitter (ContentSplitter).
    - Describir request/response de forma provider-agnostic.

Colaboradores:
    - infrastructure/services/llm/*: implementaciones concretas (Gemini, fake).
    - infrastructure/text/splitter.py: implementación del splitter.
    - application/dispatch.py: consume EnhancementClient con rotación.

Reglas:
    - SOLO interfaces y DTOs: nada de implementación.
    - Errores esperados: RateLimitedError | TransientAPIError | FatalAPIError.
===============================================================================
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Optional, Protocol, Sequence

from .credentials import Credential


@dataclass(frozen=True)
class ConversationTurn:
    """Turno previo de conversación enviado como contexto al modelo."""

    role: Literal["user", "model"]
    text: str


@dataclass(frozen=True)
class EnhancementRequest:
    """
    Pedido al proveedor.

    source_text se usa para el guard de retención (conteo de palabras);
    prompt es el texto final enviado (puede incluir placeholders).
    """

    prompt: str
    system_instruction: str = ""
    source_text: str = ""
    history: tuple[ConversationTurn, ...] = ()
    temperature: Optional[float] = None
    max_output_tokens: Optional[int] = None
    check_retention: bool = True


@dataclass(frozen=True)
class EnhancementResponse:
    text: str
    model_name: str
    provider: str = "gemini"
    finish_reason: Optional[str] = None


class EnhancementClient(Protocol):
    """Contrato del cliente generativo."""

    @property
    def model_name(self) -> str: ...

    def send(
        self, request: EnhancementRequest, credential: Credential
    ) -> EnhancementResponse:
        """
        Envía un request con la credencial indicada.

        Raises:
            RateLimitedError: cuota agotada para esa credencial
            TransientAPIError: timeout / 5xx / red / respuesta vacía
            FatalAPIError: request inválido, credencial inválida, bloqueo
        """
        ...


@dataclass(frozen=True)
class TextChunk:
    """Salida del splitter."""

    index: int
    content: str
    word_count: int
    paragraph_count: int = field(default=1)


class ContentSplitter(Protocol):
    """Contrato para partir contenido en chunks de forma determinística."""

    def split(self, text: str) -> Sequence[TextChunk]: ...
