"""
Name: Fake Enhancement Client (Deterministic Test Double)

Qué es
------
Implementación determinista de `domain.services.EnhancementClient` para
tests/CI (`FAKE_LLM=1`). No realiza IO ni llama APIs externas y permite
probar:
  - rotación de credenciales (errores por credencial)
  - reintentos (cola de outcomes scripteados)
  - el pipeline completo sin red ni API keys

CRC (Class-Responsibility-Collaboration)
----------------------------------------
Class: FakeEnhancementClient
Responsibilities:
  - Devolver una “mejora” determinista del texto fuente
  - Registrar cada llamada (request + ordinal de credencial)
  - Lanzar los errores scripteados en el orden pedido
Collaborators:
  - domain.services (EnhancementRequest / EnhancementResponse)
Constraints:
  - Sin IO / sin dependencias externas
  - Determinismo total: mismas entradas → misma salida
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from threading import Lock
from typing import Iterable, Mapping, Optional, Union

from ....crosscutting.logger import logger
from ....domain.credentials import Credential
from ....domain.services import EnhancementRequest, EnhancementResponse

# R: str = texto a devolver; Exception = error a lanzar; None = salida default
Outcome = Union[str, BaseException, None]

FAKE_PREFIX = "[enhanced] "


@dataclass(frozen=True)
class FakeCall:
    request: EnhancementRequest
    credential_ordinal: int


def fake_enhance(text: str) -> str:
    """Salida default: el texto fuente con un prefijo estable."""
    return f"{FAKE_PREFIX}{(text or '').strip()}"


class FakeEnhancementClient:
    """
    R: Deterministic EnhancementClient for tests/CI.

    Orden de resolución por llamada:
      1) error fijo de la credencial (per_credential)
      2) siguiente outcome de la cola (outcomes)
      3) fake_enhance(source_text)
    """

    MODEL_ID = "fake-enhancer-v1"

    def __init__(
        self,
        *,
        outcomes: Iterable[Outcome] = (),
        per_credential: Optional[Mapping[int, BaseException]] = None,
    ) -> None:
        self._outcomes: deque[Outcome] = deque(outcomes)
        self._per_credential = dict(per_credential or {})
        self._lock = Lock()
        self.calls: list[FakeCall] = []

        # R: Evitar ruido en CI/tests: debug en vez de info.
        logger.debug("FakeEnhancementClient initialized")

    @property
    def model_name(self) -> str:
        return self.MODEL_ID

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def queue(self, *outcomes: Outcome) -> None:
        with self._lock:
            self._outcomes.extend(outcomes)

    def send(
        self, request: EnhancementRequest, credential: Credential
    ) -> EnhancementResponse:
        with self._lock:
            self.calls.append(FakeCall(request, credential.ordinal))
            fixed = self._per_credential.get(credential.ordinal)
            outcome = (
                fixed
                if fixed is not None
                else (self._outcomes.popleft() if self._outcomes else None)
            )

        if isinstance(outcome, BaseException):
            raise outcome

        text = outcome if isinstance(outcome, str) else fake_enhance(
            request.source_text or request.prompt
        )
        return EnhancementResponse(
            text=text, model_name=self.MODEL_ID, provider="fake", finish_reason="STOP"
        )
