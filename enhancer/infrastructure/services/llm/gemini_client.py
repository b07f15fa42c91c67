"""
Name: Google Gemini Enhancement Client (Adapter)

Qué hace
--------
Implementación concreta de `domain.services.EnhancementClient` usando
Google GenAI (Gemini). Este componente se encarga de:
  - Enviar un request (instrucciones + historial + texto) con una credencial dada
  - Traducir errores del SDK a la jerarquía del pipeline
    (RateLimited / Transient / Fatal / ContentBlocked)
  - Detectar respuestas vacías o bloqueadas por seguridad

Arquitectura
------------
- Capa: Infrastructure
- Rol: Adapter hacia un proveedor externo (Google GenAI)

CRC (Class-Responsibility-Collaboration)
----------------------------------------
Class: GeminiEnhancementClient
Responsibilities:
  - Un `genai.Client` por credencial (cacheado)
  - Armar `GenerateContentConfig` desde settings + overrides del request
  - Clasificar errores; NO reintenta (eso lo hace el dispatcher)
Collaborators:
  - google.genai.Client / google.genai.types / google.genai.errors
  - infrastructure/services/retry.classify_provider_error
Constraints:
  - La credencial nunca se loguea (solo su label)
"""

from __future__ import annotations

from threading import Lock
from typing import Callable, Dict, Optional

from google import genai
from google.genai import types

from ....crosscutting.exceptions import (
    ContentBlockedError,
    EnhancementAPIError,
    TransientAPIError,
)
from ....crosscutting.logger import logger
from ....domain.credentials import Credential
from ....domain.services import EnhancementRequest, EnhancementResponse
from ..retry import classify_provider_error

_BLOCKED_FINISH_REASONS = frozenset(
    {"SAFETY", "PROHIBITED_CONTENT", "BLOCKLIST", "SPII"}
)


def _reason_name(value: object) -> Optional[str]:
    if value is None:
        return None
    return str(getattr(value, "name", value)).upper()


class GeminiEnhancementClient:
    """
    R: Google Gemini implementation of EnhancementClient.
    """

    PROVIDER = "gemini"
    DEFAULT_MODEL_ID = "gemini-2.5-flash"

    def __init__(
        self,
        *,
        model_id: str | None = None,
        temperature: float = 0.7,
        top_p: float = 0.95,
        top_k: int = 40,
        max_output_tokens: int = 8192,
        client_factory: Callable[[str], genai.Client] | None = None,
    ) -> None:
        """
        Args:
            model_id: Override del modelo (default: gemini-2.5-flash)
            client_factory: api_key -> genai.Client (inyectable para tests)
        """
        self._model_id = (model_id or self.DEFAULT_MODEL_ID).strip()
        self._temperature = temperature
        self._top_p = top_p
        self._top_k = top_k
        self._max_output_tokens = max_output_tokens
        self._client_factory = client_factory or (
            lambda api_key: genai.Client(api_key=api_key)
        )
        self._clients: Dict[int, genai.Client] = {}
        self._clients_lock = Lock()

        logger.info(
            "GeminiEnhancementClient initialized",
            extra={"model_id": self._model_id},
        )

    @property
    def model_name(self) -> str:
        return self._model_id

    def _client_for(self, credential: Credential) -> genai.Client:
        with self._clients_lock:
            client = self._clients.get(credential.ordinal)
            if client is None:
                client = self._client_factory(credential.value)
                self._clients[credential.ordinal] = client
            return client

    def _build_config(self, request: EnhancementRequest) -> types.GenerateContentConfig:
        return types.GenerateContentConfig(
            system_instruction=request.system_instruction or None,
            temperature=(
                self._temperature if request.temperature is None else request.temperature
            ),
            top_p=self._top_p,
            top_k=self._top_k,
            max_output_tokens=request.max_output_tokens or self._max_output_tokens,
        )

    @staticmethod
    def _build_contents(request: EnhancementRequest) -> list[types.Content]:
        contents = [
            types.Content(role=turn.role, parts=[types.Part(text=turn.text)])
            for turn in request.history
        ]
        contents.append(
            types.Content(role="user", parts=[types.Part(text=request.prompt)])
        )
        return contents

    def send(
        self, request: EnhancementRequest, credential: Credential
    ) -> EnhancementResponse:
        """
        R: Una sola llamada al proveedor (sin retry).

        Raises:
            RateLimitedError | TransientAPIError | FatalAPIError
        """
        try:
            response = self._client_for(credential).models.generate_content(
                model=self._model_id,
                contents=self._build_contents(request),
                config=self._build_config(request),
            )
        except Exception as exc:
            # R: APIError expone `code`; httpx / red caen en la heurística de retry.py
            raise self._classify(exc, credential) from exc

        return self._to_response(response)

    def _classify(
        self, exc: BaseException, credential: Credential
    ) -> EnhancementAPIError:
        error = classify_provider_error(exc)
        logger.warning(
            "Gemini call failed",
            extra={
                "model_id": self._model_id,
                "credential_label": credential.label,
                "status_code": getattr(exc, "code", None),
                "error_type": type(exc).__name__,
                "classified_as": error.error_code,
            },
        )
        return error

    def _to_response(self, response: types.GenerateContentResponse) -> EnhancementResponse:
        feedback = getattr(response, "prompt_feedback", None)
        block_reason = _reason_name(getattr(feedback, "block_reason", None))
        if block_reason:
            raise ContentBlockedError(f"Prompt blocked by provider: {block_reason}")

        candidates = getattr(response, "candidates", None) or []
        finish_reason = (
            _reason_name(getattr(candidates[0], "finish_reason", None))
            if candidates
            else None
        )
        if finish_reason in _BLOCKED_FINISH_REASONS:
            raise ContentBlockedError(
                f"Response blocked by provider: {finish_reason}"
            )

        text = (getattr(response, "text", None) or "").strip()
        if not text:
            raise TransientAPIError("Provider returned an empty response")

        return EnhancementResponse(
            text=text,
            model_name=self._model_id,
            provider=self.PROVIDER,
            finish_reason=finish_reason,
        )
