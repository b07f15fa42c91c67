"""
===============================================================================
USE CASE SUPPORT: Rotating Dispatcher (credenciales + retry por chunk)
===============================================================================

Name:
    RotationState / RotatingDispatcher

Business Goal:
    Enviar cada chunk al proveedor usando el pool de API keys sin perder
    trabajo por cuotas agotadas ni fallas de red pasajeras.

-------------------------------------------------------------------------------
CRC CARD (Class-Responsibility-Collaborator)
-------------------------------------------------------------------------------
Class:
    RotationState (una por corrida)

Responsibilities:
    - Elegir la credencial inicial (failover: 0; round-robin: cursor % n).
    - Recordar qué credenciales quedaron agotadas (rate limit) en la corrida.
    - Ofrecer candidatas en orden circular desde la actual, sin agotadas.
    - Devolver el pool con el cursor nuevo al terminar.

Class:
    RotatingDispatcher

Responsibilities:
    - Transient  → reintentar la misma credencial (tenacity, backoff + jitter);
                   agotados los intentos, pasar a la siguiente solo para este chunk.
    - RateLimited → marcar agotada y rotar.
    - Fatal      → propagar sin reintentar.
    - Guard de retención: salida demasiado corta cuenta como transitoria.

Collaborators:
    - domain.services.EnhancementClient
    - infrastructure.services.retry (create_retrying)
    - crosscutting.metrics (llamadas y rotaciones)
===============================================================================
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from tenacity import Retrying

from ..crosscutting.exceptions import (
    AllCredentialsExhausted,
    FatalAPIError,
    NoCredentialsError,
    RateLimitedError,
    TransientAPIError,
)
from ..crosscutting.logger import logger
from ..crosscutting.metrics import record_api_call, record_credential_rotation
from ..domain.credentials import Credential, CredentialPool, RotationStrategy
from ..domain.services import (
    EnhancementClient,
    EnhancementRequest,
    EnhancementResponse,
)
from ..infrastructure.services.retry import create_retrying
from ..infrastructure.text.splitter import count_words


class RotationState:
    """Estado de rotación de una corrida (no thread-safe: una corrida, un hilo)."""

    def __init__(self, pool: CredentialPool) -> None:
        self._pool = pool
        self._exhausted: set[int] = set()
        size = len(pool)
        if size == 0 or pool.strategy is RotationStrategy.FAILOVER:
            self._current = 0
        else:
            self._current = pool.cursor % size

    @property
    def pool(self) -> CredentialPool:
        return self._pool

    @property
    def current(self) -> int:
        return self._current

    @property
    def exhausted(self) -> frozenset[int]:
        return frozenset(self._exhausted)

    @property
    def all_exhausted(self) -> bool:
        return len(self._pool) > 0 and len(self._exhausted) >= len(self._pool)

    def candidates(self) -> list[Credential]:
        """Credenciales no agotadas, en orden circular desde la actual."""
        size = len(self._pool)
        order = [self._pool.at(self._current + step) for step in range(size)]
        return [c for c in order if c.ordinal not in self._exhausted]

    def mark_exhausted(self, credential: Credential) -> None:
        self._exhausted.add(credential.ordinal)

    def mark_success(self, credential: Credential) -> None:
        self._current = credential.ordinal

    def finish(self) -> CredentialPool:
        """Pool para la próxima corrida (el cursor solo importa en round-robin)."""
        if self._pool.strategy is RotationStrategy.ROUND_ROBIN and len(self._pool):
            return self._pool.with_cursor(self._current)
        return self._pool


@dataclass(frozen=True)
class DispatchResult:
    response: EnhancementResponse
    credential: Credential


class RotatingDispatcher:
    def __init__(
        self,
        client: EnhancementClient,
        *,
        min_retention_ratio: float = 0.7,
        min_retention_words: int = 200,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        self._client = client
        self._min_retention_ratio = min_retention_ratio
        self._min_retention_words = min_retention_words
        self._retrying: Retrying = create_retrying(
            max_attempts, base_delay, max_delay, sleep=sleep
        )

    @property
    def model_name(self) -> str:
        return self._client.model_name

    def dispatch(
        self, request: EnhancementRequest, rotation: RotationState
    ) -> DispatchResult:
        """
        Envía un request rotando credenciales.

        Raises:
            NoCredentialsError: pool vacío
            AllCredentialsExhausted: todas las credenciales con rate limit
            TransientAPIError: las credenciales restantes fallaron transitoriamente
            FatalAPIError: error no recuperable (se propaga inmediatamente)
        """
        if rotation.pool.is_empty:
            raise NoCredentialsError("No API credentials configured")

        last_transient: Optional[TransientAPIError] = None
        retry_hints: list[float] = []

        for credential in rotation.candidates():
            try:
                response = self._retrying.copy()(
                    self._attempt, request, credential=credential
                )
            except RateLimitedError as exc:
                rotation.mark_exhausted(credential)
                record_credential_rotation("rate_limited")
                if exc.retry_after is not None:
                    retry_hints.append(exc.retry_after)
                logger.warning(
                    "Credential rate limited; rotating",
                    extra={
                        "credential_label": credential.label,
                        "retry_after": exc.retry_after,
                        "exhausted": len(rotation.exhausted),
                        "pool_size": len(rotation.pool),
                    },
                )
                continue
            except TransientAPIError as exc:
                last_transient = exc
                record_credential_rotation("transient")
                logger.warning(
                    "Credential failed transiently; trying next for this chunk",
                    extra={"credential_label": credential.label, "error": exc.message},
                )
                continue

            rotation.mark_success(credential)
            return DispatchResult(response=response, credential=credential)

        if rotation.all_exhausted:
            raise AllCredentialsExhausted(
                f"Rate limit reached on all {len(rotation.pool)} API keys",
                retry_after=min(retry_hints) if retry_hints else None,
            )
        if last_transient is not None:
            raise last_transient
        raise TransientAPIError("No credential produced a response")

    def _attempt(
        self, request: EnhancementRequest, *, credential: Credential
    ) -> EnhancementResponse:
        try:
            response = self._client.send(request, credential)
            self._check_retention(request, response)
        except RateLimitedError:
            record_api_call("rate_limited")
            raise
        except TransientAPIError:
            record_api_call("transient")
            raise
        except FatalAPIError:
            record_api_call("fatal")
            raise

        record_api_call("success")
        return response

    def _check_retention(
        self, request: EnhancementRequest, response: EnhancementResponse
    ) -> None:
        if not request.check_retention:
            return
        source_words = count_words(request.source_text)
        if source_words < self._min_retention_words:
            return

        output_words = count_words(response.text)
        if output_words < source_words * self._min_retention_ratio:
            logger.warning(
                "Enhanced output lost too much content; retrying",
                extra={"source_words": source_words, "output_words": output_words},
            )
            raise TransientAPIError(
                f"Output too short ({output_words} of {source_words} words)"
            )
