"""
===============================================================================
USE CASE: Enhancement Pipeline (orquestador por identidad de contenido)
===============================================================================

Name:
    EnhancementPipeline

Business Goal:
    Dado el texto de un capítulo, partirlo en chunks, mejorar cada chunk con
    el proveedor generativo (reusando el cache) y entregar los resultados al
    caller en orden ascendente, chunk a chunk.

Why (Context / Intención):
    - Un capítulo largo no entra en una sola llamada al modelo.
    - Lo ya procesado no se reenvía: el cache por chunk hace que retomar una
      corrida cortada sea barato.
    - Un chunk fallido no aborta a sus hermanos.

-------------------------------------------------------------------------------
CRC CARD (Class-Responsibility-Collaborator)
-------------------------------------------------------------------------------
Class:
    EnhancementPipeline

Responsibilities:
    - Máquina de estados por identidad:
        IDLE → SPLITTING → PROCESSING → AGGREGATING → DONE | FAILED | CANCELLED
    - Una corrida por identidad a la vez (RunInProgressError si no).
    - Invalidar el cache cuando total_chunks no coincide con el split fresco.
    - Emitir eventos: ChunkReady / ChunkFailed / Progress + evento terminal.
    - Devolver el CredentialPool actualizado en cada evento terminal.
    - Reprocesar un chunk puntual sin volver a partir el texto.

Collaborators:
    - ContentSplitter (infrastructure/text/splitter.py)
    - ChunkCache (infrastructure/cache/chunk_cache.py)
    - RotatingDispatcher (application/dispatch.py)
    - PromptBuilder (application/prompt_builder.py)
    - placeholders (elementos multimedia preservados)
-------------------------------------------------------------------------------
"""

from __future__ import annotations

import threading
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterator, Optional, Sequence, Union

from ..context import set_run_context
from ..crosscutting.config import DEFAULT_CHUNK_SIZE_WORDS
from ..crosscutting.exceptions import (
    AllCredentialsExhausted,
    CacheIOError,
    ChunkNotFoundError,
    EnhancementAPIError,
    NoCredentialsError,
    RunInProgressError,
    SplitError,
)
from ..crosscutting.logger import logger
from ..crosscutting.metrics import observe_chunk_latency, record_run
from ..domain.credentials import CredentialPool
from ..domain.entities import Chunk, ChunkStatus, ModelInfo
from ..domain.services import (
    ContentSplitter,
    ConversationTurn,
    EnhancementRequest,
    TextChunk,
)
from ..infrastructure.cache.chunk_cache import ChunkCache
from ..infrastructure.text.placeholders import protect_elements
from ..infrastructure.text.splitter import ParagraphSplitter, count_words
from .dispatch import RotatingDispatcher, RotationState
from .prompt_builder import PromptBuilder

MAX_TRACKED_STATES = 1024


class PipelineState(str, Enum):
    IDLE = "idle"
    SPLITTING = "splitting"
    PROCESSING = "processing"
    AGGREGATING = "aggregating"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class EnhancementOptions:
    """
    R: Parámetros de una corrida.

    Attributes:
        pool: credenciales + estrategia + cursor (se devuelve actualizado)
        title: título del capítulo (se agrega a las instrucciones)
        site_prompt / permanent_prompt: instrucciones extra del usuario
        use_emoji: pedir emojis junto a los diálogos
        chunk_size_words: override del tamaño objetivo (None = default)
        cancel_event: si se setea, no se inician más llamadas al proveedor
    """

    pool: CredentialPool
    title: str = ""
    site_prompt: str = ""
    permanent_prompt: str = ""
    use_emoji: bool = False
    chunk_size_words: Optional[int] = None
    cancel_event: Optional[threading.Event] = None

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()


# ---------------------------------------------------------------------------
# Eventos
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RunStarted:
    run_id: str
    total_chunks: int
    kind: str = field(default="started", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"run_id": self.run_id, "total_chunks": self.total_chunks}


@dataclass(frozen=True)
class ChunkReady:
    index: int
    total_chunks: int
    chunk: Chunk
    from_cache: bool
    kind: str = field(default="chunk_ready", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "total_chunks": self.total_chunks,
            "from_cache": self.from_cache,
            "chunk": self.chunk.to_dict(),
        }


@dataclass(frozen=True)
class ChunkFailed:
    index: int
    total_chunks: int
    error_code: str
    message: str
    kind: str = field(default="chunk_failed", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "total_chunks": self.total_chunks,
            "error_code": self.error_code,
            "message": self.message,
        }


@dataclass(frozen=True)
class Progress:
    processed: int
    total: int
    kind: str = field(default="progress", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"processed": self.processed, "total": self.total}


@dataclass(frozen=True)
class Completed:
    total_chunks: int
    pool: CredentialPool = field(repr=False)
    kind: str = field(default="completed", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"total_chunks": self.total_chunks, "cursor": self.pool.cursor}


@dataclass(frozen=True)
class CompletedWithErrors:
    total_chunks: int
    failed_indices: tuple[int, ...]
    pool: CredentialPool = field(repr=False)
    kind: str = field(default="completed_with_errors", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_chunks": self.total_chunks,
            "failed_indices": list(self.failed_indices),
            "cursor": self.pool.cursor,
        }


@dataclass(frozen=True)
class RunFailed:
    error_code: str
    message: str
    remaining_indices: tuple[int, ...]
    pool: CredentialPool = field(repr=False)
    kind: str = field(default="run_failed", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_code": self.error_code,
            "message": self.message,
            "remaining_indices": list(self.remaining_indices),
            "cursor": self.pool.cursor,
        }


@dataclass(frozen=True)
class Cancelled:
    remaining_indices: tuple[int, ...]
    pool: CredentialPool = field(repr=False)
    kind: str = field(default="cancelled", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "remaining_indices": list(self.remaining_indices),
            "cursor": self.pool.cursor,
        }


PipelineEvent = Union[
    RunStarted,
    ChunkReady,
    ChunkFailed,
    Progress,
    Completed,
    CompletedWithErrors,
    RunFailed,
    Cancelled,
]

TERMINAL_EVENTS = (Completed, CompletedWithErrors, RunFailed, Cancelled)


@dataclass(frozen=True)
class ReprocessOutcome:
    chunk: Chunk
    pool: CredentialPool = field(repr=False)


def clean_history(
    turns: Sequence[ConversationTurn], limit: int
) -> tuple[ConversationTurn, ...]:
    """
    Historial válido para el proveedor: sin vacíos, roles alternados,
    empieza con "user" y termina con "model".
    """
    cleaned: list[ConversationTurn] = []
    for turn in turns:
        if not turn.text.strip():
            continue
        if cleaned and cleaned[-1].role == turn.role:
            continue
        cleaned.append(turn)

    if cleaned and cleaned[-1].role == "user":
        cleaned.pop()

    cleaned = cleaned[-limit:] if limit > 0 else []
    while cleaned and cleaned[0].role != "user":
        cleaned.pop(0)
    return tuple(cleaned)


class EnhancementPipeline:
    """
    R: Orquestador de corridas de mejora.

    process() es un generador: el caller consume eventos en orden y puede
    cortar la corrida cerrando el generador o seteando options.cancel_event.
    """

    def __init__(
        self,
        cache: ChunkCache,
        dispatcher: RotatingDispatcher,
        prompts: PromptBuilder,
        *,
        chunk_size_words: int = DEFAULT_CHUNK_SIZE_WORDS,
        history_messages: int = 4,
        chunk_delay_seconds: float = 1.0,
        splitter_factory: Callable[[int], ContentSplitter] = ParagraphSplitter,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.cache = cache
        self.dispatcher = dispatcher
        self.prompts = prompts
        self.chunk_size_words = chunk_size_words
        self.history_messages = history_messages
        self.chunk_delay_seconds = chunk_delay_seconds
        self._splitter_factory = splitter_factory
        self._sleep = sleep

        self._states: "OrderedDict[str, PipelineState]" = OrderedDict()
        self._active: set[str] = set()
        self._guard = threading.Lock()

    # --------------------------------------------------------
    # Estado
    # --------------------------------------------------------
    def state(self, identity: str) -> PipelineState:
        with self._guard:
            return self._states.get(identity, PipelineState.IDLE)

    def is_running(self, identity: str) -> bool:
        with self._guard:
            return identity in self._active

    def _set_state(self, identity: str, state: PipelineState) -> None:
        with self._guard:
            self._states[identity] = state
            self._states.move_to_end(identity)
            # R: LRU acotado; nunca se expulsa una corrida activa
            while len(self._states) > MAX_TRACKED_STATES:
                idle = next(
                    (key for key in self._states if key not in self._active), None
                )
                if idle is None:
                    break
                del self._states[idle]

    def _acquire(self, identity: str) -> None:
        with self._guard:
            if identity in self._active:
                raise RunInProgressError(
                    f"A run is already in progress for {identity}"
                )
            self._active.add(identity)

    def _release(self, identity: str) -> None:
        with self._guard:
            self._active.discard(identity)

    # --------------------------------------------------------
    # Corrida completa
    # --------------------------------------------------------
    def process(
        self, identity: str, text: str, options: EnhancementOptions
    ) -> Iterator[PipelineEvent]:
        """
        Procesa un capítulo completo.

        Yields:
            RunStarted, luego ChunkReady/ChunkFailed + Progress por chunk,
            y exactamente un evento terminal.

        Raises:
            RunInProgressError: ya hay una corrida para la identidad
        """
        self._acquire(identity)
        run_id = uuid.uuid4().hex
        rotation = RotationState(options.pool)
        events = self._run(identity, text, options, rotation, run_id)
        outcome = "error"

        try:
            while True:
                # El caller puede reanudar el generador desde otro contexto (threadpool)
                set_run_context(run_id=run_id, content_identity=identity)
                try:
                    event = next(events)
                except StopIteration:
                    break
                if isinstance(event, TERMINAL_EVENTS):
                    outcome = event.kind
                yield event
        except GeneratorExit:
            if outcome == "error":
                self._set_state(identity, PipelineState.CANCELLED)
                outcome = "cancelled"
                logger.info("Enhancement run closed by caller")
            raise
        except Exception:
            self._set_state(identity, PipelineState.FAILED)
            logger.exception("Enhancement run crashed")
            raise
        finally:
            events.close()
            record_run(outcome)
            self._release(identity)
            set_run_context()

    def _split(self, text: str, options: EnhancementOptions) -> list[TextChunk]:
        target = options.chunk_size_words or self.chunk_size_words
        try:
            return list(self._splitter_factory(target).split(text))
        except SplitError as exc:
            logger.warning("Content could not be split", extra={"error": exc.message})
            return []

    def _run(
        self,
        identity: str,
        text: str,
        options: EnhancementOptions,
        rotation: RotationState,
        run_id: str,
    ) -> Iterator[PipelineEvent]:
        self._set_state(identity, PipelineState.SPLITTING)
        parts = self._split(text, options)
        total = len(parts)

        logger.info(
            "Enhancement run started",
            extra={"total_chunks": total, "strategy": rotation.pool.strategy.value},
        )
        yield RunStarted(run_id=run_id, total_chunks=total)

        if total == 0:
            self._set_state(identity, PipelineState.DONE)
            yield Completed(total_chunks=0, pool=rotation.finish())
            return

        cached = self._cached_set(identity, total)
        if cached is not None:
            self._set_state(identity, PipelineState.AGGREGATING)
            logger.info("Serving fully cached chunk set", extra={"total_chunks": total})
            for processed, chunk in enumerate(cached, 1):
                yield ChunkReady(chunk.index, total, chunk.with_status(ChunkStatus.CACHED), True)
                yield Progress(processed=processed, total=total)
            self._set_state(identity, PipelineState.DONE)
            yield Completed(total_chunks=total, pool=rotation.finish())
            return

        self._set_state(identity, PipelineState.PROCESSING)
        meta = self.cache.metadata(identity)
        listed = meta.indices if meta else frozenset()
        failed: list[int] = []
        history: list[ConversationTurn] = []
        called_api = False

        for part in parts:
            if options.cancelled:
                self._set_state(identity, PipelineState.CANCELLED)
                remaining = tuple(range(part.index, total))
                logger.info("Enhancement run cancelled", extra={"remaining": len(remaining)})
                yield Cancelled(remaining_indices=remaining, pool=rotation.finish())
                return

            hit = self.cache.get(identity, part.index)
            if hit is not None and hit.enhanced_text is not None:
                if part.index not in listed:
                    # Registro escrito sin llegar a la metadata: se vuelve a listar
                    logger.info(
                        "Cached chunk missing from metadata; relisting",
                        extra={"index": part.index},
                    )
                    self._store(identity, hit, total)
                yield ChunkReady(part.index, total, hit.with_status(ChunkStatus.CACHED), True)
                yield Progress(processed=part.index + 1, total=total)
                continue

            if called_api and self.chunk_delay_seconds > 0:
                self._sleep(self.chunk_delay_seconds)
            called_api = True

            try:
                chunk, turns = self._enhance(identity, part, total, options, rotation, history)
            except (AllCredentialsExhausted, NoCredentialsError) as exc:
                self._set_state(identity, PipelineState.FAILED)
                remaining = tuple(range(part.index, total))
                logger.error(
                    "Enhancement run failed",
                    extra={"error_code": exc.error_code, "remaining": len(remaining)},
                )
                yield RunFailed(
                    error_code=exc.error_code,
                    message=exc.message,
                    remaining_indices=remaining,
                    pool=rotation.finish(),
                )
                return
            except EnhancementAPIError as exc:
                failed.append(part.index)
                logger.warning(
                    "Chunk failed",
                    extra={"index": part.index, "error_code": exc.error_code},
                )
                yield ChunkFailed(part.index, total, exc.error_code, exc.message)
                yield Progress(processed=part.index + 1, total=total)
                continue

            history.extend(turns)
            yield ChunkReady(part.index, total, chunk, False)
            yield Progress(processed=part.index + 1, total=total)

        self._set_state(identity, PipelineState.AGGREGATING)
        pool = rotation.finish()
        self._set_state(identity, PipelineState.DONE)
        if failed:
            logger.info("Enhancement run completed with errors", extra={"failed": failed})
            yield CompletedWithErrors(total, tuple(failed), pool)
        else:
            logger.info("Enhancement run completed", extra={"total_chunks": total})
            yield Completed(total_chunks=total, pool=pool)

    def _cached_set(self, identity: str, total: int) -> Optional[list[Chunk]]:
        """Chunks cacheados si el conjunto está completo para este split."""
        meta = self.cache.metadata(identity)
        if meta is None or meta.total_chunks is None:
            return None

        if meta.total_chunks != total:
            logger.info(
                "Cached chunk set belongs to a different split; invalidating",
                extra={"cached_total": meta.total_chunks, "total_chunks": total},
            )
            try:
                self.cache.delete_all(identity)
            except CacheIOError as exc:
                logger.warning("Cache invalidation failed", extra={"error": exc.message})
            return None

        if not meta.is_complete:
            return None
        chunks = self.cache.get_all(identity)
        if len(chunks) != total or any(c.enhanced_text is None for c in chunks):
            return None
        return chunks

    def _store(self, identity: str, chunk: Chunk, total: Optional[int]) -> None:
        """Un store caído no descarta un chunk ya pagado: solo se loguea."""
        try:
            self.cache.put(identity, chunk.index, chunk, total_chunks=total)
        except CacheIOError as exc:
            logger.warning(
                "Chunk not cached",
                extra={"index": chunk.index, "error": exc.message},
            )

    def _enhance(
        self,
        identity: str,
        part: TextChunk,
        total: Optional[int],
        options: EnhancementOptions,
        rotation: RotationState,
        history: Sequence[ConversationTurn],
    ) -> tuple[Chunk, tuple[ConversationTurn, ...]]:
        """total=None: total_chunks desconocido (no se toca en metadata)."""
        started = time.perf_counter()
        protected = protect_elements(part.content)
        message = self.prompts.enhancement_message(protected.text)
        request = EnhancementRequest(
            prompt=message,
            system_instruction=self.prompts.enhancement_instructions(
                title=options.title,
                part=part.index + 1,
                total=total or 1,
                use_emoji=options.use_emoji,
                site_prompt=options.site_prompt,
                permanent_prompt=options.permanent_prompt,
            ),
            source_text=part.content,
            history=clean_history(history, self.history_messages),
        )

        result = self.dispatcher.dispatch(request, rotation)
        chunk = Chunk(
            content_identity=identity,
            index=part.index,
            original_text=part.content,
            word_count=part.word_count,
            enhanced_text=protected.restore(result.response.text),
            status=ChunkStatus.COMPLETED,
            model_info=ModelInfo(
                name=result.response.model_name, provider=result.response.provider
            ),
        )
        self._store(identity, chunk, total)
        observe_chunk_latency(time.perf_counter() - started)

        logger.info(
            "Chunk enhanced",
            extra={
                "index": part.index,
                "word_count": part.word_count,
                "credential_label": result.credential.label,
            },
        )
        turns = (
            ConversationTurn(role="user", text=message),
            ConversationTurn(role="model", text=result.response.text),
        )
        return chunk, turns

    # --------------------------------------------------------
    # Reproceso de un chunk
    # --------------------------------------------------------
    def reprocess_chunk(
        self,
        identity: str,
        index: int,
        options: EnhancementOptions,
        original_text: Optional[str] = None,
    ) -> ReprocessOutcome:
        """
        Reenvía un único chunk y sobrescribe su entrada de cache.

        Nunca vuelve a partir el texto: los hermanos no cambian.

        Raises:
            ChunkNotFoundError: no hay texto provisto ni cacheado para el índice
            RunInProgressError: ya hay una corrida para la identidad
            AllCredentialsExhausted: con remaining_indices=(index,)
            EnhancementAPIError: error del proveedor para este chunk

        Una falla al escribir el cache se loguea; el chunk se devuelve igual.
        """
        self._acquire(identity)
        set_run_context(run_id=uuid.uuid4().hex, content_identity=identity)
        try:
            meta = self.cache.metadata(identity)
            total = meta.total_chunks if meta else None
            if index < 0 or (total is not None and index >= total):
                raise ChunkNotFoundError(f"Chunk {index} is out of range")

            text = original_text
            if not text:
                cached = self.cache.get(identity, index)
                text = cached.original_text if cached else None
            if not text:
                raise ChunkNotFoundError(f"No text available for chunk {index}")

            part = TextChunk(index=index, content=text, word_count=count_words(text))
            rotation = RotationState(options.pool)
            try:
                chunk, _ = self._enhance(
                    identity, part, total, options, rotation, ()
                )
            except AllCredentialsExhausted as exc:
                raise AllCredentialsExhausted(
                    exc.message,
                    remaining_indices=(index,),
                    retry_after=exc.retry_after,
                    error_id=exc.error_id,
                    original_error=exc.original_error,
                ) from exc
            logger.info("Chunk reprocessed", extra={"index": index})
            return ReprocessOutcome(chunk=chunk, pool=rotation.finish())
        finally:
            self._release(identity)
            set_run_context()
