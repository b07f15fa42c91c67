"""
Name: Streaming Response Handler

Responsibilities:
  - Server-Sent Events (SSE) streaming for pipeline events
  - Chunk-by-chunk delivery to the caller, in index order
  - Graceful error handling during stream

Collaborators:
  - application.pipeline (PipelineEvent generator)
  - interfaces.api.routes (FastAPI endpoints)

SSE Format:
    event: chunk_ready
    data: {"index": 0, "total_chunks": 3, "from_cache": false, "chunk": {...}}

    event: completed
    data: {"total_chunks": 3, "cursor": 1}

    event: error
    data: {"error_code": "...", "message": "..."}
"""

from __future__ import annotations

import json
from typing import Callable, Iterable, Iterator, Optional

from fastapi.responses import StreamingResponse

from ...application.pipeline import TERMINAL_EVENTS, PipelineEvent
from ...crosscutting.exceptions import EnhancerError
from ...crosscutting.logger import logger

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}


def stream_events(
    events: Iterable[PipelineEvent],
    on_terminal: Optional[Callable[[PipelineEvent], None]] = None,
) -> StreamingResponse:
    """
    Stream pipeline events as Server-Sent Events.

    on_terminal se invoca con el evento terminal antes de enviarlo
    (p.ej. para persistir el cursor de rotación).
    """
    return StreamingResponse(
        _generate_sse(events, on_terminal),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


def _generate_sse(
    events: Iterable[PipelineEvent],
    on_terminal: Optional[Callable[[PipelineEvent], None]],
) -> Iterator[str]:
    """Generate SSE events from the pipeline generator."""
    try:
        for event in events:
            if on_terminal is not None and isinstance(event, TERMINAL_EVENTS):
                on_terminal(event)
            yield sse_event(event.kind, event.to_dict())
    except EnhancerError as exc:
        logger.error(
            "SSE stream error",
            extra={"error_code": exc.error_code, "error_id": exc.error_id},
        )
        yield sse_event("error", exc.to_response().to_dict())
    except Exception as exc:
        logger.exception("SSE stream crashed")
        yield sse_event(
            "error", {"error_code": "INTERNAL_ERROR", "message": str(exc)}
        )


def sse_event(event: str, data: dict) -> str:
    """Format SSE event."""
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"
