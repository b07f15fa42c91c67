"""
===============================================================================
ARCHIVO: crosscutting/metrics.py
===============================================================================

CRC CARD (Módulo)
-------------------------------------------------------------------------------
Nombre:
    Métricas (Prometheus) del pipeline de mejora

Responsabilidades:
    - Definir métricas Prometheus en un registry propio.
    - Proveer funciones pequeñas y estables para registrar eventos/duraciones.
    - Cuidar cardinalidad (NO content_identity, NO credenciales, NO índices).
    - Exponer helpers para generar la respuesta /metrics.

Colaboradores:
    - infrastructure/cache/chunk_cache.py: hits / misses.
    - application/dispatch.py: llamadas por outcome y rotaciones.
    - application/pipeline.py: latencia por chunk y corridas por outcome.
    - interfaces/api/main.py: endpoint /metrics.
===============================================================================
"""

from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

# R: Registry propio para no mezclar con métricas default del proceso.
_registry = CollectorRegistry()

_chunk_cache_hits = Counter(
    "enhancer_chunk_cache_hit_total",
    "Hits del cache de chunks",
    registry=_registry,
)

_chunk_cache_misses = Counter(
    "enhancer_chunk_cache_miss_total",
    "Misses del cache de chunks",
    registry=_registry,
)

_api_calls_total = Counter(
    "enhancer_api_calls_total",
    "Llamadas al proveedor generativo por outcome",
    ["outcome"],
    registry=_registry,
)

_credential_rotations_total = Counter(
    "enhancer_credential_rotations_total",
    "Rotaciones de credencial por motivo",
    ["reason"],
    registry=_registry,
)

_chunk_latency = Histogram(
    "enhancer_chunk_latency_seconds",
    "Latencia de mejora por chunk (segundos)",
    buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 60.0, 120.0),
    registry=_registry,
)

_runs_total = Counter(
    "enhancer_runs_total",
    "Corridas del pipeline por estado terminal",
    ["outcome"],
    registry=_registry,
)


def record_chunk_cache_hit(count: int = 1) -> None:
    """Incrementa hits del cache de chunks."""
    _chunk_cache_hits.inc(count)


def record_chunk_cache_miss(count: int = 1) -> None:
    """Incrementa misses del cache de chunks."""
    _chunk_cache_misses.inc(count)


def record_api_call(outcome: str) -> None:
    """
    Cuenta llamadas al proveedor.

    outcome (baja cardinalidad): success | transient | rate_limited | fatal.
    """
    _api_calls_total.labels(outcome=outcome).inc()


def record_credential_rotation(reason: str) -> None:
    """reason: rate_limited | transient."""
    _credential_rotations_total.labels(reason=reason).inc()


def observe_chunk_latency(seconds: float) -> None:
    _chunk_latency.observe(seconds)


def record_run(outcome: str) -> None:
    """outcome: completed | completed_with_errors | failed | cancelled."""
    _runs_total.labels(outcome=outcome).inc()


def get_metrics_response() -> tuple[bytes, str]:
    """Genera el body y content-type para /metrics."""
    return generate_latest(_registry), CONTENT_TYPE_LATEST
