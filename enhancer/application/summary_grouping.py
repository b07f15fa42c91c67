"""
===============================================================================
MÓDULO: Summary Grouping — particiona los chunks en grupos para resumir
===============================================================================

Responsabilidades:
  - Agrupar índices [0, total_chunks) en rangos contiguos de group_size.
  - El último grupo puede ser más corto.

Colaboradores:
  - application/summaries.py (resume un grupo)
  - interfaces/api (GET summary-groups)

Decisiones de diseño:
  - Función pura; group_size < 1 se lleva a 1.
===============================================================================
"""

from __future__ import annotations

from ..domain.entities import SummaryGroup


def groups_for(total_chunks: int, group_size: int) -> list[SummaryGroup]:
    """
    Particiona [0, total_chunks) en grupos contiguos y disjuntos.

    >>> [g.chunk_indices for g in groups_for(5, 2)]
    [(0, 1), (2, 3), (4,)]
    """
    if total_chunks <= 0:
        return []

    size = max(1, int(group_size))
    groups: list[SummaryGroup] = []
    for start in range(0, total_chunks, size):
        end = min(start + size, total_chunks) - 1
        groups.append(
            SummaryGroup(
                start_index=start,
                end_index=end,
                chunk_indices=tuple(range(start, end + 1)),
            )
        )
    return groups
