"""
===============================================================================
TARJETA CRC — domain/credentials.py
===============================================================================

Módulo:
    Value objects de credenciales (Credential, CredentialPool)

Responsabilidades:
    - Representar el conjunto ordenado de API keys y su estrategia de rotación.
    - Garantizar que el valor de una key nunca aparezca en repr/logs.
    - Transportar el cursor round-robin entre corridas (inmutable).

Colaboradores:
    - application/dispatch.py: RotationState recorre el pool.
    - application/pipeline.py: devuelve el pool actualizado en eventos terminales.
    - interfaces/api: persiste el cursor entre corridas.
===============================================================================
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Iterable


class RotationStrategy(str, Enum):
    FAILOVER = "failover"
    ROUND_ROBIN = "round-robin"


@dataclass(frozen=True)
class Credential:
    """API key + posición en el pool (ordinal)."""

    value: str = field(repr=False)
    ordinal: int = 0

    @property
    def label(self) -> str:
        """Identificador seguro para logs (nunca el valor)."""
        return f"credential#{self.ordinal}"

    def __repr__(self) -> str:
        return f"Credential(ordinal={self.ordinal})"

    __str__ = __repr__


@dataclass(frozen=True)
class CredentialPool:
    credentials: tuple[Credential, ...] = ()
    strategy: RotationStrategy = RotationStrategy.FAILOVER
    cursor: int = 0

    @classmethod
    def from_keys(
        cls,
        primary: str | None,
        backups: Iterable[str] = (),
        strategy: RotationStrategy | str = RotationStrategy.FAILOVER,
        cursor: int = 0,
    ) -> "CredentialPool":
        """Primary primero, luego backups en orden; se descartan keys vacías."""
        values: list[str] = []
        for key in (primary, *backups):
            if key and key.strip():
                values.append(key.strip())
        return cls(
            credentials=tuple(Credential(v, i) for i, v in enumerate(values)),
            strategy=RotationStrategy(strategy),
            cursor=max(0, int(cursor)),
        )

    def __len__(self) -> int:
        return len(self.credentials)

    @property
    def is_empty(self) -> bool:
        return not self.credentials

    def at(self, index: int) -> Credential:
        return self.credentials[index % len(self.credentials)]

    def with_cursor(self, cursor: int) -> "CredentialPool":
        return replace(self, cursor=cursor)
