"""Shared payment status and subscription constants used across services and routers."""

from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet, Optional


class TransactionStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"

    def __str__(self) -> str:  # pragma: no cover - convenience
        return self.value


TERMINAL_STATUSES: FrozenSet[TransactionStatus] = frozenset(
    {
        TransactionStatus.COMPLETED,
        TransactionStatus.FAILED,
        TransactionStatus.CANCELLED,
        TransactionStatus.EXPIRED,
    }
)

# Spellings seen from the gateway and older app builds.
_STATUS_ALIASES: Dict[str, TransactionStatus] = {
    "CANCELED": TransactionStatus.CANCELLED,
    "SUCCESS": TransactionStatus.COMPLETED,
    "SUCCESSFUL": TransactionStatus.COMPLETED,
}

DEFAULT_VALIDITY_DAYS = 30
DEFAULT_CURRENCY = "TZS"
ORDER_ID_PREFIX = "tvmax"


def parse_transaction_status(value: object) -> Optional[TransactionStatus]:
    """Normalise a gateway status string; ``None`` when it is not recognised."""
    if not isinstance(value, str):
        return None
    normalized = value.strip().upper()
    if not normalized:
        return None
    alias = _STATUS_ALIASES.get(normalized)
    if alias is not None:
        return alias
    try:
        return TransactionStatus(normalized)
    except ValueError:
        return None


__all__ = [
    "DEFAULT_CURRENCY",
    "DEFAULT_VALIDITY_DAYS",
    "ORDER_ID_PREFIX",
    "TERMINAL_STATUSES",
    "TransactionStatus",
    "parse_transaction_status",
]
