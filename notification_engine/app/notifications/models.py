"""
models.py — Shared data structures for the notification dispatch engine.

Defines:
    • Priority            — notification priority levels
    • ChannelKind         — built-in delivery channel kinds
    • OutcomeStatus       — per-channel delivery outcome
    • ChannelConfig       — one configured delivery channel
    • NotificationEnvelope — enriched, immutable notification
    • TransportResult     — result of a single transport attempt
    • ChannelOutcome      — outcome recorded for one channel
    • DeliveryReport      — per-channel outcomes for one delivery pass
    • QueuedReceipt       — acknowledgement for a queued notification

═══════════════════════════════════════════════════════════════════════════
OUTCOME STATE MACHINE (per envelope, per channel)
═══════════════════════════════════════════════════════════════════════════

    resolve channel ──not found / disabled──▶ SKIPPED          (terminal)
          │
          ▼
    transport attempt ──ok──▶ SUCCESS                          (terminal)
          │
        failed
          │
          ├── failures ≤ max_retries ──▶ RETRY_SCHEDULED ──▶ (attempt again)
          │
          └── failures > max_retries ──▶ FAILED_EXHAUSTED      (terminal)

Channel kinds are plain lower-case strings so new kinds can be registered
without touching the enum; ChannelKind only names the built-in ones.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple, Union


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class Priority(str, Enum):
    """Notification priority. CRITICAL forces the immediate path."""
    LOW      = "low"
    NORMAL   = "normal"
    HIGH     = "high"
    CRITICAL = "critical"


class ChannelKind(str, Enum):
    """Built-in delivery channels."""
    EMAIL = "email"
    PUSH  = "push"
    SMS   = "sms"


class OutcomeStatus(str, Enum):
    """Per-channel delivery outcome."""
    SUCCESS          = "success"
    SKIPPED          = "skipped"           # channel missing / disabled
    RETRY_SCHEDULED  = "retry-scheduled"   # failed, another attempt pending
    FAILED_EXHAUSTED = "failed-exhausted"  # failed, retries used up

    @property
    def is_terminal(self) -> bool:
        return self is not OutcomeStatus.RETRY_SCHEDULED


DEFAULT_CHANNELS: Tuple[str, ...] = (ChannelKind.EMAIL.value,)

# Published once per envelope, after every channel reached a terminal outcome
PROCESSED_EVENT = "notification:processed"
# Published for every per-channel outcome, as it is recorded
CHANNEL_OUTCOME_EVENT = "notification:channel"


def channel_key(kind: Union[str, ChannelKind]) -> str:
    """Normalise a channel kind to its registry key."""
    if isinstance(kind, Enum):
        kind = kind.value
    return str(kind).strip().lower()


def normalise_channels(channels: Optional[Iterable[Union[str, ChannelKind]]]) -> Tuple[str, ...]:
    """
    Registry keys in first-seen order, duplicates and blanks removed.

    Falls back to DEFAULT_CHANNELS when nothing is left.
    """
    if isinstance(channels, (str, Enum)):
        channels = (channels,)
    seen: Dict[str, None] = {}
    for name in channels or ():
        key = channel_key(name)
        if key:
            seen.setdefault(key, None)
    return tuple(seen) or DEFAULT_CHANNELS


def _generate_id() -> str:
    return f"NTF-{uuid.uuid4().hex[:12].upper()}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════
# Data Structures
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ChannelConfig:
    """
    One configured delivery channel.

    Attributes
    ----------
    kind : str
        Channel kind, e.g. "email". Normalised to lower case.
    enabled : bool
        Disabled channels are skipped without a transport attempt.
    endpoint : str
        Opaque connection descriptor, forwarded to the transport.
    """
    kind: str
    enabled: bool = True
    endpoint: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", channel_key(self.kind))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "enabled": self.enabled,
            "endpoint": self.endpoint,
        }


@dataclass(frozen=True)
class NotificationEnvelope:
    """
    The enriched form of one notification request.

    Frozen once built. The per-channel failure count is not stored here;
    it travels with the delivery task for each channel.
    """
    payload: Any
    id: str = field(default_factory=_generate_id)
    created_at: datetime = field(default_factory=_now)
    priority: Priority = Priority.NORMAL
    target_channels: Tuple[str, ...] = DEFAULT_CHANNELS
    max_retries: int = 3

    def __post_init__(self) -> None:
        object.__setattr__(self, "target_channels", normalise_channels(self.target_channels))

    @property
    def immediate(self) -> bool:
        return self.priority is Priority.CRITICAL

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "created_at": self.created_at.isoformat(),
            "priority": self.priority.value,
            "target_channels": list(self.target_channels),
            "max_retries": self.max_retries,
            "immediate": self.immediate,
            "payload": self.payload,
        }


@dataclass(frozen=True)
class TransportResult:
    """Result of a single delivery attempt by a channel transport."""
    success: bool
    message_id: Optional[str] = None
    delivery_time_ms: float = 0.0
    error: Optional[str] = None

    @classmethod
    def ok(cls, message_id: Optional[str] = None, delivery_time_ms: float = 0.0) -> "TransportResult":
        return cls(success=True, message_id=message_id, delivery_time_ms=delivery_time_ms)

    @classmethod
    def failed(cls, reason: str, delivery_time_ms: float = 0.0) -> "TransportResult":
        return cls(success=False, error=reason, delivery_time_ms=delivery_time_ms)


@dataclass(frozen=True)
class ChannelOutcome:
    """Outcome recorded for one channel in one delivery pass."""
    channel: str
    status: OutcomeStatus
    attempt: int = 0                          # transport invocations so far
    reason: Optional[str] = None
    message_id: Optional[str] = None
    delivery_time_ms: Optional[float] = None
    retry_delay_seconds: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "channel": self.channel,
            "status": self.status.value,
            "attempt": self.attempt,
        }
        if self.reason is not None:
            d["reason"] = self.reason
        if self.message_id is not None:
            d["message_id"] = self.message_id
        if self.delivery_time_ms is not None:
            d["delivery_time_ms"] = round(self.delivery_time_ms, 2)
        if self.retry_delay_seconds is not None:
            d["retry_delay_seconds"] = self.retry_delay_seconds
        return d


@dataclass
class DeliveryReport:
    """
    Per-channel outcomes of one delivery pass over an envelope.

    Iterates and indexes like a mapping of channel kind → ChannelOutcome,
    in target-channel order.
    """
    envelope_id: str
    outcomes: Dict[str, ChannelOutcome] = field(default_factory=dict)

    def __getitem__(self, channel: str) -> ChannelOutcome:
        return self.outcomes[channel_key(channel)]

    def __contains__(self, channel: object) -> bool:
        return isinstance(channel, (str, Enum)) and channel_key(channel) in self.outcomes

    def __iter__(self) -> Iterator[str]:
        return iter(self.outcomes)

    def __len__(self) -> int:
        return len(self.outcomes)

    def statuses(self) -> Dict[str, OutcomeStatus]:
        return {ch: o.status for ch, o in self.outcomes.items()}

    @property
    def is_complete(self) -> bool:
        """True when no channel in this report is awaiting a retry."""
        return all(o.status.is_terminal for o in self.outcomes.values())

    def channels_with(self, status: OutcomeStatus) -> List[str]:
        return [ch for ch, o in self.outcomes.items() if o.status is status]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.envelope_id,
            "processed": True,
            "results": [o.to_dict() for o in self.outcomes.values()],
        }


@dataclass(frozen=True)
class QueuedReceipt:
    """Returned to the caller when a notification was queued."""
    id: str
    queue_position: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "queued": True, "queue_position": self.queue_position}
