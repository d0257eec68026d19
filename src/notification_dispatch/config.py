"""Configuration objects passed to the service constructors."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class DeliveryMode(str, Enum):
    """How the allowed channels of a single recipient are dispatched."""

    FAN_OUT = "FAN_OUT"
    FALLBACK = "FALLBACK"


@dataclass(frozen=True)
class DispatchConfig:
    """Dispatch orchestration settings.

    Attributes:
        max_attempts: Gateway calls per delivery log, including the first.
        base_delay: Initial backoff in seconds before the first retry.
        max_delay: Cap on a single backoff delay in seconds.
        jitter: Randomise backoff delays by a factor in [0.5, 1.5].
        send_timeout: Upper bound in seconds on a single gateway call.
        lease_ttl: Lifetime in seconds of the dispatch lease. Must exceed
            ``send_timeout`` so a send in flight never outlives its lease.
            Before each backoff sleep the lease is stretched to cover the
            delay as well.
        lease_wait: How long a second dispatcher waits for the lease before
            returning the existing log.
        delivery_mode: ``FAN_OUT`` sends on every allowed channel at once,
            ``FALLBACK`` walks the channels in preference order and stops at
            the first success.
    """

    max_attempts: int = 5
    base_delay: float = 1.0
    max_delay: float = 60.0
    jitter: bool = True
    send_timeout: float = 10.0
    lease_ttl: float = 30.0
    lease_wait: float = 0.0
    delivery_mode: DeliveryMode = DeliveryMode.FAN_OUT

    def __post_init__(self) -> None:
        if self.send_timeout <= 0:
            raise ValueError("send_timeout must be > 0")
        if self.lease_ttl <= self.send_timeout:
            raise ValueError(
                f"lease_ttl ({self.lease_ttl}s) must exceed "
                f"send_timeout ({self.send_timeout}s)"
            )


@dataclass(frozen=True)
class LifecycleConfig:
    """Request lifecycle settings.

    Attributes:
        dedup_ttl: Seconds a dedup key stays reserved.
        duplicate_wait: Seconds a duplicate ``create`` waits for the original
            request to become visible before giving up.
        duplicate_poll_interval: Poll interval while waiting for the original.
        reconcile_attempts: Compare-and-swap retries during reconciliation.
    """

    dedup_ttl: float = 86400.0  # 24 hours
    duplicate_wait: float = 2.0
    duplicate_poll_interval: float = 0.05
    reconcile_attempts: int = 5


@dataclass(frozen=True)
class TemplateCacheConfig:
    """Read-through template cache settings.

    Attributes:
        ttl: Seconds a cached active template stays valid.
        key_prefix: Prefix of the cache keys.
    """

    ttl: int = 300  # 5 minutes
    key_prefix: str = "template:active"


@dataclass(frozen=True)
class OutboxConfig:
    """Outbox relay settings.

    Attributes:
        batch_size: Messages claimed per batch.
        max_retries: Publish attempts per message before it is left for
            manual inspection.
        poll_interval: Fallback poll period when nothing triggers the relay.
        wait_delay: Debounce window after a trigger.
        max_delay: Maximum total debounce.
    """

    batch_size: int = 50
    max_retries: int = 5
    poll_interval: float = 10.0
    wait_delay: float = 0.1
    max_delay: float = 1.0
