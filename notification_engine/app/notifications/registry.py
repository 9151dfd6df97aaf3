"""
registry.py — Configured delivery channels and their transports.

Replaces the old channel-type switch: each kind maps to one ChannelConfig
and one ChannelTransport, and the engine resolves both through here.

Built once at startup and only read afterwards.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Optional, Tuple, Union

from notification_engine.app.core.config import DispatchConfig
from notification_engine.app.core.errors import ChannelNotConfigured
from notification_engine.app.notifications.channels import (
    ChannelTransport,
    simulated_transports,
)
from notification_engine.app.notifications.models import (
    ChannelConfig,
    ChannelKind,
    channel_key,
)

logger = logging.getLogger(__name__)


class ChannelRegistry:
    """Lookup of channel kind → (ChannelConfig, ChannelTransport)."""

    def __init__(self) -> None:
        self._configs: Dict[str, ChannelConfig] = {}
        self._transports: Dict[str, ChannelTransport] = {}

    def register(
        self,
        config: ChannelConfig,
        transport: Optional[ChannelTransport] = None,
    ) -> None:
        """
        Add or replace a channel by kind.

        A transport passed here replaces any previous binding for the kind;
        omitting it keeps the existing one.
        """
        replaced = config.kind in self._configs
        self._configs[config.kind] = config
        if transport is not None:
            self._transports[config.kind] = transport

        logger.info(
            "%s channel %s (enabled=%s, endpoint=%s)",
            "Replaced" if replaced else "Registered",
            config.kind, config.enabled, config.endpoint,
        )

    def lookup(self, kind: Union[str, ChannelKind]) -> Optional[ChannelConfig]:
        return self._configs.get(channel_key(kind))

    def transport_for(self, kind: Union[str, ChannelKind]) -> Optional[ChannelTransport]:
        return self._transports.get(channel_key(kind))

    def resolve(
        self,
        kind: Union[str, ChannelKind],
    ) -> Tuple[ChannelConfig, ChannelTransport]:
        """
        Return the config and transport for a deliverable channel.

        Raises
        ------
        ChannelNotConfigured
            If the kind is unknown, disabled, or has no transport bound.
        """
        key = channel_key(kind)
        config = self._configs.get(key)
        if config is None:
            raise ChannelNotConfigured(key, "not registered")
        if not config.enabled:
            raise ChannelNotConfigured(key, "disabled")
        transport = self._transports.get(key)
        if transport is None:
            raise ChannelNotConfigured(key, "no transport bound")
        return config, transport

    def kinds(self) -> List[str]:
        return list(self._configs)

    def active_channels(self) -> List[str]:
        """Kinds that are registered and enabled."""
        return [k for k, c in self._configs.items() if c.enabled]

    def __contains__(self, kind: object) -> bool:
        return isinstance(kind, str) and channel_key(kind) in self._configs

    def __len__(self) -> int:
        return len(self._configs)

    def to_dict(self) -> Dict[str, Dict[str, object]]:
        return {
            kind: {
                **config.to_dict(),
                "transport": type(self._transports[kind]).__name__
                if kind in self._transports else None,
            }
            for kind, config in self._configs.items()
        }

    @classmethod
    def from_config(
        cls,
        config: DispatchConfig,
        transports: Optional[Mapping[str, ChannelTransport]] = None,
    ) -> "ChannelRegistry":
        """
        Build the built-in email / push / SMS channels.

        Disabled channels are still registered (enabled=False) so that
        targeting them reports "disabled" rather than "not registered".
        """
        if transports is None:
            transports = simulated_transports(
                simulate_latency=config.simulate_latency,
                seed=config.simulation_seed,
            )

        registry = cls()
        entries = (
            (ChannelKind.EMAIL, config.enable_email, config.email_endpoint),
            (ChannelKind.PUSH, config.enable_push, config.push_endpoint),
            (ChannelKind.SMS, config.enable_sms, config.sms_endpoint),
        )
        for kind, enabled, endpoint in entries:
            registry.register(
                ChannelConfig(kind=kind.value, enabled=enabled, endpoint=endpoint),
                transports.get(kind.value),
            )
        return registry
