"""GatewayRegistry — channel to gateway lookup."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..domain.values import Channel
    from ..ports.gateway import IChannelGateway

logger = logging.getLogger("notification_dispatch.gateways")


class GatewayRegistry:
    """Holds one gateway per channel. Registering a channel twice replaces it."""

    def __init__(self, gateways: list[IChannelGateway] | None = None) -> None:
        self._gateways: dict[Channel, IChannelGateway] = {}
        for gateway in gateways or []:
            self.register(gateway)

    def register(self, gateway: IChannelGateway) -> None:
        if gateway.channel in self._gateways:
            logger.warning("Replacing gateway for channel %s", gateway.channel.value)
        self._gateways[gateway.channel] = gateway

    def get(self, channel: Channel) -> IChannelGateway | None:
        return self._gateways.get(channel)

    @property
    def channels(self) -> list[Channel]:
        return list(self._gateways)

    def __contains__(self, channel: object) -> bool:
        return channel in self._gateways
