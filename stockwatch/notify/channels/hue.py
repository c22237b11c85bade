"""Philips Hue LAN bridge channel: flashes lights when stock appears."""

import asyncio
import logging
from typing import Optional

from stockwatch.notify.base import ChannelDeliveryError, Message
from stockwatch.notify.channels.webhooks import HttpChannel

logger = logging.getLogger(__name__)

# Hue "alert" effects
PATTERNS = {
    "": "lselect",  # 15s breathing
    "blink": "lselect",
    "once": "select",
    "none": "none",
}


def hex_to_xy(color: str) -> tuple[float, float]:
    """Convert an RRGGBB hex color to CIE xy for the Hue API."""
    color = color.lstrip("#")
    if len(color) != 6:
        raise ValueError(f"Invalid hex color: {color}")
    r, g, b = (int(color[i:i + 2], 16) / 255 for i in (0, 2, 4))

    # sRGB gamma correction
    r, g, b = (
        ((c + 0.055) / 1.055) ** 2.4 if c > 0.04045 else c / 12.92
        for c in (r, g, b)
    )
    x = r * 0.664511 + g * 0.154324 + b * 0.162028
    y = r * 0.283881 + g * 0.668433 + b * 0.047685
    z = r * 0.000088 + g * 0.072310 + b * 0.986039
    total = x + y + z
    if total == 0:
        return (0.0, 0.0)
    return (round(x / total, 4), round(y / total, 4))


class PhilipsHueChannel(HttpChannel):
    """
    Philips Hue bridge on the LAN.

    Recipients are light ids; an empty list targets every light on the bridge.
    """

    name = "philips_hue"

    def __init__(
        self,
        bridge_ip: str,
        api_key: str,
        light_color: str = "",
        light_pattern: str = "",
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.base_url = f"http://{bridge_ip}/api/{api_key}"
        self.xy: Optional[tuple[float, float]] = hex_to_xy(light_color) if light_color else None
        if light_pattern not in PATTERNS:
            raise ValueError(f"Invalid light pattern: {light_pattern}. Available: {sorted(p for p in PATTERNS if p)}")
        self.alert = PATTERNS[light_pattern]

    async def _all_light_ids(self) -> list[str]:
        response = await self._request("GET", f"{self.base_url}/lights", ok_statuses=(200,))
        data = response.json()
        if not isinstance(data, dict):
            raise ChannelDeliveryError(self.name, f"unexpected bridge response: {data}")
        return list(data)

    async def send(self, message: Message, recipients: list[str]) -> None:
        light_ids = recipients or await self._all_light_ids()
        state: dict = {"on": True, "alert": self.alert}
        if self.xy:
            state["xy"] = list(self.xy)

        await asyncio.gather(*(
            self._request("PUT", f"{self.base_url}/lights/{light_id}/state", ok_statuses=(200,), json=state)
            for light_id in light_ids
        ))
        logger.debug(f"Flashed {len(light_ids)} Hue light(s)")
