"""WebDriverAgentClient — HTTP client for WebDriverAgent (iOS devices and simulators).

Every interactive call runs inside its own short-lived session:

    async with client.session() as session_url:
        ...one request against session_url...

The session is deleted on the way out whether or not the request failed.
Page-source reads are sessionless.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx

from mobilectl.device.robot import DEFAULT_SWIPE_DISTANCE, screen_swipe_endpoints, swipe_endpoints
from mobilectl.device.ui_elements import collect_wda_elements, filter_visible, parse_wda_source
from mobilectl.models import (
    ActionableError,
    Button,
    DeviceError,
    Orientation,
    ScreenElement,
    ScreenSize,
    SwipeDirection,
)

logger = logging.getLogger("mobilectl.wda-client")

WDA_TIMEOUT = 10.0  # seconds for HTTP requests
STATUS_TIMEOUT = 3.0

_BUTTON_MAP = {
    Button.HOME: "home",
    Button.VOLUME_UP: "volumeup",
    Button.VOLUME_DOWN: "volumedown",
}


def _pointer_actions(steps: list[dict]) -> dict:
    """Wrap pointer steps in a W3C actions payload for a single touch."""
    return {
        "actions": [
            {
                "type": "pointer",
                "id": "finger1",
                "parameters": {"pointerType": "touch"},
                "actions": steps,
            },
        ],
    }


class WebDriverAgentClient:
    """Speaks the WebDriverAgent HTTP API at ``http://host:port``."""

    def __init__(self, host: str, port: int) -> None:
        self.base_url = f"http://{host}:{port}"

    async def _request(self, method: str, url: str, what: str, **kwargs) -> httpx.Response:
        """Issue one HTTP request, converting transport errors and non-2xx to DeviceError."""
        try:
            async with httpx.AsyncClient() as client:
                resp = await getattr(client, method)(url, timeout=WDA_TIMEOUT, **kwargs)
        except (httpx.ConnectError, httpx.ReadError, httpx.TimeoutException) as exc:
            raise DeviceError(
                f"WDA {what} failed ({type(exc).__name__}). Ensure WebDriverAgent is running.",
                tool="wda",
            )
        if resp.status_code >= 300:
            raise DeviceError(
                f"WDA {what} failed (status {resp.status_code}): {resp.text[:200]}",
                tool="wda",
            )
        return resp

    # ------------------------------------------------------------------
    # Health and session lifecycle
    # ------------------------------------------------------------------

    async def is_running(self) -> bool:
        """Quick GET /status probe."""
        try:
            async with httpx.AsyncClient() as client:
                resp = await client.get(f"{self.base_url}/status", timeout=STATUS_TIMEOUT)
                return resp.status_code == 200
        except Exception as exc:
            logger.debug("WDA not reachable at %s: %s", self.base_url, exc)
            return False

    async def create_session(self) -> str:
        resp = await self._request(
            "post", f"{self.base_url}/session", "session creation",
            json={"capabilities": {"alwaysMatch": {"platformName": "iOS"}}},
        )
        data = resp.json()
        session_id = data.get("sessionId") or (data.get("value") or {}).get("sessionId")
        if not session_id:
            raise DeviceError("WDA session creation returned no sessionId", tool="wda")
        logger.debug("WDA session created: %s", session_id[:8])
        return session_id

    async def delete_session(self, session_id: str) -> None:
        await self._request("delete", f"{self.base_url}/session/{session_id}", "session deletion")
        logger.debug("WDA session deleted: %s", session_id[:8])

    @asynccontextmanager
    async def session(self) -> AsyncIterator[str]:
        """Create a session, yield its URL prefix, and always delete it.

        If the body raised, that error is what propagates; a delete failure
        during unwinding is only logged.
        """
        session_id = await self.create_session()
        try:
            yield f"{self.base_url}/session/{session_id}"
        except BaseException:
            try:
                await self.delete_session(session_id)
            except Exception as exc:
                logger.warning("Failed to delete WDA session %s: %s", session_id[:8], exc)
            raise
        await self.delete_session(session_id)

    # ------------------------------------------------------------------
    # Session-scoped operations
    # ------------------------------------------------------------------

    async def get_screen_size(self) -> ScreenSize:
        async with self.session() as session_url:
            resp = await self._request("get", f"{session_url}/wda/screen", "screen")
        value = resp.json().get("value") or {}
        size = value.get("screenSize", {})
        return ScreenSize(
            width=size.get("width", 0),
            height=size.get("height", 0),
            scale=value.get("scale") or 1,
        )

    async def send_keys(self, keys: str) -> None:
        async with self.session() as session_url:
            await self._request("post", f"{session_url}/wda/keys", "keys", json={"value": [keys]})

    async def press_button(self, button: Button) -> None:
        if button == Button.ENTER:
            await self.send_keys("\n")
            return

        name = _BUTTON_MAP.get(button)
        if name is None:
            raise ActionableError(
                f'Button "{button.value}" is not supported on iOS',
                hint="Supported buttons: HOME, VOLUME_UP, VOLUME_DOWN, ENTER.",
                tool="wda",
            )

        async with self.session() as session_url:
            await self._request(
                "post", f"{session_url}/wda/pressButton", "pressButton", json={"name": name},
            )

    async def tap(self, x: int, y: int) -> None:
        async with self.session() as session_url:
            await self._request("post", f"{session_url}/actions", "tap", json=_pointer_actions([
                {"type": "pointerMove", "duration": 0, "x": x, "y": y},
                {"type": "pointerDown", "button": 0},
                {"type": "pause", "duration": 100},
                {"type": "pointerUp", "button": 0},
            ]))

    async def _drag(self, x0: int, y0: int, x1: int, y1: int) -> None:
        async with self.session() as session_url:
            await self._request("post", f"{session_url}/actions", "swipe", json=_pointer_actions([
                {"type": "pointerMove", "duration": 0, "x": x0, "y": y0},
                {"type": "pointerDown", "button": 0},
                {"type": "pointerMove", "duration": 1000, "x": x1, "y": y1},
                {"type": "pointerUp", "button": 0},
            ]))

    async def swipe(self, direction: SwipeDirection) -> None:
        """Full-screen swipe; the screen size is read in its own session first."""
        size = await self.get_screen_size()
        await self._drag(*screen_swipe_endpoints(size, direction))

    async def swipe_from_coordinates(
        self, x: int, y: int, direction: SwipeDirection, distance: int = DEFAULT_SWIPE_DISTANCE,
    ) -> None:
        await self._drag(*swipe_endpoints(x, y, direction, distance))

    async def open_url(self, url: str) -> None:
        async with self.session() as session_url:
            await self._request("post", f"{session_url}/url", "open url", json={"url": url})

    async def set_orientation(self, orientation: Orientation) -> None:
        async with self.session() as session_url:
            await self._request(
                "post", f"{session_url}/orientation", "set orientation",
                json={"orientation": orientation.value.upper()},
            )

    async def get_orientation(self) -> Orientation:
        async with self.session() as session_url:
            resp = await self._request("get", f"{session_url}/orientation", "get orientation")
        value = str(resp.json().get("value", "")).lower()
        try:
            return Orientation(value)
        except ValueError:
            # LANDSCAPELEFT / UIA_DEVICE_ORIENTATION_LANDSCAPERIGHT etc.
            if "landscape" in value:
                return Orientation.LANDSCAPE
            return Orientation.PORTRAIT

    # ------------------------------------------------------------------
    # Sessionless
    # ------------------------------------------------------------------

    async def get_page_source(self) -> dict:
        resp = await self._request(
            "get", f"{self.base_url}/source/", "page source", params={"format": "json"},
        )
        try:
            return resp.json()
        except ValueError as exc:
            raise DeviceError(f"WDA page source is not JSON: {exc}", tool="wda")

    async def get_elements_on_screen(self) -> list[ScreenElement]:
        start = time.perf_counter()
        tree = parse_wda_source(await self.get_page_source())
        elements = filter_visible(collect_wda_elements(tree))
        logger.info(
            "[PERF] wda.get_elements_on_screen: %d elements in %.1fms",
            len(elements), (time.perf_counter() - start) * 1000,
        )
        return elements
