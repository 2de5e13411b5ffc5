"""IosRobot — physical iOS devices via go-ios and a forwarded WebDriverAgent.

Connection prerequisites, checked before every WDA call:
- iOS 17+: the go-ios tunnel must be listening on IOS_TUNNEL_PORT
- the WDA port forward must be listening on the configured WDA port
- WDA itself must answer GET /status
Each missing piece raises its own ActionableError.
"""

from __future__ import annotations

import asyncio
import json
import logging
import tempfile
from pathlib import Path

from mobilectl.config import get_go_ios_path, get_wda_endpoint
from mobilectl.device.robot import DEFAULT_SWIPE_DISTANCE
from mobilectl.device.wda_client import WebDriverAgentClient
from mobilectl.models import (
    ActionableError,
    Button,
    DeviceError,
    DeviceSummary,
    DeviceType,
    InstalledApp,
    Orientation,
    ScreenElement,
    ScreenSize,
    SwipeDirection,
)

logger = logging.getLogger("mobilectl.ios")

IOS_TUNNEL_PORT = 60105
IOS_TIMEOUT = 30.0
PORT_PROBE_TIMEOUT = 1.0


async def is_listening_on_port(port: int, host: str = "localhost") -> bool:
    """Raw TCP connect probe."""
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port), timeout=PORT_PROBE_TIMEOUT,
        )
    except (OSError, asyncio.TimeoutError):
        return False
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return True


async def _run_go_ios(*args: str) -> bytes:
    """Run go-ios and return stdout. Raises DeviceError on failure."""
    try:
        proc = await asyncio.create_subprocess_exec(
            get_go_ios_path(), *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError:
        raise ActionableError(
            f"go-ios not found at {get_go_ios_path()}",
            hint="Install go-ios (npm install -g go-ios) or set GO_IOS_PATH.",
            tool="go-ios",
        )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=IOS_TIMEOUT)
    except asyncio.TimeoutError:
        proc.kill()
        raise DeviceError(f"ios {args[0]} timed out after {IOS_TIMEOUT:.0f}s", tool="go-ios")
    if proc.returncode != 0:
        raise DeviceError(
            f"ios {args[0]} failed: {stderr.decode(errors='replace').strip()}",
            tool="go-ios",
        )
    return stdout


class IosRobot:
    """Robot for one physical iOS device."""

    def __init__(self, device_id: str) -> None:
        self.device_id = device_id
        self._ios_version: str | None = None

    async def _ios(self, *args: str) -> bytes:
        return await _run_go_ios(*args, "--udid", self.device_id)

    async def get_ios_version(self) -> str:
        if self._ios_version is None:
            info = json.loads(await self._ios("info"))
            self._ios_version = str(info.get("ProductVersion", ""))
        return self._ios_version

    async def _is_tunnel_required(self) -> bool:
        version = await self.get_ios_version()
        try:
            return int(version.split(".")[0]) >= 17
        except ValueError:
            logger.warning("Unparsable iOS version %r on %s", version, self.device_id[:8])
            return True

    async def _assert_tunnel_running(self) -> None:
        if await self._is_tunnel_required() and not await is_listening_on_port(IOS_TUNNEL_PORT):
            raise ActionableError(
                "iOS tunnel is not running",
                hint="Start it with `ios tunnel start --userspace`.",
                tool="go-ios",
            )

    async def _wda(self) -> WebDriverAgentClient:
        await self._assert_tunnel_running()

        host, port = get_wda_endpoint()
        if not await is_listening_on_port(port, host):
            raise ActionableError(
                "Port forwarding to WebDriverAgent is not running (tunnel okay)",
                hint=f"Run `ios forward {port} 8100`.",
                tool="wda",
            )

        wda = WebDriverAgentClient(host, port)
        if not await wda.is_running():
            raise ActionableError(
                "WebDriverAgent is not running on device (tunnel okay, port forwarding okay)",
                hint="Launch WebDriverAgentRunner on the device.",
                tool="wda",
            )
        return wda

    # ------------------------------------------------------------------
    # go-ios backed
    # ------------------------------------------------------------------

    async def list_apps(self) -> list[InstalledApp]:
        await self._assert_tunnel_running()
        output = (await self._ios("apps", "--all", "--list")).decode(errors="replace")
        apps: list[InstalledApp] = []
        for line in output.splitlines():
            if not line.strip():
                continue
            package_name, _, app_name = line.strip().partition(" ")
            apps.append(InstalledApp(package_name=package_name, app_name=app_name))
        return apps

    async def launch_app(self, package_name: str) -> None:
        await self._assert_tunnel_running()
        await self._ios("launch", package_name)

    async def terminate_app(self, package_name: str) -> None:
        await self._assert_tunnel_running()
        await self._ios("kill", package_name)

    async def get_screenshot(self) -> bytes:
        """Capture via go-ios into a temp file, then read and clean up."""
        await self._assert_tunnel_running()
        with tempfile.NamedTemporaryFile(suffix=".png", delete=False) as tmp:
            tmp_path = tmp.name
        try:
            await self._ios("screenshot", "--output", tmp_path)
            return Path(tmp_path).read_bytes()
        finally:
            Path(tmp_path).unlink(missing_ok=True)

    # ------------------------------------------------------------------
    # WDA backed
    # ------------------------------------------------------------------

    async def get_screen_size(self) -> ScreenSize:
        return await (await self._wda()).get_screen_size()

    async def swipe(self, direction: SwipeDirection) -> None:
        await (await self._wda()).swipe(direction)

    async def swipe_from_coordinates(
        self, x: int, y: int, direction: SwipeDirection, distance: int = DEFAULT_SWIPE_DISTANCE,
    ) -> None:
        await (await self._wda()).swipe_from_coordinates(x, y, direction, distance)

    async def open_url(self, url: str) -> None:
        await (await self._wda()).open_url(url)

    async def send_keys(self, text: str) -> None:
        await (await self._wda()).send_keys(text)

    async def press_button(self, button: Button) -> None:
        await (await self._wda()).press_button(button)

    async def tap(self, x: int, y: int) -> None:
        await (await self._wda()).tap(x, y)

    async def get_elements_on_screen(self) -> list[ScreenElement]:
        return await (await self._wda()).get_elements_on_screen()

    async def set_orientation(self, orientation: Orientation) -> None:
        await (await self._wda()).set_orientation(orientation)

    async def get_orientation(self) -> Orientation:
        return await (await self._wda()).get_orientation()

    async def start_recording(self) -> str:
        raise ActionableError(
            "Screen recording is not supported on physical iOS devices",
            hint="Record on an Android device or an iOS simulator instead.",
            tool="go-ios",
        )

    async def stop_recording(self, recording_id: str) -> str:
        raise ActionableError(
            "Screen recording is not supported on physical iOS devices",
            hint="Record on an Android device or an iOS simulator instead.",
            tool="go-ios",
        )


class IosManager:
    """Lists physical iOS devices through go-ios."""

    async def is_go_ios_installed(self) -> bool:
        try:
            output = await _run_go_ios("version")
            version = json.loads(output).get("version", "")
        except (DeviceError, ValueError):
            return False
        return version.startswith("v") or version == "local-build"

    async def get_device_name(self, device_id: str) -> str:
        info = json.loads(await _run_go_ios("info", "--udid", device_id))
        return info.get("DeviceName", "")

    async def list_devices(self) -> list[DeviceSummary]:
        if not await self.is_go_ios_installed():
            logger.info("go-ios is not installed, no physical iOS devices can be detected")
            return []

        device_ids = json.loads(await _run_go_ios("list")).get("deviceList") or []
        names = await asyncio.gather(*(self.get_device_name(d) for d in device_ids))
        return [
            DeviceSummary(device_id=device_id, name=name, device_type=DeviceType.IOS)
            for device_id, name in zip(device_ids, names)
        ]
