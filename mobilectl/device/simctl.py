"""SimulatorRobot — async wrapper around xcrun simctl plus WebDriverAgent for iOS simulators."""

from __future__ import annotations

import asyncio
import json
import logging
import platform
import tempfile
from pathlib import Path

from mobilectl.config import get_recordings_dir, get_wda_endpoint
from mobilectl.device.recording import (
    RECORDING_SETTLE_DELAY,
    Recording,
    RecordingRegistry,
    new_recording_id,
    stop_capture_process,
)
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

logger = logging.getLogger("mobilectl.simctl")

SIMCTL_TIMEOUT = 30.0


async def _run_simctl(*args: str) -> tuple[str, str]:
    """Run an xcrun simctl command and return (stdout, stderr).

    Raises DeviceError on non-zero exit code or timeout.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            "xcrun", "simctl", *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError:
        raise ActionableError(
            "xcrun not found",
            hint="Install Xcode and its command line tools (xcode-select --install).",
            tool="simctl",
        )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=SIMCTL_TIMEOUT)
    except asyncio.TimeoutError:
        proc.kill()
        raise DeviceError(f"simctl {args[0]} timed out after {SIMCTL_TIMEOUT:.0f}s", tool="simctl")
    if proc.returncode != 0:
        raise DeviceError(
            f"simctl {args[0]} failed: {stderr.decode().strip()}",
            tool="simctl",
        )
    return stdout.decode(), stderr.decode()


async def _run_shell(cmd: str) -> tuple[str, str]:
    """Run a shell pipeline and return (stdout, stderr).

    Used for commands that require piping (e.g. listapps | plutil).
    """
    proc = await asyncio.create_subprocess_exec(
        "sh", "-c", cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=SIMCTL_TIMEOUT)
    except asyncio.TimeoutError:
        proc.kill()
        raise DeviceError(f"shell command timed out after {SIMCTL_TIMEOUT:.0f}s", tool="simctl")
    if proc.returncode != 0:
        raise DeviceError(
            f"shell command failed: {stderr.decode().strip()}",
            tool="simctl",
        )
    return stdout.decode(), stderr.decode()


class SimulatorRobot:
    """Robot for one booted iOS simulator."""

    def __init__(self, udid: str, registry: RecordingRegistry) -> None:
        self.device_id = udid
        self._registry = registry

    async def _wda(self) -> WebDriverAgentClient:
        host, port = get_wda_endpoint()
        wda = WebDriverAgentClient(host, port)
        if not await wda.is_running():
            raise ActionableError(
                "WebDriverAgent is not running on simulator",
                hint=f"Build and launch WebDriverAgentRunner on simulator {self.device_id} "
                     f"so it listens on {host}:{port}.",
                tool="wda",
            )
        return wda

    # ------------------------------------------------------------------
    # simctl backed
    # ------------------------------------------------------------------

    async def get_screenshot(self) -> bytes:
        """Writes to a temp file, reads bytes, then cleans up."""
        with tempfile.NamedTemporaryFile(suffix=".png", delete=False) as tmp:
            tmp_path = tmp.name

        try:
            await _run_simctl("io", self.device_id, "screenshot", tmp_path)
            return Path(tmp_path).read_bytes()
        finally:
            Path(tmp_path).unlink(missing_ok=True)

    async def list_apps(self) -> list[InstalledApp]:
        """simctl listapps outputs NeXT-style plist, so we pipe through plutil."""
        cmd = f"xcrun simctl listapps {self.device_id} | plutil -convert json -o - -- -"
        stdout, _ = await _run_shell(cmd)
        data = json.loads(stdout)
        return [
            InstalledApp(
                package_name=bundle_id,
                app_name=info.get("CFBundleDisplayName") or info.get("CFBundleName", ""),
            )
            for bundle_id, info in data.items()
        ]

    async def launch_app(self, package_name: str) -> None:
        await _run_simctl("launch", self.device_id, package_name)

    async def terminate_app(self, package_name: str) -> None:
        await _run_simctl("terminate", self.device_id, package_name)

    async def open_url(self, url: str) -> None:
        await _run_simctl("openurl", self.device_id, url)

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

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    async def start_recording(self) -> str:
        recording_id = new_recording_id()
        host_path = get_recordings_dir() / f"mobilectl-{recording_id}.mp4"
        try:
            process = await asyncio.create_subprocess_exec(
                "xcrun", "simctl", "io", self.device_id, "recordVideo",
                "--codec", "h264", "--force", str(host_path),
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
                start_new_session=True,
            )
        except FileNotFoundError:
            raise ActionableError(
                "xcrun not found",
                hint="Install Xcode and its command line tools (xcode-select --install).",
                tool="simctl",
            )
        self._registry.register(Recording(
            recording_id=recording_id,
            device_id=self.device_id,
            process=process,
            host_path=host_path,
        ))
        return recording_id

    async def stop_recording(self, recording_id: str) -> str:
        recording = self._registry.claim(recording_id, self.device_id)
        try:
            await stop_capture_process(recording.process)
            await asyncio.sleep(RECORDING_SETTLE_DELAY)
        finally:
            await stop_capture_process(recording.process, graceful=False)

        if not recording.host_path.exists() or recording.host_path.stat().st_size == 0:
            raise DeviceError(
                f"Recording {recording_id[:8]} produced no video at {recording.host_path}",
                tool="simctl",
            )
        logger.info("Recording %s saved to %s", recording_id[:8], recording.host_path)
        return str(recording.host_path)


class SimctlManager:
    """Lists iOS simulators via xcrun simctl."""

    async def list_simulators(self) -> list[dict]:
        stdout, _ = await _run_simctl("list", "devices", "--json")
        data = json.loads(stdout)
        simulators: list[dict] = []
        for runtime_key, device_list in data.get("devices", {}).items():
            for dev in device_list:
                if not dev.get("isAvailable", False):
                    continue
                simulators.append({**dev, "runtime": runtime_key})
        return simulators

    async def list_booted_simulators(self) -> list[DeviceSummary]:
        if platform.system() != "Darwin":
            return []
        try:
            simulators = await self.list_simulators()
        except DeviceError as exc:
            logger.warning("Could not list simulators: %s", exc)
            return []
        return [
            DeviceSummary(device_id=sim["udid"], name=sim["name"], device_type=DeviceType.SIMULATOR)
            for sim in simulators
            if sim.get("state") == "Booted"
        ]
