"""AndroidRobot — drives Android phones and TV devices through adb."""

from __future__ import annotations

import asyncio
import logging
import re
import time
import xml.etree.ElementTree as ET

from mobilectl.config import get_adb_path, get_recordings_dir
from mobilectl.device.navigator import (
    DPAD_SETTLE_DELAY,
    MAX_DPAD_PRESSES,
    dpad_direction,
    locate_endpoints,
)
from mobilectl.device.recording import (
    RECORDING_SETTLE_DELAY,
    Recording,
    RecordingRegistry,
    new_recording_id,
    stop_capture_process,
)
from mobilectl.device.robot import DEFAULT_SWIPE_DISTANCE, screen_swipe_endpoints, swipe_endpoints
from mobilectl.device.ui_elements import collect_android_elements, filter_visible, parse_uiautomator_xml
from mobilectl.models import (
    DPAD_BUTTONS,
    ActionableError,
    AndroidDeviceType,
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

logger = logging.getLogger("mobilectl.android")

ADB_TIMEOUT = 30.0  # seconds per adb invocation
DUMP_MAX_ATTEMPTS = 10
# Printed by uiautomator while the accessibility bridge is still settling
TRANSIENT_DUMP_ERROR = "null root node returned by UiTestAutomationBridge"
TV_FEATURES = ("android.software.leanback", "android.hardware.type.television")

BUTTON_MAP = {
    Button.BACK: "KEYCODE_BACK",
    Button.HOME: "KEYCODE_HOME",
    Button.VOLUME_UP: "KEYCODE_VOLUME_UP",
    Button.VOLUME_DOWN: "KEYCODE_VOLUME_DOWN",
    Button.ENTER: "KEYCODE_ENTER",
    Button.DPAD_UP: "KEYCODE_DPAD_UP",
    Button.DPAD_DOWN: "KEYCODE_DPAD_DOWN",
    Button.DPAD_LEFT: "KEYCODE_DPAD_LEFT",
    Button.DPAD_RIGHT: "KEYCODE_DPAD_RIGHT",
    Button.DPAD_CENTER: "KEYCODE_DPAD_CENTER",
}

# Characters the device shell would otherwise interpret in `input text`
_SHELL_SPECIAL = re.compile(r"([\\ ()<>|;&*~\"'$`])")


def _adb_not_found() -> ActionableError:
    return ActionableError(
        f"adb not found at {get_adb_path()}",
        hint="Install the Android platform-tools and set ANDROID_HOME.",
        tool="adb",
    )


async def _run_adb(*args: str, timeout: float = ADB_TIMEOUT) -> bytes:
    """Run adb and return raw stdout. Raises DeviceError on failure or timeout."""
    try:
        proc = await asyncio.create_subprocess_exec(
            get_adb_path(), *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError:
        raise _adb_not_found()
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        raise DeviceError(f"adb {' '.join(args[:4])} timed out after {timeout:.0f}s", tool="adb")
    if proc.returncode != 0:
        raise DeviceError(
            f"adb {' '.join(args[:4])} failed: {stderr.decode(errors='replace').strip()}",
            tool="adb",
        )
    return stdout


async def detect_android_device_type(device_id: str) -> AndroidDeviceType:
    """Classify a device as TV or mobile from its declared system features."""
    try:
        features = (await _run_adb("-s", device_id, "shell", "pm", "list", "features")).decode()
    except DeviceError as e:
        logger.debug("Feature query failed for %s, assuming mobile: %s", device_id[:8], e)
        return AndroidDeviceType.MOBILE
    if any(feature in features for feature in TV_FEATURES):
        return AndroidDeviceType.TV
    return AndroidDeviceType.MOBILE


def escape_input_text(text: str) -> str:
    return _SHELL_SPECIAL.sub(r"\\\1", text)


class AndroidRobot:
    """Robot for one adb device. The TV/mobile class is fixed at construction."""

    def __init__(
        self,
        device_id: str,
        registry: RecordingRegistry,
        device_type: AndroidDeviceType = AndroidDeviceType.MOBILE,
    ) -> None:
        self.device_id = device_id
        self.device_type = device_type
        self._registry = registry

    async def _adb(self, *args: str) -> bytes:
        return await _run_adb("-s", self.device_id, *args)

    async def _shell(self, *args: str) -> str:
        return (await self._adb("shell", *args)).decode(errors="replace")

    # ------------------------------------------------------------------
    # Screen
    # ------------------------------------------------------------------

    async def get_screen_size(self) -> ScreenSize:
        """Parse `wm size`; an override size (last line) wins over the physical one."""
        output = (await self._shell("wm", "size")).strip()
        lines = [line for line in output.splitlines() if line.strip()]
        match = re.search(r"(\d+)x(\d+)\s*$", lines[-1]) if lines else None
        if not match:
            raise DeviceError(f"Failed to get screen size from {output!r}", tool="adb")
        return ScreenSize(width=int(match.group(1)), height=int(match.group(2)), scale=1)

    async def get_screenshot(self) -> bytes:
        return await self._adb("exec-out", "screencap", "-p")

    async def get_orientation(self) -> Orientation:
        rotation = (await self._shell("settings", "get", "system", "user_rotation")).strip()
        return Orientation.PORTRAIT if rotation == "0" else Orientation.LANDSCAPE

    async def set_orientation(self, orientation: Orientation) -> None:
        value = 0 if orientation == Orientation.PORTRAIT else 1
        await self._shell(
            "content", "insert",
            "--uri", "content://settings/system",
            "--bind", "name:s:user_rotation",
            "--bind", f"value:i:{value}",
        )
        # Auto-rotate would immediately undo the forced rotation
        await self._shell("settings", "put", "system", "accelerometer_rotation", "0")

    # ------------------------------------------------------------------
    # Input
    # ------------------------------------------------------------------

    async def tap(self, x: int, y: int) -> None:
        await self._shell("input", "tap", str(x), str(y))

    async def _input_swipe(self, x0: int, y0: int, x1: int, y1: int) -> None:
        await self._shell("input", "swipe", str(x0), str(y0), str(x1), str(y1), "1000")

    async def swipe(self, direction: SwipeDirection) -> None:
        size = await self.get_screen_size()
        await self._input_swipe(*screen_swipe_endpoints(size, direction))

    async def swipe_from_coordinates(
        self, x: int, y: int, direction: SwipeDirection, distance: int = DEFAULT_SWIPE_DISTANCE,
    ) -> None:
        await self._input_swipe(*swipe_endpoints(x, y, direction, distance))

    async def send_keys(self, text: str) -> None:
        if not text:
            return
        await self._shell("input", "text", escape_input_text(text))

    async def press_button(self, button: Button) -> None:
        if button in DPAD_BUTTONS:
            self._require_tv()
        keycode = BUTTON_MAP.get(button)
        if keycode is None:
            raise ActionableError(
                f'Button "{button.value}" is not supported on Android',
                hint=f"Supported buttons: {', '.join(b.value for b in BUTTON_MAP)}.",
                tool="adb",
            )
        await self._shell("input", "keyevent", keycode)

    # ------------------------------------------------------------------
    # Apps
    # ------------------------------------------------------------------

    async def list_apps(self) -> list[InstalledApp]:
        output = await self._shell(
            "cmd", "package", "query-activities",
            "-a", "android.intent.action.MAIN",
            "-c", "android.intent.category.LAUNCHER",
        )
        seen: dict[str, None] = {}
        for line in output.splitlines():
            line = line.strip()
            if line.startswith("packageName="):
                seen.setdefault(line[len("packageName="):], None)
        return [InstalledApp(package_name=p, app_name=p) for p in seen]

    async def launch_app(self, package_name: str) -> None:
        await self._shell(
            "monkey", "-p", package_name, "-c", "android.intent.category.LAUNCHER", "1",
        )

    async def terminate_app(self, package_name: str) -> None:
        await self._shell("am", "force-stop", package_name)

    async def open_url(self, url: str) -> None:
        await self._shell("am", "start", "-a", "android.intent.action.VIEW", "-d", url)

    # ------------------------------------------------------------------
    # Hierarchy
    # ------------------------------------------------------------------

    async def dump_hierarchy(self) -> ET.Element:
        """Dump and parse the UiAutomator hierarchy.

        Only the bridge's transient null-root failure is retried (up to
        DUMP_MAX_ATTEMPTS); any other adb error propagates immediately.
        """
        for attempt in range(1, DUMP_MAX_ATTEMPTS + 1):
            try:
                dump = (await self._adb("exec-out", "uiautomator", "dump", "/dev/tty")).decode(
                    errors="replace",
                )
            except DeviceError as e:
                if TRANSIENT_DUMP_ERROR not in str(e):
                    raise
                dump = str(e)

            if TRANSIENT_DUMP_ERROR in dump:
                logger.debug(
                    "uiautomator dump not ready on %s (attempt %d/%d)",
                    self.device_id[:8], attempt, DUMP_MAX_ATTEMPTS,
                )
                continue
            return parse_uiautomator_xml(dump)

        raise ActionableError(
            f"Failed to get the UI hierarchy after {DUMP_MAX_ATTEMPTS} attempts",
            hint="The screen may still be animating. Wait a moment and try again.",
            tool="adb",
        )

    async def get_elements_on_screen(self) -> list[ScreenElement]:
        start = time.perf_counter()
        root = await self.dump_hierarchy()
        elements = filter_visible(collect_android_elements(root))
        logger.info(
            "[PERF] android.get_elements_on_screen: %d elements in %.1fms (device %s)",
            len(elements), (time.perf_counter() - start) * 1000, self.device_id[:8],
        )
        return elements

    # ------------------------------------------------------------------
    # TV navigation
    # ------------------------------------------------------------------

    def _require_tv(self) -> None:
        if self.device_type != AndroidDeviceType.TV:
            raise ActionableError(
                "This operation is only supported on Android TV devices",
                hint="Tell the user that D-pad navigation needs an Android TV device "
                "and stop issuing D-pad commands.",
                tool="adb",
            )

    async def press_dpad(self, button: Button) -> None:
        self._require_tv()
        if button not in DPAD_BUTTONS:
            raise ActionableError(
                f'"{button.value}" is not a D-pad button',
                hint="Use one of DPAD_UP, DPAD_DOWN, DPAD_LEFT, DPAD_RIGHT, DPAD_CENTER.",
                tool="adb",
            )
        await self._shell("input", "keyevent", BUTTON_MAP[button])

    async def navigate_to_label(self, label: str) -> int:
        """Press D-pad keys until the focused element is the one labelled ``label``.

        Re-reads the hierarchy after every press. Returns the number of
        presses made.
        """
        self._require_tv()
        for presses in range(MAX_DPAD_PRESSES + 1):
            root = await self.dump_hierarchy()
            focused, target = locate_endpoints(root, label)
            if target is None:
                raise ActionableError(
                    f'No element with label "{label}" on screen',
                    hint="List the elements on screen and use an exact text or label.",
                    tool="adb",
                )
            if focused is None:
                raise ActionableError(
                    "No focused element on screen, cannot navigate with the D-pad",
                    hint="Press DPAD_CENTER or open a screen with a focusable item first.",
                    tool="adb",
                )

            direction = dpad_direction(focused, target)
            if direction is None:
                logger.info("Reached %r on %s after %d presses", label, self.device_id[:8], presses)
                return presses
            if presses == MAX_DPAD_PRESSES:
                break

            await self._shell("input", "keyevent", BUTTON_MAP[direction])
            await asyncio.sleep(DPAD_SETTLE_DELAY)

        raise ActionableError(
            f'Could not reach "{label}" within {MAX_DPAD_PRESSES} D-pad presses',
            hint="The element may not be focusable. Try selecting it another way.",
            tool="adb",
        )

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    async def start_recording(self) -> str:
        recording_id = new_recording_id()
        device_path = f"/sdcard/mobilectl-{recording_id}.mp4"
        host_path = get_recordings_dir() / f"mobilectl-{recording_id}.mp4"

        try:
            process = await asyncio.create_subprocess_exec(
                get_adb_path(), "-s", self.device_id, "shell", "screenrecord", device_path,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
                start_new_session=True,
            )
        except FileNotFoundError:
            raise _adb_not_found()
        self._registry.register(Recording(
            recording_id=recording_id,
            device_id=self.device_id,
            process=process,
            host_path=host_path,
            device_path=device_path,
        ))
        return recording_id

    async def stop_recording(self, recording_id: str) -> str:
        """Stop a recording, pull the video to the host and delete it on the device."""
        recording = self._registry.claim(recording_id, self.device_id)
        try:
            await stop_capture_process(recording.process)
            await asyncio.sleep(RECORDING_SETTLE_DELAY)
            await self._adb("pull", recording.device_path, str(recording.host_path))
        finally:
            await stop_capture_process(recording.process, graceful=False)
            try:
                await self._shell("rm", "-f", recording.device_path)
            except DeviceError as e:
                logger.warning(
                    "Could not remove %s from %s: %s", recording.device_path, self.device_id[:8], e,
                )

        if not recording.host_path.exists() or recording.host_path.stat().st_size == 0:
            raise DeviceError(f"Recording {recording_id} produced no video file", tool="adb")
        logger.info("Recording %s saved to %s", recording_id[:8], recording.host_path)
        return str(recording.host_path)


class AndroidDeviceManager:
    """Lists adb-connected devices along with their TV/mobile class."""

    async def get_connected_devices(self) -> list[DeviceSummary]:
        try:
            output = (await _run_adb("devices")).decode()
        except DeviceError as e:
            logger.warning("Could not run adb, is ANDROID_HOME set? (%s)", e)
            return []

        device_ids = [
            line.split("\t")[0]
            for line in output.splitlines()
            if line.strip() and not line.startswith("List of devices attached")
            and line.rstrip().endswith("device")
        ]
        types = await asyncio.gather(*(detect_android_device_type(d) for d in device_ids))
        return [
            DeviceSummary(
                device_id=device_id,
                name=device_id,
                device_type=DeviceType.ANDROID,
                android_type=android_type,
            )
            for device_id, android_type in zip(device_ids, types)
        ]
