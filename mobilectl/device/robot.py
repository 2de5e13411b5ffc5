"""Robot — the capability interface every device backend implements.

Backends (AndroidRobot, IosRobot, SimulatorRobot) are unrelated classes
that satisfy this protocol; ``create_robot`` picks one from a DeviceType.
"""

from __future__ import annotations

from typing import Protocol

from mobilectl.device.recording import RecordingRegistry
from mobilectl.models import (
    AndroidDeviceType,
    Button,
    DeviceType,
    InstalledApp,
    Orientation,
    ScreenElement,
    ScreenSize,
    SwipeDirection,
)

DEFAULT_SWIPE_DISTANCE = 300


class Robot(Protocol):
    device_id: str

    async def get_screen_size(self) -> ScreenSize: ...

    async def swipe(self, direction: SwipeDirection) -> None: ...

    async def swipe_from_coordinates(
        self, x: int, y: int, direction: SwipeDirection, distance: int = DEFAULT_SWIPE_DISTANCE,
    ) -> None: ...

    async def get_screenshot(self) -> bytes: ...

    async def list_apps(self) -> list[InstalledApp]: ...

    async def launch_app(self, package_name: str) -> None: ...

    async def terminate_app(self, package_name: str) -> None: ...

    async def open_url(self, url: str) -> None: ...

    async def send_keys(self, text: str) -> None: ...

    async def press_button(self, button: Button) -> None: ...

    async def tap(self, x: int, y: int) -> None: ...

    async def get_elements_on_screen(self) -> list[ScreenElement]: ...

    async def set_orientation(self, orientation: Orientation) -> None: ...

    async def get_orientation(self) -> Orientation: ...

    async def start_recording(self) -> str: ...

    async def stop_recording(self, recording_id: str) -> str: ...


def swipe_endpoints(
    start_x: int, start_y: int, direction: SwipeDirection, distance: int,
) -> tuple[int, int, int, int]:
    """Return (x0, y0, x1, y1) for a finger moving ``distance`` px in ``direction``."""
    if direction == SwipeDirection.UP:
        return start_x, start_y, start_x, max(0, start_y - distance)
    if direction == SwipeDirection.DOWN:
        return start_x, start_y, start_x, start_y + distance
    if direction == SwipeDirection.LEFT:
        return start_x, start_y, max(0, start_x - distance), start_y
    return start_x, start_y, start_x + distance, start_y


def screen_swipe_endpoints(size: ScreenSize, direction: SwipeDirection) -> tuple[int, int, int, int]:
    """Endpoints for a full-screen swipe: 80% -> 20% along the swipe axis, centered."""
    center_x, center_y = size.width // 2, size.height // 2
    near_y, far_y = int(size.height * 0.2), int(size.height * 0.8)
    near_x, far_x = int(size.width * 0.2), int(size.width * 0.8)
    if direction == SwipeDirection.UP:
        return center_x, far_y, center_x, near_y
    if direction == SwipeDirection.DOWN:
        return center_x, near_y, center_x, far_y
    if direction == SwipeDirection.LEFT:
        return far_x, center_y, near_x, center_y
    return near_x, center_y, far_x, center_y


def create_robot(
    device_type: DeviceType,
    device_id: str,
    registry: RecordingRegistry,
    *,
    android_type: AndroidDeviceType = AndroidDeviceType.MOBILE,
) -> Robot:
    """Build the backend for one device."""
    if device_type == DeviceType.ANDROID:
        from mobilectl.device.android import AndroidRobot
        return AndroidRobot(device_id, registry, device_type=android_type)
    if device_type == DeviceType.IOS:
        from mobilectl.device.ios import IosRobot
        return IosRobot(device_id)
    if device_type == DeviceType.SIMULATOR:
        from mobilectl.device.simctl import SimulatorRobot
        return SimulatorRobot(device_id, registry)
    raise ValueError(f"Unknown device type: {device_type}")
