"""DeviceController — discovers devices, tracks the selected one, owns the recording registry."""

from __future__ import annotations

import asyncio
import logging

from mobilectl.device.android import AndroidDeviceManager, AndroidRobot, detect_android_device_type
from mobilectl.device.ios import IosManager
from mobilectl.device.recording import RecordingRegistry
from mobilectl.device.robot import Robot, create_robot
from mobilectl.device.simctl import SimctlManager
from mobilectl.models import ActionableError, Button, DeviceSummary, DeviceType

logger = logging.getLogger("mobilectl.device")


class DeviceController:
    """High-level device management: resolves the active robot and delegates to it."""

    def __init__(self, registry: RecordingRegistry | None = None) -> None:
        self.registry = registry if registry is not None else RecordingRegistry()
        self.android = AndroidDeviceManager()
        self.simctl = SimctlManager()
        self.ios = IosManager()
        self._robot: Robot | None = None

    @property
    def robot(self) -> Robot | None:
        return self._robot

    async def list_devices(self) -> list[DeviceSummary]:
        """All reachable devices: adb devices, booted simulators and go-ios devices."""
        android, simulators, ios = await asyncio.gather(
            self.android.get_connected_devices(),
            self.simctl.list_booted_simulators(),
            self.ios.list_devices(),
        )
        return [*simulators, *ios, *android]

    async def select_device(self, device: str, device_type: DeviceType) -> Robot:
        """Make ``device`` the active target. Android device class is detected once here."""
        if device_type == DeviceType.ANDROID:
            android_type = await detect_android_device_type(device)
            robot = create_robot(device_type, device, self.registry, android_type=android_type)
        else:
            robot = create_robot(device_type, device, self.registry)
        self._robot = robot
        logger.info("Selected %s device %s", device_type.value, device[:8])
        return robot

    def require_robot(self) -> Robot:
        if self._robot is None:
            raise ActionableError(
                "No device selected",
                hint="List devices and select one before issuing device commands.",
                tool="controller",
            )
        return self._robot

    def _require_android(self) -> AndroidRobot:
        robot = self.require_robot()
        if not isinstance(robot, AndroidRobot):
            raise ActionableError(
                "D-pad navigation is only supported on Android TV devices",
                hint="Select an Android TV device to use D-pad commands.",
                tool="controller",
            )
        return robot

    async def press_dpad(self, button: Button) -> None:
        await self._require_android().press_dpad(button)

    async def navigate_to_label(self, label: str) -> int:
        return await self._require_android().navigate_to_label(label)

    async def close(self) -> None:
        await self.registry.close()
