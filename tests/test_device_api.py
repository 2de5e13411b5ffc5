"""Integration tests for device API endpoints.

Uses httpx/ASGITransport against the real FastAPI app with a mocked robot.
"""

from __future__ import annotations

import io
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient
from PIL import Image

from mobilectl.config import ServerConfig
from mobilectl.device.android import AndroidRobot
from mobilectl.device.controller import DeviceController
from mobilectl.device.recording import RecordingRegistry
from mobilectl.device.simctl import SimulatorRobot
from mobilectl.main import create_app
from mobilectl.models import (
    ActionableError,
    AndroidDeviceType,
    DeviceError,
    DeviceSummary,
    DeviceType,
    InstalledApp,
    Orientation,
    Rect,
    RecordingNotFoundError,
    ScreenElement,
    ScreenSize,
    SwipeDirection,
)


def _png() -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (100, 200), (0, 0, 255)).save(buf, format="PNG")
    return buf.getvalue()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def app():
    return create_app(config=ServerConfig(port=9999))


@pytest.fixture
def robot():
    robot = MagicMock(spec=SimulatorRobot)
    robot.device_id = "AAAA-1111"
    robot.get_screen_size = AsyncMock(return_value=ScreenSize(width=390, height=844, scale=3))
    robot.get_screenshot = AsyncMock(return_value=_png())
    robot.get_elements_on_screen = AsyncMock(return_value=[
        ScreenElement(type="Button", label="Settings", rect=Rect(x=10, y=20, width=60, height=40)),
    ])
    robot.tap = AsyncMock()
    robot.swipe = AsyncMock()
    robot.swipe_from_coordinates = AsyncMock()
    robot.send_keys = AsyncMock()
    robot.press_button = AsyncMock()
    robot.open_url = AsyncMock()
    robot.get_orientation = AsyncMock(return_value=Orientation.PORTRAIT)
    robot.set_orientation = AsyncMock()
    robot.list_apps = AsyncMock(return_value=[InstalledApp(package_name="com.example.app", app_name="Example")])
    robot.launch_app = AsyncMock()
    robot.terminate_app = AsyncMock()
    robot.start_recording = AsyncMock(return_value="abc123")
    robot.stop_recording = AsyncMock(return_value="/tmp/mobilectl-abc123.mp4")
    return robot


@pytest.fixture
def controller(app, robot):
    ctrl = DeviceController()
    ctrl._robot = robot
    app.state.device_controller = ctrl
    return ctrl


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


# ---------------------------------------------------------------------------
# Health / controller availability
# ---------------------------------------------------------------------------


class TestHealth:
    async def test_health(self, client, controller):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["selected_device"] == "AAAA-1111"

    async def test_no_controller(self, client):
        resp = await client.get("/api/v1/device/screen-size")
        assert resp.status_code == 503


# ---------------------------------------------------------------------------
# Device management
# ---------------------------------------------------------------------------


class TestDevices:
    async def test_list(self, client, controller):
        controller.list_devices = AsyncMock(return_value=[
            DeviceSummary(device_id="emulator-5554", device_type=DeviceType.ANDROID,
                          android_type=AndroidDeviceType.TV),
        ])
        resp = await client.get("/api/v1/device/list")
        assert resp.status_code == 200
        assert resp.json()["devices"] == [
            {"device_id": "emulator-5554", "name": "", "device_type": "android", "android_type": "tv"},
        ]

    async def test_select_android_tv(self, client, controller):
        controller.select_device = AsyncMock(return_value=AndroidRobot(
            "emulator-5554", RecordingRegistry(), device_type=AndroidDeviceType.TV,
        ))
        resp = await client.post(
            "/api/v1/device/select", json={"device": "emulator-5554", "device_type": "android"},
        )
        assert resp.status_code == 200
        assert resp.json()["android_type"] == "tv"
        controller.select_device.assert_awaited_once_with("emulator-5554", DeviceType.ANDROID)

    async def test_select_bad_type(self, client, controller):
        resp = await client.post("/api/v1/device/select", json={"device": "x", "device_type": "watch"})
        assert resp.status_code == 422

    async def test_nothing_selected(self, client, controller):
        controller._robot = None
        resp = await client.post("/api/v1/device/tap", json={"x": 1, "y": 2})
        assert resp.status_code == 400
        assert resp.json()["detail"]["message"] == "No device selected"


# ---------------------------------------------------------------------------
# Screen and input
# ---------------------------------------------------------------------------


class TestScreen:
    async def test_screen_size(self, client, controller):
        resp = await client.get("/api/v1/device/screen-size")
        assert resp.json() == {"width": 390, "height": 844, "scale": 3.0}

    async def test_screenshot_jpeg(self, client, controller):
        resp = await client.get("/api/v1/device/screenshot", params={"format": "jpeg", "scale": 0.5})
        assert resp.status_code == 200
        assert resp.headers["content-type"] == "image/jpeg"
        assert Image.open(io.BytesIO(resp.content)).size == (50, 100)

    async def test_screenshot_garbage_is_500(self, client, controller, robot):
        robot.get_screenshot = AsyncMock(return_value=b"adb: device offline")
        resp = await client.get("/api/v1/device/screenshot")
        assert resp.status_code == 500
        assert resp.json()["detail"].startswith("[screenshot] Device returned an unreadable screenshot")

    async def test_screenshot_bad_scale(self, client, controller):
        resp = await client.get("/api/v1/device/screenshot", params={"scale": 2})
        assert resp.status_code == 422

    async def test_elements_omit_empty_fields(self, client, controller):
        resp = await client.get("/api/v1/device/elements")
        assert resp.json()["elements"] == [
            {"type": "Button", "label": "Settings", "rect": {"x": 10, "y": 20, "width": 60, "height": 40}},
        ]

    async def test_orientation(self, client, controller, robot):
        assert (await client.get("/api/v1/device/orientation")).json() == {"orientation": "portrait"}
        resp = await client.post("/api/v1/device/orientation", json={"orientation": "landscape"})
        assert resp.status_code == 200
        robot.set_orientation.assert_awaited_once_with(Orientation.LANDSCAPE)


class TestInput:
    async def test_tap(self, client, controller, robot):
        resp = await client.post("/api/v1/device/tap", json={"x": 10, "y": 20})
        assert resp.status_code == 200
        robot.tap.assert_awaited_once_with(10, 20)

    async def test_tap_negative_rejected(self, client, controller):
        resp = await client.post("/api/v1/device/tap", json={"x": -1, "y": 20})
        assert resp.status_code == 422

    async def test_full_screen_swipe(self, client, controller, robot):
        await client.post("/api/v1/device/swipe", json={"direction": "up"})
        robot.swipe.assert_awaited_once_with(SwipeDirection.UP)
        robot.swipe_from_coordinates.assert_not_awaited()

    async def test_swipe_from_point(self, client, controller, robot):
        await client.post("/api/v1/device/swipe", json={"direction": "left", "x": 200, "y": 300})
        robot.swipe_from_coordinates.assert_awaited_once_with(200, 300, SwipeDirection.LEFT, 300)

    async def test_unsupported_button_is_400_with_hint(self, client, controller, robot):
        robot.press_button = AsyncMock(side_effect=ActionableError(
            'Button "BACK" is not supported on iOS', hint="Supported buttons: HOME.", tool="wda",
        ))
        resp = await client.post("/api/v1/device/button", json={"button": "BACK"})
        assert resp.status_code == 400
        assert resp.json()["detail"] == {
            "message": 'Button "BACK" is not supported on iOS',
            "hint": "Supported buttons: HOME.",
        }

    async def test_device_error_is_500(self, client, controller, robot):
        robot.send_keys = AsyncMock(side_effect=DeviceError("session lost", tool="wda"))
        resp = await client.post("/api/v1/device/type", json={"text": "hi"})
        assert resp.status_code == 500
        assert resp.json()["detail"] == "[wda] session lost"

    async def test_open_url(self, client, controller, robot):
        resp = await client.post("/api/v1/device/url", json={"url": "https://example.com"})
        assert resp.status_code == 200
        robot.open_url.assert_awaited_once_with("https://example.com")


class TestDpad:
    async def test_dpad_on_simulator(self, client, controller):
        resp = await client.post("/api/v1/device/dpad", json={"button": "DPAD_UP"})
        assert resp.status_code == 400

    async def test_navigate(self, client, controller):
        controller.navigate_to_label = AsyncMock(return_value=4)
        resp = await client.post("/api/v1/device/navigate", json={"label": "Movies"})
        assert resp.json() == {"status": "focused", "label": "Movies", "presses": 4}

    async def test_navigate_empty_label(self, client, controller):
        resp = await client.post("/api/v1/device/navigate", json={"label": ""})
        assert resp.status_code == 422


# ---------------------------------------------------------------------------
# Apps and recording
# ---------------------------------------------------------------------------


class TestApps:
    async def test_list(self, client, controller):
        resp = await client.get("/api/v1/device/apps")
        assert resp.json()["apps"] == [{"package_name": "com.example.app", "app_name": "Example"}]

    async def test_launch_and_terminate(self, client, controller, robot):
        await client.post("/api/v1/device/apps/launch", json={"package_name": "com.example.app"})
        await client.post("/api/v1/device/apps/terminate", json={"package_name": "com.example.app"})
        robot.launch_app.assert_awaited_once_with("com.example.app")
        robot.terminate_app.assert_awaited_once_with("com.example.app")


class TestRecording:
    async def test_start_stop(self, client, controller, robot):
        resp = await client.post("/api/v1/device/recording/start")
        assert resp.json() == {"status": "recording", "recording_id": "abc123"}
        resp = await client.post("/api/v1/device/recording/stop", json={"recording_id": "abc123"})
        assert resp.json()["path"] == "/tmp/mobilectl-abc123.mp4"

    async def test_stop_unknown_is_404(self, client, controller, robot):
        robot.stop_recording = AsyncMock(side_effect=RecordingNotFoundError(
            "Recording nope not found", hint="Use the id returned by start recording.", tool="recording",
        ))
        resp = await client.post("/api/v1/device/recording/stop", json={"recording_id": "nope"})
        assert resp.status_code == 404
        assert resp.json()["detail"]["hint"] == "Use the id returned by start recording."
