"""Tests for IosRobot preconditions and IosManager discovery."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, patch

import pytest

from mobilectl.device.ios import IOS_TUNNEL_PORT, IosManager, IosRobot
from mobilectl.models import ActionableError, Button, DeviceType

UDID = "00008110-000A1B2C3D4E5F60"


def _info(version: str) -> bytes:
    return json.dumps({"ProductVersion": version, "DeviceName": "Test iPhone"}).encode()


@pytest.fixture
def robot():
    return IosRobot(UDID)


def _ports(*open_ports: int):
    async def probe(port, host="localhost"):
        return port in open_ports
    return patch("mobilectl.device.ios.is_listening_on_port", side_effect=probe)


class TestPreconditions:
    async def test_tunnel_missing_on_ios17(self, robot):
        with patch("mobilectl.device.ios._run_go_ios", AsyncMock(return_value=_info("17.4"))), \
                _ports(8100):
            with pytest.raises(ActionableError, match="tunnel is not running"):
                await robot.tap(1, 1)

    async def test_tunnel_not_needed_before_ios17(self, robot):
        wda = AsyncMock()
        wda.is_running = AsyncMock(return_value=True)
        with patch("mobilectl.device.ios._run_go_ios", AsyncMock(return_value=_info("16.7.2"))), \
                _ports(8100), \
                patch("mobilectl.device.ios.WebDriverAgentClient", return_value=wda):
            await robot.tap(3, 4)
        wda.tap.assert_awaited_once_with(3, 4)

    async def test_port_forward_missing(self, robot):
        with patch("mobilectl.device.ios._run_go_ios", AsyncMock(return_value=_info("17.4"))), \
                _ports(IOS_TUNNEL_PORT):
            with pytest.raises(ActionableError, match="Port forwarding"):
                await robot.press_button(Button.HOME)

    async def test_wda_not_running(self, robot):
        wda = AsyncMock()
        wda.is_running = AsyncMock(return_value=False)
        with patch("mobilectl.device.ios._run_go_ios", AsyncMock(return_value=_info("17.4"))), \
                _ports(IOS_TUNNEL_PORT, 8100), \
                patch("mobilectl.device.ios.WebDriverAgentClient", return_value=wda):
            with pytest.raises(ActionableError, match="WebDriverAgent is not running on device"):
                await robot.get_elements_on_screen()
        wda.get_elements_on_screen.assert_not_awaited()

    async def test_version_cached(self, robot):
        run = AsyncMock(return_value=_info("17.0"))
        with patch("mobilectl.device.ios._run_go_ios", run):
            assert await robot.get_ios_version() == "17.0"
            assert await robot.get_ios_version() == "17.0"
        run.assert_awaited_once_with("info", "--udid", UDID)

    async def test_recording_unsupported(self, robot):
        with pytest.raises(ActionableError, match="not supported"):
            await robot.start_recording()
        with pytest.raises(ActionableError, match="not supported"):
            await robot.stop_recording("abc")


class TestGoIos:
    async def test_list_apps(self, robot):
        run = AsyncMock(side_effect=[
            _info("16.0"),
            b"com.apple.Preferences Settings\ncom.example.app My App\n\n",
        ])
        with patch("mobilectl.device.ios._run_go_ios", run):
            apps = await robot.list_apps()
        assert [(a.package_name, a.app_name) for a in apps] == [
            ("com.apple.Preferences", "Settings"),
            ("com.example.app", "My App"),
        ]
        assert run.await_args_list[-1].args == ("apps", "--all", "--list", "--udid", UDID)

    async def test_launch_and_kill(self, robot):
        run = AsyncMock(side_effect=[_info("16.0"), b"", b""])
        with patch("mobilectl.device.ios._run_go_ios", run):
            await robot.launch_app("com.example.app")
            await robot.terminate_app("com.example.app")
        assert run.await_args_list[1].args == ("launch", "com.example.app", "--udid", UDID)
        assert run.await_args_list[2].args == ("kill", "com.example.app", "--udid", UDID)


class TestIosManager:
    async def test_go_ios_missing(self):
        with patch(
            "mobilectl.device.ios._run_go_ios",
            AsyncMock(side_effect=ActionableError("go-ios not found", tool="go-ios")),
        ):
            assert await IosManager().list_devices() == []

    async def test_list_devices(self):
        async def run(*args):
            if args[0] == "version":
                return b'{"version": "v1.0.150"}'
            if args[0] == "list":
                return json.dumps({"deviceList": [UDID]}).encode()
            return _info("17.4")

        with patch("mobilectl.device.ios._run_go_ios", side_effect=run):
            devices = await IosManager().list_devices()
        assert len(devices) == 1
        assert devices[0].device_id == UDID
        assert devices[0].name == "Test iPhone"
        assert devices[0].device_type == DeviceType.IOS
