"""API routes for device selection, interaction, apps and recordings."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import Response

from mobilectl.device.robot import DEFAULT_SWIPE_DISTANCE
from mobilectl.device.screenshots import process_screenshot
from mobilectl.models import (
    ActionableError,
    AppRequest,
    DeviceError,
    DpadRequest,
    NavigateRequest,
    OpenUrlRequest,
    PressButtonRequest,
    RecordingNotFoundError,
    SelectDeviceRequest,
    SetOrientationRequest,
    StopRecordingRequest,
    SwipeRequest,
    TapRequest,
    TypeTextRequest,
)

router = APIRouter(prefix="/api/v1/device", tags=["device"])
logger = logging.getLogger("mobilectl.api")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _get_controller(request: Request):
    """Get the DeviceController from app state."""
    controller = getattr(request.app.state, "device_controller", None)
    if controller is None:
        raise HTTPException(status_code=503, detail="Device controller not initialized")
    return controller


def _handle_device_error(e: DeviceError) -> HTTPException:
    """Map a DeviceError to an appropriate HTTPException."""
    msg = str(e)
    if isinstance(e, RecordingNotFoundError):
        return HTTPException(status_code=404, detail={"message": msg, "hint": e.hint})
    if isinstance(e, ActionableError):
        return HTTPException(status_code=400, detail={"message": msg, "hint": e.hint})
    logger.error("[%s] %s", e.tool, msg)
    return HTTPException(status_code=500, detail=f"[{e.tool}] {msg}")


# ---------------------------------------------------------------------------
# Device management
# ---------------------------------------------------------------------------


@router.get("/list")
async def list_devices(request: Request):
    """List Android devices, booted simulators and physical iOS devices."""
    controller = _get_controller(request)
    try:
        devices = await controller.list_devices()
    except DeviceError as e:
        raise _handle_device_error(e)
    return {"devices": [d.model_dump(exclude_none=True) for d in devices]}


@router.post("/select")
async def select_device(request: Request, body: SelectDeviceRequest):
    """Bind subsequent device commands to one device."""
    controller = _get_controller(request)
    try:
        robot = await controller.select_device(body.device, body.device_type)
    except DeviceError as e:
        raise _handle_device_error(e)
    result = {"status": "selected", "device": robot.device_id, "device_type": body.device_type.value}
    android_type = getattr(robot, "device_type", None)
    if android_type is not None:
        result["android_type"] = android_type.value
    return result


# ---------------------------------------------------------------------------
# Screen
# ---------------------------------------------------------------------------


@router.get("/screen-size")
async def get_screen_size(request: Request):
    controller = _get_controller(request)
    try:
        size = await controller.require_robot().get_screen_size()
    except DeviceError as e:
        raise _handle_device_error(e)
    return size.model_dump()


@router.get("/screenshot")
async def take_screenshot(
    request: Request,
    format: str = Query(default="png", pattern="^(png|jpeg)$"),
    scale: float = Query(default=0.5, ge=0.1, le=1.0),
    quality: int = Query(default=85, ge=1, le=100),
):
    """Capture a screenshot from the selected device."""
    controller = _get_controller(request)
    try:
        raw = await controller.require_robot().get_screenshot()
        image_bytes, media_type = process_screenshot(raw, format=format, scale=scale, quality=quality)
    except DeviceError as e:
        raise _handle_device_error(e)
    return Response(content=image_bytes, media_type=media_type)


@router.get("/elements")
async def list_elements(request: Request):
    """Visible UI elements of the current screen."""
    controller = _get_controller(request)
    try:
        elements = await controller.require_robot().get_elements_on_screen()
    except DeviceError as e:
        raise _handle_device_error(e)
    return {"elements": [el.to_dict() for el in elements]}


@router.get("/orientation")
async def get_orientation(request: Request):
    controller = _get_controller(request)
    try:
        orientation = await controller.require_robot().get_orientation()
    except DeviceError as e:
        raise _handle_device_error(e)
    return {"orientation": orientation.value}


@router.post("/orientation")
async def set_orientation(request: Request, body: SetOrientationRequest):
    controller = _get_controller(request)
    try:
        await controller.require_robot().set_orientation(body.orientation)
    except DeviceError as e:
        raise _handle_device_error(e)
    return {"status": "ok", "orientation": body.orientation.value}


# ---------------------------------------------------------------------------
# Input
# ---------------------------------------------------------------------------


@router.post("/tap")
async def tap(request: Request, body: TapRequest):
    controller = _get_controller(request)
    try:
        await controller.require_robot().tap(body.x, body.y)
    except DeviceError as e:
        raise _handle_device_error(e)
    return {"status": "ok", "x": body.x, "y": body.y}


@router.post("/swipe")
async def swipe(request: Request, body: SwipeRequest):
    """Full-screen swipe, or a swipe from (x, y) when both are given."""
    controller = _get_controller(request)
    try:
        robot = controller.require_robot()
        if body.x is None or body.y is None:
            await robot.swipe(body.direction)
        else:
            await robot.swipe_from_coordinates(
                body.x, body.y, body.direction, body.distance or DEFAULT_SWIPE_DISTANCE,
            )
    except DeviceError as e:
        raise _handle_device_error(e)
    return {"status": "ok", "direction": body.direction.value}


@router.post("/type")
async def type_text(request: Request, body: TypeTextRequest):
    controller = _get_controller(request)
    try:
        await controller.require_robot().send_keys(body.text)
    except DeviceError as e:
        raise _handle_device_error(e)
    return {"status": "ok"}


@router.post("/button")
async def press_button(request: Request, body: PressButtonRequest):
    controller = _get_controller(request)
    try:
        await controller.require_robot().press_button(body.button)
    except DeviceError as e:
        raise _handle_device_error(e)
    return {"status": "ok", "button": body.button.value}


@router.post("/url")
async def open_url(request: Request, body: OpenUrlRequest):
    controller = _get_controller(request)
    try:
        await controller.require_robot().open_url(body.url)
    except DeviceError as e:
        raise _handle_device_error(e)
    return {"status": "ok", "url": body.url}


@router.post("/dpad")
async def press_dpad(request: Request, body: DpadRequest):
    """Single D-pad press (Android TV only)."""
    controller = _get_controller(request)
    try:
        await controller.press_dpad(body.button)
    except DeviceError as e:
        raise _handle_device_error(e)
    return {"status": "ok", "button": body.button.value}


@router.post("/navigate")
async def navigate_to_label(request: Request, body: NavigateRequest):
    """Move D-pad focus onto the element labelled ``label`` (Android TV only)."""
    controller = _get_controller(request)
    try:
        presses = await controller.navigate_to_label(body.label)
    except DeviceError as e:
        raise _handle_device_error(e)
    return {"status": "focused", "label": body.label, "presses": presses}


# ---------------------------------------------------------------------------
# Apps
# ---------------------------------------------------------------------------


@router.get("/apps")
async def list_apps(request: Request):
    controller = _get_controller(request)
    try:
        apps = await controller.require_robot().list_apps()
    except DeviceError as e:
        raise _handle_device_error(e)
    return {"apps": [a.model_dump() for a in apps]}


@router.post("/apps/launch")
async def launch_app(request: Request, body: AppRequest):
    controller = _get_controller(request)
    try:
        await controller.require_robot().launch_app(body.package_name)
    except DeviceError as e:
        raise _handle_device_error(e)
    return {"status": "launched", "package_name": body.package_name}


@router.post("/apps/terminate")
async def terminate_app(request: Request, body: AppRequest):
    controller = _get_controller(request)
    try:
        await controller.require_robot().terminate_app(body.package_name)
    except DeviceError as e:
        raise _handle_device_error(e)
    return {"status": "terminated", "package_name": body.package_name}


# ---------------------------------------------------------------------------
# Recording
# ---------------------------------------------------------------------------


@router.post("/recording/start")
async def start_recording(request: Request):
    controller = _get_controller(request)
    try:
        recording_id = await controller.require_robot().start_recording()
    except DeviceError as e:
        raise _handle_device_error(e)
    return {"status": "recording", "recording_id": recording_id}


@router.post("/recording/stop")
async def stop_recording(request: Request, body: StopRecordingRequest):
    """Stop a recording started on the selected device; returns the host video path."""
    controller = _get_controller(request)
    try:
        path = await controller.require_robot().stop_recording(body.recording_id)
    except DeviceError as e:
        raise _handle_device_error(e)
    return {"status": "stopped", "recording_id": body.recording_id, "path": path}
