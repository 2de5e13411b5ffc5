"""Core data models shared by every device backend and the API layer."""

from __future__ import annotations

import enum

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class DeviceError(Exception):
    """Unexpected failure talking to a device or one of its CLI tools."""

    def __init__(self, message: str, tool: str = "unknown") -> None:
        super().__init__(message)
        self.tool = tool


class ActionableError(DeviceError):
    """A failure the user can fix and retry (missing tunnel, bad button, ...).

    Always carries a remediation hint.
    """

    def __init__(self, message: str, hint: str = "", tool: str = "unknown") -> None:
        super().__init__(message, tool=tool)
        self.hint = hint or "Please fix the issue and try again."


class HierarchyParseError(DeviceError):
    """A UI hierarchy dump was malformed or missing its root node."""


class RecordingNotFoundError(ActionableError):
    """No active recording is registered under the given id."""


class RecordingOwnershipError(ActionableError):
    """The recording belongs to a different device than the caller's."""


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class DeviceType(str, enum.Enum):
    """Backend selector supplied by the caller when binding a device."""

    SIMULATOR = "simulator"
    IOS = "ios"
    ANDROID = "android"


class AndroidDeviceType(str, enum.Enum):
    TV = "tv"
    MOBILE = "mobile"


class Button(str, enum.Enum):
    HOME = "HOME"
    BACK = "BACK"
    VOLUME_UP = "VOLUME_UP"
    VOLUME_DOWN = "VOLUME_DOWN"
    ENTER = "ENTER"
    DPAD_UP = "DPAD_UP"
    DPAD_DOWN = "DPAD_DOWN"
    DPAD_LEFT = "DPAD_LEFT"
    DPAD_RIGHT = "DPAD_RIGHT"
    DPAD_CENTER = "DPAD_CENTER"


DPAD_BUTTONS = frozenset({
    Button.DPAD_UP, Button.DPAD_DOWN, Button.DPAD_LEFT, Button.DPAD_RIGHT, Button.DPAD_CENTER,
})


class Orientation(str, enum.Enum):
    PORTRAIT = "portrait"
    LANDSCAPE = "landscape"


class SwipeDirection(str, enum.Enum):
    UP = "up"
    DOWN = "down"
    LEFT = "left"
    RIGHT = "right"


# ---------------------------------------------------------------------------
# Screen / element models
# ---------------------------------------------------------------------------


class Rect(BaseModel):
    """Element bounds in device pixel space."""

    x: int = Field(ge=0)
    y: int = Field(ge=0)
    width: int = Field(ge=0)
    height: int = Field(ge=0)

    @property
    def is_empty(self) -> bool:
        return self.width == 0 or self.height == 0


class ScreenElement(BaseModel):
    """Backend-agnostic UI element produced by the hierarchy parsers.

    Optional fields stay None when the backend has nothing for them, and
    are dropped on serialization (see ``to_dict``). ``focused`` is either
    True or absent, never False.
    """

    type: str
    text: str | None = None
    label: str | None = None
    name: str | None = None
    value: str | None = None
    identifier: str | None = None
    focused: bool | None = None
    rect: Rect

    def to_dict(self) -> dict:
        return self.model_dump(exclude_none=True)


class ScreenSize(BaseModel):
    width: int
    height: int
    scale: float = 1.0


class InstalledApp(BaseModel):
    package_name: str = Field(description="Android package name or iOS bundle id")
    app_name: str = ""


class DeviceSummary(BaseModel):
    """One entry of the aggregated device listing."""

    device_id: str
    name: str = ""
    device_type: DeviceType
    android_type: AndroidDeviceType | None = None


# ---------------------------------------------------------------------------
# API request models
# ---------------------------------------------------------------------------


class SelectDeviceRequest(BaseModel):
    device: str = Field(description="Device id (adb serial, UDID or simulator UUID)")
    device_type: DeviceType


class TapRequest(BaseModel):
    x: int = Field(ge=0)
    y: int = Field(ge=0)


class SwipeRequest(BaseModel):
    direction: SwipeDirection
    x: int | None = Field(default=None, ge=0, description="Start x; full-screen swipe when x or y is omitted")
    y: int | None = Field(default=None, ge=0, description="Start y; full-screen swipe when x or y is omitted")
    distance: int | None = Field(default=None, gt=0)


class TypeTextRequest(BaseModel):
    text: str


class PressButtonRequest(BaseModel):
    button: Button


class OpenUrlRequest(BaseModel):
    url: str


class SetOrientationRequest(BaseModel):
    orientation: Orientation


class AppRequest(BaseModel):
    package_name: str


class DpadRequest(BaseModel):
    button: Button


class NavigateRequest(BaseModel):
    label: str = Field(min_length=1)


class StopRecordingRequest(BaseModel):
    recording_id: str
