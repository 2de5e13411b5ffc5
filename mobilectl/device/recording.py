"""Process-wide table of in-flight screen recordings.

A recording goes ``absent -> recording -> absent``. The registry is the sole
owner of each capture process until the recording is claimed by a stop
call; callers only ever hold the opaque id.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from mobilectl.models import RecordingNotFoundError, RecordingOwnershipError

logger = logging.getLogger("mobilectl.recording")

RECORDING_SETTLE_DELAY = 2.0  # seconds for the capture tool to flush the file
RECORDING_EXIT_TIMEOUT = 5.0


def new_recording_id() -> str:
    """Random hex id; never derived from a device path."""
    return uuid.uuid4().hex


@dataclass
class Recording:
    recording_id: str
    device_id: str
    process: asyncio.subprocess.Process
    host_path: Path
    # None when the capture tool writes straight to host_path
    device_path: str | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class RecordingRegistry:
    """Thread-safe map of recording id to Recording."""

    def __init__(self) -> None:
        self._recordings: dict[str, Recording] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._recordings)

    def register(self, recording: Recording) -> None:
        with self._lock:
            if recording.recording_id in self._recordings:
                raise ValueError(f"Recording id {recording.recording_id} already registered")
            self._recordings[recording.recording_id] = recording
        logger.info(
            "Recording %s started on %s -> %s",
            recording.recording_id[:8], recording.device_id[:8], recording.host_path,
        )

    def get(self, recording_id: str) -> Recording | None:
        with self._lock:
            return self._recordings.get(recording_id)

    def recordings_for(self, device_id: str) -> list[Recording]:
        with self._lock:
            return [r for r in self._recordings.values() if r.device_id == device_id]

    def claim(self, recording_id: str, device_id: str) -> Recording:
        """Atomically validate and remove a recording so it can be stopped.

        Raises RecordingNotFoundError for unknown ids and
        RecordingOwnershipError (leaving the entry in place) when the
        recording belongs to another device. Of two concurrent claims for
        the same id, exactly one succeeds.
        """
        with self._lock:
            recording = self._recordings.get(recording_id)
            if recording is None:
                raise RecordingNotFoundError(
                    f"Recording {recording_id} not found",
                    hint="Use the id returned by start recording; a recording can only be stopped once.",
                    tool="recording",
                )
            if recording.device_id != device_id:
                raise RecordingOwnershipError(
                    f"Recording {recording_id} belongs to device {recording.device_id}, "
                    f"not {device_id}",
                    hint="Select the device that started the recording and stop it from there.",
                    tool="recording",
                )
            del self._recordings[recording_id]
        return recording

    async def close(self) -> None:
        """Kill every capture process still running (server shutdown)."""
        with self._lock:
            recordings = list(self._recordings.values())
            self._recordings.clear()
        for recording in recordings:
            await stop_capture_process(recording.process, graceful=False)
            logger.info("Discarded recording %s on shutdown", recording.recording_id[:8])


async def stop_capture_process(process: asyncio.subprocess.Process, graceful: bool = True) -> None:
    """Ask a capture process to finish (SIGINT) and kill it if it will not exit."""
    if process.returncode is not None:
        return
    try:
        if graceful:
            process.send_signal(signal.SIGINT)  # lets screenrecord/recordVideo finalize the file
        else:
            process.kill()
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(process.wait(), timeout=RECORDING_EXIT_TIMEOUT)
    except asyncio.TimeoutError:
        logger.warning("Capture process %s did not exit, killing it", process.pid)
        try:
            process.kill()
        except ProcessLookupError:
            pass
