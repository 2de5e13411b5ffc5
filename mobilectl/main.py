"""mobilectl server — main entry point.

Usage:
    python3 -m mobilectl                       Start on 127.0.0.1:9200
    python3 -m mobilectl --port 9300 -v        Custom port, debug logging
"""

from __future__ import annotations

import argparse
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import uvicorn
from fastapi import FastAPI

from mobilectl.api.device import router as device_router
from mobilectl.config import DEFAULT_SERVER_PORT, ServerConfig
from mobilectl.device.controller import DeviceController

logger = logging.getLogger("mobilectl")

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage server startup and shutdown."""
    config: ServerConfig = app.state.config

    device_controller = DeviceController()
    app.state.device_controller = device_controller
    logger.info("Server started on %s:%d", config.host, config.port)

    yield

    # Kill any capture process nobody stopped
    await device_controller.close()
    app.state.device_controller = None
    logger.info("Server stopped")


def create_app(config: ServerConfig | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if config is None:
        config = ServerConfig()

    app = FastAPI(
        title="mobilectl",
        version=VERSION,
        description="Uniform control of Android devices, iOS devices and iOS simulators",
        lifespan=lifespan,
    )

    app.state.config = config
    app.state.device_controller = None

    app.include_router(device_router)

    @app.get("/health")
    async def health() -> dict:
        """Health check with the currently selected device, if any."""
        selected = None
        controller = app.state.device_controller
        if controller is not None and controller.robot is not None:
            selected = controller.robot.device_id
        return {
            "status": "ok",
            "version": VERSION,
            "selected_device": selected,
        }

    return app


def cli() -> None:
    parser = argparse.ArgumentParser(
        prog="mobilectl",
        description="HTTP server for driving Android devices, iOS devices and simulators.",
    )
    parser.add_argument("--host", default="127.0.0.1", help="Bind host (default: 127.0.0.1)")
    parser.add_argument(
        "--port", type=int, default=DEFAULT_SERVER_PORT,
        help=f"Bind port (default: {DEFAULT_SERVER_PORT})",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    config = ServerConfig(host=args.host, port=args.port)
    print(f"mobilectl v{VERSION}")
    print(f"  http://{config.host}:{config.port}")
    print()

    app = create_app(config)
    uvicorn.run(
        app,
        host=config.host,
        port=config.port,
        log_level="debug" if args.verbose else "info",
    )
