"""FastAPI application for the adapter flasher."""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
import uvicorn

from flasher.config import EngineConfig, load_config
from flasher.drivers.controller import DriverFactory, load_driver_factory
from flasher.services.engine import FlasherEngine
from flasher.services.state_manager import StateManager
from flasher.transport.session import PySerialSession, SerialSession
from flasher.utils.logging import setup_logger
from flasher.api.routes import router

CONFIG_ENV = "FLASHER_CONFIG"
DEFAULT_CONFIG_PATH = "./config.json"


def _unconfigured_driver(session: SerialSession):
    raise RuntimeError(
        "No controller driver configured, set 'driver_factory' to 'module:attribute'"
    )


def build_driver_factory(config: EngineConfig) -> DriverFactory:
    """Driver factory named by the configuration.

    Without one every connection attempt fails with CONNECTION_FAILED;
    bridge updates still work.
    """
    logger = logging.getLogger("flasher")
    if not config.driver_factory:
        logger.warning("No controller driver factory configured")
        return _unconfigured_driver
    factory = load_driver_factory(config.driver_factory)
    logger.info(f"Using controller driver factory {config.driver_factory}")
    return factory


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown hooks.

    Startup:
    - Load configuration (path from $FLASHER_CONFIG, default ./config.json)
    - Initialize logger
    - Create the serial session and the engine

    Shutdown:
    - Cancel any running action, release the link
    """
    # Startup
    config = load_config(os.environ.get(CONFIG_ENV, DEFAULT_CONFIG_PATH))
    logger = setup_logger("flasher", config.log_file, level=config.log_level)
    logger.info("Adapter flasher starting up...")

    session = PySerialSession(config.port, poll_interval=config.poll_interval)
    engine = FlasherEngine(
        session,
        build_driver_factory(config),
        config=config,
        state_manager=StateManager(),
    )
    app.state.engine = engine

    logger.info(f"Adapter flasher ready on port {config.api_port}, adapter at {config.port}")

    yield

    # Shutdown
    logger.info("Adapter flasher shutting down...")
    await engine.close()
    await session.dispose()


# Create FastAPI application
app = FastAPI(
    title="Adapter Flasher",
    description="Recovery and firmware update service for dual-chip USB radio adapters",
    version="1.0.0",
    lifespan=lifespan,
)

# Register API routes
app.include_router(router)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "adapter-flasher", "version": "1.0.0"}


def main():
    """Main entry point for running the server."""
    config = load_config(os.environ.get(CONFIG_ENV, DEFAULT_CONFIG_PATH))
    uvicorn.run(
        app,  # Pass app object directly for debug support
        host=config.api_host,
        port=config.api_port,
        log_level="info",
        access_log=True,
    )


if __name__ == "__main__":
    main()
