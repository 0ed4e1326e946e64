"""Smoke-test entry point: send one breadcrumbed error and a request metric."""

import asyncio
import os
from pathlib import Path

from dotenv import load_dotenv

import telemetry_sdk
from telemetry_sdk.logging_config import get_logger, setup_logging

logger = get_logger("telemetry_sdk.main")


async def run() -> None:
    """Initialize from the environment, emit sample telemetry, shut down cleanly."""
    sdk = await telemetry_sdk.init(
        service_name=os.getenv("TELEMETRY_SERVICE_NAME", "telemetry-smoke"),
        tags={"source": "smoke-test"},
    )
    try:
        sdk.add_breadcrumb("Smoke test started", category="smoke")
        try:
            raise RuntimeError("Telemetry smoke test error")
        except RuntimeError as e:
            event = sdk.capture_error(e, {"additional": {"action": "smoke-test"}})
            if event is not None:
                logger.info("Captured error %s (fingerprint %s)", event.event_id, event.fingerprint)

        sdk.record_request("GET", "/smoke", 200, 12.5)
        await sdk.flush()
    finally:
        await telemetry_sdk.reset_instance()


def main():
    """Run the smoke test."""
    project_root = Path(__file__).resolve().parent.parent
    load_dotenv(project_root / ".env")
    setup_logging(os.getenv("TELEMETRY_LOG_LEVEL", "INFO"))

    asyncio.run(run())


if __name__ == "__main__":
    main()
