"""Signaling coordinator server.

Main server implementation that:
1. Loads configuration and configures logging
2. Starts the WebSocket signaling transport
3. Provides HTTP health check and metrics endpoints
4. Runs until cancelled, then shuts down gracefully
"""

import argparse
import asyncio
import logging
from pathlib import Path

from aiohttp.web import Application, AppRunner, TCPSite

from src.signaling.config import CoordinatorConfig
from src.signaling.coordinator import SignalingCoordinator
from src.signaling.health import setup_health_routes
from src.signaling.transport.websocket_transport import WebSocketTransport

logger = logging.getLogger(__name__)


async def start_server(
    config_path: Path | None = None,
    config: CoordinatorConfig | None = None,
    ready: asyncio.Event | None = None,
) -> None:
    """Run the coordinator until cancelled.

    Args:
        config_path: Path to YAML config (defaults apply if missing)
        config: Already-loaded config; takes precedence over config_path
        ready: Optional event set once the transport is accepting connections
    """
    if config is None:
        config = CoordinatorConfig.from_yaml_with_defaults(config_path)
        logger.info("Loaded configuration", extra={"config_path": str(config_path)})

    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    coordinator = SignalingCoordinator(max_chat_chars=config.chat.max_message_chars)

    ws_config = config.websocket
    transport = WebSocketTransport(
        coordinator,
        host=ws_config.host,
        port=ws_config.port,
        max_connections=ws_config.max_connections,
        max_message_bytes=ws_config.max_message_bytes,
        ping_interval_s=ws_config.ping_interval_s,
    )
    await transport.start()

    runner: AppRunner | None = None
    if config.health.enabled:
        health_app = Application()
        setup_health_routes(health_app, coordinator, transport=transport)

        runner = AppRunner(health_app)
        await runner.setup()
        site = TCPSite(runner, config.health.host, config.health_port)
        await site.start()
        logger.info("Health check server started", extra={"port": config.health_port})

    logger.info("Signaling coordinator ready", extra={"port": transport.bound_port})
    if ready is not None:
        ready.set()

    try:
        await asyncio.Future()  # Run until cancelled
    except asyncio.CancelledError:
        logger.info("Server loop cancelled")
    finally:
        logger.info("Shutting down signaling coordinator")

        try:
            await asyncio.wait_for(
                transport.stop(), timeout=config.graceful_shutdown_timeout_s
            )
        except TimeoutError:
            logger.warning("Transport did not stop within the shutdown timeout")

        if runner is not None:
            await runner.cleanup()
            logger.info("Health check server stopped")

        logger.info("Signaling coordinator stopped")


def main() -> None:
    """Entry point for the signaling coordinator."""
    parser = argparse.ArgumentParser(description="Video consultation signaling coordinator")
    parser.add_argument(
        "--config",
        type=Path,
        default=Path(__file__).parent.parent.parent / "configs" / "coordinator.yaml",
        help="Path to coordinator config YAML file",
    )
    args = parser.parse_args()

    try:
        asyncio.run(start_server(args.config))
    except KeyboardInterrupt:
        logger.info("Signaling coordinator interrupted")


if __name__ == "__main__":
    main()
