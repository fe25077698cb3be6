"""Run the relay with uvicorn: ``python -m talkeos``."""
import uvicorn

from talkeos.config import get_config


def main() -> None:
    config = get_config()
    ws = config.server.websocket
    uvicorn.run(
        "talkeos.main:app",
        host=config.server.host,
        port=config.server.port,
        log_level=config.logging.level,
        ws_max_size=ws.max_message_size,
        # heartbeat: ping every interval, drop the client if no pong in time
        ws_ping_interval=ws.heartbeat_interval_ms / 1000 or None,
        ws_ping_timeout=ws.connection_timeout_ms / 1000 or None,
    )


if __name__ == "__main__":
    main()
