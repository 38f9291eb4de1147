import logging
import os

# Transport chatter; tool calls and CRM requests are logged by our own loggers
NOISY_LOGGERS = ("mcp.server", "mcp.client", "sse_starlette", "httpx", "urllib3", "uvicorn.access")


def _resolve_level() -> int:
    explicit = os.getenv("LOG_LEVEL")
    if explicit:
        level = logging.getLevelName(explicit.strip().upper())
        if isinstance(level, int):
            return level
    debug = os.getenv("DEBUG", "false").lower() in {"1", "true", "yes"}
    return logging.DEBUG if debug else logging.INFO


def setup_logging() -> None:
    """Configure process logging once; LOG_LEVEL wins over the DEBUG switch."""
    if getattr(setup_logging, "_configured", False):
        return

    logging.basicConfig(
        level=_resolve_level(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)

    setup_logging._configured = True
