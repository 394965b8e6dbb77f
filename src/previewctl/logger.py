import sys

import structlog


def _stderr_logger(*args: object) -> structlog.PrintLogger:
    # Looked up on every call so a replaced sys.stderr is always honoured
    return structlog.PrintLogger(file=sys.stderr)


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance.

    Args:
        name: Logger name

    Returns:
        Configured logger instance
    """
    from previewctl.config import get_config

    config = get_config()

    # Map string level to integer
    level_map = {
        "ERROR": 40,
        "WARNING": 30,
        "INFO": 20,
        "DEBUG": 10,
    }
    log_level = level_map.get(config.advanced.log_level, 20)

    renderer: structlog.types.Processor
    if config.advanced.log_format == "console":
        renderer = structlog.dev.ConsoleRenderer(colors=False)
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        # stdout belongs to command summaries
        logger_factory=_stderr_logger,
        cache_logger_on_first_use=False,  # Disable cache to allow level updates
    )

    return structlog.get_logger(name)
