import logging
import logging.config
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional, Union, cast

import structlog

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}

# aiosmtpd logs every SMTP command at INFO level
QUIET_LOGGERS = ("mail.log",)


def configure_logging(overrides: dict, *, debug: bool):
    log_level = (
        logging.DEBUG
        if debug
        else parse_log_level(overrides.get("root", {}).get("level", logging.INFO))
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.dev.set_exc_info,
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    foreign_pre_chain = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.ExtraAdder(),
        structlog.processors.format_exc_info,
    ]
    console_processors = [
        structlog.stdlib.ProcessorFormatter.remove_processors_meta,
        structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S", utc=False),
    ]
    json_processors = [
        structlog.stdlib.ProcessorFormatter.remove_processors_meta,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.dict_tracebacks,
        structlog.processors.JSONRenderer(),
    ]

    logging_config: Dict[str, Any] = {
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "colored",
            },
        },
        "loggers": {
            name: {"level": logging.DEBUG if debug else logging.WARNING}
            for name in QUIET_LOGGERS
        },
        "root": {},
    }
    logging_config.update(overrides)
    logging_config.update(
        {
            "version": 1,
            "incremental": False,
            "formatters": {
                "plain": {
                    "()": structlog.stdlib.ProcessorFormatter,
                    "processors": console_processors
                    + [structlog.dev.ConsoleRenderer(colors=False)],
                    "foreign_pre_chain": foreign_pre_chain,
                },
                "colored": {
                    "()": structlog.stdlib.ProcessorFormatter,
                    "processors": console_processors
                    + [structlog.dev.ConsoleRenderer(colors=True)],
                    "foreign_pre_chain": foreign_pre_chain,
                },
                "json": {
                    "()": structlog.stdlib.ProcessorFormatter,
                    "processors": json_processors,
                    "foreign_pre_chain": foreign_pre_chain,
                },
            },
        }
    )
    root = cast(dict, logging_config["root"])
    if "handlers" not in root:
        root.update({"handlers": ["default"]})
    root.update({"level": log_level})
    logging.config.dictConfig(logging_config)


def parse_log_level(level: Union[str, int]) -> int:
    if isinstance(level, str):
        try:
            return LOG_LEVELS[level.lower()]
        except KeyError:
            raise ValueError(f"invalid log level: {level}") from None
    return level


@contextmanager
def bind_message_context(
    *, session_id: str, peer: Optional[str], mail_from: Optional[str]
) -> Iterator[None]:
    """Attach the SMTP transaction to every log line emitted inside the block,
    including those of stdlib loggers."""
    with structlog.contextvars.bound_contextvars(
        session_id=session_id, peer=peer, mail_from=mail_from
    ):
        yield
