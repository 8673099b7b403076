"""structlog setup for the ledger.

Every service logs through :func:`get_logger` with snake_case event names.
Events raised while a command runs carry the caller's tenant and actor, bound
by :func:`command_scope`, so a posting can be traced from its log lines.
"""

import logging
import sys
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from business_ledger.config import Settings, get_settings
from business_ledger.domain.value_objects import CommandContext

FILE_FORMAT = "%(asctime)s %(levelname)-8s %(name)s %(message)s"


def _add_log_level(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    if method_name == "warn":
        method_name = "warning"
    event_dict["level"] = method_name.upper()
    return event_dict


def _ledger_stamp(settings: Settings) -> Processor:
    """Stamp each event with the deployment and the currency it reports in."""
    stamp = {
        "app": settings.app_name,
        "environment": settings.environment.value,
        "base_currency": settings.base_currency,
    }

    def add_ledger_stamp(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        for key, value in stamp.items():
            event_dict.setdefault(key, value)
        return event_dict

    return add_ledger_stamp


def _console_tail(settings: Settings) -> list[Processor]:
    return [
        structlog.stdlib.add_log_level,
        structlog.dev.ConsoleRenderer(
            colors=not settings.is_testing,
            exception_formatter=structlog.dev.plain_traceback,
        ),
    ]


def _json_tail(settings: Settings) -> list[Processor]:
    return [
        _add_log_level,
        _ledger_stamp(settings),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(sort_keys=True),
    ]


_RENDERERS: dict[str, Callable[[Settings], list[Processor]]] = {
    "console": _console_tail,
    "json": _json_tail,
}


def build_processors(settings: Settings) -> list[Processor]:
    """Shared enrichment followed by the renderer chosen by ``log_format``."""
    shared: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    return shared + _RENDERERS[settings.log_format or "console"](settings)


def configure_logging(settings: Settings | None = None) -> None:
    """Route structlog through stdlib logging at ``settings.log_level``.

    Console output goes to stdout. When ``settings.log_file`` is set the
    same records are also appended to that file.
    """
    settings = settings or get_settings()
    level = getattr(logging, settings.log_level.value)

    structlog.configure(
        processors=build_processors(settings),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    if settings.log_file:
        logging.getLogger().addHandler(_file_handler(settings.log_file, level))


def _file_handler(path: Path, level: int) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT))
    return handler


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Module-level logger, e.g. ``logger = get_logger(__name__)``."""
    return structlog.stdlib.get_logger(name)


def bind_context(**fields: Any) -> None:
    structlog.contextvars.bind_contextvars(**fields)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


@contextmanager
def command_scope(context: CommandContext, **fields: Any) -> Iterator[None]:
    """Bind the command's tenant, actor and ``fields`` for the duration.

    Values bound by an enclosing scope are restored on exit, so a reversal
    posted inside another command logs under its own ``entry_id`` and hands
    the outer one back afterwards.

        with command_scope(context, entry_id=str(entry.id)):
            logger.info("journal_entry_posted", sequence_number=7)
    """
    with structlog.contextvars.bound_contextvars(
        tenant_id=context.tenant_id, actor=context.actor, **fields
    ):
        yield
