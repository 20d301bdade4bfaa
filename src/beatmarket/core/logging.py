"""
BeatMarket Logging Configuration
Structured logging setup with file rotation for the fulfillment pipeline
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any, Dict

import structlog
from pythonjsonlogger import jsonlogger

from .config import get_settings

settings = get_settings()

# Third-party loggers kept quiet unless something goes wrong
LIBRARY_LOG_LEVELS = {
    "uvicorn": logging.INFO,
    "fastapi": logging.INFO,
    "sqlalchemy.engine": logging.WARNING,
    "httpx": logging.WARNING,
    "asyncio": logging.WARNING,
}

# Channel loggers used by the services
CHANNEL_LOG_LEVELS = {
    "beatmarket.pipeline": logging.DEBUG,
    "beatmarket.webhook": logging.INFO,
    "beatmarket.payment": logging.INFO,
    "beatmarket.infra": logging.INFO,
}


def _console_formatter() -> logging.Formatter:
    if settings.is_development:
        return logging.Formatter(
            '\033[92m%(asctime)s\033[0m - \033[94m%(name)s\033[0m - %(levelname)s - %(message)s',
            datefmt='%H:%M:%S'
        )
    return jsonlogger.JsonFormatter('%(asctime)s %(name)s %(levelname)s %(message)s')


def _file_handler() -> logging.Handler:
    Path(settings.LOG_FILE_PATH).parent.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        settings.LOG_FILE_PATH,
        maxBytes=settings.LOG_MAX_SIZE,
        backupCount=settings.LOG_BACKUP_COUNT,
        encoding='utf-8'
    )
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(jsonlogger.JsonFormatter(
        '%(asctime)s %(name)s %(levelname)s %(pathname)s %(lineno)d %(funcName)s %(message)s'
    ))
    return handler


def setup_logging() -> logging.Logger:
    """Route stdlib and structlog output to the console and a rotating JSON file"""

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(_console_formatter())
    root_logger.addHandler(console_handler)
    root_logger.addHandler(_file_handler())

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if not settings.is_development
            else structlog.dev.ConsoleRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    for name, level in {**LIBRARY_LOG_LEVELS, **CHANNEL_LOG_LEVELS}.items():
        logging.getLogger(name).setLevel(level)

    logger = logging.getLogger("beatmarket")
    logger.info(f"Logging configured - Level: {settings.LOG_LEVEL}")

    return logger


class PipelineLogger:
    """Logger for generation and post-processing stages"""

    def __init__(self):
        self.logger = structlog.get_logger("beatmarket.pipeline")

    def log_stage_start(
        self,
        operation: str,
        beat_id: str = None,
        **kwargs: Any
    ) -> None:
        """Log start of a pipeline stage"""
        self.logger.info(
            "Pipeline stage started",
            operation=operation,
            beat_id=beat_id,
            **kwargs
        )

    def log_stage_complete(
        self,
        operation: str,
        beat_id: str = None,
        **kwargs: Any
    ) -> None:
        """Log completion of a pipeline stage"""
        self.logger.info(
            "Pipeline stage completed",
            operation=operation,
            beat_id=beat_id,
            **kwargs
        )

    def log_stage_error(
        self,
        operation: str,
        error: str,
        beat_id: str = None,
        **kwargs: Any
    ) -> None:
        """Log pipeline stage failure"""
        self.logger.error(
            "Pipeline stage failed",
            operation=operation,
            error=error,
            beat_id=beat_id,
            **kwargs
        )

    def log_sweep(self, operation: str, affected: int, **kwargs: Any) -> None:
        """Log an opportunistic or scheduled sweep"""
        if affected:
            self.logger.info(
                "Sweep applied",
                operation=operation,
                affected=affected,
                **kwargs
            )


class WebhookLogger:
    """Logger for inbound provider callbacks"""

    def __init__(self):
        self.logger = structlog.get_logger("beatmarket.webhook")

    def log_received(self, kind: str, **kwargs: Any) -> None:
        self.logger.info("Callback received", kind=kind, **kwargs)

    def log_rejected(self, kind: str, reason: str, **kwargs: Any) -> None:
        self.logger.warning("Callback rejected", kind=kind, reason=reason, **kwargs)

    def log_ignored(self, kind: str, reason: str, **kwargs: Any) -> None:
        """Log an acknowledged callback that caused no mutation"""
        self.logger.info("Callback ignored", kind=kind, reason=reason, **kwargs)


class PaymentLogger:
    """Logger for orders, captures, payouts and downloads"""

    def __init__(self):
        self.logger = structlog.get_logger("beatmarket.payment")

    def log_order_created(
        self,
        purchase_id: str,
        beat_id: str,
        tier: str,
        amount: float
    ) -> None:
        self.logger.info(
            "Order created",
            purchase_id=purchase_id,
            beat_id=beat_id,
            tier=tier,
            amount=amount
        )

    def log_capture(
        self,
        purchase_id: str,
        outcome: str,
        **kwargs: Any
    ) -> None:
        """Log capture outcome (completed, failed, already_captured, race_lost)"""
        self.logger.info(
            "Order capture",
            purchase_id=purchase_id,
            outcome=outcome,
            **kwargs
        )

    def log_payment_error(
        self,
        operation: str,
        error: str,
        **kwargs: Any
    ) -> None:
        self.logger.error(
            "Payment operation failed",
            operation=operation,
            error=error,
            **kwargs
        )

    def log_download(
        self,
        purchase_id: str,
        tier: str,
        download_count: int,
        mode: str
    ) -> None:
        self.logger.info(
            "Download served",
            purchase_id=purchase_id,
            tier=tier,
            download_count=download_count,
            mode=mode
        )


class InfraLogger:
    """Logger for database and cache connectivity"""

    def __init__(self):
        self.logger = structlog.get_logger("beatmarket.infra")

    def log_health(self, health: Dict[str, bool], **kwargs: Any) -> None:
        if all(health.values()):
            self.logger.info("Backends reachable", **health, **kwargs)
        else:
            self.logger.warning("Backend unreachable", **health, **kwargs)

    def log_backend_error(self, backend: str, error: str) -> None:
        self.logger.error("Backend check failed", backend=backend, error=error)


# Create global logger instances
pipeline_logger = PipelineLogger()
webhook_logger = WebhookLogger()
payment_logger = PaymentLogger()
infra_logger = InfraLogger()

__all__ = [
    "setup_logging",
    "PipelineLogger",
    "WebhookLogger",
    "PaymentLogger",
    "InfraLogger",
    "pipeline_logger",
    "webhook_logger",
    "payment_logger",
    "infra_logger"
]
