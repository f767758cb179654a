"""Main entry point for the node profiling operator."""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
from datetime import UTC, datetime

from .config import Config, ConfigurationError
from .events import KubernetesEventRecorder
from .kube import ClusterConnectionError, KubeClients, load_clients
from .reconciler import ReconcileRunner, Reconciler
from .store import KubernetesObjectStore

# LogRecord attributes that are not user-supplied extras
_RESERVED_RECORD_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        # Add extra fields from the record
        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_ATTRS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(level: int = logging.INFO, json_output: bool = True) -> None:
    """Configure root logging, JSON on stdout for production."""
    handler = logging.StreamHandler(sys.stdout)
    if json_output:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Reduce noise from the Kubernetes client
    logging.getLogger("kubernetes").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def build_reconciler(config: Config, clients: KubeClients) -> Reconciler:
    """Wire the reconciler to the cluster."""
    return Reconciler(
        config,
        KubernetesObjectStore(clients.custom_objects),
        KubernetesEventRecorder(clients.core, config.event_namespace),
    )


async def main() -> int:
    """Run the operator.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    try:
        config = Config.from_env()
    except ConfigurationError as e:
        setup_logging()
        logging.getLogger(__name__).error("Configuration error", extra={"error": str(e)})
        return 1

    setup_logging(config.log_level_value, config.json_logs)
    logger = logging.getLogger(__name__)

    logger.info(
        "Starting node profiling operator",
        extra={
            "resource_name": config.resource_name,
            "resource_namespace": config.resource_namespace,
            "pool": config.pool_name,
        },
    )

    try:
        clients = load_clients()
    except ClusterConnectionError as e:
        logger.error("Cannot connect to cluster", extra={"error": str(e)})
        return 1

    return await run_operator(build_reconciler(config, clients), logger)


async def run_operator(reconciler: Reconciler, logger: logging.Logger) -> int:
    """Run the periodic reconciler until SIGTERM/SIGINT."""
    runner = ReconcileRunner(reconciler)

    loop = asyncio.get_running_loop()

    def signal_handler(sig: signal.Signals) -> None:
        logger.info("Received signal", extra={"signal": sig.name})
        runner.shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))

    try:
        await runner.run()
    except Exception as e:
        logger.exception("Unhandled exception", extra={"error": str(e)})
        return 1

    logger.info("Operator stopped")
    return 0


def run() -> None:
    """Entry point for the operator process."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
