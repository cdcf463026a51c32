# graphmode/logging_config.py
import contextvars
import logging
import sys

from pythonjsonlogger import jsonlogger

# Correlation fields bound by the executor for the duration of a run / step
ctx_run_id = contextvars.ContextVar("run_id", default=None)
ctx_node_type = contextvars.ContextVar("node_type", default=None)


class CorrelationJsonFormatter(jsonlogger.JsonFormatter):
    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        run_id = ctx_run_id.get()
        if run_id:
            log_record["run_id"] = run_id
        node_type = ctx_node_type.get()
        if node_type:
            log_record["node_type"] = node_type


def setup_logger(log_format: str = "text", log_level: str = "INFO") -> logging.Logger:
    """Configure the root logger."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    if log_format.lower() == "json":
        formatter = CorrelationJsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"levelname": "level", "asctime": "timestamp"},
        )
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    return root_logger
