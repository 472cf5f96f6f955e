# mypy: disable-error-code="no-untyped-def, assignment, var-annotated"
"""
对账工具日志系统
- JSON 或控制台格式输出
- 上下文字段：ts, level, operation, sale_id, return_id, action, err
"""
import logging
import sys
from datetime import datetime, timezone
from typing import Optional
from contextvars import ContextVar

import structlog
from structlog.processors import JSONRenderer, TimeStamper, add_log_level

# Context variables for operation tracking
operation_var: ContextVar[Optional[str]] = ContextVar("operation", default=None)
sale_id_var: ContextVar[Optional[str]] = ContextVar("sale_id", default=None)
return_id_var: ContextVar[Optional[str]] = ContextVar("return_id", default=None)


class ReconcileContextProcessor:
    """添加对账操作的上下文字段"""

    def __init__(self, rename_event: bool = True):
        self.rename_event = rename_event

    def __call__(self, logger, method_name, event_dict):
        event_dict["ts"] = datetime.now(timezone.utc).isoformat()

        if operation := operation_var.get():
            event_dict.setdefault("operation", operation)

        if sale_id := sale_id_var.get():
            event_dict.setdefault("sale_id", sale_id)

        if return_id := return_id_var.get():
            event_dict.setdefault("return_id", return_id)

        # 重命名标准字段（控制台渲染器依赖 event 键）
        if self.rename_event and "event" in event_dict:
            event_dict["action"] = event_dict.pop("event")

        if "exception" in event_dict:
            event_dict["err"] = str(event_dict.pop("exception"))

        return event_dict


def setup_logging(log_level: str = "INFO", log_format: str = "text") -> None:
    """配置日志系统

    运维命令每次进程启动调用一次；structlog 与标准 logging 都输出到 stdout。
    """
    level = getattr(logging, log_level.upper())

    processors = [
        TimeStamper(fmt="iso"),
        add_log_level,
        structlog.processors.format_exc_info,
        ReconcileContextProcessor(rename_event=log_format == "json"),
    ]

    if log_format == "json":
        processors.append(JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setLevel(level)

    if log_format == "json":
        formatter = logging.Formatter(
            '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s"}',
            datefmt="%Y-%m-%dT%H:%M:%S"
        )
    else:
        formatter = logging.Formatter("%(message)s")
    stdout_handler.setFormatter(formatter)
    root_logger.addHandler(stdout_handler)

    logging.getLogger("pos_core").setLevel(level)

    # 降低第三方库的日志级别，避免噪音
    noisy_loggers = [
        "httpx",
        "httpcore",
        "asyncio",
        "sqlalchemy.engine",
    ]
    for logger_name in noisy_loggers:
        logging.getLogger(logger_name).setLevel(logging.WARNING)


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    """获取日志记录器"""
    return structlog.get_logger(name)


class LogContext:
    """日志上下文管理器，用于设置单次运维操作的上下文"""

    def __init__(
        self,
        operation: Optional[str] = None,
        sale_id: Optional[str] = None,
        return_id: Optional[str] = None
    ):
        self.operation = operation
        self.sale_id = sale_id
        self.return_id = return_id
        self._tokens = []

    def __enter__(self):
        if self.operation:
            self._tokens.append(operation_var.set(self.operation))
        if self.sale_id:
            self._tokens.append(sale_id_var.set(self.sale_id))
        if self.return_id:
            self._tokens.append(return_id_var.set(self.return_id))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        for token in reversed(self._tokens):
            token.var.reset(token)
