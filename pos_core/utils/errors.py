"""
对账错误处理系统
错误详情遵循 RFC7807 Problem Details 结构
"""
import functools
import sys
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ProblemDetail(BaseModel):
    """RFC7807 Problem Details 模型"""
    model_config = ConfigDict(extra="allow")

    type: str = Field(default="about:blank")
    title: str
    detail: Optional[str] = None
    instance: Optional[str] = None
    code: Optional[str] = None  # 业务错误码


class ReconcileError(Exception):
    """对账基础异常类"""

    title = "Reconcile Error"

    def __init__(
        self,
        code: str,
        detail: Optional[str] = None,
        **kwargs
    ):
        self.code = code
        self.detail = detail
        self.extra = kwargs
        super().__init__(detail or self.title)

    def to_problem_detail(self, instance: Optional[str] = None) -> ProblemDetail:
        """转换为 Problem Details 格式"""
        return ProblemDetail(
            type="about:blank",
            title=self.title,
            detail=self.detail,
            instance=instance,
            code=self.code,
            **self.extra
        )

    def one_line(self) -> str:
        """运维命令输出的单行错误信息"""
        message = f"{self.title} [{self.code}]"
        if self.detail:
            message += f": {self.detail}"
        return message.replace("\n", " ")


class InvalidPrecondition(ReconcileError):
    """前置条件不满足：实体缺失、状态不对、空退货单；不做任何修改"""
    title = "Invalid Precondition"


class InvariantViolation(ReconcileError):
    """金额不变量被破坏；当前事务回滚"""
    title = "Invariant Violation"


class StorageError(ReconcileError):
    """存储层错误：连接、序列化冲突、约束冲突"""
    title = "Storage Error"

    def __init__(self, code: str, detail: Optional[str] = None, retryable: bool = False, **kwargs):
        super().__init__(code, detail, **kwargs)
        self.retryable = retryable


class ConsistencyDrift(ReconcileError):
    """交叉核对发现收入口径不一致（不损坏数据库，但命令以非零退出）"""
    title = "Consistency Drift"


class ExternalServiceError(ReconcileError):
    """外部服务（Analytics API）不可用或响应格式错误"""
    title = "External Service Error"


# 运维命令退出码
EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_UNEXPECTED = 2


def handle_errors(logger=None):
    """
    运维命令错误处理装饰器

    ReconcileError -> 单行错误信息 + 退出码 1；其他异常 -> 退出码 2
    """
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> int:
            try:
                return await func(*args, **kwargs)
            except ReconcileError as e:
                if logger:
                    logger.error("operation_failed", **e.to_problem_detail().model_dump(exclude_none=True))
                print(e.one_line(), file=sys.stderr)
                return EXIT_FAILURE
            except Exception as e:
                if logger:
                    logger.error(f"Unexpected error in {func.__name__}", exc_info=True)
                print(f"Unexpected error: {type(e).__name__}: {e}".replace("\n", " "), file=sys.stderr)
                return EXIT_UNEXPECTED
        return wrapper
    return decorator
