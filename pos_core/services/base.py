"""
基础服务类
"""
import asyncio
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError

from pos_core.config import Settings, get_settings
from pos_core.repositories import UnitOfWorkFactory
from pos_core.utils.errors import ReconcileError, StorageError
from pos_core.utils.logger import get_logger


class BaseService:
    """基础服务类：持有 unit of work 工厂，负责事务与重试"""

    def __init__(self, uow: UnitOfWorkFactory, settings: Optional[Settings] = None):
        self.uow = uow
        self.settings = settings or get_settings()
        self.logger = get_logger(self.__class__.__name__)

    async def execute_with_transaction(
        self,
        operation,
        *args,
        **kwargs
    ) -> Any:
        """
        在事务中执行操作

        可重试的 StorageError（序列化冲突、死锁）最多重试 reconcile_max_retries 次，
        退避时间 retry_backoff_base * 2**attempt 秒；每次重试都是全新的事务。
        """
        max_retries = self.settings.reconcile_max_retries
        attempt = 0
        while True:
            try:
                async with self.uow() as repo:
                    return await operation(repo, *args, **kwargs)
            except StorageError as e:
                if not e.retryable or attempt >= max_retries:
                    raise
                delay = self.settings.retry_backoff_base * (2 ** attempt)
                attempt += 1
                self.logger.warning(
                    "transaction_retry",
                    attempt=attempt,
                    max_retries=max_retries,
                    delay_s=delay,
                    code=e.code,
                )
                await asyncio.sleep(delay)
            except ReconcileError:
                raise
            except SQLAlchemyError as e:
                self.logger.error("Transaction operation failed", exc_info=True)
                raise StorageError(
                    code="TRANSACTION_FAILED",
                    detail=f"Database transaction failed: {str(e)}"
                ) from e

    async def execute_with_session(
        self,
        operation,
        *args,
        **kwargs
    ) -> Any:
        """只读操作：单个事务，不重试"""
        try:
            async with self.uow() as repo:
                return await operation(repo, *args, **kwargs)
        except ReconcileError:
            raise
        except SQLAlchemyError as e:
            self.logger.error("Session operation failed", exc_info=True)
            raise StorageError(
                code="SESSION_OPERATION_FAILED",
                detail=f"Database operation failed: {str(e)}"
            ) from e
