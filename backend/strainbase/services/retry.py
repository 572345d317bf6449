"""
有限重试

只用于纯插入路径（首次创建 strain）：吸收唯一约束上的瞬时竞争，
而不是把一次偶发冲突当作真正的冲突返回给调用方。

预算耗尽时必须把最后一次错误交还给调用方，绝不能当作成功。
"""

from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

from sqlalchemy.exc import SQLAlchemyError

from ..core.errors import CreateRetriesExhausted

logger = logging.getLogger(__name__)

T = TypeVar("T")


def run_with_retries(
    operation: Callable[[], T],
    reference_id: int,
    max_retries: int,
    *,
    retry_on: tuple[type[BaseException], ...] = (SQLAlchemyError,),
    initial_delay: float = 0.05,
    backoff: float = 2.0,
) -> T:
    """
    执行 operation，失败时最多再重试 max_retries 次

    Args:
        operation: 单次插入尝试
        reference_id: 用于日志和错误信息
        max_retries: 首次尝试之后的额外尝试次数
        retry_on: 视为瞬时错误的异常类型，其他异常直接抛出
        initial_delay: 首次重试前的等待秒数
        backoff: 等待时间的增长倍数

    Raises:
        CreateRetriesExhausted: 全部尝试失败，__cause__ 为最后一次错误
    """
    if max_retries < 0:
        raise ValueError("max_retries must not be negative")

    total = max_retries + 1
    delay = initial_delay
    last_error: BaseException | None = None

    for attempt in range(1, total + 1):
        try:
            return operation()
        except retry_on as err:
            last_error = err
            logger.warning(
                f"[重试] 创建 strain {reference_id} 失败 (第 {attempt}/{total} 次): {err}"
            )
            if attempt == total:
                break
            time.sleep(delay)
            delay *= backoff

    logger.error(f"[重试] 创建 strain {reference_id} 在 {total} 次尝试后仍失败")
    raise CreateRetriesExhausted(reference_id, total) from last_error
