"""
特征驻留（interning）- Flavor / Effect / Strain 的查找或创建

所有函数都在调用方的事务（Session）内执行，不自行提交。
并发安全依赖存储层的唯一约束：
    先查询 -> 未命中则在 SAVEPOINT 中插入 -> 唯一约束冲突时回滚 SAVEPOINT 并重新查询
"""
from __future__ import annotations

import logging
from typing import Iterable, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, SQLModel, select

from ..models.strain import Effect, Flavor, Strain

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=SQLModel)


def find_or_create(
    session: Session,
    model: type[ModelT],
    defaults: dict | None = None,
    **keys,
) -> ModelT:
    """按唯一键查找，不存在则用 keys + defaults 创建"""
    statement = select(model).filter_by(**keys)
    existing = session.exec(statement).first()
    if existing is not None:
        return existing

    try:
        with session.begin_nested():
            created = model(**keys, **(defaults or {}))
            session.add(created)
            session.flush()
        return created
    except IntegrityError:
        # 另一个事务抢先插入了同一行
        logger.debug(f"[驻留] {model.__name__} {keys} 插入冲突，改为读取已有记录")
        return session.exec(statement).one()


def intern_flavors(session: Session, names: Iterable[str]) -> list[Flavor]:
    return [find_or_create(session, Flavor, name=name) for name in names]


def intern_effects(session: Session, pairs: Iterable[tuple[str, str]]) -> list[Effect]:
    return [
        find_or_create(session, Effect, name=name, category=category)
        for name, category in pairs
    ]


def find_or_create_strain(session: Session, reference_id: int, name: str) -> Strain:
    return find_or_create(session, Strain, defaults={"name": name}, reference_id=reference_id)
