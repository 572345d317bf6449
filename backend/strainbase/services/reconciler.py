"""
Strain 同步服务 - 外部表示与库内记录的对齐

reconcile() 是一次带关联差异计算的 upsert，而不是整体替换：
1. 驻留特征：按 name 查找或创建 Flavor，按 (name, category) 查找或创建 Effect
2. 按 reference_id 查找或创建 Strain
3. 关联差异：读取当前关联，stale = current - incoming，
   只删除 stale 对应的关联行，从不删除被驻留的 Flavor / Effect 本身
4. 写入 name / race 及新增关联

1-4 在同一个事务内完成，任何一步失败都整体回滚。

create() / create_with_retries() 是严格创建路径：记录已存在时报 RecordAlreadyExists。
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Hashable

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, delete, select

from ..core.database import Database
from ..core.errors import (
    DatabaseConnectionNil,
    RecordAlreadyExists,
    ReconcileError,
)
from ..models.strain import Effect, Flavor, Strain, StrainEffectLink, StrainFlavorLink
from ..repositories.strain_repository import hydrate
from ..repositories.trait_repository import (
    find_or_create_strain,
    intern_effects,
    intern_flavors,
)
from ..schemas.strain import StrainDetail, StrainRepr, require_reference_id
from .retry import run_with_retries

logger = logging.getLogger(__name__)


class StrainReconciler:
    """Create-or-update strains from their external representation."""

    def __init__(self, database: Database | None, create_retries: int = 3) -> None:
        self.database = database
        self.create_retries = create_retries

    def _require_database(self) -> Database:
        if self.database is None or not self.database.is_open:
            raise DatabaseConnectionNil()
        return self.database

    # ========== upsert ==========

    def reconcile(self, strain: StrainRepr) -> StrainDetail:
        """
        幂等地把一条外部表示同步到库中

        Returns:
            同步后的完整 strain 聚合

        Raises:
            ReferenceIDNotSet: strain.id 为 0
            InvalidReferenceID: strain.id 为负数或超出 BIGINT 范围
            DatabaseConnectionNil: 未连接数据库
            ReconcileError: 任意写入失败（事务已回滚）
        """
        require_reference_id(strain.id)
        database = self._require_database()

        try:
            with database.session_scope() as session:
                flavors = intern_flavors(session, strain.flavor_names())
                effects = intern_effects(session, strain.effects.pairs())
                record = find_or_create_strain(session, strain.id, strain.name)

                removed, added = self._sync_associations(session, record, flavors, effects)

                record.name = strain.name
                record.race = strain.race
                record.updated_at = datetime.now(timezone.utc)
                session.add(record)
                session.flush()
                detail = hydrate(session, record)
        except SQLAlchemyError as err:
            logger.error(f"[同步] strain {strain.id} 同步失败，事务已回滚: {err}")
            raise ReconcileError(strain.id, str(err)) from err

        logger.debug(f"[同步] strain {strain.id} ({strain.name}) 已同步: 移除关联 {removed}, 新增关联 {added}")
        return detail

    def _sync_associations(
        self,
        session: Session,
        record: Strain,
        flavors: list[Flavor],
        effects: list[Effect],
    ) -> tuple[int, int]:
        current_flavors = {
            name: flavor_id
            for flavor_id, name in session.exec(
                select(Flavor.flavor_id, Flavor.name)
                .join(StrainFlavorLink, StrainFlavorLink.flavor_id == Flavor.flavor_id)
                .where(StrainFlavorLink.strain_id == record.strain_id)
            ).all()
        }
        current_effects = {
            (name, category): effect_id
            for effect_id, name, category in session.exec(
                select(Effect.effect_id, Effect.name, Effect.category)
                .join(StrainEffectLink, StrainEffectLink.effect_id == Effect.effect_id)
                .where(StrainEffectLink.strain_id == record.strain_id)
            ).all()
        }

        flavor_diff = _diff_links(
            session,
            StrainFlavorLink,
            "flavor_id",
            record.strain_id,
            current_flavors,
            {flavor.name: flavor.flavor_id for flavor in flavors},
        )
        effect_diff = _diff_links(
            session,
            StrainEffectLink,
            "effect_id",
            record.strain_id,
            current_effects,
            {(effect.name, effect.category): effect.effect_id for effect in effects},
        )
        return flavor_diff[0] + effect_diff[0], flavor_diff[1] + effect_diff[1]

    # ========== 严格创建 ==========

    def create(self, strain: StrainRepr) -> StrainDetail:
        """只创建，不更新；单次尝试"""
        require_reference_id(strain.id)
        try:
            return self._create_once(strain)
        except SQLAlchemyError as err:
            raise ReconcileError(strain.id, str(err)) from err

    def create_with_retries(self, strain: StrainRepr, max_retries: int | None = None) -> StrainDetail:
        """
        严格创建，瞬时写入失败时有限重试

        Raises:
            RecordAlreadyExists: 记录已存在（不重试）
            CreateRetriesExhausted: 重试预算耗尽
        """
        require_reference_id(strain.id)
        self._require_database()
        retries = self.create_retries if max_retries is None else max_retries
        return run_with_retries(lambda: self._create_once(strain), strain.id, retries)

    def _create_once(self, strain: StrainRepr) -> StrainDetail:
        database = self._require_database()
        with database.session_scope() as session:
            existing = session.exec(
                select(Strain.strain_id).where(Strain.reference_id == strain.id)
            ).first()
            if existing is not None:
                raise RecordAlreadyExists(strain.id)

            flavors = intern_flavors(session, strain.flavor_names())
            effects = intern_effects(session, strain.effects.pairs())
            record = Strain(reference_id=strain.id, name=strain.name, race=strain.race)
            session.add(record)
            session.flush()

            self._sync_associations(session, record, flavors, effects)
            session.flush()
            logger.info(f"[同步] 已创建 strain {strain.id} ({strain.name})")
            return hydrate(session, record)


def _diff_links(
    session: Session,
    link_model: type[SQLModel],
    trait_column: str,
    strain_id: int,
    current: dict[Hashable, int],
    incoming: dict[Hashable, int],
) -> tuple[int, int]:
    """删除不再出现的关联行，补上新出现的关联行；返回 (删除数, 新增数)"""
    stale_ids = [trait_id for key, trait_id in current.items() if key not in incoming]
    if stale_ids:
        trait_attr = getattr(link_model, trait_column)
        session.exec(
            delete(link_model).where(
                link_model.strain_id == strain_id,
                trait_attr.in_(stale_ids),
            )
        )

    added = 0
    for key, trait_id in incoming.items():
        if key not in current:
            session.add(link_model(strain_id=strain_id, **{trait_column: trait_id}))
            added += 1
    return len(stale_ids), added
