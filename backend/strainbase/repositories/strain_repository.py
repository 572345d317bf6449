from __future__ import annotations

from typing import Optional

from sqlmodel import Session, func, select

from ..core.database import Database
from ..core.errors import NotFound
from ..models.strain import Effect, Flavor, Strain, StrainEffectLink, StrainFlavorLink
from ..schemas.strain import EffectView, FlavorView, StrainDetail, require_reference_id


def hydrate(session: Session, strain: Strain) -> StrainDetail:
    """基础行 + 两次关联表 join，组装完整的 strain 聚合"""
    flavor_names = session.exec(
        select(Flavor.name)
        .join(StrainFlavorLink, StrainFlavorLink.flavor_id == Flavor.flavor_id)
        .where(StrainFlavorLink.strain_id == strain.strain_id)
        .order_by(Flavor.name)
    ).all()
    effect_rows = session.exec(
        select(Effect.name, Effect.category)
        .join(StrainEffectLink, StrainEffectLink.effect_id == Effect.effect_id)
        .where(StrainEffectLink.strain_id == strain.strain_id)
        .order_by(Effect.category, Effect.name)
    ).all()
    return StrainDetail(
        reference_id=strain.reference_id,
        name=strain.name,
        race=strain.race,
        flavors=[FlavorView(name=name) for name in flavor_names],
        effects=[EffectView(name=name, category=category) for name, category in effect_rows],
    )


class StrainRepository:
    """Read-side projections over strains and their traits."""

    def __init__(self, database: Database) -> None:
        self.database = database

    def get_by_reference_id(self, reference_id: int) -> StrainDetail:
        require_reference_id(reference_id)
        with self.database.session_scope() as session:
            strain = session.exec(
                select(Strain).where(Strain.reference_id == reference_id)
            ).first()
            if strain is None:
                raise NotFound("reference ID", reference_id)
            return hydrate(session, strain)

    def get_by_name(self, name: str) -> StrainDetail:
        """名称不唯一时返回 reference_id 最小的一条"""
        with self.database.session_scope() as session:
            strain = session.exec(
                select(Strain).where(Strain.name == name).order_by(Strain.reference_id)
            ).first()
            if strain is None:
                raise NotFound("name", name)
            return hydrate(session, strain)

    def list_by_race(self, race: str) -> list[StrainDetail]:
        with self.database.session_scope() as session:
            strains = session.exec(
                select(Strain).where(Strain.race == race).order_by(Strain.reference_id)
            ).all()
            return [hydrate(session, strain) for strain in strains]

    def list_by_flavor(self, name: str) -> list[StrainDetail]:
        with self.database.session_scope() as session:
            strains = session.exec(
                select(Strain)
                .join(StrainFlavorLink, StrainFlavorLink.strain_id == Strain.strain_id)
                .join(Flavor, Flavor.flavor_id == StrainFlavorLink.flavor_id)
                .where(Flavor.name == name)
                .order_by(Strain.reference_id)
            ).all()
            return [hydrate(session, strain) for strain in strains]

    def list_by_effect(self, name: str, category: Optional[str] = None) -> list[StrainDetail]:
        """
        按效果查询

        Args:
            name: 效果名称
            category: 可选，positive / negative / medical；不传时匹配任意类别
        """
        with self.database.session_scope() as session:
            query = (
                select(Strain)
                .join(StrainEffectLink, StrainEffectLink.strain_id == Strain.strain_id)
                .join(Effect, Effect.effect_id == StrainEffectLink.effect_id)
                .where(Effect.name == name)
            )
            if category:
                query = query.where(Effect.category == category)
            # 同名效果可能出现在多个类别下
            strains = session.exec(query.distinct().order_by(Strain.reference_id)).all()
            return [hydrate(session, strain) for strain in strains]

    def list_strains(self, limit: Optional[int] = None, offset: int = 0) -> list[StrainDetail]:
        with self.database.session_scope() as session:
            query = select(Strain).order_by(Strain.reference_id).offset(offset)
            if limit:
                query = query.limit(limit)
            return [hydrate(session, strain) for strain in session.exec(query).all()]

    def count_strains(self) -> int:
        with self.database.session_scope() as session:
            return session.exec(select(func.count(Strain.strain_id))).one()
