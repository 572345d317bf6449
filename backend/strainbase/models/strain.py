from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import BigInteger, UniqueConstraint
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# 引用ID是调用方给出的无符号整数，受存储层 BIGINT 限制
MAX_REFERENCE_ID = 2**63 - 1


class EffectCategory(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    MEDICAL = "medical"


class DatabaseVer(SQLModel, table=True):
    """已应用的 schema 版本（逻辑上只有一行，升级时替换）"""

    __tablename__ = "database_ver"

    version_id: int | None = Field(default=None, primary_key=True)
    iteration: int = Field(unique=True)
    created_at: datetime = Field(default_factory=_utcnow)


class Strain(SQLModel, table=True):
    __tablename__ = "strain"

    # 内部代理键，不对外暴露
    strain_id: int | None = Field(default=None, primary_key=True)
    # 外部引用ID，由调用方提供，upsert 的身份键
    reference_id: int = Field(sa_type=BigInteger, unique=True, index=True)
    name: str = Field(index=True)
    race: str = Field(default="", index=True)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class Flavor(SQLModel, table=True):
    __tablename__ = "flavor"

    flavor_id: int | None = Field(default=None, primary_key=True)
    name: str = Field(unique=True, index=True)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class Effect(SQLModel, table=True):
    __tablename__ = "effect"
    __table_args__ = (UniqueConstraint("name", "category", name="uq_effect_name_category"),)

    effect_id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    # positive / negative / medical
    category: str = Field(index=True)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class StrainFlavorLink(SQLModel, table=True):
    __tablename__ = "strain_flavors"

    strain_id: int = Field(foreign_key="strain.strain_id", primary_key=True)
    flavor_id: int = Field(foreign_key="flavor.flavor_id", primary_key=True, index=True)


class StrainEffectLink(SQLModel, table=True):
    __tablename__ = "strain_effects"

    strain_id: int = Field(foreign_key="strain.strain_id", primary_key=True)
    effect_id: int = Field(foreign_key="effect.effect_id", primary_key=True, index=True)
