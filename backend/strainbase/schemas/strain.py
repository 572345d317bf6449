"""
Strain 的外部表示（JSON 线格式）和查询视图

线格式示例：
    {
        "name": "Afpak",
        "id": 1,
        "race": "hybrid",
        "flavors": ["Earthy", "Chemical"],
        "effects": {
            "positive": ["Relaxed", "Hungry"],
            "negative": ["Dizzy"],
            "medical": ["Depression"]
        }
    }

种子文件是此类对象组成的顶层数组。
"""

from __future__ import annotations

from typing import IO

from pydantic import BaseModel, Field, TypeAdapter, field_validator

from ..core.errors import InvalidReferenceID, ReferenceIDNotSet
from ..models.strain import MAX_REFERENCE_ID, EffectCategory


def _unique(values: list[str]) -> list[str]:
    """去重并保持原始顺序"""
    seen: set[str] = set()
    result = []
    for value in values:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result


def require_reference_id(reference_id: int) -> int:
    """写入和按ID查询之前校验引用ID：0 表示未设置，负数或超出 BIGINT 的值非法"""
    if reference_id == 0:
        raise ReferenceIDNotSet()
    if reference_id < 0 or reference_id > MAX_REFERENCE_ID:
        raise InvalidReferenceID(reference_id)
    return reference_id


class EffectsRepr(BaseModel):
    positive: list[str] = Field(default_factory=list)
    negative: list[str] = Field(default_factory=list)
    medical: list[str] = Field(default_factory=list)

    @field_validator("positive", "negative", "medical", mode="before")
    @classmethod
    def _none_as_empty(cls, value):
        return [] if value is None else value

    def pairs(self) -> list[tuple[str, str]]:
        """按 (name, category) 展开，去重"""
        result: list[tuple[str, str]] = []
        for category in EffectCategory:
            for name in _unique(getattr(self, category.value)):
                result.append((name, category.value))
        return result


class StrainRepr(BaseModel):
    """单个 strain 的外部表示，不直接持久化"""

    id: int = Field(default=0, ge=0, le=MAX_REFERENCE_ID, description="外部引用ID（ReferenceID）")
    name: str = ""
    race: str = ""
    flavors: list[str] = Field(default_factory=list)
    effects: EffectsRepr = Field(default_factory=EffectsRepr)

    @field_validator("flavors", mode="before")
    @classmethod
    def _none_as_empty(cls, value):
        return [] if value is None else value

    @field_validator("effects", mode="before")
    @classmethod
    def _none_effects(cls, value):
        return {} if value is None else value

    def flavor_names(self) -> list[str]:
        return _unique(self.flavors)


_strain_list = TypeAdapter(list[StrainRepr])


def parse_strain(source: str | bytes) -> StrainRepr:
    return StrainRepr.model_validate_json(source)


def parse_strains(source: str | bytes | IO) -> list[StrainRepr]:
    """解析种子文件格式（顶层数组）"""
    if hasattr(source, "read"):
        source = source.read()
    return _strain_list.validate_json(source)


def dump_strains(strains: list[StrainRepr], indent: int | None = 2) -> str:
    return _strain_list.dump_json(strains, indent=indent).decode("utf-8")


# ========== 查询视图 ==========

class FlavorView(BaseModel):
    name: str


class EffectView(BaseModel):
    name: str
    category: str


class StrainDetail(BaseModel):
    """完整的 strain 聚合：基础字段 + 两个关联列表"""

    reference_id: int
    name: str
    race: str
    flavors: list[FlavorView] = Field(default_factory=list)
    effects: list[EffectView] = Field(default_factory=list)

    def to_repr(self) -> StrainRepr:
        effects = EffectsRepr()
        for effect in self.effects:
            bucket = getattr(effects, effect.category, None)
            if bucket is not None:
                bucket.append(effect.name)
        return StrainRepr(
            id=self.reference_id,
            name=self.name,
            race=self.race,
            flavors=[flavor.name for flavor in self.flavors],
            effects=effects,
        )


class StrainPage(BaseModel):
    items: list[StrainRepr]
    total: int
    offset: int
    limit: int | None = None
