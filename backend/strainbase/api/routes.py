"""
Strain 路由 - 创建、同步与查询

- POST /strains/                  严格创建（带有限重试），已存在返回 409
- GET  /strains/                  分页列表
- GET  /strains/id/{id}           按引用ID查询，未命中返回 404
- PUT  /strains/id/{id}           同步（upsert + 关联差异）
- GET  /strains/name/{name}       按名称查询，未命中返回 404
- GET  /strains/race/{race}       按种类查询
- GET  /strains/flavor/{flavor}   按风味查询
- GET  /strains/effect/{effect}   按效果查询，可选 ?category=

路径中的引用ID必须在 1 .. 2**63-1 之间，否则返回 422。
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Request

from ..core.errors import (
    CreateRetriesExhausted,
    InvalidReferenceID,
    NotFound,
    RecordAlreadyExists,
    ReconcileError,
    ReferenceIDNotSet,
)
from ..models.strain import MAX_REFERENCE_ID, EffectCategory
from ..schemas.strain import StrainPage, StrainRepr
from .dependencies import get_reconciler, get_strain_repository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/strains", tags=["strains"])


@router.get("/", response_model=StrainPage)
def list_strains(
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    repo = Depends(get_strain_repository),
) -> StrainPage:
    """分页获取所有 strain"""
    items = repo.list_strains(limit=limit, offset=offset)
    return StrainPage(
        items=[item.to_repr() for item in items],
        total=repo.count_strains(),
        offset=offset,
        limit=limit,
    )


@router.post("/", status_code=201)
def create_strain(
    strain: StrainRepr,
    request: Request,
    reconciler = Depends(get_reconciler),
) -> dict[str, str]:
    """创建新 strain；引用ID已存在时返回 409"""
    try:
        reconciler.create_with_retries(strain)
    except (ReferenceIDNotSet, InvalidReferenceID) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except RecordAlreadyExists:
        raise HTTPException(status_code=409, detail=f"strain with ID {strain.id} already exists")
    except CreateRetriesExhausted as e:
        logger.error(f"[API] 创建 strain {strain.id} 失败: {e}")
        raise HTTPException(status_code=503, detail=str(e))

    link = request.url_for("get_strain_by_id", reference_id=strain.id)
    return {"link": str(link)}


@router.get("/id/{reference_id}", response_model=StrainRepr)
def get_strain_by_id(
    reference_id: int = Path(ge=1, le=MAX_REFERENCE_ID),
    repo = Depends(get_strain_repository),
) -> StrainRepr:
    try:
        return repo.get_by_reference_id(reference_id).to_repr()
    except (ReferenceIDNotSet, InvalidReferenceID) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except NotFound:
        logger.debug(f"[API] 请求引用ID为 {reference_id} 的 strain，未找到")
        raise HTTPException(status_code=404, detail="strain not found")


@router.put("/id/{reference_id}", response_model=StrainRepr)
def reconcile_strain(
    strain: StrainRepr,
    reference_id: int = Path(ge=1, le=MAX_REFERENCE_ID),
    reconciler = Depends(get_reconciler),
) -> StrainRepr:
    """按引用ID同步 strain（不存在则创建）"""
    if strain.id and strain.id != reference_id:
        raise HTTPException(
            status_code=400,
            detail=f"body ID {strain.id} does not match path ID {reference_id}",
        )
    try:
        detail = reconciler.reconcile(strain.model_copy(update={"id": reference_id}))
    except (ReferenceIDNotSet, InvalidReferenceID) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ReconcileError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return detail.to_repr()


@router.get("/name/{name}", response_model=StrainRepr)
def get_strain_by_name(
    name: str,
    repo = Depends(get_strain_repository),
) -> StrainRepr:
    try:
        return repo.get_by_name(name).to_repr()
    except NotFound:
        logger.debug(f"[API] 请求名称为 {name} 的 strain，未找到")
        raise HTTPException(status_code=404, detail="strain not found")


@router.get("/race/{race}", response_model=list[StrainRepr])
def list_strains_by_race(
    race: str,
    repo = Depends(get_strain_repository),
) -> list[StrainRepr]:
    return [item.to_repr() for item in repo.list_by_race(race)]


@router.get("/flavor/{flavor}", response_model=list[StrainRepr])
def list_strains_by_flavor(
    flavor: str,
    repo = Depends(get_strain_repository),
) -> list[StrainRepr]:
    return [item.to_repr() for item in repo.list_by_flavor(flavor)]


@router.get("/effect/{effect}", response_model=list[StrainRepr])
def list_strains_by_effect(
    effect: str,
    category: EffectCategory | None = Query(default=None),
    repo = Depends(get_strain_repository),
) -> list[StrainRepr]:
    category_value = category.value if category else None
    return [item.to_repr() for item in repo.list_by_effect(effect, category_value)]
