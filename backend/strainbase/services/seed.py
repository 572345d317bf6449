"""
种子数据导入

读取种子文件（strain 数组）并逐条 reconcile。
失败是单条记录级别的：记录日志后继续处理下一条，不中断整个批次（配置错误除外）。
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List

from ..core.errors import ConfigurationError
from ..schemas.strain import StrainRepr, parse_strains
from .reconciler import StrainReconciler

logger = logging.getLogger(__name__)


@dataclass
class SeedResult:
    """种子导入结果"""
    source: str
    total: int = 0
    succeeded: int = 0
    failed_ids: List[int] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failed_ids)

    @property
    def success(self) -> bool:
        return self.failed == 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, ensure_ascii=False)

    def format_summary(self) -> str:
        """格式化为可读摘要"""
        lines = [
            f"种子文件: {self.source}",
            f"记录总数: {self.total}",
            f"成功: {self.succeeded}",
            f"失败: {self.failed}",
        ]
        for error in self.errors:
            lines.append(f"  - {error}")
        return "\n".join(lines)


def seed_strains(
    reconciler: StrainReconciler,
    strains: Iterable[StrainRepr],
    source: str = "<memory>",
) -> SeedResult:
    result = SeedResult(source=source)
    for strain in strains:
        result.total += 1
        try:
            reconciler.reconcile(strain)
        except ConfigurationError:
            # 配置错误对每条记录都一样，直接中止
            raise
        except Exception as e:
            result.failed_ids.append(strain.id)
            result.errors.append(f"strain {strain.id}: {e}")
            logger.error(f"[种子] strain {strain.id} ({strain.name}) 导入失败: {e}")
            continue
        result.succeeded += 1

        if result.total % 500 == 0:
            logger.info(f"[种子] 进度: 已处理 {result.total} 条")

    logger.info(f"[种子] 导入完成: 成功 {result.succeeded}, 失败 {result.failed}, 来源 {source}")
    return result


def seed_from_file(reconciler: StrainReconciler, path: str | Path) -> SeedResult:
    """
    从种子文件导入

    Raises:
        OSError: 文件无法读取
        pydantic.ValidationError: 文件不是合法的 strain 数组
    """
    path = Path(path)
    with path.open("rb") as fh:
        strains = parse_strains(fh)
    logger.info(f"[种子] 从 {path} 读取到 {len(strains)} 条记录")
    return seed_strains(reconciler, strains, source=str(path))
