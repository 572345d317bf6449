"""
共享测试夹具

每个测试使用 tmp_path 下独立的 SQLite 文件，已经过 schema 守卫迁移。
"""

import pytest

from .core.config import Settings
from .core.database import Database
from .repositories.strain_repository import StrainRepository
from .schemas.strain import EffectsRepr, StrainRepr
from .services.reconciler import StrainReconciler
from .services.schema_version import SchemaVersionGuard


STRAINS_JSON = """
[
    {
        "name": "foo",
        "id": 1,
        "race": "r1",
        "flavors": ["f1", "f2"],
        "effects": {
            "positive": ["pos1", "pos2"],
            "negative": ["neg1"],
            "medical": ["med1"]
        }
    },
    {
        "name": "bar",
        "id": 2,
        "race": "r2",
        "flavors": ["f1", "f3"],
        "effects": {
            "positive": ["pos3"],
            "negative": ["neg2"],
            "medical": ["med2"]
        }
    }
]
"""


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_driver="sqlite",
        database_name=str(tmp_path / "db" / "strains.db"),
        log_to_file=False,
        log_to_console=False,
        create_retries=2,
    )


@pytest.fixture
def database(settings):
    db = Database(settings)
    SchemaVersionGuard(db).ensure(1)
    yield db
    db.close()


@pytest.fixture
def reconciler(database):
    return StrainReconciler(database, create_retries=2)


@pytest.fixture
def repository(database):
    return StrainRepository(database)


@pytest.fixture
def make_strain():
    """构造 StrainRepr 的工厂"""

    def _make(
        id: int = 7,
        name: str = "foo",
        race: str = "sativa",
        flavors=None,
        positive=None,
        negative=None,
        medical=None,
    ) -> StrainRepr:
        return StrainRepr(
            id=id,
            name=name,
            race=race,
            flavors=flavors or [],
            effects=EffectsRepr(
                positive=positive or [],
                negative=negative or [],
                medical=medical or [],
            ),
        )

    return _make


@pytest.fixture
def seed_file(tmp_path):
    path = tmp_path / "strains.json"
    path.write_text(STRAINS_JSON, encoding="utf-8")
    return path
