"""
StrainReconciler 测试

覆盖 upsert + 关联差异、驻留唯一性、事务原子性以及严格创建路径。
"""

import pytest
from sqlalchemy.exc import OperationalError
from sqlmodel import func, select

from ...core.errors import (
    CreateRetriesExhausted,
    DatabaseConnectionNil,
    InvalidReferenceID,
    RecordAlreadyExists,
    ReconcileError,
    ReferenceIDNotSet,
)
from ...models.strain import MAX_REFERENCE_ID, Effect, Flavor, Strain, StrainEffectLink, StrainFlavorLink
from .. import reconciler as reconciler_module
from .. import retry as retry_module
from ..reconciler import StrainReconciler


def count(database, model) -> int:
    with database.session_scope() as session:
        return session.exec(select(func.count()).select_from(model)).one()


def flavor_names(detail) -> list[str]:
    return [flavor.name for flavor in detail.flavors]


def effect_pairs(detail) -> set[tuple[str, str]]:
    return {(effect.name, effect.category) for effect in detail.effects}


class TestReconcile:
    """reconcile() 的 upsert 语义"""

    def test_read_after_write(self, reconciler, repository, make_strain):
        """写入后按引用ID读取得到完整聚合"""
        reconciler.reconcile(
            make_strain(id=7, name="foo", race="sativa", flavors=["citrus"], positive=["happy"])
        )

        detail = repository.get_by_reference_id(7)

        assert detail.name == "foo"
        assert detail.race == "sativa"
        assert flavor_names(detail) == ["citrus"]
        assert effect_pairs(detail) == {("happy", "positive")}

    def test_returns_hydrated_detail(self, reconciler, make_strain):
        detail = reconciler.reconcile(
            make_strain(flavors=["sweet", "earthy"], negative=["dry mouth"], medical=["stress"])
        )

        assert detail.reference_id == 7
        assert flavor_names(detail) == ["earthy", "sweet"]
        assert effect_pairs(detail) == {("dry mouth", "negative"), ("stress", "medical")}

    def test_idempotent(self, reconciler, database, make_strain):
        """相同表示同步两次与同步一次的存储状态一致"""
        strain = make_strain(flavors=["citrus", "pine"], positive=["happy"], medical=["pain"])

        reconciler.reconcile(strain)
        reconciler.reconcile(strain)

        assert count(database, Strain) == 1
        assert count(database, Flavor) == 2
        assert count(database, Effect) == 2
        assert count(database, StrainFlavorLink) == 2
        assert count(database, StrainEffectLink) == 2

    def test_updates_in_place(self, reconciler, database, make_strain):
        reconciler.reconcile(make_strain(name="foo", race="sativa"))
        with database.session_scope() as session:
            original_id = session.exec(select(Strain.strain_id)).one()

        detail = reconciler.reconcile(make_strain(name="renamed", race="indica"))

        assert detail.name == "renamed"
        assert detail.race == "indica"
        with database.session_scope() as session:
            rows = session.exec(select(Strain)).all()
        assert len(rows) == 1
        assert rows[0].strain_id == original_id

    def test_flavor_shrinkage_keeps_shared_trait(self, reconciler, repository, database, make_strain):
        """{A, B} -> {A}：只删除关联，不删除被其他 strain 引用的 B"""
        reconciler.reconcile(make_strain(id=1, flavors=["A", "B"]))
        reconciler.reconcile(make_strain(id=2, name="other", flavors=["B"]))

        reconciler.reconcile(make_strain(id=1, flavors=["A"]))

        assert flavor_names(repository.get_by_reference_id(1)) == ["A"]
        assert flavor_names(repository.get_by_reference_id(2)) == ["B"]
        with database.session_scope() as session:
            assert session.exec(select(Flavor).where(Flavor.name == "B")).first() is not None
        assert count(database, StrainFlavorLink) == 2

    def test_orphaned_traits_are_kept(self, reconciler, database, make_strain):
        reconciler.reconcile(make_strain(flavors=["A", "B"], positive=["happy"]))

        reconciler.reconcile(make_strain(flavors=[], positive=[]))

        assert count(database, StrainFlavorLink) == 0
        assert count(database, StrainEffectLink) == 0
        assert count(database, Flavor) == 2
        assert count(database, Effect) == 1

    def test_effect_diff_uses_name_and_category(self, reconciler, database, make_strain):
        """同名效果换了类别，视为不同的特征"""
        reconciler.reconcile(make_strain(positive=["sleepy"]))

        detail = reconciler.reconcile(make_strain(negative=["sleepy"]))

        assert effect_pairs(detail) == {("sleepy", "negative")}
        assert count(database, Effect) == 2
        assert count(database, StrainEffectLink) == 1

    def test_interning_uniqueness(self, reconciler, database, make_strain):
        """两个 strain 共享 citrus：一行 Flavor，两行关联"""
        reconciler.reconcile(make_strain(id=1, flavors=["citrus"]))
        reconciler.reconcile(make_strain(id=2, name="bar", flavors=["citrus"]))

        with database.session_scope() as session:
            flavors = session.exec(select(Flavor).where(Flavor.name == "citrus")).all()
            links = session.exec(
                select(StrainFlavorLink).where(StrainFlavorLink.flavor_id == flavors[0].flavor_id)
            ).all()
        assert len(flavors) == 1
        assert len(links) == 2

    def test_duplicate_incoming_traits_collapse(self, reconciler, database, make_strain):
        detail = reconciler.reconcile(
            make_strain(flavors=["citrus", "citrus"], positive=["happy", "happy"])
        )

        assert flavor_names(detail) == ["citrus"]
        assert count(database, StrainFlavorLink) == 1
        assert count(database, StrainEffectLink) == 1

    def test_reference_id_zero_rejected(self, reconciler, database, make_strain):
        with pytest.raises(ReferenceIDNotSet):
            reconciler.reconcile(make_strain(id=0))
        assert count(database, Strain) == 0

    @pytest.mark.parametrize("reference_id", [-5, MAX_REFERENCE_ID + 1, 2**64])
    def test_out_of_range_reference_id_rejected(self, reconciler, database, make_strain, reference_id):
        """model_copy 跳过校验的 id 也必须在写入前被拒绝"""
        strain = make_strain(flavors=["citrus"]).model_copy(update={"id": reference_id})

        with pytest.raises(InvalidReferenceID):
            reconciler.reconcile(strain)
        with pytest.raises(InvalidReferenceID):
            reconciler.create_with_retries(strain)

        assert count(database, Strain) == 0
        assert count(database, Flavor) == 0

    def test_bigint_reference_id(self, reconciler, repository, make_strain):
        reconciler.reconcile(make_strain(id=2**40, name="big"))
        reconciler.reconcile(make_strain(id=MAX_REFERENCE_ID, name="max"))

        assert repository.get_by_reference_id(2**40).name == "big"
        assert repository.get_by_reference_id(MAX_REFERENCE_ID).reference_id == MAX_REFERENCE_ID

    def test_no_database(self, make_strain):
        with pytest.raises(DatabaseConnectionNil):
            StrainReconciler(None).reconcile(make_strain())

    def test_closed_database(self, reconciler, database, make_strain):
        database.close()
        with pytest.raises(DatabaseConnectionNil):
            reconciler.reconcile(make_strain())

    def test_failure_rolls_back_everything(self, reconciler, database, repository, make_strain, monkeypatch):
        """任一步失败时整个同步回滚，错误带上引用ID"""
        reconciler.reconcile(make_strain(flavors=["A", "B"]))

        def broken_hydrate(session, record):
            raise OperationalError("SELECT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(reconciler_module, "hydrate", broken_hydrate)

        with pytest.raises(ReconcileError) as exc_info:
            reconciler.reconcile(make_strain(name="changed", flavors=["C"]))

        assert exc_info.value.reference_id == 7
        assert isinstance(exc_info.value.__cause__, OperationalError)
        monkeypatch.undo()
        detail = repository.get_by_reference_id(7)
        assert detail.name == "foo"
        assert flavor_names(detail) == ["A", "B"]
        with database.session_scope() as session:
            assert session.exec(select(Flavor).where(Flavor.name == "C")).first() is None


class TestCreate:
    """严格创建路径"""

    def test_create(self, reconciler, repository, make_strain):
        reconciler.create(make_strain(flavors=["citrus"], positive=["happy"]))

        detail = repository.get_by_reference_id(7)
        assert flavor_names(detail) == ["citrus"]
        assert effect_pairs(detail) == {("happy", "positive")}

    def test_create_existing_raises(self, reconciler, make_strain):
        reconciler.create(make_strain())
        with pytest.raises(RecordAlreadyExists) as exc_info:
            reconciler.create(make_strain(name="again"))
        assert exc_info.value.reference_id == 7

    def test_create_reuses_interned_traits(self, reconciler, database, make_strain):
        reconciler.reconcile(make_strain(id=1, flavors=["citrus"]))
        reconciler.create(make_strain(id=2, flavors=["citrus"]))

        assert count(database, Flavor) == 1
        assert count(database, StrainFlavorLink) == 2

    def test_create_reference_id_zero(self, reconciler, make_strain):
        with pytest.raises(ReferenceIDNotSet):
            reconciler.create_with_retries(make_strain(id=0))


class TestCreateWithRetries:
    """有限重试的创建"""

    @pytest.fixture(autouse=True)
    def no_sleep(self, monkeypatch):
        monkeypatch.setattr(retry_module.time, "sleep", lambda seconds: None)

    def test_success_first_attempt(self, reconciler, repository, make_strain):
        reconciler.create_with_retries(make_strain())
        assert repository.get_by_reference_id(7).name == "foo"

    def test_transient_failures_absorbed(self, reconciler, repository, make_strain, monkeypatch):
        real_create = reconciler._create_once
        calls = []

        def flaky(strain):
            calls.append(strain.id)
            if len(calls) < 3:
                raise OperationalError("INSERT", {}, Exception("database is locked"))
            return real_create(strain)

        monkeypatch.setattr(reconciler, "_create_once", flaky)

        reconciler.create_with_retries(make_strain(), max_retries=2)

        assert len(calls) == 3
        assert repository.get_by_reference_id(7).name == "foo"

    def test_exhaustion_is_surfaced(self, reconciler, database, make_strain, monkeypatch):
        """重试耗尽必须返回最后一次错误，而不是报告成功"""
        errors = []

        def always_fails(strain):
            err = OperationalError("INSERT", {}, Exception(f"locked #{len(errors)}"))
            errors.append(err)
            raise err

        monkeypatch.setattr(reconciler, "_create_once", always_fails)

        with pytest.raises(CreateRetriesExhausted) as exc_info:
            reconciler.create_with_retries(make_strain(), max_retries=3)

        assert exc_info.value.attempts == 4
        assert exc_info.value.reference_id == 7
        assert exc_info.value.__cause__ is errors[-1]
        assert count(database, Strain) == 0

    def test_uses_configured_budget(self, database, make_strain, monkeypatch):
        reconciler = StrainReconciler(database, create_retries=1)
        calls = []

        def always_fails(strain):
            calls.append(1)
            raise OperationalError("INSERT", {}, Exception("locked"))

        monkeypatch.setattr(reconciler, "_create_once", always_fails)

        with pytest.raises(CreateRetriesExhausted):
            reconciler.create_with_retries(make_strain())
        assert len(calls) == 2

    def test_conflict_not_retried(self, reconciler, make_strain, monkeypatch):
        reconciler.create_with_retries(make_strain())
        real_create = reconciler._create_once
        calls = []

        def counting(strain):
            calls.append(1)
            return real_create(strain)

        monkeypatch.setattr(reconciler, "_create_once", counting)

        with pytest.raises(RecordAlreadyExists):
            reconciler.create_with_retries(make_strain(), max_retries=5)
        assert len(calls) == 1

    def test_no_database_fails_fast(self, make_strain):
        with pytest.raises(DatabaseConnectionNil):
            StrainReconciler(None).create_with_retries(make_strain())
