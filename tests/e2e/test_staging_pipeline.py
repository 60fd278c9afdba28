"""
End-to-end tests: the staging action launching a Spark job against
PostgreSQL-backed stores and local artifact storage.
"""

import xml.etree.ElementTree as ET
from datetime import datetime, timedelta, timezone

import pytest

from escrow_staging.core import naming
from escrow_staging.core.config import StagingConfig
from escrow_staging.core.models import CursorType, DepositMode, ResourceKind, ResourceRef
from escrow_staging.staging.action import StagingAction
from escrow_staging.staging.context import build_context, context_factory
from escrow_staging.staging.job import SparkJobRunner
from escrow_staging.staging.pending import PendingDepositChecker
from escrow_staging.warehouse.resources import PostgresResourceStore
from escrow_staging.warehouse.upload_queue import PostgresUploadQueue

from tests.fakes import FakeClock

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def e2e_config(database_settings, encryption_key, tmp_path) -> StagingConfig:
    return StagingConfig(
        tlds=["example", "soy"],
        brda_tlds=["soy"],
        transaction_cooldown=timedelta(hours=1),
        cursor_epoch=T0,
        num_shards=3,
        encryption_key=encryption_key,
        artifact_root=str(tmp_path / "staging"),
        runner="spark",
        database=database_settings,
    )


@pytest.fixture
def seeded_db(clean_db):
    store = PostgresResourceStore(clean_db, num_shards=3)
    created = T0 - timedelta(days=2)
    store.save_registrar("r1", {"name": "Registrar One", "status": "ok"})
    store.save_revision(
        ResourceRef(kind=ResourceKind.CONTACT, resource_key="C1"),
        created,
        {"contact_id": "jd1234", "roid": "C1", "registrar_id": "r1", "email": "jd@example.com"},
    )
    store.save_revision(
        ResourceRef(kind=ResourceKind.HOST, resource_key="H1"),
        created,
        {"name": "ns1.example.net", "roid": "H1", "registrar_id": "r1"},
    )
    for i in range(6):
        tld = "soy" if i % 2 else "example"
        ref = ResourceRef(kind=ResourceKind.DOMAIN, resource_key=f"D{i}", tld=tld)
        store.save_revision(ref, created, {"name": f"name{i}.{tld}", "roid": f"D{i}", "registrar_id": "r1"})
    # Deleted after the first watermark: present at T0, absent at T0 + 1 day
    store.save_revision(
        ResourceRef(kind=ResourceKind.DOMAIN, resource_key="D1", tld="soy"), T0 + timedelta(hours=6), {}, deleted=True
    )
    return clean_db


def run_once(spark, config, clock):
    context = build_context(config, clock=clock)
    runner = SparkJobRunner(spark, context_factory(config))
    try:
        action = StagingAction(config, clock, PendingDepositChecker(config, context.cursors), runner)
        response = action.run()
        result = response.job.result(timeout=300) if response.job else None
        return context, response, result
    finally:
        runner.shutdown()


@pytest.mark.e2e
@pytest.mark.slow
def test_spark_staging_job(spark_session, seeded_db, e2e_config):
    clock = FakeClock(T0 + timedelta(hours=23))

    context, response, result = run_once(spark_session, e2e_config, clock)
    try:
        assert response.status == "JOB_LAUNCHED"
        assert {(o.key.tld, o.key.mode) for o in result.completed} == {
            ("example", DepositMode.FULL),
            ("soy", DepositMode.FULL),
            ("soy", DepositMode.THIN),
        }
        assert result.shards_mapped == 4

        for tld in ("example", "soy"):
            assert context.cursors.get(tld, CursorType.RDE_STAGING) == T0 + timedelta(days=1)
        assert context.cursors.get("soy", CursorType.BRDA) == T0 + timedelta(days=1)
        assert context.cursors.get("example", CursorType.BRDA) == T0

        tasks = PostgresUploadQueue(seeded_db).pending_tasks()
        assert sorted(t.task_type for t in tasks) == ["brda-copy", "rde-upload", "rde-upload"]

        soy_full = next(o for o in result.completed if o.key.tld == "soy" and o.key.mode == DepositMode.FULL)
        plaintext = context.encryptor.decrypt(context.storage.read(naming.deposit_path(soy_full.key)))
        root = ET.fromstring(plaintext)
        text = ET.tostring(root, encoding="unicode")
        assert "name1.soy" in text
        assert "name0.example" not in text
        assert soy_full.artifact.fragment_counts == {"domain": 3, "contact": 1, "host": 1, "registrar": 1}
    finally:
        context.close()


@pytest.mark.e2e
@pytest.mark.slow
def test_second_run_is_a_no_op_until_next_watermark(spark_session, seeded_db, e2e_config):
    clock = FakeClock(T0 + timedelta(hours=23))
    first_context, _, _ = run_once(spark_session, e2e_config, clock)
    first = {
        path.name: first_context.encryptor.decrypt(path.read_bytes())
        for path in sorted((first_context.storage.root).iterdir())
    }
    first_context.close()

    context, response, _ = run_once(spark_session, e2e_config, clock)
    context.close()
    assert response.status == "NO_CONTENT"

    # Next day: the deleted domain is gone from the new deposit
    clock.advance(timedelta(days=1))
    context, response, result = run_once(spark_session, e2e_config, clock)
    try:
        soy_full = next(o for o in result.completed if o.key.tld == "soy" and o.key.mode == DepositMode.FULL)
        assert soy_full.key.watermark == T0 + timedelta(days=1)
        assert soy_full.artifact.fragment_counts["domain"] == 2
        # Earlier deposits are left untouched
        for name, plaintext in first.items():
            assert context.encryptor.decrypt((context.storage.root / name).read_bytes()) == plaintext
    finally:
        context.close()
