"""
Unit tests for the in-process job runner: shuffle, retries, failure isolation
and idempotence of repeated runs.
"""

from datetime import datetime, timedelta, timezone

import pytest

from escrow_staging.core import naming
from escrow_staging.core.models import CursorType, DepositMode, PendingDeposit, ResourceKind, ResourceRef
from escrow_staging.staging.job import LocalJobRunner

from tests.fakes import InMemoryResourceStore, make_context, populate_registry

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def all_pending(config, watermark=T0):
    return [
        PendingDeposit(tld=tld, mode=mode, watermark=watermark)
        for tld in config.tlds
        for mode in DepositMode
    ]


def plaintexts(context):
    return {
        path: context.encryptor.decrypt(data)
        for path, data in context.storage.objects.items()
    }


class FlakyResourceStore(InMemoryResourceStore):
    """Fails the first ``failures`` shard enumerations."""

    def __init__(self, failures: int, **kwargs):
        super().__init__(**kwargs)
        self.failures = failures

    def iter_shard(self, shard):
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionError("resource index unavailable")
        return super().iter_shard(shard)


class TestLocalJobRunner:
    """Tests for LocalJobRunner"""

    def test_job_stages_every_pending_deposit(self, staging_context, staging_config):
        runner = LocalJobRunner(staging_context, max_workers=2)
        pending = all_pending(staging_config)

        handle = runner.launch(pending, "Stage escrow deposits for all TLDs")
        result = handle.result(timeout=30)
        runner.shutdown()

        assert handle.status == "SUCCEEDED"
        assert len(result.completed) == 4
        assert result.shards_mapped == 5  # four index shards plus the null shard
        assert result.snapshots_emitted == 16  # per TLD: 5 FULL + 3 THIN, twice
        for tld in staging_config.tlds:
            for cursor_type in CursorType:
                assert staging_context.cursors.get(tld, cursor_type) == T0 + timedelta(days=1)
        assert len(staging_context.uploads.pending_tasks()) == 4

    def test_empty_store_still_advances_cursors(self, staging_config, clock):
        context = make_context(staging_config, clock, resources=InMemoryResourceStore())
        runner = LocalJobRunner(context)

        result = runner.launch(all_pending(staging_config), "job").result(timeout=30)
        runner.shutdown()

        assert len(result.completed) == 4
        assert result.snapshots_emitted == 0

    def test_invalid_deposit_fails_alone(self, staging_context, staging_config):
        staging_context.resources.save_revision(
            ResourceRef(kind=ResourceKind.DOMAIN, resource_key="BAD", tld="soy"),
            T0 - timedelta(hours=1),
            {"name": "bad.soy", "roid": "BAD"},  # no registrar_id
        )
        runner = LocalJobRunner(staging_context)

        result = runner.launch(all_pending(staging_config), "job").result(timeout=30)
        runner.shutdown()

        assert {(o.key.tld, o.key.mode) for o in result.failed} == {
            ("soy", DepositMode.FULL),
            ("soy", DepositMode.THIN),
        }
        assert "BAD" in result.failed[0].error
        assert staging_context.cursors.get("soy", CursorType.RDE_STAGING) == T0
        assert staging_context.cursors.get("example", CursorType.RDE_STAGING) == T0 + timedelta(days=1)

    def test_transient_map_failure_is_retried(self, staging_config, clock):
        store = FlakyResourceStore(failures=1, num_shards=4)
        context = make_context(staging_config, clock, resources=store)
        runner = LocalJobRunner(context, max_workers=1, max_task_attempts=3)

        result = runner.launch(all_pending(staging_config), "job").result(timeout=30)
        runner.shutdown()

        assert len(result.completed) == 4

    def test_job_fails_when_retries_run_out(self, staging_config, clock):
        store = FlakyResourceStore(failures=10, num_shards=4)
        context = make_context(staging_config, clock, resources=store)
        runner = LocalJobRunner(context, max_workers=1, max_task_attempts=2)

        handle = runner.launch(all_pending(staging_config), "job")
        with pytest.raises(ConnectionError):
            handle.result(timeout=30)
        runner.shutdown()

        assert handle.status == "FAILED"
        assert context.cursors.advances == 0

    def test_launch_deduplicates_pending_deposits(self, staging_context, staging_config):
        runner = LocalJobRunner(staging_context)
        pending = all_pending(staging_config)

        handle = runner.launch(pending + pending, "job")
        runner.shutdown()

        assert len(handle.deposits) == 4
        assert handle.deposits == sorted(handle.deposits, key=lambda p: p.key().as_tuple())


class TestIdempotence:
    """Repeated execution of the same job"""

    def test_rerunning_a_job_advances_once_with_identical_output(self, staging_context, staging_config):
        runner = LocalJobRunner(staging_context)
        pending = all_pending(staging_config)

        first = runner.launch(pending, "job").result(timeout=30)
        before = plaintexts(staging_context)
        second = runner.launch(pending, "job").result(timeout=30)
        runner.shutdown()

        assert len(first.completed) == 4
        assert {o.status for o in second.outcomes} == {"ALREADY_COMPLETED"}
        assert staging_context.cursors.advances == 4
        assert plaintexts(staging_context) == before
        assert len(staging_context.uploads.pending_tasks()) == 4

    def test_output_does_not_depend_on_worker_count(self, staging_config, clock):
        outputs = []
        for workers in (1, 4):
            store = InMemoryResourceStore(num_shards=4)
            populate_registry(store)
            context = make_context(staging_config, clock, resources=store)
            runner = LocalJobRunner(context, max_workers=workers)
            runner.launch(all_pending(staging_config), "job").result(timeout=30)
            runner.shutdown()
            outputs.append(plaintexts(context))

        assert outputs[0] == outputs[1]
        key_path = naming.deposit_path(all_pending(staging_config)[0].key())
        assert key_path in outputs[0]
