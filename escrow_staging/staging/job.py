"""
Map/reduce job substrate for staging.

A staging job has one map task per resource index shard plus one for the
null shard, a shuffle grouping mapper output by deposit key, and one reduce
task per pending deposit. Tasks are delivered at least once; the reducer's
lock and the cursor compare-and-set make re-execution harmless.

Two runners share the same task functions:

* ``SparkJobRunner`` runs the job as a PySpark RDD job. Collaborators are
  rebuilt inside each partition from a picklable context factory, and Spark's
  task retry provides re-execution.
* ``LocalJobRunner`` runs it on an in-process thread pool with a bounded
  per-task retry.
"""

import uuid
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from functools import partial
from typing import Callable, Iterable, Iterator, TypeVar

from escrow_staging.core.errors import DepositValidationError
from escrow_staging.core.models import (
    DepositKey,
    JobResult,
    PendingDeposit,
    ReduceOutcome,
    ResourceSnapshot,
)
from escrow_staging.observability import metrics
from escrow_staging.observability.logger import deposit_fields, get_logger, log_operation

from .context import ContextFactory, StagingContext
from .mapper import NULL_SHARD, MappedPair, StagingMapper
from .point_in_time import PointInTimeReader

logger = get_logger(__name__)

T = TypeVar("T")


# =======================
# TASKS
# =======================

def run_map_task(context: StagingContext, mapper: StagingMapper, shard: int) -> list[MappedPair]:
    """
    Map one shard.

    Output is materialized so a failed attempt contributes nothing to the
    shuffle.
    """
    reader = PointInTimeReader(context.resources)
    emitted = list(mapper.map_shard(shard, context.resources, reader))

    for key, _ in emitted:
        metrics.increment_counter(metrics.snapshots_emitted_total, 1, mode=key.mode.value)
    metrics.increment_counter(
        metrics.shards_mapped_total, 1, shard_type="null" if shard == NULL_SHARD else "index"
    )
    logger.debug("Mapped shard", extra={"shard": shard, "emitted": len(emitted)})
    return emitted


def run_reduce_task(context: StagingContext, key: DepositKey, snapshots: list[ResourceSnapshot]) -> ReduceOutcome:
    """
    Reduce one deposit.

    Invalid data fails the deposit but not the job: the failure is logged
    with the offending resources and reported as a FAILED outcome, and the
    untouched cursor makes the next run retry the deposit. Any other error
    propagates so the runner can re-execute the task.
    """
    try:
        outcome = context.reducer().reduce(key, snapshots)
    except DepositValidationError as e:
        logger.error(
            "Deposit failed; cursor not advanced, it will be retried on the next run",
            extra={**deposit_fields(key), "invalid_resources": len(e.errors), "error": str(e)},
        )
        metrics.record_error("DepositValidationError", "reducer")
        outcome = ReduceOutcome(key=key, status="FAILED", error=str(e))

    metrics.record_reduce_outcome(key.tld, key.mode.value, outcome.status)
    return outcome


# =======================
# JOB HANDLES
# =======================

@dataclass
class JobHandle:
    """
    Tracking handle of a launched staging job.

    Attributes:
        job_id: Unique job id (also the Spark job group)
        name: Human readable job name
        deposits: Deposits the job was launched for
    """

    job_id: str
    name: str
    deposits: list[PendingDeposit]
    future: Future = field(repr=False)

    @property
    def status(self) -> str:
        if not self.future.done():
            return "RUNNING"
        return "FAILED" if self.future.exception() is not None else "SUCCEEDED"

    def result(self, timeout: float | None = None) -> JobResult:
        """
        Wait for the job to finish.

        Raises:
            Exception: Whatever made the job fail after task retries ran out
        """
        return self.future.result(timeout=timeout)


class JobRunner(ABC):
    """
    Launches staging jobs asynchronously.
    """

    def __init__(self):
        self._driver = ThreadPoolExecutor(max_workers=1, thread_name_prefix="staging-job")

    def launch(self, pending: Iterable[PendingDeposit], name: str) -> JobHandle:
        """
        Launch a job for a set of pending deposits and return immediately.

        Args:
            pending: Deposits to stage (one reduce task each)
            name: Job name

        Returns:
            Handle of the running job
        """
        deposits = sorted(set(pending), key=lambda p: p.key().as_tuple())
        job_id = uuid.uuid4().hex
        future = self._driver.submit(self._run_logged, job_id, name, deposits)
        return JobHandle(job_id=job_id, name=name, deposits=deposits, future=future)

    def _run_logged(self, job_id: str, name: str, deposits: list[PendingDeposit]) -> JobResult:
        with log_operation(name, logger=logger, job_id=job_id, deposits=len(deposits)):
            result = self.run(job_id, name, deposits)
        logger.info(
            "Staging job finished",
            extra={"job_id": job_id, "completed": len(result.completed),
                   "failed": len(result.failed), "snapshots": result.snapshots_emitted},
        )
        return result

    @abstractmethod
    def run(self, job_id: str, name: str, deposits: list[PendingDeposit]) -> JobResult:
        ...

    def shutdown(self, wait: bool = True) -> None:
        self._driver.shutdown(wait=wait)


# =======================
# LOCAL RUNNER
# =======================

class LocalJobRunner(JobRunner):
    """
    Runs staging jobs on an in-process worker pool.

    Args:
        context: Collaborators shared by all worker threads
        max_workers: Concurrent map/reduce tasks
        max_task_attempts: Attempts per task before the job fails
    """

    def __init__(self, context: StagingContext, max_workers: int = 4, max_task_attempts: int = 3):
        super().__init__()
        self.context = context
        self.max_workers = max_workers
        self.max_task_attempts = max_task_attempts

    def _attempt(self, stage: str, task: Callable[..., T], *args) -> T:
        attempt = 1
        while True:
            try:
                return task(*args)
            except Exception as e:
                if attempt >= self.max_task_attempts:
                    raise
                metrics.increment_counter(metrics.task_retries_total, 1, stage=stage)
                logger.warning(
                    f"{stage} task failed, retrying",
                    extra={"attempt": attempt, "error_type": type(e).__name__, "error_message": str(e)},
                )
                attempt += 1

    def run(self, job_id: str, name: str, deposits: list[PendingDeposit]) -> JobResult:
        mapper = StagingMapper(deposits)
        shards = [NULL_SHARD] + self.context.resources.list_shards()

        groups: dict[DepositKey, list[ResourceSnapshot]] = {d.key(): [] for d in deposits}

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="staging-worker") as pool:
            emitted = 0
            map_outputs = pool.map(
                lambda shard: self._attempt("map", run_map_task, self.context, mapper, shard),
                shards,
            )
            for output in map_outputs:
                for key, snapshot in output:
                    groups[key].append(snapshot)
                    emitted += 1

            outcomes = list(pool.map(
                lambda item: self._attempt("reduce", run_reduce_task, self.context, item[0], item[1]),
                groups.items(),
            ))

        return JobResult(job_id=job_id, shards_mapped=len(shards), snapshots_emitted=emitted, outcomes=outcomes)


# =======================
# SPARK RUNNER
# =======================

def _map_partition(factory: ContextFactory, mapper: StagingMapper, counter, shards: Iterator[int]):
    context = factory()
    try:
        for shard in shards:
            for key, snapshot in run_map_task(context, mapper, shard):
                counter.add(1)
                yield key.as_tuple(), snapshot
    finally:
        context.close()


def _reduce_partition(factory: ContextFactory, groups: Iterator):
    context = factory()
    try:
        for key_tuple, values in groups:
            # None values only seed keys that nothing was mapped to
            snapshots = [v for v in values if v is not None]
            yield run_reduce_task(context, DepositKey.from_tuple(key_tuple), snapshots)
    finally:
        context.close()


class SparkJobRunner(JobRunner):
    """
    Runs staging jobs as PySpark RDD jobs.

    Args:
        spark: Active Spark session
        factory: Picklable factory building collaborators on each worker
    """

    def __init__(self, spark, factory: ContextFactory):
        super().__init__()
        self.spark = spark
        self.factory = factory

    def run(self, job_id: str, name: str, deposits: list[PendingDeposit]) -> JobResult:
        sc = self.spark.sparkContext
        sc.setJobGroup(job_id, name)

        context = self.factory()
        try:
            shards = [NULL_SHARD] + context.resources.list_shards()
        finally:
            context.close()

        mapper = StagingMapper(deposits)
        keys = [d.key().as_tuple() for d in deposits]
        counter = sc.accumulator(0)

        mapped = sc.parallelize(shards, len(shards)).mapPartitions(
            partial(_map_partition, self.factory, mapper, counter)
        )
        seeded = mapped.union(sc.parallelize([(k, None) for k in keys], 1))
        outcomes = (
            seeded.groupByKey(numPartitions=max(len(keys), 1))
            .mapPartitions(partial(_reduce_partition, self.factory))
            .collect()
        )

        return JobResult(
            job_id=job_id,
            shards_mapped=len(shards),
            snapshots_emitted=counter.value,
            outcomes=outcomes,
        )
