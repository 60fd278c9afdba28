"""
Staging action: the scheduled entry point of the pipeline.

Asks the pending deposit checker what is due and, unless nothing is, launches
one staging job covering every due deposit on every TLD.
"""

from dataclasses import dataclass, field
from typing import Literal

from escrow_staging.core.clock import Clock
from escrow_staging.core.config import StagingConfig
from escrow_staging.core.models import PendingDeposit
from escrow_staging.observability.logger import deposit_fields, get_logger

from .job import JobHandle, JobRunner
from .pending import PendingDepositChecker

logger = get_logger(__name__)

JOB_NAME = "Stage escrow deposits for all TLDs"


@dataclass
class StagingResponse:
    """
    Result of one trigger of the staging action.

    Attributes:
        status: NO_CONTENT when nothing is due, JOB_LAUNCHED otherwise
        message: Human readable summary
        pending: Deposits the job was launched for
        job: Handle of the launched job
    """

    status: Literal["NO_CONTENT", "JOB_LAUNCHED"]
    message: str
    pending: list[PendingDeposit] = field(default_factory=list)
    job: JobHandle | None = None


class StagingAction:
    """
    Launches staging jobs for every deposit that is due.
    """

    def __init__(
        self,
        config: StagingConfig,
        clock: Clock,
        checker: PendingDepositChecker,
        runner: JobRunner,
    ):
        self.config = config
        self.clock = clock
        self.checker = checker
        self.runner = runner

    def run(self) -> StagingResponse:
        """
        Launch a staging job if any deposit is due.

        Returns:
            NO_CONTENT response, or JOB_LAUNCHED with the job's handle
        """
        now = self.clock.now_utc()
        cooldown = self.config.transaction_cooldown

        pending = []
        for deposit in self.checker.compute_pending(now):
            if now < deposit.watermark + cooldown:
                logger.info(f"Ignoring within {cooldown} cooldown: {deposit}", extra=deposit_fields(deposit))
                continue
            pending.append(deposit)

        if not pending:
            message = "Nothing needs to be deposited"
            logger.info(message)
            return StagingResponse(status="NO_CONTENT", message=message)

        pending.sort(key=lambda p: p.key().as_tuple())
        for deposit in pending:
            logger.info(str(deposit), extra=deposit_fields(deposit))

        job = self.runner.launch(pending, JOB_NAME)
        logger.info("Launched staging job", extra={"job_id": job.job_id, "deposits": len(pending)})
        return StagingResponse(
            status="JOB_LAUNCHED",
            message=f"Launched job {job.job_id} for {len(pending)} deposit(s)",
            pending=pending,
            job=job,
        )
