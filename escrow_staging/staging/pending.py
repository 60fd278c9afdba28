"""
Pending deposit computation.

Runs on every scheduling tick, so it only reads one cursor per (tld, cursor
type) and never writes: cursors move only when a reducer completes a deposit.
"""

from datetime import datetime

from escrow_staging.core.config import StagingConfig
from escrow_staging.core.models import CursorType, PendingDeposit, mode_for
from escrow_staging.observability import metrics
from escrow_staging.observability.logger import get_logger
from escrow_staging.warehouse.base import CursorStore

logger = get_logger(__name__)


class PendingDepositChecker:
    """
    Decides which (tld, mode, watermark) deposits are due.

    A deposit is due when its cursor position is at least
    ``transaction_cooldown`` in the past, which keeps the pipeline away from
    watermarks whose data may still be settling.
    """

    def __init__(self, config: StagingConfig, cursors: CursorStore):
        self.config = config
        self.cursors = cursors

    def _cursor_types(self, tld: str) -> list[CursorType]:
        types = [CursorType.RDE_STAGING]
        if tld in self.config.thin_tlds():
            types.append(CursorType.BRDA)
        return types

    def compute_pending(self, now: datetime) -> set[PendingDeposit]:
        """
        Compute the deposits that are due at ``now``.

        Args:
            now: Current instant

        Returns:
            Set of pending deposits, at most one per (tld, cursor type)
        """
        pending: set[PendingDeposit] = set()
        cooldown = self.config.transaction_cooldown

        for tld in self.config.tlds:
            for cursor_type in self._cursor_types(tld):
                watermark = self.cursors.get(tld, cursor_type)
                metrics.set_gauge(
                    metrics.cursor_lag_seconds,
                    max((now - watermark).total_seconds(), 0.0),
                    tld=tld,
                    cursor_type=cursor_type.value,
                )
                if now < watermark + cooldown:
                    logger.debug(
                        "Deposit not due yet",
                        extra={"tld": tld, "cursor_type": cursor_type.value,
                               "watermark": watermark.isoformat()},
                    )
                    continue
                pending.add(PendingDeposit(tld=tld, mode=mode_for(cursor_type), watermark=watermark))

        return pending
