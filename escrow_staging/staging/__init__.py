"""
The staging pipeline: pending deposit checks, point-in-time mapping,
deposit reduction and job orchestration.
"""

from .action import JOB_NAME, StagingAction, StagingResponse
from .context import StagingContext, build_context, context_factory
from .job import JobHandle, JobRunner, LocalJobRunner, SparkJobRunner
from .mapper import NULL_SHARD, StagingMapper
from .pending import PendingDepositChecker
from .point_in_time import PointInTimeReader
from .reducer import StagingReducer

__all__ = [
    "JOB_NAME",
    "StagingAction",
    "StagingResponse",
    "StagingContext",
    "build_context",
    "context_factory",
    "JobHandle",
    "JobRunner",
    "LocalJobRunner",
    "SparkJobRunner",
    "NULL_SHARD",
    "StagingMapper",
    "PendingDepositChecker",
    "PointInTimeReader",
    "StagingReducer",
]
