"""
Command-line interface for triggering escrow deposit staging.

Usage:
    python -m escrow_staging.cli.staging_cli run --config <path> [options]
"""

import argparse
import sys

from pyspark.sql import SparkSession

from escrow_staging.core.clock import SystemClock
from escrow_staging.core.config import StagingConfig, load_config
from escrow_staging.core.errors import StagingError
from escrow_staging.observability.metrics import start_metrics_server
from escrow_staging.observability.logger import get_logger, setup_logger
from escrow_staging.staging.action import StagingAction
from escrow_staging.staging.context import StagingContext, build_context, context_factory
from escrow_staging.staging.job import JobRunner, LocalJobRunner, SparkJobRunner
from escrow_staging.staging.pending import PendingDepositChecker

logger = get_logger(__name__)


def create_spark_session(app_name: str = "EscrowStaging", max_task_attempts: int = 3) -> SparkSession:
    """
    Create Spark session for staging jobs.

    Args:
        app_name: Application name
        max_task_attempts: Attempts per task before the job fails

    Returns:
        SparkSession
    """
    spark = SparkSession.builder \
        .appName(app_name) \
        .master("local[*]") \
        .config("spark.task.maxFailures", str(max_task_attempts)) \
        .config("spark.python.worker.reuse", "true") \
        .getOrCreate()

    return spark


def create_runner(config: StagingConfig, context: StagingContext) -> tuple[JobRunner, SparkSession | None]:
    """Create the job runner selected by configuration."""
    if config.runner == "local":
        runner = LocalJobRunner(
            context,
            max_workers=config.max_workers,
            max_task_attempts=config.max_task_attempts,
        )
        return runner, None

    spark = create_spark_session(max_task_attempts=config.max_task_attempts)
    return SparkJobRunner(spark, context_factory(config)), spark


def run_command(args):
    """
    Execute one trigger of the staging action.

    Args:
        args: Command-line arguments
    """
    config = load_config(args.config, env_file=args.env_file)
    if args.runner:
        config = config.model_copy(update={"runner": args.runner})

    if args.metrics_port:
        start_metrics_server(args.metrics_port)

    logger.info(f"Checking pending deposits for {len(config.tlds)} TLD(s)")
    context = build_context(config, clock=SystemClock())
    runner, spark = create_runner(config, context)

    try:
        action = StagingAction(
            config=config,
            clock=context.clock,
            checker=PendingDepositChecker(config, context.cursors),
            runner=runner,
        )
        response = action.run()
        print(response.message)

        if response.job is None or not args.wait:
            return

        result = response.job.result()

        print(f"\n{'=' * 60}")
        print(f"STAGING JOB {result.job_id}")
        print(f"{'=' * 60}")
        print(f"Shards mapped:     {result.shards_mapped}")
        print(f"Snapshots emitted: {result.snapshots_emitted}\n")
        print(f"{'TLD':<15} {'Mode':<6} {'Watermark':<27} {'Status'}")
        print(f"{'-' * 60}")
        for outcome in result.outcomes:
            print(f"{outcome.key.tld:<15} {outcome.key.mode.value:<6} "
                  f"{outcome.key.watermark.isoformat():<27} {outcome.status}")
        print(f"{'=' * 60}\n")

        if result.failed:
            sys.exit(2)

    finally:
        # The job runs on the driver thread; it must finish before the pool closes
        runner.shutdown(wait=True)
        context.close()
        if spark is not None:
            spark.stop()


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Escrow deposit staging",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Launch staging for every due deposit and wait for the job
  python -m escrow_staging.cli.staging_cli run --config config/staging.yaml --wait

  # Run in-process instead of on Spark
  python -m escrow_staging.cli.staging_cli run --config config/staging.yaml --runner local --wait
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser("run", help="Stage every deposit that is due")
    run_parser.add_argument(
        "--config",
        default="config/staging.yaml",
        help="Path to staging configuration YAML (default: config/staging.yaml)"
    )
    run_parser.add_argument(
        "--env-file",
        help="Optional .env file with DB_* and ESCROW_* overrides"
    )
    run_parser.add_argument(
        "--runner",
        choices=["spark", "local"],
        help="Override the configured job runner"
    )
    run_parser.add_argument(
        "--metrics-port",
        type=int,
        help="Expose Prometheus metrics on this port while the job runs"
    )
    run_parser.add_argument(
        "--wait",
        action="store_true",
        help="Print the launched job's outcomes and exit non-zero if any deposit failed"
    )

    args = parser.parse_args()
    setup_logger()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        if args.command == "run":
            run_command(args)
    except StagingError as e:
        logger.error(f"Staging failed: {e}", exc_info=True)
        print(f"\nError: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
