"""
Pytest configuration and fixtures for escrow staging tests

This module provides shared fixtures for unit, integration, and E2E tests.
"""
from datetime import datetime, timedelta, timezone
from typing import Generator

import pytest
from pyspark.sql import SparkSession
from testcontainers.postgres import PostgresContainer

from escrow_staging.core.config import DatabaseSettings, StagingConfig
from escrow_staging.staging.encryption import generate_key
from escrow_staging.warehouse.connection import DatabaseConnectionPool
from escrow_staging.warehouse.schema_mgmt import SchemaManager

from tests.fakes import FakeClock, InMemoryResourceStore, make_context, populate_registry

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


# =======================
# PYTEST CONFIGURATION
# =======================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "unit: Unit tests that don't require external services"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests that require Docker containers"
    )
    config.addinivalue_line(
        "markers", "e2e: End-to-end tests that test the full pipeline"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take more than 5 seconds to run"
    )


# =======================
# CONFIGURATION FIXTURES
# =======================

@pytest.fixture
def encryption_key() -> str:
    return generate_key()


@pytest.fixture
def staging_config(encryption_key) -> StagingConfig:
    """Two TLDs, daily deposits, one hour cooldown, epoch at 2024-01-01."""
    return StagingConfig(
        tlds=["example", "soy"],
        generation_interval=timedelta(days=1),
        transaction_cooldown=timedelta(hours=1),
        lock_timeout=timedelta(minutes=30),
        cursor_epoch=T0,
        num_shards=4,
        encryption_key=encryption_key,
        runner="local",
        max_workers=2,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(T0 + timedelta(days=1, hours=1))


# =======================
# IN-MEMORY FIXTURES
# =======================

@pytest.fixture
def resource_store() -> InMemoryResourceStore:
    store = InMemoryResourceStore(num_shards=4)
    populate_registry(store)
    return store


@pytest.fixture
def staging_context(staging_config, clock, resource_store):
    return make_context(staging_config, clock, resources=resource_store)


# =======================
# SPARK FIXTURES
# =======================

@pytest.fixture(scope="session")
def spark_session() -> Generator[SparkSession, None, None]:
    """
    Create a Spark session for testing with local mode

    Yields:
        SparkSession configured for local testing
    """
    spark = (
        SparkSession.builder
        .appName("escrow-staging-test")
        .master("local[2]")
        .config("spark.sql.shuffle.partitions", "2")
        .config("spark.driver.memory", "1g")
        .config("spark.ui.enabled", "false")  # Disable UI for tests
        .config("spark.task.maxFailures", "2")
        .getOrCreate()
    )

    # Set log level to WARN to reduce test output noise
    spark.sparkContext.setLogLevel("WARN")

    yield spark

    spark.stop()


# =======================
# DATABASE FIXTURES (Testcontainers)
# =======================

@pytest.fixture(scope="session")
def postgres_container() -> Generator[PostgresContainer, None, None]:
    """
    Start PostgreSQL container for integration tests

    Yields:
        PostgresContainer instance
    """
    with PostgresContainer(
        image="postgres:16.2-alpine",
        username="test_escrow",
        password="test_password",
        dbname="test_registry"
    ) as postgres:
        # Wait for container to be ready
        postgres.get_connection_url()
        yield postgres


@pytest.fixture(scope="session")
def database_settings(postgres_container) -> DatabaseSettings:
    return DatabaseSettings(
        host=postgres_container.get_container_host_ip(),
        port=int(postgres_container.get_exposed_port(5432)),
        name="test_registry",
        user="test_escrow",
        password="test_password",
    )


@pytest.fixture(scope="session")
def db_pool(database_settings) -> Generator[DatabaseConnectionPool, None, None]:
    """
    Open a pool against the container and create the staging tables

    Yields:
        Open DatabaseConnectionPool
    """
    pool = DatabaseConnectionPool(**database_settings.pool_kwargs())
    pool.open()
    SchemaManager(pool).create_tables()

    yield pool

    pool.close()


@pytest.fixture(scope="function")
def clean_db(db_pool) -> DatabaseConnectionPool:
    """
    Provide a clean database by truncating all staging tables before each test
    """
    SchemaManager(db_pool).truncate_tables()
    return db_pool
