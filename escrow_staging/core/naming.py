"""
Deterministic deposit filenames.

A deposit's path depends only on (tld, watermark, mode), so a retried reduce
overwrites the same objects. Watermarks are UTC on every DepositKey, so the
date component never shifts with the caller's time zone.

Operator-generated deposits live under ``manual/`` and take the next free
revision, so they never replace what the pipeline staged.
"""

from .models import DepositKey

SERIES = 1
REVISION = 0
DEPOSIT_SUFFIX = ".xml.enc"
REPORT_SUFFIX = "-report.xml.enc"
MANUAL_PREFIX = "manual/"


def deposit_basename(key: DepositKey, revision: int = REVISION) -> str:
    """
    Build the filename stem for a deposit.

    Examples:
        >>> deposit_basename(DepositKey(tld="soy", mode="FULL",
        ...     watermark="2024-01-01T00:00:00Z"))  # doctest: +SKIP
        'soy_2024-01-01_full_S1_R0'
    """
    date = key.watermark.strftime("%Y-%m-%d")
    return f"{key.tld}_{date}_{key.mode.filename_component}_S{SERIES}_R{revision}"


def deposit_path(key: DepositKey, revision: int = REVISION, prefix: str = "") -> str:
    return prefix + deposit_basename(key, revision) + DEPOSIT_SUFFIX


def report_path(key: DepositKey, revision: int = REVISION, prefix: str = "") -> str:
    return prefix + deposit_basename(key, revision) + REPORT_SUFFIX
