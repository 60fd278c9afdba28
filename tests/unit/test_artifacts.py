"""
Unit tests for artifact naming, local storage and encryption.
"""

import os
from datetime import datetime, timedelta, timezone

import pytest

from escrow_staging.core import naming
from escrow_staging.core.errors import ConfigurationError
from escrow_staging.core.models import DepositKey, DepositMode
from escrow_staging.staging.encryption import FernetEncryptor, InvalidToken, generate_key
from escrow_staging.staging.storage import LocalArtifactStorage

W = datetime(2024, 1, 1, tzinfo=timezone.utc)


class TestNaming:
    """Deterministic deposit filenames"""

    def test_full_deposit_paths(self):
        key = DepositKey(tld="soy", mode=DepositMode.FULL, watermark=W)
        assert naming.deposit_path(key) == "soy_2024-01-01_full_S1_R0.xml.enc"
        assert naming.report_path(key) == "soy_2024-01-01_full_S1_R0-report.xml.enc"

    def test_thin_deposit_paths(self):
        key = DepositKey(tld="example", mode=DepositMode.THIN, watermark=W)
        assert naming.deposit_basename(key) == "example_2024-01-01_thin_S1_R0"

    def test_offset_watermark_keeps_utc_date(self):
        est = timezone(timedelta(hours=-5))
        key = DepositKey(tld="example", mode=DepositMode.FULL, watermark=W.astimezone(est))
        assert naming.deposit_path(key) == "example_2024-01-01_full_S1_R0.xml.enc"

    def test_manual_paths(self):
        key = DepositKey(tld="soy", mode=DepositMode.FULL, watermark=W)
        assert naming.deposit_path(key, 2, naming.MANUAL_PREFIX) == "manual/soy_2024-01-01_full_S1_R2.xml.enc"
        assert naming.report_path(key, 2, naming.MANUAL_PREFIX) == "manual/soy_2024-01-01_full_S1_R2-report.xml.enc"

    def test_paths_differ_per_mode(self):
        full = DepositKey(tld="soy", mode=DepositMode.FULL, watermark=W)
        thin = DepositKey(tld="soy", mode=DepositMode.THIN, watermark=W)
        assert naming.deposit_path(full) != naming.deposit_path(thin)


class TestLocalArtifactStorage:
    """Tests for LocalArtifactStorage"""

    def test_write_then_read(self, tmp_path):
        storage = LocalArtifactStorage(tmp_path)
        storage.write("soy_2024-01-01_full_S1_R0.xml.enc", b"payload")

        assert storage.exists("soy_2024-01-01_full_S1_R0.xml.enc")
        assert storage.read("soy_2024-01-01_full_S1_R0.xml.enc") == b"payload"

    def test_overwrite_leaves_no_temporary_files(self, tmp_path):
        storage = LocalArtifactStorage(tmp_path)
        storage.write("a.xml.enc", b"one")
        storage.write("a.xml.enc", b"two")

        assert storage.read("a.xml.enc") == b"two"
        assert os.listdir(tmp_path) == ["a.xml.enc"]

    def test_creates_subdirectories(self, tmp_path):
        storage = LocalArtifactStorage(tmp_path / "staging")
        storage.write("2024/a.xml.enc", b"x")
        assert (tmp_path / "staging" / "2024" / "a.xml.enc").read_bytes() == b"x"

    def test_rejects_paths_outside_root(self, tmp_path):
        storage = LocalArtifactStorage(tmp_path / "staging")
        with pytest.raises(ValueError, match="escapes"):
            storage.write("../outside.xml.enc", b"x")

    def test_missing_artifact(self, tmp_path):
        storage = LocalArtifactStorage(tmp_path)
        assert not storage.exists("missing.xml.enc")
        with pytest.raises(FileNotFoundError):
            storage.read("missing.xml.enc")


class TestFernetEncryptor:
    """Tests for FernetEncryptor"""

    def test_round_trip(self):
        encryptor = FernetEncryptor(generate_key())
        ciphertext = encryptor.encrypt(b"<deposit/>")

        assert ciphertext != b"<deposit/>"
        assert encryptor.decrypt(ciphertext) == b"<deposit/>"

    def test_wrong_key_is_rejected(self):
        ciphertext = FernetEncryptor(generate_key()).encrypt(b"<deposit/>")
        with pytest.raises(InvalidToken):
            FernetEncryptor(generate_key()).decrypt(ciphertext)

    @pytest.mark.parametrize("key", [None, "", "not-a-fernet-key"])
    def test_invalid_keys(self, key):
        with pytest.raises(ConfigurationError):
            FernetEncryptor(key)
