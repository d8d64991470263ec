"""Tests for loading and creating key pairs."""

import os
import stat

import pytest

from certsnek.errors import KeyMaterialError
from certsnek.keys import load_or_create_key_pair, private_key_pem


class TestLoadOrCreateKeyPair:

    def test_creates_and_persists_key(self, tmp_path):
        path = str(tmp_path / "user.key")
        key = load_or_create_key_pair(path)

        assert os.path.exists(path)
        assert key.key_size == 2048
        with open(path, "rb") as f:
            assert f.read() == private_key_pem(key)

    def test_loading_twice_returns_identical_material(self, tmp_path):
        path = str(tmp_path / "domain.key")
        first = load_or_create_key_pair(path)
        second = load_or_create_key_pair(path)
        assert private_key_pem(first) == private_key_pem(second)

    def test_new_material_after_file_is_deleted(self, tmp_path):
        path = str(tmp_path / "domain.key")
        first = private_key_pem(load_or_create_key_pair(path))
        os.remove(path)
        third = private_key_pem(load_or_create_key_pair(path))
        assert first != third

    def test_custom_key_size(self, tmp_path):
        key = load_or_create_key_pair(str(tmp_path / "big.key"), key_size=3072)
        assert key.key_size == 3072

    def test_new_key_file_is_private(self, tmp_path):
        path = tmp_path / "user.key"
        load_or_create_key_pair(str(path))
        assert stat.S_IMODE(path.stat().st_mode) == 0o600

    def test_malformed_key_is_fatal_and_not_overwritten(self, tmp_path):
        path = tmp_path / "domain.key"
        path.write_bytes(b"not a key")

        with pytest.raises(KeyMaterialError) as exc_info:
            load_or_create_key_pair(str(path))

        assert exc_info.value.path == str(path)
        assert path.read_bytes() == b"not a key"

    def test_missing_folder_propagates_os_error(self, tmp_path):
        path = tmp_path / "missing" / "user.key"
        with pytest.raises(OSError) as exc_info:
            load_or_create_key_pair(str(path))
        assert exc_info.value.filename == str(path)
