"""
Unit tests for input validation and configuration loading.
"""

import pytest

from sealmarket.core.config import EngineConfig, load_config
from sealmarket.core.state import Side
from sealmarket.utils.validation import (
    parse_side,
    validate_amount,
    validate_binding_secret,
    validate_encryption_key_hex,
    validate_identifier,
    validate_ticket_count,
)


class TestValidators:
    """Tests for (is_valid, error) validators."""

    def test_amount(self):
        assert validate_amount(0)[0]
        assert not validate_amount(-1)[0]
        assert not validate_amount(2**64)[0]
        assert not validate_amount(True)[0]
        assert not validate_amount(1.5)[0]

    def test_ticket_count(self):
        assert validate_ticket_count(1)[0]
        valid, err = validate_ticket_count(0)
        assert not valid
        assert "ticket_count" in err

    def test_identifier(self):
        assert validate_identifier("9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin")[0]
        assert validate_identifier("market-1.a:b_c")[0]
        assert not validate_identifier("")[0]
        assert not validate_identifier("a b")[0]
        assert not validate_identifier("x" * 129)[0]
        assert not validate_identifier(42)[0]

    def test_binding_secret(self):
        assert validate_binding_secret("anything at all, with spaces")[0]
        assert not validate_binding_secret("")[0]
        assert not validate_binding_secret("s" * 257)[0]

    def test_encryption_key_hex(self):
        assert validate_encryption_key_hex("ab" * 32)[0]
        assert validate_encryption_key_hex("0x" + "ab" * 32)[0]
        valid, err = validate_encryption_key_hex("ab" * 16)
        assert not valid
        assert "32 bytes" in err
        assert not validate_encryption_key_hex("g" * 64)[0]


class TestParseSide:
    """Side selections accepted from requests."""

    @pytest.mark.parametrize("raw, expected", [
        ("A", Side.A),
        ("a", Side.A),
        ("B", Side.B),
        ("b", Side.B),
        (1, Side.A),
        (2, Side.B),
    ])
    def test_accepted(self, raw, expected):
        assert parse_side(raw) == expected

    @pytest.mark.parametrize("raw", ["1", "2", "C", "", " A", 0, 3, True, None, 1.0])
    def test_rejected(self, raw):
        assert parse_side(raw) is None


class TestConfig:
    """Tests for EngineConfig and load_config."""

    def test_defaults(self):
        config = EngineConfig()
        assert config.fee_basis_points == 500
        assert config.user_absolute_ticket_cap == 100
        assert config.max_choices_per_account == 32
        assert config.max_page_size == 100

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("SEALMARKET_FEE_BASIS_POINTS", "250")
        monkeypatch.setenv("SEALMARKET_DATA_DIR", "/tmp/sealmarket-test")
        config = load_config()
        assert config.fee_basis_points == 250
        assert str(config.data_dir) == "/tmp/sealmarket-test"

    def test_env_file(self, tmp_path, monkeypatch):
        monkeypatch.delenv("SEALMARKET_MAX_PAGE_SIZE", raising=False)
        env_file = tmp_path / ".env"
        env_file.write_text("SEALMARKET_MAX_PAGE_SIZE=50\nOTHER=1\n")
        assert load_config(str(env_file)).max_page_size == 50

    def test_environment_beats_env_file(self, tmp_path, monkeypatch):
        env_file = tmp_path / ".env"
        env_file.write_text("SEALMARKET_DEFAULT_PAGE_SIZE=10\n")
        monkeypatch.setenv("SEALMARKET_DEFAULT_PAGE_SIZE", "30")
        assert load_config(str(env_file)).default_page_size == 30

    def test_invalid_value_rejected(self, monkeypatch):
        monkeypatch.setenv("SEALMARKET_FEE_BASIS_POINTS", "20000")
        with pytest.raises(ValueError):
            load_config()
