"""
tests/test_config.py — YAML Config Loader & Error Taxonomy
===========================================================
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from tabcoins.config import DEFAULT_CONFIG, TabcoinsConfig, load_config
from tabcoins.database.engine import create_db_engine
from tabcoins.errors import (
    AlreadyRewardedError,
    ForbiddenError,
    NotFoundError,
    TabcoinsError,
    UnprocessableEntityError,
    ValidationError,
    is_serialization_failure,
)


class TestLoadConfig:
    def test_defaults(self):
        assert DEFAULT_CONFIG.tabcoins_base == 20
        assert DEFAULT_CONFIG.content_age_base == timedelta(days=7)
        assert DEFAULT_CONFIG.prestige_time_offset == timedelta(days=2)
        assert DEFAULT_CONFIG.rating_cooldown == timedelta(hours=72)
        assert DEFAULT_CONFIG.reward_isolation_level == "REPEATABLE READ"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="config.yaml.example"):
            load_config(tmp_path / "config.yaml")

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert load_config(path) == TabcoinsConfig()

    def test_overrides(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "tabcoins_base: 10\n"
            "prestige_limit: '5'\n"
            "reward_isolation_level: SERIALIZABLE\n"
        )
        config = load_config(path)
        assert config.tabcoins_base == 10
        assert config.prestige_limit == 5
        assert config.reward_isolation_level == "SERIALIZABLE"
        assert config.rating_cost == 2

    def test_isolation_level_can_be_disabled(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("reward_isolation_level: null\n")
        assert load_config(path).reward_isolation_level is None

    def test_unknown_key(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("tabcoin_base: 10\n")
        with pytest.raises(KeyError, match="tabcoin_base"):
            load_config(path)

    def test_frozen(self):
        with pytest.raises(AttributeError):
            DEFAULT_CONFIG.tabcoins_base = 1


class TestCreateEngine:
    def test_missing_url(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        monkeypatch.setattr("tabcoins.database.engine.load_dotenv", lambda: None)
        with pytest.raises(RuntimeError, match="DATABASE_URL"):
            create_db_engine()


class TestErrors:
    @pytest.mark.parametrize(
        "error_class,status_code",
        [
            (TabcoinsError, 500),
            (ValidationError, 400),
            (ForbiddenError, 403),
            (NotFoundError, 404),
            (AlreadyRewardedError, 409),
            (UnprocessableEntityError, 422),
        ],
    )
    def test_status_codes(self, error_class, status_code):
        assert error_class().status_code == status_code

    def test_to_dict(self):
        error = ValidationError("Bad amount.", error_location_code="SERVICE:TEST")
        assert error.to_dict() == {
            "name": "ValidationError",
            "message": "Bad amount.",
            "action": ValidationError.default_action,
            "status_code": 400,
            "error_location_code": "SERVICE:TEST",
        }
        assert str(error) == "Bad amount."

    def test_serialization_failure_by_pgcode(self):
        orig = Exception("conflict")
        orig.pgcode = "40001"
        assert is_serialization_failure(OperationalError("UPDATE", {}, orig))

    def test_serialization_failure_by_message(self):
        orig = Exception("could not serialize access due to concurrent update")
        assert is_serialization_failure(OperationalError("UPDATE", {}, orig))

    def test_other_errors(self):
        assert not is_serialization_failure(IntegrityError("INSERT", {}, Exception("dup")))
        assert not is_serialization_failure(RuntimeError("could not serialize access"))
