"""Tests for config/settings.py."""

import pytest
from pydantic import ValidationError
from stackdeploy.config.settings import Settings


def test_defaults(monkeypatch):
    monkeypatch.delenv("STACKDEPLOY_AUTO_APPROVE", raising=False)
    settings = Settings(_env_file=None)
    assert settings.terraform_binary == "terraform"
    assert settings.output_dir == "cdktf.out"
    assert settings.auto_approve is False


def test_environment_prefix(monkeypatch):
    monkeypatch.setenv("STACKDEPLOY_AUTO_APPROVE", "true")
    monkeypatch.setenv("STACKDEPLOY_TERRAFORM_BINARY", "/opt/terraform")
    settings = Settings(_env_file=None)
    assert settings.auto_approve is True
    assert settings.terraform_binary == "/opt/terraform"


def test_log_level_is_normalized():
    assert Settings(log_level="debug").log_level == "DEBUG"


def test_negative_poll_interval_rejected():
    with pytest.raises(ValidationError):
        Settings(remote_poll_interval=-1)
