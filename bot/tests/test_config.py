from __future__ import annotations

from pathlib import Path

import pytest

from core.config import ConfigError, load_config


def _write(tmp_path: Path, body: str) -> Path:
    config_dir = tmp_path / "config"
    config_dir.mkdir(parents=True, exist_ok=True)
    config_path = config_dir / "config.yaml"
    config_path.write_text(body.strip(), encoding="utf-8")
    return config_path


def test_load_config_reads_yaml(tmp_path: Path, monkeypatch) -> None:
    config_path = _write(
        tmp_path,
        """
discord:
  token: test-token
  prefix: "?"
database:
  url: "sqlite:///./data/test.db"
""",
    )

    monkeypatch.delenv("DISCORD_TOKEN", raising=False)
    cfg = load_config(config_path)

    assert cfg.discord.token == "test-token"
    assert cfg.discord.prefix == "?"
    assert cfg.database.url.startswith("sqlite:///")
    assert cfg.tickets.menu_timeout_seconds == 60


def test_env_overrides_token(tmp_path: Path, monkeypatch) -> None:
    config_path = _write(
        tmp_path,
        """
discord:
  token: yaml-token
""",
    )
    monkeypatch.setenv("DISCORD_TOKEN", "env-token")
    cfg = load_config(config_path)
    assert cfg.discord.token == "env-token"


def test_ticket_section(tmp_path: Path, monkeypatch) -> None:
    config_path = _write(
        tmp_path,
        """
discord:
  token: test-token
tickets:
  menu_timeout_seconds: 90
  delete_grace_seconds: 1.5
  staff_role_names: [Helpers, Moderator]
""",
    )
    monkeypatch.delenv("TICKET_CREATION_COOLDOWN_SECONDS", raising=False)
    monkeypatch.delenv("TICKET_DELETE_GRACE_SECONDS", raising=False)
    cfg = load_config(config_path)

    assert cfg.tickets.menu_timeout_seconds == 90
    assert cfg.tickets.confirm_timeout_seconds == 30
    assert cfg.tickets.delete_grace_seconds == 1.5
    assert cfg.tickets.staff_role_names == ["helpers", "moderator"]


def test_rejects_non_positive_timeout(tmp_path: Path, monkeypatch) -> None:
    config_path = _write(
        tmp_path,
        """
discord:
  token: test-token
tickets:
  form_timeout_seconds: 0
""",
    )
    monkeypatch.delenv("DISCORD_TOKEN", raising=False)
    with pytest.raises(ConfigError):
        load_config(config_path)


def test_placeholder_token_is_rejected(tmp_path: Path, monkeypatch) -> None:
    config_path = _write(
        tmp_path,
        """
discord:
  token: "${DISCORD_TOKEN}"
""",
    )
    monkeypatch.delenv("DISCORD_TOKEN", raising=False)
    with pytest.raises(ConfigError):
        load_config(config_path)
