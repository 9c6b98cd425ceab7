"""Configuration management for chatvault."""

import os
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field

try:
    import tomllib  # Python 3.11+
except ImportError:
    import tomli as tomllib  # Python < 3.11

DEFAULT_DB_PATH = "conversations.db"


def _find_repo_root(start_dir: Path) -> Path:
    """Find repository root by walking upward looking for .git or pyproject.toml."""
    current_dir = start_dir

    while True:
        if (current_dir / ".git").exists() or (current_dir / "pyproject.toml").exists():
            return current_dir

        parent_dir = current_dir.parent
        if parent_dir == current_dir:
            return start_dir

        current_dir = parent_dir


def _load_repo_config_data(repo_root: Path) -> Optional[dict]:
    """Load repo config data from .chatvault/config.toml if it exists."""
    config_file = repo_root / ".chatvault" / "config.toml"

    if not config_file.exists():
        return None

    with open(config_file, "rb") as f:
        return tomllib.load(f)


def _nested_get(data: Optional[dict], path: list[str]) -> Any:
    cur: Any = data or {}
    for key in path:
        if not isinstance(cur, dict) or key not in cur:
            return None
        cur = cur[key]
    return cur


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


class ChatVaultConfig(BaseModel):
    """Settings for an import run."""

    db_path: Path = Field(default=Path(DEFAULT_DB_PATH))
    max_workers: int = Field(default=4, ge=1)
    skip_hidden_messages: bool = Field(default=True)
    ledger_enabled: bool = Field(default=True)
    ledger_path: Optional[Path] = Field(default=None)

    @property
    def resolved_ledger_path(self) -> Optional[Path]:
        """Ledger file; defaults to ``<db>.ledger.jsonl`` next to the database."""
        if not self.ledger_enabled:
            return None
        if self.ledger_path is not None:
            return self.ledger_path
        return self.db_path.with_name(self.db_path.name + ".ledger.jsonl")

    @classmethod
    def from_env(cls, start_dir: Optional[Path] = None) -> "ChatVaultConfig":
        """Load configuration with the following precedence:

        1. CHATVAULT_* environment variables
        2. repo-local .chatvault/config.toml, [import] table (walk upward from CWD)
        3. defaults
        """
        repo_root = _find_repo_root(start_dir or Path.cwd())
        data = _load_repo_config_data(repo_root)
        section = _nested_get(data, ["import"])
        if not isinstance(section, dict):
            section = {}

        db_path = os.environ.get("CHATVAULT_DB_PATH") or section.get("db_path") or DEFAULT_DB_PATH
        ledger_path = os.environ.get("CHATVAULT_LEDGER_PATH") or section.get("ledger_path")

        return cls(
            db_path=Path(db_path).expanduser(),
            max_workers=int(os.environ.get("CHATVAULT_MAX_WORKERS", section.get("max_workers", 4))),
            skip_hidden_messages=_env_bool(
                "CHATVAULT_SKIP_HIDDEN_MESSAGES",
                bool(section.get("skip_hidden_messages", True)),
            ),
            ledger_enabled=_env_bool(
                "CHATVAULT_LEDGER_ENABLED",
                bool(section.get("ledger_enabled", True)),
            ),
            ledger_path=Path(ledger_path).expanduser() if ledger_path else None,
        )
