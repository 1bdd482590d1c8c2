from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import tomllib

from taxlot_tool.core.capital_gain import DEFAULT_DATE_FORMAT
from taxlot_tool.core.lots import LotAllocationStrategy

DEFAULT_CONFIG_DIR = Path(os.environ.get("TAXLOT_TOOL_HOME", Path.home() / ".taxlot_tool"))
DEFAULT_CONFIG_PATH = DEFAULT_CONFIG_DIR / "config.toml"
DEFAULT_DB_PATH = DEFAULT_CONFIG_DIR / "ledger.db"


@dataclass
class Config:
    db_path: Path = DEFAULT_DB_PATH
    date_format: str = DEFAULT_DATE_FORMAT
    default_strategy: LotAllocationStrategy = LotAllocationStrategy.FIRST_IN
    interactive: bool = False
    log_level: str = "INFO"

    @property
    def config_dir(self) -> Path:
        return self.db_path.parent


def _load_toml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("rb") as fh:
        return tomllib.load(fh)


def load_config(path: Optional[Path] = None) -> Config:
    cfg_path = path or DEFAULT_CONFIG_PATH
    data = _load_toml(cfg_path)

    cfg = Config()

    if "db_path" in data:
        cfg.db_path = Path(data["db_path"]).expanduser()
    if "date_format" in data:
        cfg.date_format = str(data["date_format"])
    if "default_strategy" in data:
        cfg.default_strategy = LotAllocationStrategy.parse(str(data["default_strategy"]))
    if "interactive" in data:
        cfg.interactive = bool(data["interactive"])
    if "log_level" in data:
        cfg.log_level = str(data["log_level"]).upper()

    return cfg


def ensure_app_dirs(cfg: Config) -> None:
    cfg.db_path.parent.mkdir(parents=True, exist_ok=True)


def get_db_url(cfg: Config) -> str:
    return f"sqlite+pysqlite:///{cfg.db_path}"


__all__ = [
    "Config",
    "load_config",
    "ensure_app_dirs",
    "get_db_url",
    "DEFAULT_DB_PATH",
    "DEFAULT_CONFIG_PATH",
]
