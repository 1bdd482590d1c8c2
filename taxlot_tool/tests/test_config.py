from pathlib import Path

import pytest

from taxlot_tool.config import Config, get_db_url, load_config
from taxlot_tool.core.lots import LotAllocationStrategy


def test_missing_config_uses_defaults(tmp_path: Path) -> None:
    cfg = load_config(tmp_path / "absent.toml")
    assert cfg.date_format == "%m/%d/%y"
    assert cfg.default_strategy is LotAllocationStrategy.FIRST_IN
    assert cfg.interactive is False
    assert cfg.log_level == "INFO"


def test_load_config_reads_toml(tmp_path: Path) -> None:
    path = tmp_path / "config.toml"
    path.write_text(
        "\n".join(
            [
                'db_path = "~/ledgers/taxes.db"',
                'date_format = "%Y-%m-%d"',
                'default_strategy = "highest-price"',
                "interactive = true",
                'log_level = "debug"',
            ]
        ),
        encoding="utf-8",
    )

    cfg = load_config(path)

    assert cfg.db_path == Path("~/ledgers/taxes.db").expanduser()
    assert cfg.config_dir == cfg.db_path.parent
    assert cfg.date_format == "%Y-%m-%d"
    assert cfg.default_strategy is LotAllocationStrategy.HIGHEST_PRICE
    assert cfg.interactive is True
    assert cfg.log_level == "DEBUG"


def test_unknown_strategy_in_config(tmp_path: Path) -> None:
    path = tmp_path / "config.toml"
    path.write_text('default_strategy = "average"\n', encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(path)


def test_db_url_points_at_sqlite_file(tmp_path: Path) -> None:
    cfg = Config(db_path=tmp_path / "ledger.db")
    assert get_db_url(cfg) == f"sqlite+pysqlite:///{tmp_path / 'ledger.db'}"
