from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import create_engine

from taxlot_tool.config import Config, ensure_app_dirs, get_db_url
from taxlot_tool.data import models


if TYPE_CHECKING:  # pragma: no cover - typing only
    from sqlalchemy.engine import Engine
else:
    Engine = Any


def ensure_db(cfg: Config) -> Engine:
    ensure_app_dirs(cfg)
    engine = create_engine(get_db_url(cfg), connect_args={"check_same_thread": False})
    models.Base.metadata.create_all(engine)
    return engine


__all__ = ["ensure_db"]
