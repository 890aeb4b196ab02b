from __future__ import annotations

import configparser
import json
import os
from pathlib import Path
from typing import Dict, Optional, Tuple

from typing_extensions import Literal

from pydantic import BaseModel, Field


class DatabaseConfig(BaseModel):
    url: str = "sqlite+pysqlite:///./costing.db"
    echo: bool = False


class TransactionConfig(BaseModel):
    # Recalculation can replay a long history, so mutations get a generous budget.
    timeout_seconds: int = 30
    lock_rows: bool = True


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: Literal["json", "text"] = "json"


class CostingPolicyConfig(BaseModel):
    currency_symbol: str = "$"
    use_fallback_cost: bool = True


class CostingConfig(BaseModel):
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    transactions: TransactionConfig = Field(default_factory=TransactionConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    policy: CostingPolicyConfig = Field(default_factory=CostingPolicyConfig)


_cached_configs: Dict[str, Tuple[CostingConfig, float]] = {}


def _apply_env_overrides(cfg: CostingConfig) -> CostingConfig:
    database_url = (os.getenv("DATABASE_URL") or "").strip()
    if database_url:
        cfg.database.url = database_url

    timeout = (os.getenv("TRANSACTION_TIMEOUT_SECONDS") or "").strip()
    if timeout:
        try:
            cfg.transactions.timeout_seconds = max(int(timeout), 1)
        except ValueError:
            pass

    level = (os.getenv("LOG_LEVEL") or "").strip()
    if level:
        cfg.logging.level = level.upper()
    return cfg


def _parse_bool(raw: str, default: bool) -> bool:
    value = (raw or "").strip().lower()
    if not value:
        return default
    return value in ("1", "true", "yes", "on")


def _load_conf(path: Path) -> CostingConfig:
    parser = configparser.ConfigParser()
    parser.read(path, encoding="utf-8")

    def get(section: str, key: str, default: str = "") -> str:
        return (parser.get(section, key, fallback=default) or "").strip()

    timeout_raw = get("transactions", "timeout_seconds", "30")
    try:
        timeout = max(int(timeout_raw), 1)
    except ValueError:
        timeout = 30

    log_format = get("logging", "format", "json").lower()
    if log_format not in ("json", "text"):
        log_format = "json"

    return CostingConfig(
        database=DatabaseConfig(
            url=get("database", "url", DatabaseConfig().url),
            echo=_parse_bool(get("database", "echo"), False),
        ),
        transactions=TransactionConfig(
            timeout_seconds=timeout,
            lock_rows=_parse_bool(get("transactions", "lock_rows"), True),
        ),
        logging=LoggingConfig(
            level=(get("logging", "level", "INFO") or "INFO").upper(),
            format=log_format,
        ),
        policy=CostingPolicyConfig(
            currency_symbol=get("policy", "currency_symbol", "$") or "$",
            use_fallback_cost=_parse_bool(get("policy", "use_fallback_cost"), True),
        ),
    )


def load_costing_config(path: Optional[str] = None) -> CostingConfig:
    """Load settings from a .conf or .json file, then apply environment overrides.

    The parsed file is cached per path and invalidated when its mtime changes.
    """
    config_path = Path(path or os.getenv("COSTING_CONFIG_PATH", "costing.conf"))
    key = str(config_path)

    try:
        mtime = float(config_path.stat().st_mtime)
    except OSError:
        mtime = 0.0

    cached = _cached_configs.get(key)
    if cached is not None and cached[1] == mtime:
        return _apply_env_overrides(cached[0].model_copy(deep=True))

    if not config_path.exists():
        cfg = CostingConfig()
    elif config_path.suffix.lower() == ".json":
        data = json.loads(config_path.read_text(encoding="utf-8"))
        cfg = CostingConfig.model_validate(data)
    else:
        cfg = _load_conf(config_path)

    _cached_configs[key] = (cfg, mtime)
    return _apply_env_overrides(cfg.model_copy(deep=True))


def clear_config_cache() -> None:
    _cached_configs.clear()
