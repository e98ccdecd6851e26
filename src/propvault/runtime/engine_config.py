# src/propvault/runtime/engine_config.py
from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from propvault.env import load_dotenv_if_present
from propvault.ledger.constants import DEFAULT_PROGRAM_ID, DEFAULT_RENT_FLOOR, KEY_LEN, MAX_U64
from propvault.ledger.types import as_identity
from propvault.runtime.errors import InvalidIdentity

Json = Dict[str, Any]


def _as_int(v: Any, default: int) -> int:
    if v is None or (isinstance(v, str) and not v.strip()):
        return int(default)
    try:
        return int(v)
    except (TypeError, ValueError) as e:
        raise ValueError(f"expected an integer, got {v!r}") from e


def _as_str(v: Any, default: str) -> str:
    if v is None:
        return str(default)
    s = str(v)
    return s if s.strip() else str(default)


def _as_bool(v: Any, default: bool) -> bool:
    if v is None:
        return bool(default)
    if isinstance(v, bool):
        return v
    s = str(v).strip().lower()
    if s in {"1", "true", "yes", "y", "on"}:
        return True
    if s in {"0", "false", "no", "n", "off"}:
        return False
    return bool(default)


def _as_key(v: Any, default: bytes, *, field: str) -> bytes:
    if v is None or (isinstance(v, str) and not v.strip()):
        return bytes(default)
    try:
        return as_identity(v, field=field)
    except InvalidIdentity as e:
        raise ValueError(f"{field} must be a 32-byte key (hex or base64): {e.reason}") from e


@dataclass(frozen=True)
class EngineConfig:
    # Namespace every address is derived under.
    program_id: bytes
    # The single identity allowed to sweep a vault.
    master_authority: bytes

    rent_floor: int = DEFAULT_RENT_FLOOR
    # Whether funding a fully-drained record reopens it.
    reopen_after_withdrawal: bool = True

    db_path: str = "./data/propvault.db"
    mode: str = "prod"  # "dev" | "test" | "prod"
    log_level: str = "INFO"

    def to_json(self) -> Json:
        return {
            "program_id": self.program_id.hex(),
            "master_authority": self.master_authority.hex(),
            "rent_floor": self.rent_floor,
            "reopen_after_withdrawal": self.reopen_after_withdrawal,
            "db_path": self.db_path,
            "mode": self.mode,
            "log_level": self.log_level,
        }


_ALLOWED_MODES = {"dev", "test", "prod"}


def validate_engine_config(cfg: EngineConfig) -> None:
    """Fail-fast validation for operator config."""

    for name, key in (("program_id", cfg.program_id), ("master_authority", cfg.master_authority)):
        if not isinstance(key, bytes) or len(key) != KEY_LEN:
            raise ValueError(f"{name} must be {KEY_LEN} bytes")

    if cfg.master_authority == bytes(KEY_LEN):
        raise ValueError("master_authority must be set (all-zero key is the unset marker)")

    if cfg.master_authority == cfg.program_id:
        raise ValueError("master_authority must differ from program_id")

    if isinstance(cfg.rent_floor, bool) or not isinstance(cfg.rent_floor, int):
        raise ValueError(f"rent_floor must be an int; got: {cfg.rent_floor!r}")
    if cfg.rent_floor < 0 or cfg.rent_floor > MAX_U64:
        raise ValueError(f"rent_floor must be within u64; got: {cfg.rent_floor}")

    mode = str(cfg.mode or "").strip().lower()
    if mode not in _ALLOWED_MODES:
        raise ValueError(f"mode must be one of {sorted(_ALLOWED_MODES)}; got: {cfg.mode!r}")

    if not isinstance(cfg.db_path, str) or not cfg.db_path.strip():
        raise ValueError("db_path must be a non-empty string")


def default_engine_config() -> EngineConfig:
    # The master authority has no safe default; it stays unset until the
    # operator provides one, and validation refuses to run without it.
    return EngineConfig(program_id=DEFAULT_PROGRAM_ID, master_authority=bytes(KEY_LEN))


def engine_config_from_mapping(raw: Json, *, base: Optional[EngineConfig] = None) -> EngineConfig:
    d = base or default_engine_config()
    return EngineConfig(
        program_id=_as_key(raw.get("program_id"), d.program_id, field="program_id"),
        master_authority=_as_key(raw.get("master_authority"), d.master_authority, field="master_authority"),
        rent_floor=_as_int(raw.get("rent_floor"), d.rent_floor),
        reopen_after_withdrawal=_as_bool(raw.get("reopen_after_withdrawal"), d.reopen_after_withdrawal),
        db_path=_as_str(raw.get("db_path"), d.db_path),
        mode=_as_str(raw.get("mode"), d.mode).strip().lower(),
        log_level=_as_str(raw.get("log_level"), d.log_level).strip().upper(),
    )


def read_engine_config_file(path: str) -> EngineConfig:
    """Read a JSON or YAML config file (chosen by extension)."""
    p = Path(path)
    text = p.read_text(encoding="utf-8")
    if p.suffix.lower() in {".yaml", ".yml"}:
        raw = yaml.safe_load(text)
    else:
        raw = json.loads(text)
    if not isinstance(raw, dict):
        raise ValueError("engine config must be a mapping")

    cfg = engine_config_from_mapping(raw)
    validate_engine_config(cfg)
    return cfg


_ENV_KEYS = {
    "program_id": "PROPVAULT_PROGRAM_ID",
    "master_authority": "PROPVAULT_MASTER_AUTHORITY",
    "rent_floor": "PROPVAULT_RENT_FLOOR",
    "reopen_after_withdrawal": "PROPVAULT_REOPEN_AFTER_WITHDRAWAL",
    "db_path": "PROPVAULT_DB_PATH",
    "mode": "PROPVAULT_MODE",
    "log_level": "PROPVAULT_LOG_LEVEL",
}


def load_engine_config(*, config_path: Optional[str] = None) -> EngineConfig:
    load_dotenv_if_present()

    p = config_path or os.environ.get("PROPVAULT_CONFIG_PATH")
    if p:
        return read_engine_config_file(p)

    raw = {field: os.environ.get(env) for field, env in _ENV_KEYS.items()}
    cfg = engine_config_from_mapping(raw)
    validate_engine_config(cfg)
    return cfg


__all__ = [
    "EngineConfig",
    "default_engine_config",
    "engine_config_from_mapping",
    "load_engine_config",
    "read_engine_config_file",
    "validate_engine_config",
]
