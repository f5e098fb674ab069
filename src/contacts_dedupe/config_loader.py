from __future__ import annotations

import argparse
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml  # type: ignore[import-untyped]

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s"


@dataclass
class StoreConfig:
    contacts_csv: Optional[str] = None


@dataclass
class OutputsConfig:
    dir: Path


@dataclass
class DedupeConfig:
    transitive_grouping: bool = False
    name_distance_floor: int = 2
    name_distance_ratio: float = 0.2
    short_name_length: int = 3
    skip_blank_records: bool = True


@dataclass
class BackupConfig:
    auto_backup: bool = False
    dir: Optional[Path] = None


@dataclass
class ConsolidationConfig:
    verify_commit: bool = False


@dataclass
class LoggingConfig:
    level: str = "WARNING"
    format: str = DEFAULT_LOG_FORMAT


@dataclass
class EngineConfig:
    store: StoreConfig
    outputs: OutputsConfig
    dedupe: DedupeConfig
    backup: BackupConfig
    consolidation: ConsolidationConfig
    logging: LoggingConfig


def _load_yaml(path: Optional[str]) -> Dict[str, Any]:
    if not path:
        return {}
    with open(path, "r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


def _flag(args: argparse.Namespace, name: str, section: Dict[str, Any], key: str, default: bool) -> bool:
    value = getattr(args, name, None)
    if value is None:
        return bool(section.get(key, default))
    return bool(value)


def default_config() -> EngineConfig:
    return load_engine_config(argparse.Namespace())


def load_engine_config(args: argparse.Namespace) -> EngineConfig:
    config_data = _load_yaml(getattr(args, "config", None))
    store_cfg = config_data.get("store", {}) or {}
    outputs_cfg = config_data.get("outputs", {}) or {}
    dedupe_cfg = config_data.get("dedupe", {}) or {}
    backup_cfg = config_data.get("backup", {}) or {}
    consolidation_cfg = config_data.get("consolidation", {}) or {}
    logging_cfg = config_data.get("logging", {}) or {}

    store = StoreConfig(
        contacts_csv=getattr(args, "contacts_csv", None) or store_cfg.get("contacts_csv"),
    )

    outputs_dir = Path(getattr(args, "out_dir", None) or outputs_cfg.get("dir") or os.getcwd())
    outputs = OutputsConfig(dir=outputs_dir)

    dedupe = DedupeConfig(
        transitive_grouping=_flag(args, "transitive", dedupe_cfg, "transitive_grouping", False),
        name_distance_floor=int(dedupe_cfg.get("name_distance_floor", 2)),
        name_distance_ratio=float(dedupe_cfg.get("name_distance_ratio", 0.2)),
        short_name_length=int(dedupe_cfg.get("short_name_length", 3)),
        skip_blank_records=bool(dedupe_cfg.get("skip_blank_records", True)),
    )

    backup_dir = getattr(args, "backup_dir", None) or backup_cfg.get("dir")
    backup = BackupConfig(
        auto_backup=_flag(args, "auto_backup", backup_cfg, "auto_backup", False),
        dir=Path(backup_dir) if backup_dir else None,
    )

    consolidation = ConsolidationConfig(
        verify_commit=_flag(args, "verify_commit", consolidation_cfg, "verify_commit", False),
    )

    arg_level = getattr(args, "log_level", None)
    effective_level = (arg_level or logging_cfg.get("level") or "WARNING").upper()
    logging_config = LoggingConfig(
        level=effective_level,
        format=logging_cfg.get("format") or DEFAULT_LOG_FORMAT,
    )

    return EngineConfig(
        store=store,
        outputs=outputs,
        dedupe=dedupe,
        backup=backup,
        consolidation=consolidation,
        logging=logging_config,
    )
