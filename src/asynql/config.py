"""
Database config loading.

Loads YAML/JSON config files and returns typed config objects. The expected
shape, either at top level or under a `database` key:

    type: sqlite            # or mysql
    sqlite:
      file: data.sqlite
    mysql:
      host: 127.0.0.1
      port: 3306
      username: root
      password: ""
      schema: app
    worker-limit: 1
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .errors import ConfigError
from .log import get_logger
from .types import Dialect

log = get_logger("config")


@dataclass(frozen=True)
class SqliteSettings:
    file: str = "data.sqlite"


@dataclass(frozen=True)
class MysqlSettings:
    host: str = "127.0.0.1"
    port: int = 3306
    username: str = "root"
    password: str = ""
    schema: str = ""
    socket: Optional[str] = None


@dataclass(frozen=True)
class DatabaseConfig:
    """Loaded database configuration."""

    type: Dialect
    worker_limit: int = 1
    sqlite: SqliteSettings = field(default_factory=SqliteSettings)
    mysql: MysqlSettings = field(default_factory=MysqlSettings)
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, d: Dict[str, Any], *, base_dir: Optional[Path] = None) -> DatabaseConfig:
        if isinstance(d.get("database"), dict):
            d = d["database"]

        type_name = str(d.get("type", "")).strip().lower()
        try:
            dialect = Dialect(type_name)
        except ValueError:
            raise ConfigError(
                f"Unsupported database type: {d.get('type')!r}",
                details={"type": d.get("type")},
                remediation="Set `type` to sqlite or mysql.",
            ) from None

        limit = d.get("worker-limit", d.get("worker_limit", 1))
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise ConfigError(
                f"worker-limit must be a positive integer, got {limit!r}",
                details={"worker-limit": limit},
            )
        if dialect is Dialect.SQLITE and limit > 1:
            log.warning("worker-limit %d ignored for sqlite; using a single worker", limit)
            limit = 1

        sq = d.get("sqlite") or {}
        my = d.get("mysql") or {}
        if not isinstance(sq, dict) or not isinstance(my, dict):
            raise ConfigError("`sqlite` and `mysql` sections must be mappings")

        sqlite_file = str(sq.get("file", SqliteSettings.file))
        if sqlite_file != ":memory:" and base_dir is not None and not Path(sqlite_file).is_absolute():
            sqlite_file = str(base_dir / sqlite_file)

        try:
            mysql = MysqlSettings(
                host=str(my.get("host", MysqlSettings.host)),
                port=int(my.get("port", MysqlSettings.port)),
                username=str(my.get("username", MysqlSettings.username)),
                password=str(my.get("password", MysqlSettings.password) or ""),
                schema=str(my.get("schema", MysqlSettings.schema)),
                socket=my.get("socket") or None,
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid mysql settings: {e}", details={"mysql": my}) from e

        return cls(
            type=dialect,
            worker_limit=limit,
            sqlite=SqliteSettings(file=sqlite_file),
            mysql=mysql,
            raw=dict(d),
        )


def load_database_config(path: Union[str, Path], *, base_dir: Optional[Path] = None) -> DatabaseConfig:
    """
    Load a database configuration from a YAML or JSON file.

    Relative sqlite paths resolve against `base_dir`, defaulting to the
    directory holding the config file.
    """
    p = Path(path)
    if not p.exists():
        raise ConfigError(
            f"Config not found: {path}",
            details={"path": str(path)},
            remediation="Verify the path is correct and the file exists.",
        )
    try:
        obj = yaml.safe_load(p.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Failed to parse config: {path}",
            details={"path": str(path), "error": str(e)},
            remediation="Ensure the file is valid YAML or JSON encoded in UTF-8.",
        ) from e
    if not isinstance(obj, dict):
        raise ConfigError(
            f"Config file must be a YAML/JSON object, got {type(obj).__name__}",
            details={"path": str(path)},
        )
    return DatabaseConfig.from_dict(obj, base_dir=base_dir if base_dir is not None else p.parent)
