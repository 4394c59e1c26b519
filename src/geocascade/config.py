"""Configuration loading and directory resolution for geocascade."""

from __future__ import annotations

import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

try:  # pragma: no cover - exercised on Python 3.11+
    import tomllib
except ModuleNotFoundError:  # pragma: no cover - fallback for Python 3.9/3.10
    import tomli as tomllib  # type: ignore[no-redef]

CONFIG_DIR_NAME = ".geocascade_config"
CONFIG_FILE_NAME = "config.toml"
SELECTION_FILE_NAME = "selection.json"

DEFAULT_CONTEXT_ID = "default"
DEFAULT_REMOTE_BASE_URL = "http://127.0.0.1:8080/api"
DEFAULT_COUNTRIES_PATH = "/countries"
DEFAULT_STATES_PATH = "/countries/{id}/states"
DEFAULT_CITIES_PATH = "/states/{id}/cities"
DEFAULT_ID_TYPE = "int"
ALLOWED_ID_TYPES = ("int", "str")
DEFAULT_CONNECT_TIMEOUT_SEC = 10
DEFAULT_READ_TIMEOUT_SEC = 30
DEFAULT_MAX_RETRIES = 2
DEFAULT_CACHE_DB_FILE = "places.db"
DEFAULT_MAX_WORKERS = 3
DEFAULT_LOAD_TIMEOUT_SEC = 60
DEFAULT_LOGS_ENABLED = True
DEFAULT_LOGS_FORMAT = "jsonl"
DEFAULT_LOGS_MAX_FILE_BYTES = 10 * 1024 * 1024
DEFAULT_LOGS_MAX_FILES = 5
DEFAULT_LOGS_REDACTION = "default"
ALLOWED_LOG_FORMATS = ("jsonl",)
ALLOWED_LOG_REDACTION = ("default", "none", "strict")


class ProjectConfigError(RuntimeError):
    """Raised when project configuration is missing or invalid."""


@dataclass
class ProjectConfig:
    remote_base_url: str = DEFAULT_REMOTE_BASE_URL
    remote_countries_path: str = DEFAULT_COUNTRIES_PATH
    remote_states_path: str = DEFAULT_STATES_PATH
    remote_cities_path: str = DEFAULT_CITIES_PATH
    remote_id_type: str = DEFAULT_ID_TYPE
    remote_connect_timeout: int = DEFAULT_CONNECT_TIMEOUT_SEC
    remote_read_timeout: int = DEFAULT_READ_TIMEOUT_SEC
    remote_max_retries: int = DEFAULT_MAX_RETRIES
    remote_api_token: str = ""
    cache_db_file: str = DEFAULT_CACHE_DB_FILE
    max_workers: int = DEFAULT_MAX_WORKERS
    load_timeout: int = DEFAULT_LOAD_TIMEOUT_SEC
    logs_enabled: bool = DEFAULT_LOGS_ENABLED
    logs_format: str = DEFAULT_LOGS_FORMAT
    logs_max_file_bytes: int = DEFAULT_LOGS_MAX_FILE_BYTES
    logs_max_files: int = DEFAULT_LOGS_MAX_FILES
    logs_redaction: str = DEFAULT_LOGS_REDACTION
    default_context_id: str = DEFAULT_CONTEXT_ID


@dataclass
class Settings:
    """Resolved runtime settings for one CLI invocation."""

    project_root: Path
    config_root: Path
    context_id: str = DEFAULT_CONTEXT_ID
    remote_base_url: str = DEFAULT_REMOTE_BASE_URL
    remote_countries_path: str = DEFAULT_COUNTRIES_PATH
    remote_states_path: str = DEFAULT_STATES_PATH
    remote_cities_path: str = DEFAULT_CITIES_PATH
    remote_id_type: str = DEFAULT_ID_TYPE
    remote_connect_timeout: int = DEFAULT_CONNECT_TIMEOUT_SEC
    remote_read_timeout: int = DEFAULT_READ_TIMEOUT_SEC
    remote_max_retries: int = DEFAULT_MAX_RETRIES
    remote_api_token: str = ""
    cache_db_file: str = DEFAULT_CACHE_DB_FILE
    max_workers: int = DEFAULT_MAX_WORKERS
    load_timeout: int = DEFAULT_LOAD_TIMEOUT_SEC
    logs_enabled: bool = DEFAULT_LOGS_ENABLED
    logs_format: str = DEFAULT_LOGS_FORMAT
    logs_max_file_bytes: int = DEFAULT_LOGS_MAX_FILE_BYTES
    logs_max_files: int = DEFAULT_LOGS_MAX_FILES
    logs_redaction: str = DEFAULT_LOGS_REDACTION

    @property
    def contexts_root(self) -> Path:
        return self.config_root / "contexts"

    @property
    def context_dir(self) -> Path:
        return self.contexts_root / self.context_id

    @property
    def logs_dir(self) -> Path:
        return self.context_dir / "logs"

    @property
    def cache_db_path(self) -> Path:
        return self.context_dir / self.cache_db_file

    @property
    def selection_file(self) -> Path:
        return self.context_dir / SELECTION_FILE_NAME


def resolve_project_root(workspace_dir: Optional[Path] = None) -> Path:
    return (workspace_dir or Path.cwd()).resolve()


def resolve_project_config_root(workspace_dir: Optional[Path] = None) -> Path:
    return resolve_project_root(workspace_dir) / CONFIG_DIR_NAME


def project_config_exists(workspace_dir: Optional[Path] = None) -> bool:
    config_root = resolve_project_config_root(workspace_dir)
    return config_root.is_dir() and (config_root / CONFIG_FILE_NAME).is_file()


def _safe_positive_int(value: object, default: int) -> int:
    if isinstance(value, bool):
        return default
    try:
        converted = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
    if converted <= 0:
        return default
    return converted


def _safe_non_negative_int(value: object, default: int) -> int:
    if isinstance(value, bool):
        return default
    try:
        converted = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
    if converted < 0:
        return default
    return converted


def _safe_bool(value: object, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"1", "true", "yes", "on"}:
            return True
        if normalized in {"0", "false", "no", "off"}:
            return False
    return default


def _safe_choice(value: object, allowed: tuple, default: str) -> str:
    normalized = str(value or default).strip().lower()
    if normalized not in allowed:
        return default
    return normalized


def _safe_text(value: object, default: str) -> str:
    text = str(value or "").strip()
    return text or default


def _safe_path_template(value: object, default: str, needs_id: bool) -> str:
    text = _safe_text(value, default)
    if not text.startswith("/"):
        text = "/" + text
    if needs_id and "{id}" not in text:
        return default
    return text


def _safe_file_name(value: object, default: str) -> str:
    text = _safe_text(value, default)
    if "/" in text or "\\" in text or text in {".", ".."}:
        return default
    return text


def _section(data: Dict[str, object], key: str) -> Dict[str, object]:
    value = data.get(key)
    return value if isinstance(value, dict) else {}


def _parse_project_config_data(data: Dict[str, object]) -> ProjectConfig:
    remote = _section(data, "remote")
    cache = _section(data, "cache")
    runtime = _section(data, "runtime")
    logs = _section(runtime, "logs")
    context = _section(data, "context")

    return ProjectConfig(
        remote_base_url=_safe_text(remote.get("base_url"), DEFAULT_REMOTE_BASE_URL).rstrip("/"),
        remote_countries_path=_safe_path_template(
            remote.get("countries_path"), DEFAULT_COUNTRIES_PATH, needs_id=False
        ),
        remote_states_path=_safe_path_template(
            remote.get("states_path"), DEFAULT_STATES_PATH, needs_id=True
        ),
        remote_cities_path=_safe_path_template(
            remote.get("cities_path"), DEFAULT_CITIES_PATH, needs_id=True
        ),
        remote_id_type=_safe_choice(remote.get("id_type"), ALLOWED_ID_TYPES, DEFAULT_ID_TYPE),
        remote_connect_timeout=_safe_positive_int(
            remote.get("connect_timeout"), DEFAULT_CONNECT_TIMEOUT_SEC
        ),
        remote_read_timeout=_safe_positive_int(remote.get("read_timeout"), DEFAULT_READ_TIMEOUT_SEC),
        remote_max_retries=_safe_non_negative_int(remote.get("max_retries"), DEFAULT_MAX_RETRIES),
        remote_api_token=str(remote.get("api_token") or "").strip(),
        cache_db_file=_safe_file_name(cache.get("db_file"), DEFAULT_CACHE_DB_FILE),
        max_workers=_safe_positive_int(runtime.get("max_workers"), DEFAULT_MAX_WORKERS),
        load_timeout=_safe_positive_int(runtime.get("load_timeout"), DEFAULT_LOAD_TIMEOUT_SEC),
        logs_enabled=_safe_bool(logs.get("enabled"), DEFAULT_LOGS_ENABLED),
        logs_format=_safe_choice(logs.get("format"), ALLOWED_LOG_FORMATS, DEFAULT_LOGS_FORMAT),
        logs_max_file_bytes=_safe_positive_int(logs.get("max_file_bytes"), DEFAULT_LOGS_MAX_FILE_BYTES),
        logs_max_files=_safe_positive_int(logs.get("max_files"), DEFAULT_LOGS_MAX_FILES),
        logs_redaction=_safe_choice(logs.get("redaction"), ALLOWED_LOG_REDACTION, DEFAULT_LOGS_REDACTION),
        default_context_id=_safe_file_name(context.get("default_id"), DEFAULT_CONTEXT_ID),
    )


def _toml_string(value: str) -> str:
    return '"{0}"'.format(str(value).replace("\\", "\\\\").replace('"', '\\"'))


def _render_project_config(config: ProjectConfig) -> str:
    lines: List[str] = [
        "[remote]",
        "base_url = {0}".format(_toml_string(config.remote_base_url)),
        "countries_path = {0}".format(_toml_string(config.remote_countries_path)),
        "states_path = {0}".format(_toml_string(config.remote_states_path)),
        "cities_path = {0}".format(_toml_string(config.remote_cities_path)),
        "id_type = {0}".format(_toml_string(config.remote_id_type)),
        "connect_timeout = {0}".format(config.remote_connect_timeout),
        "read_timeout = {0}".format(config.remote_read_timeout),
        "max_retries = {0}".format(config.remote_max_retries),
        "api_token = {0}".format(_toml_string(config.remote_api_token)),
        "",
        "[cache]",
        "db_file = {0}".format(_toml_string(config.cache_db_file)),
        "",
        "[runtime]",
        "max_workers = {0}".format(config.max_workers),
        "load_timeout = {0}".format(config.load_timeout),
        "",
        "[runtime.logs]",
        "enabled = {0}".format(str(bool(config.logs_enabled)).lower()),
        "format = {0}".format(_toml_string(config.logs_format)),
        "max_file_bytes = {0}".format(config.logs_max_file_bytes),
        "max_files = {0}".format(config.logs_max_files),
        "redaction = {0}".format(_toml_string(config.logs_redaction)),
        "",
        "[context]",
        "default_id = {0}".format(_toml_string(config.default_context_id)),
        "",
    ]
    return "\n".join(lines)


def _ensure_context_dirs(config_root: Path, context_id: str) -> None:
    (config_root / "contexts" / context_id / "logs").mkdir(parents=True, exist_ok=True)


def initialize_project_config(
    workspace_dir: Optional[Path] = None,
    force: bool = False,
    base_url: Optional[str] = None,
) -> Path:
    project_root = resolve_project_root(workspace_dir)
    config_root = resolve_project_config_root(project_root)

    if config_root.exists():
        if not force:
            raise ProjectConfigError(
                "配置目录已存在：{0} (configuration directory already exists)".format(config_root)
            )
        shutil.rmtree(config_root)

    config_root.mkdir(parents=True, exist_ok=True)
    default_config = ProjectConfig()
    if base_url:
        default_config.remote_base_url = str(base_url).strip().rstrip("/")
    _ensure_context_dirs(config_root, default_config.default_context_id)
    (config_root / CONFIG_FILE_NAME).write_text(_render_project_config(default_config), encoding="utf-8")
    return config_root


def load_project_config(
    config_root: Optional[Path] = None,
    workspace_dir: Optional[Path] = None,
) -> ProjectConfig:
    resolved_root = (config_root or resolve_project_config_root(workspace_dir)).resolve()
    config_file = resolved_root / CONFIG_FILE_NAME
    if not resolved_root.is_dir() or not config_file.is_file():
        raise ProjectConfigError(
            "缺少项目配置目录：{0}，请先执行 `geocascade init` (missing project config directory)".format(
                resolved_root
            )
        )

    try:
        parsed = tomllib.loads(config_file.read_text(encoding="utf-8"))
    except Exception as exc:
        raise ProjectConfigError("配置文件无效：{0} (invalid config file)".format(config_file)) from exc

    if not isinstance(parsed, dict):
        raise ProjectConfigError("配置文件无效：{0} (invalid config file)".format(config_file))

    return _parse_project_config_data(parsed)


def load_settings(
    context_id: Optional[str] = None,
    workspace_dir: Optional[Path] = None,
) -> Settings:
    """Resolve settings from project config + explicit overrides."""

    project_root = resolve_project_root(workspace_dir)
    config_root = resolve_project_config_root(project_root)
    project_config = load_project_config(config_root=config_root)

    resolved_context = _safe_file_name(context_id, project_config.default_context_id)

    settings = Settings(
        project_root=project_root,
        config_root=config_root,
        context_id=resolved_context,
        remote_base_url=project_config.remote_base_url,
        remote_countries_path=project_config.remote_countries_path,
        remote_states_path=project_config.remote_states_path,
        remote_cities_path=project_config.remote_cities_path,
        remote_id_type=project_config.remote_id_type,
        remote_connect_timeout=project_config.remote_connect_timeout,
        remote_read_timeout=project_config.remote_read_timeout,
        remote_max_retries=project_config.remote_max_retries,
        remote_api_token=project_config.remote_api_token,
        cache_db_file=project_config.cache_db_file,
        max_workers=project_config.max_workers,
        load_timeout=project_config.load_timeout,
        logs_enabled=project_config.logs_enabled,
        logs_format=project_config.logs_format,
        logs_max_file_bytes=project_config.logs_max_file_bytes,
        logs_max_files=project_config.logs_max_files,
        logs_redaction=project_config.logs_redaction,
    )

    # Context-level storage is lazily created when a context is first used.
    _ensure_context_dirs(settings.config_root, settings.context_id)
    return settings
