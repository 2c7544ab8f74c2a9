import os
import sys
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional

from gembridge.execution.process_runner import DEFAULT_DRAIN_TIMEOUT_SEC, MAX_DRAIN_TIMEOUT_SEC

GEM_PATH_KEY = "GEMBRIDGE_GEM_PATH"
TEMP_FOLDER_KEY = "GEMBRIDGE_TEMP_FOLDER"
RUBY_BIN_KEY = "GEMBRIDGE_RUBY_BIN"
GEM_BIN_KEY = "GEMBRIDGE_GEM_BIN"
DRAIN_TIMEOUT_KEY = "GEMBRIDGE_DRAIN_TIMEOUT_SEC"
STRICT_VERSION_FLOOR_KEY = "GEMBRIDGE_STRICT_VERSION_FLOOR"

GEM_SUBDIRECTORY = "gems"
GEM_PATH_MODE = 0o770


@dataclass(frozen=True)
class Settings:
    gem_path: Path
    ruby_bin: str = "ruby"
    gem_bin: str = "gem"
    drain_timeout_sec: int = DEFAULT_DRAIN_TIMEOUT_SEC
    strict_version_floor: bool = False


def load_env_file(path: Path) -> Dict[str, str]:
    data: Dict[str, str] = {}
    if not path.exists():
        return data
    try:
        for line in path.read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            k, v = line.split("=", 1)
            data[k.strip()] = v.strip().strip("'\"")
    except OSError as exc:
        print(f"Failed to read {path}: {exc}", file=sys.stderr)
    return data


def get_env_value(
    key: str,
    env_file: Mapping[str, str],
    env: Optional[Mapping[str, str]] = None,
) -> Optional[str]:
    source = env if env is not None else os.environ
    return source.get(key) or env_file.get(key)


def _parse_bool(raw: Optional[str]) -> bool:
    return str(raw or "").strip().lower() in {"1", "true", "yes", "on"}


def _parse_timeout(raw: Optional[str]) -> int:
    try:
        value = int(str(raw or "").strip())
    except ValueError:
        return DEFAULT_DRAIN_TIMEOUT_SEC
    return max(1, min(value, MAX_DRAIN_TIMEOUT_SEC))


def default_gem_path(env_file: Mapping[str, str], env: Optional[Mapping[str, str]] = None) -> Path:
    explicit = get_env_value(GEM_PATH_KEY, env_file, env)
    if explicit:
        return Path(explicit).expanduser()
    temp_root = get_env_value(TEMP_FOLDER_KEY, env_file, env) or tempfile.gettempdir()
    return Path(temp_root).expanduser() / GEM_SUBDIRECTORY


def load_settings(
    env: Optional[Mapping[str, str]] = None,
    env_file: Optional[Mapping[str, str]] = None,
) -> Settings:
    file_values = dict(env_file or {})
    return Settings(
        gem_path=default_gem_path(file_values, env),
        ruby_bin=(get_env_value(RUBY_BIN_KEY, file_values, env) or "ruby").strip(),
        gem_bin=(get_env_value(GEM_BIN_KEY, file_values, env) or "gem").strip(),
        drain_timeout_sec=_parse_timeout(get_env_value(DRAIN_TIMEOUT_KEY, file_values, env)),
        strict_version_floor=_parse_bool(get_env_value(STRICT_VERSION_FLOOR_KEY, file_values, env)),
    )


def resolve_gem_path(settings: Settings) -> Path:
    """Return the gem directory, creating it (group-writable only) if missing."""
    path = settings.gem_path
    if not path.exists():
        path.mkdir(mode=GEM_PATH_MODE, parents=True, exist_ok=True)
    return path
