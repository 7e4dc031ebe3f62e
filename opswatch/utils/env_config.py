"""Environment variable access with .env file fallback."""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

DEFAULT_ENV_FILE = Path(__file__).resolve().parent.parent.parent / '.env'

_TRUE_VALUES = ('true', '1', 'yes', 'on')

_env_file_cache: Optional[Dict[str, str]] = None


def _parse_env_file(env_path: Path) -> Dict[str, str]:
    values: Dict[str, str] = {}
    if not env_path.exists():
        return values

    with open(env_path, 'r') as f:
        for raw_line in f:
            line = raw_line.strip()
            if not line or line.startswith('#'):
                continue
            key, sep, value = line.partition('=')
            if sep:
                values[key.strip()] = value.strip().strip('"').strip("'")
    return values


def _env_file_vars() -> Dict[str, str]:
    global _env_file_cache
    if _env_file_cache is None:
        _env_file_cache = _parse_env_file(DEFAULT_ENV_FILE)
    return _env_file_cache


def get_env_var(key: str, default: Any = None, cast_type: type = str) -> Any:
    """Read a setting, casting it to ``cast_type``.

    The process environment wins over the .env file. Unparseable numbers fall
    back to ``default``.
    """
    value = os.environ.get(key)
    if value is None:
        value = _env_file_vars().get(key)
    if value is None:
        return default

    if cast_type is bool:
        return value.lower() in _TRUE_VALUES
    if cast_type in (int, float):
        try:
            return cast_type(value)
        except ValueError:
            return default
    return cast_type(value)


def get_env_list(key: str, default: str = '') -> List[str]:
    """Comma-separated setting as a list of non-empty items."""
    raw = get_env_var(key, default) or ''
    return [item.strip() for item in raw.split(',') if item.strip()]


def get_server_config() -> Dict[str, Any]:
    return {
        'HOST': get_env_var('HOST', '0.0.0.0'),
        'PORT': get_env_var('PORT', 5000, int),
        'DEBUG': get_env_var('DEBUG', False, bool),
    }
