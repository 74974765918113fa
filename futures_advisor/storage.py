"""
Flat-file JSON persistence with atomic replace
"""
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)


def resolve_data_dir(data_dir: Optional[str] = None) -> Path:
    """Data directory from argument, DATA_DIR env, or ./.data"""
    raw = (data_dir or os.getenv('DATA_DIR') or '').strip()
    if raw:
        return Path(raw).expanduser().resolve()
    return Path.cwd() / '.data'


def read_json_file(path: Path) -> Optional[Any]:
    """Load JSON, None when the file is missing or unreadable"""
    path = Path(path)
    if not path.exists():
        return None
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        logger.warning(f"Failed to read {path}: {e}")
        return None


def write_json_file(path: Path, data: Any) -> None:
    """Write JSON next to the target then rename over it"""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix='.tmp', dir=path.parent)
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise
