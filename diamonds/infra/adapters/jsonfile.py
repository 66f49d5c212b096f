from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any

from ..errors import ConfigurationInvalidError


def read_json_document(path: Path, what: str) -> Any:
    """Parsed JSON at path; None when the file is missing or blank."""
    if not path.exists():
        return None
    text = path.read_text(encoding="utf-8").strip()
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigurationInvalidError(f"{what} is not valid JSON: {path}: {e}") from e


def write_json_document(path: Path, data: Any) -> None:
    """Replace path with the serialized document in one rename; readers never see a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    body = json.dumps(data, indent=2, ensure_ascii=False) + "\n"
    with tempfile.NamedTemporaryFile(
        "w", encoding="utf-8", dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp", delete=False
    ) as f:
        f.write(body)
        f.flush()
        os.fsync(f.fileno())
        tmp = Path(f.name)
    try:
        os.replace(tmp, path)
    finally:
        if tmp.exists():
            tmp.unlink()
