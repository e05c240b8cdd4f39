"""
Helpers for reading and atomically writing JSON files.
"""

import json
import os
from pathlib import Path
from typing import Any

TEMP_SUFFIX = ".tmp"

# Index files larger than this are written without indentation
PRETTY_PRINT_LIMIT = 10000


def encode(data: Any, pretty: bool = False) -> bytes:
    """
    Serialize data to UTF-8 JSON.

    Output is deterministic for equal inputs, so repeated checkpoints of
    unchanged state produce byte-identical files.
    """
    if pretty:
        text = json.dumps(data, indent=2, ensure_ascii=False)
    else:
        text = json.dumps(data, separators=(",", ":"), ensure_ascii=False)
    return text.encode("utf-8")


def write_atomic(file_path: str, payload: bytes) -> None:
    """
    Write payload to file_path via a temp file and rename.

    A crash mid-write leaves either the previous file or the new one,
    never a truncated mix. The orphaned temp file is removed at startup.
    """
    Path(file_path).parent.mkdir(parents=True, exist_ok=True)
    temp_path = file_path + TEMP_SUFFIX
    with open(temp_path, "wb") as f:
        f.write(payload)
        f.flush()
        os.fsync(f.fileno())
    os.replace(temp_path, file_path)


def read(file_path: str) -> Any:
    with open(file_path, "rb") as f:
        return json.loads(f.read().decode("utf-8"))
