"""
Writers for fetched data: MessagePack (default) and JSON.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Optional, Union

import msgpack

FORMATS = {
    "msgpack": ".msgpack",
    "json": ".json",
}


def output_filename(name: str, fmt: str = "msgpack") -> str:
    """Return the file name for a data set, e.g. ``issues.msgpack``."""
    if fmt not in FORMATS:
        raise ValueError(f"Unknown output format: {fmt}")
    return f"{name}{FORMATS[fmt]}"


def _format_from_path(path: Path) -> str:
    for fmt, ext in FORMATS.items():
        if path.suffix == ext:
            return fmt
    raise ValueError(f"Cannot infer format from file name: {path.name}")


def serialize_to_file(data: Any, path: Union[str, Path], fmt: str = "msgpack") -> Path:
    """
    Serialize data to a file.

    The data is written to a temporary file next to ``path`` and moved into
    place once complete, so a failed write never leaves a truncated file.

    Args:
        data: JSON-compatible data (lists, dicts, strings, numbers, None)
        path: Destination file
        fmt: msgpack or json

    Returns:
        The destination path
    """
    if fmt not in FORMATS:
        raise ValueError(f"Unknown output format: {fmt}")

    path = Path(path)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        if fmt == "msgpack":
            with os.fdopen(fd, "wb") as f:
                msgpack.pack(data, f, use_bin_type=True)
        else:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise
    return path


def load_from_file(path: Union[str, Path], fmt: Optional[str] = None) -> Any:
    """Read back a file written by serialize_to_file."""
    path = Path(path)
    fmt = fmt or _format_from_path(path)
    if fmt == "msgpack":
        with open(path, "rb") as f:
            return msgpack.unpack(f, raw=False)
    if fmt == "json":
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    raise ValueError(f"Unknown output format: {fmt}")
