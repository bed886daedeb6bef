from __future__ import annotations

import json
from typing import Iterable, Optional, Tuple

from common.logging_setup import get_logger
from tilesets.errors import MetadataError
from tilesets.types import LayerData, LayerType, Metadata, TileFormat

log = get_logger(__name__)


def parse_floats(text: str, n: int, key: str) -> Tuple[float, ...]:
    """Comma separated list of exactly `n` floats, e.g. bounds or center."""
    parts = text.split(",")
    if len(parts) != n:
        raise MetadataError(f"{key}: expected {n} comma separated values, got {len(parts)}")
    try:
        return tuple(float(p.strip()) for p in parts)
    except ValueError as e:
        raise MetadataError(f"{key}: {e}") from e


def _parse_int(text: str, key: str) -> int:
    digits = text[1:] if text.startswith("-") else text
    if not (digits.isascii() and digits.isdigit()):
        raise MetadataError(f"{key}: invalid integer {text!r}")
    return int(text)


def _parse_layer_data(text: str) -> Optional[LayerData]:
    try:
        doc = json.loads(text)
    except json.JSONDecodeError as e:
        raise MetadataError(f"json: {e}") from e
    if doc is None:
        return None
    return LayerData.from_dict(doc)


def metadata_from_rows(rows: Iterable[Tuple[str, str]], source: str = "") -> Metadata:
    """
    Project metadata (key, value) rows onto a Metadata. Unknown keys are
    ignored; a recognized key that fails to parse raises MetadataError.
    """
    md = Metadata()
    for key, value in rows:
        if key in ("name", "description", "attribution", "version"):
            setattr(md, key, value)
        elif key == "format":
            md.format = TileFormat.lookup(value)
        elif key == "minzoom":
            md.minzoom = _parse_int(value, key)
        elif key == "maxzoom":
            md.maxzoom = _parse_int(value, key)
        elif key == "bounds":
            md.bounds = parse_floats(value, 4, key)  # type: ignore[assignment]
        elif key == "center":
            md.center = parse_floats(value, 3, key)  # type: ignore[assignment]
        elif key == "type":
            layer_type = LayerType.lookup(value)
            if layer_type is None:
                log.warning("unknown layer type %r, using baselayer", value, extra={"tileset": source})
                layer_type = LayerType.BASELAYER
            md.type = layer_type
        elif key == "json":
            md.layer_data = _parse_layer_data(value)
    return md
