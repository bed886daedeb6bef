from __future__ import annotations

from typing import Any, Dict

from tilesets.tileset import Tileset
from tilesets.types import Metadata

TILEJSON_VERSION = "2.2.0"
TILEJSON_SCHEME = "xyz"


def build_tilejson(ts: Tileset, md: Metadata, tileset_url: str, query: str = "") -> Dict[str, Any]:
    """
    TileJSON manifest for `ts`.

    `tileset_url` is the public URL of the tileset document (".../v1/{id}");
    tile and grid templates hang off it and keep the request's query string.
    """
    suffix = f"?{query}" if query else ""
    tj: Dict[str, Any] = {
        "tilejson": TILEJSON_VERSION,
        "scheme": TILEJSON_SCHEME,
        "tiles": [f"{tileset_url}/tiles/{{z}}/{{x}}/{{y}}.{ts.format}{suffix}"],
    }
    for key in ("name", "description", "version", "attribution"):
        value = getattr(md, key)
        if value:
            tj[key] = value
    if ts.utf_grid:
        tj["grids"] = [f"{tileset_url}/tiles/{{z}}/{{x}}/{{y}}.json{suffix}"]
    if md.minzoom:
        tj["minzoom"] = md.minzoom
    if md.maxzoom:
        tj["maxzoom"] = md.maxzoom
    if md.bounds is not None:
        tj["bounds"] = list(md.bounds)
    if md.center is not None:
        tj["center"] = list(md.center)
    if md.format.value:
        tj["format"] = md.format.value
    tj["type"] = md.type.value
    # layer schema/statistics sit at the top level of the document
    if md.layer_data is not None:
        tj.update(md.layer_data.to_dict())
    return tj
