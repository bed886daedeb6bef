"""
Shared fixtures: small MBTiles archives built with sqlite3 under tmp_path.
"""
from __future__ import annotations

import gzip
import json
import sqlite3
import zlib
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Sequence, Tuple

import pytest

# (z, x, tms_y, data)
TileRow = Tuple[int, int, int, bytes]
# (z, x, tms_y, grid document, {key_name: key document or raw json text})
GridRow = Tuple[int, int, int, Dict[str, Any], Dict[str, Any]]

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 24
JPG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 24
WEBP_BYTES = b"RIFF\x24\x00\x00\x00WEBPVP8 " + b"\x00" * 16


def pbf(payload: bytes = b"\x1a\x05layer") -> bytes:
    """A gzip-compressed stand-in for a vector tile."""
    return gzip.compress(payload, mtime=0)


def compress_grid(doc: Dict[str, Any], codec: str = "zlib") -> bytes:
    raw = json.dumps(doc).encode("utf-8")
    return zlib.compress(raw) if codec == "zlib" else gzip.compress(raw, mtime=0)


def decompress_grid(data: bytes, codec: str = "zlib") -> Dict[str, Any]:
    raw = zlib.decompress(data) if codec == "zlib" else gzip.decompress(data)
    return json.loads(raw)


def build_mbtiles(
    path: Path,
    *,
    tiles: Optional[Iterable[TileRow]] = None,
    metadata: Optional[Dict[str, Any]] = None,
    grids: Optional[Sequence[GridRow]] = None,
    grid_codec: str = "zlib",
    with_tiles: bool = True,
    with_metadata: bool = True,
) -> Path:
    conn = sqlite3.connect(str(path))
    try:
        if with_tiles:
            conn.execute(
                "CREATE TABLE tiles (zoom_level INTEGER, tile_column INTEGER, tile_row INTEGER, tile_data BLOB)"
            )
            rows = list(tiles) if tiles is not None else [(0, 0, 0, pbf())]
            conn.executemany("INSERT INTO tiles VALUES (?, ?, ?, ?)", rows)
        if with_metadata:
            conn.execute("CREATE TABLE metadata (name TEXT, value TEXT)")
            conn.executemany("INSERT INTO metadata VALUES (?, ?)", list((metadata or {}).items()))

        if grids is not None:
            conn.executescript(
                """
                CREATE TABLE map (zoom_level INTEGER, tile_column INTEGER, tile_row INTEGER,
                                  tile_id TEXT, grid_id TEXT);
                CREATE TABLE grid_utfgrid (grid_id TEXT PRIMARY KEY, grid_utfgrid BLOB);
                CREATE TABLE keymap (key_name TEXT PRIMARY KEY, key_json TEXT);
                CREATE TABLE grid_key (grid_id TEXT, key_name TEXT);
                CREATE VIEW grids AS
                    SELECT map.zoom_level, map.tile_column, map.tile_row, grid_utfgrid.grid_utfgrid AS grid
                    FROM map JOIN grid_utfgrid ON grid_utfgrid.grid_id = map.grid_id;
                CREATE VIEW grid_data AS
                    SELECT map.zoom_level, map.tile_column, map.tile_row, keymap.key_name, keymap.key_json
                    FROM map
                    JOIN grid_key ON map.grid_id = grid_key.grid_id
                    JOIN keymap ON grid_key.key_name = keymap.key_name;
                """
            )
            for z, x, y, doc, keys in grids:
                grid_id = f"{z}/{x}/{y}"
                conn.execute("INSERT INTO map VALUES (?, ?, ?, NULL, ?)", (z, x, y, grid_id))
                conn.execute("INSERT INTO grid_utfgrid VALUES (?, ?)", (grid_id, compress_grid(doc, grid_codec)))
                for key_name, key_doc in keys.items():
                    text = key_doc if isinstance(key_doc, str) else json.dumps(key_doc)
                    conn.execute("INSERT OR REPLACE INTO keymap VALUES (?, ?)", (key_name, text))
                    conn.execute("INSERT INTO grid_key VALUES (?, ?)", (grid_id, key_name))
        conn.commit()
    finally:
        conn.close()
    return path


@pytest.fixture
def tile_dir(tmp_path: Path) -> Path:
    d = tmp_path / "tilesets"
    d.mkdir()
    return d


@pytest.fixture
def make_mbtiles(tile_dir: Path):
    """Factory: make_mbtiles("name", tiles=..., metadata=..., grids=...) -> path."""

    def _make(name: str, **kwargs: Any) -> Path:
        return build_mbtiles(tile_dir / f"{name}.mbtiles", **kwargs)

    return _make


@pytest.fixture
def vector_tiles() -> Sequence[TileRow]:
    # z1 column 1, XYZ row 0 -> TMS row 1
    return [
        (0, 0, 0, pbf(b"world")),
        (1, 1, 1, pbf(b"north-east")),
        (2, 3, 0, pbf(b"south-east corner")),
    ]
