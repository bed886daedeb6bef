from __future__ import annotations

import gzip
import json
import math
import os
import sqlite3
import threading
import zlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Tuple, Union

from common.logging_setup import get_logger
from tilesets.errors import (
    GridDataError,
    MetadataError,
    NoUTFGridError,
    StorageError,
    TileNotFoundError,
    TilesetLoadError,
    UnknownTileFormatError,
)
from tilesets.formats import detect_tile_format
from tilesets.metadata import metadata_from_rows
from tilesets.types import Metadata, TileCoord, TileFormat

log = get_logger(__name__)

MBTILES_EXTENSION = ".mbtiles"

# By convention `grids` and `grid_data` are views joining the three tables.
UTFGRID_RELATIONS = ("grids", "grid_data", "grid_utfgrid", "keymap", "grid_key")

# SQLite integers are signed 64-bit; larger indices cannot be stored.
_SQLITE_INT_MAX = (1 << 63) - 1

_GRID_CODECS = (TileFormat.ZLIB, TileFormat.GZIP)


def _blob(value: Any) -> Optional[bytes]:
    """Payload column value as bytes, or None when it is not a BLOB or TEXT."""
    if value is None:
        return b""
    if isinstance(value, str):
        return value.encode("utf-8")
    if isinstance(value, (bytes, memoryview)):
        return bytes(value)
    return None


@dataclass(frozen=True, eq=False)
class Tileset:
    """
    One validated, read-only MBTiles archive.

    Instances are immutable; queries on the shared connection are serialized
    with a per-tileset lock so request threads can call them concurrently.
    """
    filename: str
    format: TileFormat
    timestamp: datetime
    utf_grid: bool = False
    utf_grid_compression: TileFormat = TileFormat.UNKNOWN
    _conn: Optional[sqlite3.Connection] = field(default=None, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def id(self) -> str:
        name = self.filename
        if name.endswith(MBTILES_EXTENSION):
            name = name[: -len(MBTILES_EXTENSION)]
        return name

    @property
    def content_type(self) -> str:
        return self.format.content_type

    # -------- queries --------

    def _fetch(self, sql: str, params: Sequence[Any] = (), *, many: bool = False) -> Any:
        if self._conn is None:
            raise StorageError(f"tileset {self.filename!r} is closed")
        try:
            with self._lock:
                cur = self._conn.execute(sql, params)
                try:
                    return cur.fetchall() if many else cur.fetchone()
                finally:
                    cur.close()
        except sqlite3.Error as e:
            raise StorageError(f"{self.filename}: {e}") from e

    @staticmethod
    def _key(coord: TileCoord) -> Tuple[int, int, int]:
        if coord.column > _SQLITE_INT_MAX or coord.row > _SQLITE_INT_MAX:
            raise TileNotFoundError("tile not found")
        return coord.zoom, coord.column, coord.row

    def get_tile(self, coord: TileCoord) -> bytes:
        """Raw tile bytes as stored (vector tiles stay gzip-compressed)."""
        row = self._fetch(
            "SELECT tile_data FROM tiles WHERE zoom_level = ? AND tile_column = ? AND tile_row = ?",
            self._key(coord),
        )
        if row is None:
            raise TileNotFoundError("tile not found")
        data = _blob(row[0])
        if data is None:
            raise StorageError(f"{self.filename}: tile_data is a {type(row[0]).__name__}, not a blob")
        return data

    def get_grid(self, coord: TileCoord) -> bytes:
        """
        UTFGrid for `coord`, compressed with `utf_grid_compression`.

        Key data from `grid_data` is merged into the grid's "data" field. When
        there is no key data the stored bytes are returned untouched.
        """
        if not self.utf_grid:
            raise NoUTFGridError("tileset does not contain UTF grids")

        key = self._key(coord)
        row = self._fetch(
            "SELECT grid FROM grids WHERE zoom_level = ? AND tile_column = ? AND tile_row = ?",
            key,
        )
        if row is None:
            raise TileNotFoundError("grid not found")
        data = _blob(row[0])
        if data is None:
            raise StorageError(f"{self.filename}: grid is a {type(row[0]).__name__}, not a blob")

        rows = self._fetch(
            "SELECT key_name, key_json FROM grid_data WHERE zoom_level = ? AND tile_column = ? AND tile_row = ?",
            key,
            many=True,
        )
        if not rows:
            return data

        keydata: Dict[str, Any] = {}
        for key_name, key_json in rows:
            try:
                keydata[key_name] = json.loads(key_json) if key_json else {}
            except (json.JSONDecodeError, TypeError) as e:
                raise GridDataError(f"invalid key json for {key_name!r}: {e}") from e

        grid = self._decode_grid(data)
        grid["data"] = keydata
        body = json.dumps(grid, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        return self._compress_grid(body)

    def _decode_grid(self, data: bytes) -> Dict[str, Any]:
        try:
            if self.utf_grid_compression == TileFormat.ZLIB:
                raw = zlib.decompress(data)
            else:
                raw = gzip.decompress(data)
        except (zlib.error, OSError, EOFError) as e:
            raise GridDataError(f"cannot decompress grid ({self.utf_grid_compression}): {e}") from e
        try:
            grid = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise GridDataError(f"invalid grid json: {e}") from e
        if not isinstance(grid, dict):
            raise GridDataError("grid json is not an object")
        return grid

    def _compress_grid(self, body: bytes) -> bytes:
        if self.utf_grid_compression == TileFormat.ZLIB:
            return zlib.compress(body)
        # fixed header mtime keeps output identical for identical input
        return gzip.compress(body, mtime=0)

    def get_metadata(self) -> Metadata:
        rows = self._fetch(
            "SELECT name, value FROM metadata WHERE value IS NOT NULL AND value != ''",
            many=True,
        )
        md = metadata_from_rows(((str(k), str(v)) for k, v in rows), source=self.id)

        # maxzoom 0 means "not set"; fall back to what the tiles table holds
        if md.maxzoom == 0:
            lo, hi = self._fetch("SELECT min(zoom_level), max(zoom_level) FROM tiles")
            if lo is None or hi is None:
                raise MetadataError("cannot derive zoom range: tiles table is empty")
            try:
                md.minzoom, md.maxzoom = int(lo), int(hi)
            except (TypeError, ValueError) as e:
                raise MetadataError(f"cannot derive zoom range: {e}") from e
        return md

    def close(self) -> None:
        if self._conn is not None:
            with self._lock:
                self._conn.close()
            object.__setattr__(self, "_conn", None)


# ---------------- loader ----------------

def _count_relations(conn: sqlite3.Connection, names: Sequence[str]) -> int:
    marks = ",".join("?" for _ in names)
    (count,) = conn.execute(f"SELECT count(*) FROM sqlite_master WHERE name IN ({marks})", tuple(names)).fetchone()
    return int(count)


def _probe_tile_format(conn: sqlite3.Connection) -> TileFormat:
    row = conn.execute("SELECT tile_data FROM tiles LIMIT 1").fetchone()
    if row is None:
        raise TilesetLoadError("tiles table is empty, cannot determine tile format")
    sample = _blob(row[0])
    if sample is None:
        raise TilesetLoadError(f"sample tile_data is a {type(row[0]).__name__}, not a blob")
    try:
        fmt = detect_tile_format(sample)
    except UnknownTileFormatError as e:
        raise TilesetLoadError(f"cannot determine tile format: {e}") from e
    # gzip on the tiles table is a compressed vector tile
    if fmt == TileFormat.GZIP:
        fmt = TileFormat.PBF
    if fmt != TileFormat.PBF:
        raise TilesetLoadError(f'the tile format "{fmt}" is currently not supported')
    return fmt


def _probe_utf_grid(conn: sqlite3.Connection) -> Optional[TileFormat]:
    """Compression of the archive's UTFGrids, or None when it has none."""
    if _count_relations(conn, UTFGRID_RELATIONS) != len(UTFGRID_RELATIONS):
        return None
    # `grids` is a join over `map`; on large archives without any grids a
    # lookup there can take very long, so sample the payload table itself
    try:
        row = conn.execute("SELECT grid_utfgrid FROM grid_utfgrid LIMIT 1").fetchone()
    except sqlite3.Error as e:
        raise TilesetLoadError(f"could not read sample grid to determine type: {e}") from e
    if row is None:
        return None
    sample = _blob(row[0])
    if sample is None:
        raise TilesetLoadError(f"sample grid is a {type(row[0]).__name__}, not a blob")
    try:
        codec = detect_tile_format(sample)
    except UnknownTileFormatError as e:
        raise TilesetLoadError(f"could not determine UTF grid compression type: {e}") from e
    if codec not in _GRID_CODECS:
        raise TilesetLoadError(f'unsupported UTF grid compression "{codec}"')
    return codec


def _mtime_utc(st: os.stat_result) -> datetime:
    return datetime.fromtimestamp(math.floor(st.st_mtime + 0.5), tz=timezone.utc)


def open_tileset(path: Union[str, Path]) -> Tileset:
    """
    Open and validate an MBTiles archive read-only.

    Raises TilesetLoadError when the file is unreadable, lacks the `tiles` or
    `metadata` relation, or does not hold gzip-compressed vector tiles.
    """
    path = Path(path)
    try:
        st = path.stat()
    except OSError as e:
        raise TilesetLoadError(f"could not read file stats for mbtiles file: {e}") from e

    try:
        conn = sqlite3.connect(path.resolve().as_uri() + "?mode=ro", uri=True, check_same_thread=False)
    except sqlite3.Error as e:
        raise TilesetLoadError(f"could not open {path.name}: {e}") from e

    try:
        if _count_relations(conn, ("tiles", "metadata")) < 2:
            raise TilesetLoadError("missing required table: 'tiles' or 'metadata'")
        fmt = _probe_tile_format(conn)
        codec = _probe_utf_grid(conn)
    except sqlite3.Error as e:
        conn.close()
        raise TilesetLoadError(f"{path.name}: {e}") from e
    except TilesetLoadError:
        conn.close()
        raise

    ts = Tileset(
        filename=path.name,
        format=fmt,
        timestamp=_mtime_utc(st),
        utf_grid=codec is not None,
        utf_grid_compression=codec or TileFormat.UNKNOWN,
        _conn=conn,
    )
    log.debug("opened tileset", extra={"tileset": ts.id, "utf_grid": ts.utf_grid})
    return ts
