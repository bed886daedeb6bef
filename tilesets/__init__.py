"""
MBTiles storage engine

- Validates archives and detects their tile / UTFGrid encodings
- Parses z/x/y into TMS tile coordinates
- Reads tiles, UTFGrids (with key data merged) and metadata
- TilesetRegistry: immutable id -> Tileset map loaded from a directory
"""
from tilesets.coords import parse_tile_coord
from tilesets.errors import (
    GridDataError,
    InvalidTileCoordError,
    MetadataError,
    NoUTFGridError,
    StorageError,
    TileNotFoundError,
    TilesetError,
    TilesetLoadError,
    TilesetNotFoundError,
)
from tilesets.formats import detect_tile_format
from tilesets.registry import TilesetRegistry, load_tilesets
from tilesets.tileset import Tileset, open_tileset
from tilesets.types import LayerType, Metadata, TileCoord, TileFormat

__all__ = [
    "GridDataError",
    "InvalidTileCoordError",
    "LayerType",
    "Metadata",
    "MetadataError",
    "NoUTFGridError",
    "StorageError",
    "TileCoord",
    "TileFormat",
    "TileNotFoundError",
    "Tileset",
    "TilesetError",
    "TilesetLoadError",
    "TilesetNotFoundError",
    "TilesetRegistry",
    "detect_tile_format",
    "load_tilesets",
    "open_tileset",
    "parse_tile_coord",
]
