from __future__ import annotations


class TilesetError(Exception):
    """Base class for everything raised by the tilesets package."""


class TilesetLoadError(TilesetError):
    """An archive could not be opened or failed validation."""


class StorageError(TilesetError):
    """An SQLite query failed while serving a request."""


class TilesetNotFoundError(TilesetError, LookupError):
    pass


class TileNotFoundError(TilesetError, LookupError):
    pass


class NoUTFGridError(TilesetError, LookupError):
    """The tileset was loaded without UTFGrid support."""


class InvalidTileCoordError(TilesetError, ValueError):
    pass


class MalformedTileCoordError(InvalidTileCoordError):
    """A z/x/y field is not an unsigned decimal integer."""


class TileCoordOutOfRangeError(InvalidTileCoordError):
    """A z/x/y field parsed but lies outside the range allowed for its zoom."""


class UnknownTileFormatError(TilesetError, ValueError):
    """No magic-byte signature matched."""


class InvalidTileFormatError(TilesetError, ValueError):
    """Text does not name a tile format."""


class InvalidLayerTypeError(TilesetError, ValueError):
    """Text does not name a layer type."""


class MetadataError(TilesetError, ValueError):
    """A recognized metadata value could not be parsed."""


class GridDataError(TilesetError, ValueError):
    """A stored UTFGrid or one of its key documents is not valid JSON."""
