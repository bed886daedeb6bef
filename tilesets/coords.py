from __future__ import annotations

from tilesets.errors import MalformedTileCoordError, TileCoordOutOfRangeError
from tilesets.types import TileCoord

MAX_ZOOM = 255
_UINT64_LIMIT = 1 << 64


def _parse_uint(text: str, axis: str) -> int:
    # int() alone would also accept signs, whitespace, underscores and
    # non-ASCII digits
    if not (text.isascii() and text.isdigit()):
        raise MalformedTileCoordError(f"cannot parse {axis}: {text!r} is not an unsigned integer")
    return int(text)


def flip_row(zoom: int, row: int) -> int:
    """Convert a row between the top-origin (XYZ) and bottom-origin (TMS) schemes."""
    return (1 << zoom) - 1 - row


def parse_tile_coord(z: str, x: str, y: str) -> TileCoord:
    """
    Parse textual zoom/column/row into a TileCoord.

    `z` must fit in 8 bits; `x` and `y` must be unsigned 64-bit integers in
    [0, 2^z). `y` may carry a file extension ("42.png"), which is dropped. The
    returned row is converted from the caller's XYZ scheme to the archive's
    TMS scheme.
    """
    try:
        zoom = _parse_uint(z, "zoom level")
    except MalformedTileCoordError as e:
        raise MalformedTileCoordError(f"tile coordinates are not valid: {e}") from e
    if zoom > MAX_ZOOM:
        raise TileCoordOutOfRangeError(f"tile coordinates are not valid: zoom level {zoom} exceeds {MAX_ZOOM}")

    dot = y.rfind(".")
    if dot >= 0:
        y = y[:dot]

    limit = 1 << zoom
    values = []
    for axis, text in (("x", x), ("y", y)):
        try:
            value = _parse_uint(text, f"{axis} coordinate axis")
        except MalformedTileCoordError as e:
            raise MalformedTileCoordError(f"tile coordinates are not valid: {e}") from e
        if value >= _UINT64_LIMIT or value >= limit:
            raise TileCoordOutOfRangeError(
                f"tile coordinates are not valid: {axis} coordinate ({value}) is out of bounds for zoom level {zoom}"
            )
        values.append(value)

    column, row = values
    return TileCoord(zoom=zoom, column=column, row=flip_row(zoom, row))
