from __future__ import annotations

import re
from typing import Pattern, Tuple

from tilesets.errors import UnknownTileFormatError
from tilesets.types import TileFormat

# Magic-byte prefixes. Apart from GZIP/PBF these are disjoint, so order does
# not matter. A gzip-compressed vector tile is indistinguishable from any other
# gzip stream; callers that read from the tiles table map GZIP to PBF.
_SIGNATURES: Tuple[Tuple[TileFormat, Pattern[bytes]], ...] = (
    (TileFormat.GZIP, re.compile(re.escape(b"\x1f\x8b"))),
    (TileFormat.ZLIB, re.compile(re.escape(b"\x78\x9c"))),
    (TileFormat.PNG, re.compile(re.escape(b"\x89PNG\r\n\x1a\n"))),
    (TileFormat.JPG, re.compile(re.escape(b"\xff\xd8\xff"))),
    # RIFF <4 byte little-endian size> WEBPVP
    (TileFormat.WEBP, re.compile(b"RIFF.{4}WEBPVP", re.DOTALL)),
)


def detect_tile_format(data: bytes) -> TileFormat:
    """
    Classify `data` by its leading bytes.

    Raises UnknownTileFormatError when no signature matches. Never returns PBF:
    vector tiles only have a signature once gzip-compressed.
    """
    for fmt, pattern in _SIGNATURES:
        if pattern.match(data):
            return fmt
    raise UnknownTileFormatError("unknown tile format pattern")
