from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterator, List, Mapping, Optional, Tuple, Union

from common.logging_setup import get_logger
from tilesets.errors import TilesetLoadError, TilesetNotFoundError
from tilesets.tileset import MBTILES_EXTENSION, Tileset, open_tileset

log = get_logger(__name__)

DEFAULT_MAX_WORKERS = 8


class TilesetRegistry:
    """
    Read-only mapping of tileset id -> Tileset.

    Built once at startup and shared by request handlers without locking.
    """

    def __init__(self, tilesets: Mapping[str, Tileset]):
        self._tilesets = MappingProxyType(dict(tilesets))

    def lookup(self, tileset_id: str) -> Tileset:
        try:
            return self._tilesets[tileset_id]
        except KeyError:
            raise TilesetNotFoundError(f"tileset not found: {tileset_id!r}") from None

    def ids(self) -> List[str]:
        return sorted(self._tilesets)

    def __contains__(self, tileset_id: object) -> bool:
        return tileset_id in self._tilesets

    def __iter__(self) -> Iterator[Tileset]:
        return iter(self._tilesets.values())

    def __len__(self) -> int:
        return len(self._tilesets)

    def close(self) -> None:
        for ts in self._tilesets.values():
            ts.close()


def _load_one(path: Path) -> Tuple[Path, Optional[Tileset]]:
    try:
        return path, open_tileset(path)
    except TilesetLoadError as e:
        log.error('loading tileset "%s" failed: %s', path.name, e, extra={"tileset": path.stem})
        return path, None
    except Exception:
        # one unreadable archive never aborts the directory load
        log.exception('loading tileset "%s" failed unexpectedly', path.name, extra={"tileset": path.stem})
        return path, None


def load_tilesets(directory: Union[str, Path], max_workers: int = DEFAULT_MAX_WORKERS) -> TilesetRegistry:
    """
    Open every `*.mbtiles` file in `directory` on a bounded thread pool.

    Archives that fail to load are logged and left out; only an unreadable
    directory raises TilesetLoadError.
    """
    directory = Path(directory)
    try:
        candidates = sorted(
            p for p in directory.iterdir() if p.suffix == MBTILES_EXTENSION and p.is_file()
        )
    except OSError as e:
        raise TilesetLoadError(f"reading tileset directory failed: {e}") from e

    results: List[Tuple[Path, Optional[Tileset]]] = []
    if candidates:
        with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(candidates))),
                                thread_name_prefix="tileset-loader") as pool:
            results = list(pool.map(_load_one, candidates))

    tilesets: Dict[str, Tileset] = {}
    for path, ts in results:
        if ts is not None:
            tilesets[ts.id] = ts

    log.info("%d tileset(s) loaded successfully", len(tilesets),
             extra={"dir": str(directory), "failed": len(results) - len(tilesets)})
    return TilesetRegistry(tilesets)
