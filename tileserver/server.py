from __future__ import annotations

import argparse
import hashlib
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from email.utils import format_datetime, parsedate_to_datetime
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse, Response

from common.config import DEFAULT_CONFIG_PATH, Settings, load_config
from common.logging_setup import get_logger, setup_logging
from tilesets import (
    InvalidTileCoordError,
    NoUTFGridError,
    TileFormat,
    TileNotFoundError,
    TilesetLoadError,
    TilesetNotFoundError,
    TilesetRegistry,
    load_tilesets,
    parse_tile_coord,
)
from tileserver.tilejson import build_tilejson

log = get_logger(__name__)

API_PREFIX = "/v1"
CONTENT_TYPE_JSON = "application/json"


def _etag(data: bytes) -> str:
    return hashlib.blake2b(data, digest_size=32).hexdigest()


def _etag_matches(header: str, etag: str) -> bool:
    for candidate in header.split(","):
        candidate = candidate.strip()
        if candidate.startswith("W/"):
            candidate = candidate[2:]
        if candidate == "*" or candidate.strip('"') == etag:
            return True
    return False


def _parse_http_date(value: str) -> datetime:
    since = parsedate_to_datetime(value)
    if since.tzinfo is None:
        since = since.replace(tzinfo=timezone.utc)
    return since


def _message(text: str, status: int) -> JSONResponse:
    return JSONResponse({"message": text, "status": status}, status_code=status)


def create_app(registry: TilesetRegistry, settings: Optional[Settings] = None, *, init_failed: bool = False) -> FastAPI:
    """
    HTTP layer over a loaded registry.

      GET /                          -> 301 /v1
      GET /v1                        -> health
      GET /v1/{id}                   -> TileJSON
      GET /v1/{id}/tiles/{z}/{x}/{y} -> tile bytes, or UTFGrid when y ends in .json
    """
    host_url = settings.host_url if settings else None
    cors_origins = list(settings.cors_origins) if settings else []

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        registry.close()

    app = FastAPI(title="MBTiles Tile Server", version="1.0.0", lifespan=lifespan)
    app.state.registry = registry

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.get("/", include_in_schema=False)
    def root():
        return RedirectResponse(API_PREFIX, status_code=301)

    @app.get(API_PREFIX)
    def health():
        return {"ok": not init_failed, "tilesets": len(registry)}

    @app.get(API_PREFIX + "/{tileset_id}")
    def tilejson(tileset_id: str, request: Request):
        try:
            ts = registry.lookup(tileset_id)
        except TilesetNotFoundError:
            return _message("Tileset not found", 404)
        try:
            md = ts.get_metadata()
        except Exception as e:
            log.exception("reading metadata failed", extra={"tileset": tileset_id})
            return _message(str(e), 500)

        base = host_url or str(request.base_url).rstrip("/")
        return build_tilejson(ts, md, base + request.url.path, request.url.query)

    @app.get(API_PREFIX + "/{tileset_id}/tiles/{z}/{x}/{y}")
    def tile(tileset_id: str, z: str, x: str, y: str, request: Request):
        is_grid = y.endswith(".json")
        try:
            ts = registry.lookup(tileset_id)
            coord = parse_tile_coord(z, x, y)
            data = ts.get_grid(coord) if is_grid else ts.get_tile(coord)
        except TilesetNotFoundError:
            return PlainTextResponse("Tileset not found", status_code=404)
        except (TileNotFoundError, NoUTFGridError):
            return Response(status_code=204)
        except InvalidTileCoordError as e:
            return PlainTextResponse(str(e), status_code=400)
        except Exception as e:
            log.exception("tile request failed", extra={"tileset": tileset_id, "zxy": f"{z}/{x}/{y}"})
            return PlainTextResponse(str(e), status_code=500)

        since_header = request.headers.get("if-modified-since")
        if since_header:
            try:
                since = _parse_http_date(since_header)
            except (TypeError, ValueError) as e:
                return PlainTextResponse(f"invalid If-Modified-Since: {e}", status_code=400)
            if ts.timestamp <= since:
                return Response(status_code=304)

        etag = _etag(data)
        match_header = request.headers.get("if-none-match")
        if match_header and _etag_matches(match_header, etag):
            return Response(status_code=304)

        headers = {
            "Last-Modified": format_datetime(ts.timestamp, usegmt=True),
            "ETag": f'"{etag}"',
        }
        if is_grid:
            headers["Content-Encoding"] = "deflate" if ts.utf_grid_compression == TileFormat.ZLIB else "gzip"
            return Response(content=data, media_type=CONTENT_TYPE_JSON, headers=headers)

        if ts.format == TileFormat.PBF:
            headers["Content-Encoding"] = "gzip"
        return Response(content=data, media_type=ts.content_type or "application/octet-stream", headers=headers)

    return app


def main(argv: Optional[list] = None) -> None:
    ap = argparse.ArgumentParser(description="Serve MBTiles archives over HTTP")
    ap.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="YAML config file")
    args = ap.parse_args(argv)

    settings = load_config(args.config)
    setup_logging(settings.log_level)

    init_failed = False
    try:
        registry = load_tilesets(settings.tile_dir, max_workers=settings.max_workers)
    except TilesetLoadError as e:
        log.error("tileset loading error: %s", e)
        registry = TilesetRegistry({})
        init_failed = True

    app = create_app(registry, settings, init_failed=init_failed)
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


# -------- local dev entrypoint --------
if __name__ == "__main__":
    main()
