"""
Integration tests for the HTTP layer (FastAPI TestClient over real archives)
"""

import hashlib
import os
from email.utils import format_datetime
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from common.config import Settings
from tests.conftest import pbf
from tilesets.registry import TilesetRegistry, load_tilesets
from tileserver.server import create_app

MTIME = 1_700_000_000
GRID = {"grid": ["  !!", " !!#"], "keys": ["", "1", "2"]}
LAYER_JSON = '{"vector_layers": [{"id": "roads", "fields": {"class": "String"}}], "tilestats": {"layerCount": 1, "layers": []}}'


def _settings(tile_dir, **overrides):
    values = dict(
        tile_dir=tile_dir,
        max_workers=2,
        host="127.0.0.1",
        port=8080,
        host_url=None,
        cors_origins=("https://app.example.com",),
        log_level="INFO",
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def archives(make_mbtiles, vector_tiles, tile_dir):
    meta = {
        "name": "Roads",
        "description": "Road network",
        "format": "pbf",
        "type": "overlay",
        "minzoom": "0",
        "maxzoom": "2",
        "bounds": "-180,-85,180,85",
        "center": "0,0,1",
        "json": LAYER_JSON,
    }
    roads = make_mbtiles("roads", tiles=vector_tiles, metadata=meta)
    grids = [
        (1, 0, 1, GRID, {"1": {"NAME": "Prague"}, "2": {"NAME": "Brno"}}),
        (1, 1, 1, {"grid": ["    "], "keys": [""]}, {}),
    ]
    poi = make_mbtiles("poi", tiles=[(1, 0, 1, pbf(b"poi"))], metadata={"name": "POI"}, grids=grids)
    for path in (roads, poi):
        os.utime(path, (MTIME, MTIME))
    return tile_dir


@pytest.fixture
def client(archives):
    registry = load_tilesets(archives)
    app = create_app(registry, _settings(archives))
    with TestClient(app) as c:
        yield c


class TestIndex:

    def test_root_redirects(self, client):
        r = client.get("/", follow_redirects=False)
        assert r.status_code == 301
        assert r.headers["location"] == "/v1"

    def test_health(self, client):
        r = client.get("/v1")
        assert r.status_code == 200
        assert r.json() == {"ok": True, "tilesets": 2}

    def test_health_after_failed_init(self, tile_dir):
        app = create_app(TilesetRegistry({}), _settings(tile_dir), init_failed=True)
        with TestClient(app) as c:
            assert c.get("/v1").json() == {"ok": False, "tilesets": 0}


class TestTileJSON:

    def test_manifest(self, client):
        r = client.get("/v1/roads")
        assert r.status_code == 200
        tj = r.json()
        assert tj["tilejson"] == "2.2.0"
        assert tj["scheme"] == "xyz"
        assert tj["name"] == "Roads"
        assert tj["description"] == "Road network"
        assert tj["tiles"] == ["http://testserver/v1/roads/tiles/{z}/{x}/{y}.pbf"]
        assert "grids" not in tj
        # a zero minzoom is left out of the document
        assert "minzoom" not in tj
        assert tj["maxzoom"] == 2
        assert tj["bounds"] == [-180, -85, 180, 85]
        assert tj["center"] == [0, 0, 1]
        assert tj["format"] == "pbf"
        assert tj["type"] == "overlay"
        assert tj["vector_layers"] == [{"id": "roads", "fields": {"class": "String"}}]
        assert tj["tilestats"] == {"layerCount": 1, "layers": []}

    def test_grid_template_and_query(self, client):
        tj = client.get("/v1/poi?access_token=abc").json()
        assert tj["tiles"] == ["http://testserver/v1/poi/tiles/{z}/{x}/{y}.pbf?access_token=abc"]
        assert tj["grids"] == ["http://testserver/v1/poi/tiles/{z}/{x}/{y}.json?access_token=abc"]
        # no maxzoom in metadata: derived from the tiles table
        assert (tj["maxzoom"], tj.get("minzoom", 0)) == (1, 1)

    def test_host_url_setting(self, archives):
        registry = load_tilesets(archives)
        app = create_app(registry, _settings(archives, host_url="https://tiles.example.com"))
        with TestClient(app) as c:
            tj = c.get("/v1/roads").json()
        assert tj["tiles"] == ["https://tiles.example.com/v1/roads/tiles/{z}/{x}/{y}.pbf"]

    def test_unknown_tileset(self, client):
        r = client.get("/v1/nope")
        assert r.status_code == 404
        assert r.json() == {"message": "Tileset not found", "status": 404}

    def test_metadata_error_is_500(self, make_mbtiles, tile_dir):
        make_mbtiles("bad", metadata={"bounds": "1,2"})
        registry = load_tilesets(tile_dir)
        with TestClient(create_app(registry, _settings(tile_dir))) as c:
            r = c.get("/v1/bad")
        assert r.status_code == 500
        assert "bounds" in r.json()["message"]


class TestTiles:

    def test_vector_tile(self, client):
        r = client.get("/v1/roads/tiles/1/1/0.pbf")
        assert r.status_code == 200
        assert r.headers["content-type"] == "application/x-protobuf"
        assert r.headers["content-encoding"] == "gzip"
        # the client undoes the transfer encoding
        assert r.content == b"north-east"
        assert r.headers["etag"] == '"%s"' % hashlib.blake2b(pbf(b"north-east"), digest_size=32).hexdigest()
        assert r.headers["last-modified"] == format_datetime(datetime.fromtimestamp(MTIME, tz=timezone.utc), usegmt=True)

    def test_stable_etag(self, client):
        a = client.get("/v1/roads/tiles/2/3/3.pbf")
        b = client.get("/v1/roads/tiles/2/3/3.pbf")
        assert a.headers["etag"] == b.headers["etag"]

    def test_missing_tile_is_no_content(self, client):
        r = client.get("/v1/roads/tiles/2/0/0.pbf")
        assert r.status_code == 204
        assert r.content == b""

    @pytest.mark.parametrize("path", ["/v1/roads/tiles/1/2/0.pbf", "/v1/roads/tiles/x/0/0", "/v1/roads/tiles/300/0/0"])
    def test_invalid_coordinates(self, client, path):
        r = client.get(path)
        assert r.status_code == 400
        assert "not valid" in r.text

    def test_unknown_tileset(self, client):
        r = client.get("/v1/nope/tiles/0/0/0.pbf")
        assert r.status_code == 404

    def test_if_none_match(self, client):
        etag = client.get("/v1/roads/tiles/0/0/0.pbf").headers["etag"]
        assert client.get("/v1/roads/tiles/0/0/0.pbf", headers={"If-None-Match": etag}).status_code == 304
        assert client.get("/v1/roads/tiles/0/0/0.pbf", headers={"If-None-Match": '"other"'}).status_code == 200

    def test_if_modified_since(self, client):
        mtime = datetime.fromtimestamp(MTIME, tz=timezone.utc)
        same = format_datetime(mtime, usegmt=True)
        earlier = format_datetime(mtime - timedelta(hours=1), usegmt=True)
        assert client.get("/v1/roads/tiles/0/0/0.pbf", headers={"If-Modified-Since": same}).status_code == 304
        assert client.get("/v1/roads/tiles/0/0/0.pbf", headers={"If-Modified-Since": earlier}).status_code == 200

    def test_bad_if_modified_since(self, client):
        r = client.get("/v1/roads/tiles/0/0/0.pbf", headers={"If-Modified-Since": "yesterday"})
        assert r.status_code == 400


class TestGrids:

    def test_grid_with_key_data(self, client):
        r = client.get("/v1/poi/tiles/1/0/0.json")
        assert r.status_code == 200
        assert r.headers["content-type"] == "application/json"
        assert r.headers["content-encoding"] == "deflate"
        doc = r.json()
        assert doc["grid"] == GRID["grid"]
        assert doc["data"] == {"1": {"NAME": "Prague"}, "2": {"NAME": "Brno"}}

    def test_grid_without_key_data(self, client):
        r = client.get("/v1/poi/tiles/1/1/0.json")
        assert r.status_code == 200
        assert r.json() == {"grid": ["    "], "keys": [""]}

    def test_missing_grid(self, client):
        assert client.get("/v1/poi/tiles/1/1/1.json").status_code == 204

    def test_tileset_without_grids(self, client):
        assert client.get("/v1/roads/tiles/0/0/0.json").status_code == 204

    def test_gzip_grids(self, make_mbtiles, tile_dir):
        make_mbtiles("gz", grids=[(0, 0, 0, GRID, {"1": {"v": 1}})], grid_codec="gzip")
        registry = load_tilesets(tile_dir)
        with TestClient(create_app(registry, _settings(tile_dir))) as c:
            r = c.get("/v1/gz/tiles/0/0/0.json")
        assert r.headers["content-encoding"] == "gzip"
        assert r.json()["data"] == {"1": {"v": 1}}


class TestCors:

    def test_allowed_origin(self, client):
        r = client.get("/v1", headers={"Origin": "https://app.example.com"})
        assert r.headers["access-control-allow-origin"] == "https://app.example.com"

    def test_other_origin(self, client):
        r = client.get("/v1", headers={"Origin": "https://evil.example.com"})
        assert "access-control-allow-origin" not in r.headers
