"""
Tile Server — HTTP front end for the tilesets engine

- Loads every `*.mbtiles` under tiles.dir at startup
- Serves /v1/{id} (TileJSON) and /v1/{id}/tiles/{z}/{x}/{y} (tiles, UTFGrids)
- /v1 reports health
"""
