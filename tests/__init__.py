"""
Tile Server Test Suite

Structure:
- unit/: tilesets engine, configuration and logging
- integration/: HTTP layer over archives built in tmp_path (see conftest.py)
"""
