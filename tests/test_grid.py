from __future__ import annotations

import json

import numpy as np
import pytest

from tilereduce.raster.grid import tile_bounds, tile_grid_collection, write_tile_grid
from tilereduce.raster.info import inspect_raster
from tilereduce.raster.partition import partition_grid
from tests.utils import write_raster


@pytest.fixture
def handle(tmp_path):
    path = write_raster(
        tmp_path / "grid.tif",
        np.zeros((100, 100), dtype=np.uint8),
        bounds=(1000.0, 2000.0, 2000.0, 3000.0),
    )
    return inspect_raster(path)


def test_tile_bounds_follow_the_geotransform(handle) -> None:
    tiles = partition_grid(handle.dims, 40)

    assert tile_bounds(handle, tiles[0]) == pytest.approx((1000.0, 2600.0, 1400.0, 3000.0))
    assert tile_bounds(handle, tiles[4]) == pytest.approx((1400.0, 2200.0, 1800.0, 2600.0))
    assert tile_bounds(handle, tiles[8]) == pytest.approx((1800.0, 2000.0, 2000.0, 2200.0))


def test_tile_grid_collection(handle) -> None:
    tiles = partition_grid(handle.dims, 40)

    collection = tile_grid_collection(handle, tiles)

    assert collection["type"] == "FeatureCollection"
    assert collection["crs"]["properties"]["name"] == "EPSG:32633"
    assert len(collection["features"]) == 9
    feature = collection["features"][4]
    assert feature["geometry"]["type"] == "Polygon"
    ring = feature["geometry"]["coordinates"][0]
    assert ring[0] == ring[-1]
    assert len(ring) == 5
    assert feature["properties"] == {
        "id": 5,
        "offset_row": 40,
        "offset_col": 40,
        "size_rows": 40,
        "size_cols": 40,
    }


def test_write_tile_grid(tmp_path, handle) -> None:
    tiles = partition_grid(handle.dims, 50)

    path = write_tile_grid(tmp_path / "out" / "grid.geojson", handle, tiles)

    payload = json.loads(path.read_text(encoding="utf-8"))
    assert [feature["properties"]["id"] for feature in payload["features"]] == [1, 2, 3, 4]
