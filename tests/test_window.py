from __future__ import annotations

import numpy as np
import pytest

from tilereduce.errors import ConfigurationError, TileIOError
from tilereduce.raster.info import check_aligned, grid_mismatch, inspect_raster
from tilereduce.raster.window import nodata_mask, read_window, read_windows
from tests.utils import tile, write_raster


def test_inspect_raster(tmp_path) -> None:
    path = write_raster(
        tmp_path / "in.tif",
        np.zeros((20, 30), dtype=np.int16),
        bounds=(0.0, 0.0, 30.0, 20.0),
        nodata=-1,
    )
    handle = inspect_raster(path)

    assert handle.dims == (20, 30)
    assert handle.count == 1
    assert handle.resolution == (1.0, 1.0)
    assert handle.nodata == -1
    assert handle.dtype == "int16"
    assert handle.crs == "EPSG:32633"


def test_inspect_raster_missing(tmp_path) -> None:
    with pytest.raises(ConfigurationError, match="not found"):
        inspect_raster(tmp_path / "missing.tif")


def test_read_window_reads_only_the_tile(tmp_path) -> None:
    data = np.arange(100, dtype=np.int32).reshape(10, 10)
    handle = inspect_raster(write_raster(tmp_path / "in.tif", data))

    window = read_window(handle, tile(1, 2, 3, 4, 5))

    assert window.data.shape == (1, 4, 5)
    assert window.shape == (4, 5)
    np.testing.assert_array_equal(window.band(1), data[2:6, 3:8])
    assert window.valid.all()


def test_read_window_marks_nodata_in_any_band(tmp_path) -> None:
    data = np.ones((2, 3, 3), dtype=np.int16)
    data[0, 0, 0] = -9
    data[1, 2, 2] = -9
    handle = inspect_raster(write_raster(tmp_path / "in.tif", data, nodata=-9))

    window = read_window(handle, tile(1, 0, 0, 3, 3))

    assert window.data.shape == (2, 3, 3)
    assert not window.valid[0, 0]
    assert not window.valid[2, 2]
    assert window.valid.sum() == 7


def test_nodata_mask_flags_nan() -> None:
    data = np.array([[1.0, np.nan], [0.0, 2.0]], dtype=np.float32)

    assert nodata_mask(data, None).tolist() == [[False, True], [False, False]]
    assert nodata_mask(data, 0.0).tolist() == [[False, True], [True, False]]


def test_read_window_outside_grid_raises(tmp_path) -> None:
    handle = inspect_raster(write_raster(tmp_path / "in.tif", np.zeros((10, 10), np.uint8)))

    with pytest.raises(TileIOError):
        read_window(handle, tile(1, 8, 8, 5, 5))


def test_read_window_corrupt_file_raises(tmp_path) -> None:
    path = write_raster(tmp_path / "in.tif", np.zeros((10, 10), np.uint8))
    handle = inspect_raster(path)
    path.write_bytes(b"not a tiff")

    with pytest.raises(TileIOError):
        read_window(handle, tile(1, 0, 0, 5, 5))


def test_read_windows_reads_each_source(tmp_path) -> None:
    first = inspect_raster(write_raster(tmp_path / "a.tif", np.full((6, 6), 1, np.uint8)))
    second = inspect_raster(write_raster(tmp_path / "b.tif", np.full((6, 6), 2, np.uint8)))

    windows = read_windows([first, second], tile(1, 0, 0, 3, 3))

    assert [int(window.band(1)[0, 0]) for window in windows] == [1, 2]


def test_check_aligned_accepts_matching_grids(tmp_path) -> None:
    first = inspect_raster(write_raster(tmp_path / "a.tif", np.zeros((6, 6), np.uint8)))
    second = inspect_raster(write_raster(tmp_path / "b.tif", np.zeros((6, 6), np.uint8)))

    check_aligned([first, second])
    assert grid_mismatch(first, second) is None


@pytest.mark.parametrize(
    ("shape", "bounds", "crs", "expected"),
    [
        ((6, 7), None, "EPSG:32633", "dimensions"),
        ((6, 6), (1.0, 0.0, 7.0, 6.0), "EPSG:32633", "transform"),
        ((6, 6), None, "EPSG:32634", "CRS"),
    ],
)
def test_check_aligned_rejects_mismatch(tmp_path, shape, bounds, crs, expected) -> None:
    base_bounds = (0.0, 0.0, 6.0, 6.0)
    first = inspect_raster(
        write_raster(tmp_path / "a.tif", np.zeros((6, 6), np.uint8), bounds=base_bounds)
    )
    other_bounds = bounds or (0.0, 0.0, float(shape[1]), 6.0)
    second = inspect_raster(
        write_raster(tmp_path / "b.tif", np.zeros(shape, np.uint8), bounds=other_bounds, crs=crs)
    )

    with pytest.raises(ConfigurationError, match=expected):
        check_aligned([first, second])


def test_check_aligned_requires_inputs() -> None:
    with pytest.raises(ConfigurationError):
        check_aligned([])
