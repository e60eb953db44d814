from __future__ import annotations

import numpy as np
import pytest

from tilereduce.errors import ConfigurationError, WorkerComputationError
from tilereduce.raster.models import PixelWindow
from tilereduce.workers.fusion import (
    FeatureSpec,
    FusionWorker,
    build_regression_matrix,
    normalized_difference,
)
from tests.utils import ShortPredictor, SumPredictor, tile, write_raster


def _window(descriptor, data, nodata=-1.0) -> PixelWindow:
    data = np.asarray(data, dtype=np.float32)
    return PixelWindow(
        descriptor=descriptor,
        data=data[np.newaxis, ...],
        valid=data != nodata,
        nodata=nodata,
    )


def test_normalized_difference_values() -> None:
    result = normalized_difference(np.array([3.0, 1.0]), np.array([1.0, 1.0]))

    np.testing.assert_allclose(result, [50.0, 0.0])
    assert normalized_difference(0.3, 0.1, scale=1.0) == pytest.approx(0.5)


def test_normalized_difference_sentinel_on_zero_sum() -> None:
    result = normalized_difference(np.array([0.0, 2.0, np.nan]), np.array([0.0, -2.0, 1.0]))

    assert result.tolist() == [0.0, 0.0, 0.0]
    assert normalized_difference(0.0, 0.0, sentinel=-999.0) == -999.0


def test_feature_spec_orders_engineered_feature_last() -> None:
    spec = FeatureSpec(("red", "nir", "elev"), ratio=("nir", "red"), ratio_name="ndvi")

    assert spec.feature_names == ("red", "nir", "elev", "ndvi")
    records = spec.records(
        {"red": np.array([1.0]), "nir": np.array([3.0]), "elev": np.array([10.0])}
    )
    assert records.dtype.names == ("red", "nir", "elev", "ndvi")
    assert records["ndvi"][0] == pytest.approx(50.0)
    np.testing.assert_allclose(spec.matrix(records), [[1.0, 3.0, 10.0, 50.0]])


@pytest.mark.parametrize(
    "kwargs",
    [
        {"covariates": ()},
        {"covariates": ("a", "a")},
        {"covariates": ("a", "b"), "ratio": ("a", "c")},
        {"covariates": ("a", "b"), "ratio": ("a", "b"), "ratio_name": "a"},
    ],
)
def test_feature_spec_rejects_bad_definitions(kwargs) -> None:
    with pytest.raises(ConfigurationError):
        FeatureSpec(**kwargs)


def test_worker_predicts_only_complete_rows() -> None:
    descriptor = tile(1, 0, 0, 2, 2)
    spec = FeatureSpec(("a", "b"), ratio=("a", "b"))
    predictor = SumPredictor()
    worker = FusionWorker(spec, predictor)
    first = _window(descriptor, [[1.0, -1.0], [2.0, 4.0]])
    second = _window(descriptor, [[1.0, 5.0], [-1.0, 4.0]])

    output = worker(descriptor, [first, second], None)

    assert output.valid.tolist() == [[True, False], [False, True]]
    assert predictor.calls == [2]
    assert output.values[0, 0] == pytest.approx(2.0)
    assert output.values[1, 1] == pytest.approx(8.0)


def test_worker_always_writes_even_without_valid_pixels() -> None:
    descriptor = tile(1, 0, 0, 2, 2)
    predictor = SumPredictor()
    worker = FusionWorker(FeatureSpec(("a",)), predictor)

    output = worker(descriptor, [_window(descriptor, np.full((2, 2), -1.0))], None)

    assert output is not None
    assert not output.valid.any()
    assert predictor.calls == []


def test_worker_rejects_short_predictions() -> None:
    descriptor = tile(1, 0, 0, 1, 2)
    worker = FusionWorker(FeatureSpec(("a",)), ShortPredictor())

    with pytest.raises(WorkerComputationError, match="Predictor returned"):
        worker(descriptor, [_window(descriptor, [[1.0, 2.0]])], None)


def test_worker_rejects_wrong_window_count() -> None:
    descriptor = tile(1, 0, 0, 1, 1)
    worker = FusionWorker(FeatureSpec(("a", "b")), SumPredictor())

    with pytest.raises(WorkerComputationError, match="covariate windows"):
        worker(descriptor, [_window(descriptor, [[1.0]])], None)


def test_build_regression_matrix(tmp_path) -> None:
    bounds = (0.0, 0.0, 4.0, 4.0)
    response = write_raster(
        tmp_path / "y.tif",
        np.arange(16, dtype=np.float32).reshape(4, 4),
        bounds=bounds,
        nodata=-1.0,
    )
    red_data = np.ones((4, 4), dtype=np.float32)
    red_data[0, 1] = -1.0
    red = write_raster(tmp_path / "red.tif", red_data, bounds=bounds, nodata=-1.0)
    nir = write_raster(
        tmp_path / "nir.tif", np.full((4, 4), 3.0, dtype=np.float32), bounds=bounds, nodata=-1.0
    )
    points = [(0.5, 3.5), (1.5, 3.5), (2.5, 0.5), (10.0, 10.0)]

    matrix = build_regression_matrix(
        points,
        response,
        {"red": red, "nir": nir},
        features=FeatureSpec(("red", "nir"), ratio=("nir", "red"), ratio_name="ndvi"),
        response_name="biomass",
    )

    assert matrix.dtype.names == ("x", "y", "biomass", "red", "nir", "ndvi")
    assert matrix.shape == (2,)
    assert matrix["biomass"].tolist() == [0.0, 14.0]
    assert matrix["ndvi"].tolist() == pytest.approx([50.0, 50.0])


def test_build_regression_matrix_requires_predictor_rasters(tmp_path) -> None:
    response = write_raster(tmp_path / "y.tif", np.zeros((2, 2), dtype=np.float32))

    with pytest.raises(ConfigurationError, match="No raster"):
        build_regression_matrix(
            [(0.0, 0.0)],
            response,
            {},
            features=FeatureSpec(("red",)),
        )
