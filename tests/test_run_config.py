from __future__ import annotations

import json

import jsonschema
import pytest

from tilereduce.contracts import validate_run_config, validate_run_report
from tilereduce.errors import ConfigurationError
from tilereduce.run_config import RunConfig, load_run_config, normalize_run_config


def test_defaults() -> None:
    config = RunConfig()

    assert config.block_size == 1024
    assert config.block_units == "pixels"
    assert config.pool_size == 0
    assert config.executor == "process"
    assert config.tile_prefix == "T_"
    assert config.dtype is None
    assert config.nodata_value is None
    assert config.compression == "deflate"
    assert config.resampling_method == "nearest"
    assert config.mosaic_backend == "rasterio"
    assert config.mosaic_threads is None
    validate_run_config(config.as_dict())


def test_normalize_run_config_aliases() -> None:
    config = normalize_run_config(
        {
            "block_size": [256, 512],
            "workers": 4,
            "nodata": -9999,
            "output_dir": "out",
            "compression": "none",
            "mosaic": {"backend": "gdal", "threads": 8, "resampling": "bilinear"},
        }
    )

    assert config.block_size == (256, 512)
    assert config.pool_size == 4
    assert config.nodata_value == -9999
    assert config.output_directory == "out"
    assert config.compression is None
    assert config.mosaic_backend == "gdal"
    assert config.mosaic_threads == 8
    assert config.resampling_method == "bilinear"
    assert config.as_dict()["block_size"] == [256, 512]


@pytest.mark.parametrize(
    "payload",
    [
        {"block_size": 0},
        {"block_size": [1, 2, 3]},
        {"pool_size": -1},
        {"executor": "cluster"},
        {"dtype": "complex64"},
        {"mosaic_backend": "qgis"},
        {"unknown_option": True},
    ],
)
def test_normalize_run_config_rejects_invalid(payload) -> None:
    with pytest.raises(ConfigurationError, match="Invalid run config"):
        normalize_run_config(payload)


def test_with_overrides_ignores_none() -> None:
    config = RunConfig(block_size=40)

    assert config.with_overrides(block_size=None, pool_size=None) is config
    updated = config.with_overrides(pool_size=2, executor="thread")
    assert updated.block_size == 40
    assert updated.pool_size == 2
    assert updated.executor == "thread"


def test_output_spec(tmp_path) -> None:
    spec = RunConfig(tile_prefix="chg_", dtype="uint8", nodata_value=255).output_spec(tmp_path)

    assert spec.directory == tmp_path
    assert spec.prefix == "chg_"
    assert spec.dtype == "uint8"
    assert spec.nodata == 255
    with pytest.raises(ConfigurationError):
        RunConfig().output_spec()


def test_load_run_config(tmp_path) -> None:
    path = tmp_path / "run.json"
    path.write_text(json.dumps({"block_size": 64, "executor": "thread"}), encoding="utf-8")

    config = load_run_config(path)

    assert config.block_size == 64
    assert config.executor == "thread"


def test_load_run_config_errors(tmp_path) -> None:
    broken = tmp_path / "broken.json"
    broken.write_text("{", encoding="utf-8")
    listing = tmp_path / "list.json"
    listing.write_text("[]", encoding="utf-8")

    with pytest.raises(ConfigurationError, match="not valid JSON"):
        load_run_config(broken)
    with pytest.raises(ConfigurationError, match="JSON object"):
        load_run_config(listing)
    with pytest.raises(ConfigurationError, match="Unable to read"):
        load_run_config(tmp_path / "missing.json")


def test_validate_run_report_requires_summary() -> None:
    with pytest.raises(jsonschema.ValidationError):
        validate_run_report({"schema_version": "1", "created_at": "now"})


def test_with_output_defaults_fills_only_unset_values(tmp_path) -> None:
    filled = RunConfig().with_output_defaults(dtype="float32", nodata_value=-9999.0)
    explicit = RunConfig(dtype="int16", nodata_value=0).with_output_defaults(
        dtype="float32", nodata_value=-9999.0
    )

    assert (filled.dtype, filled.nodata_value) == ("float32", -9999.0)
    assert (explicit.dtype, explicit.nodata_value) == ("int16", 0)
    spec = RunConfig().output_spec(tmp_path)
    assert (spec.dtype, spec.nodata) == ("int32", 0)


def test_output_spec_rejects_unrepresentable_nodata(tmp_path) -> None:
    with pytest.raises(ConfigurationError, match="not representable"):
        RunConfig(dtype="uint8", nodata_value=-9999).output_spec(tmp_path)
