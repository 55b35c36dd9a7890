"""
Tests for configuration defaults and JSON loading.
"""

import json

import pytest

from sprite_separator.config import (
    DetectorConfig,
    FusionOptions,
    FusionStrategy,
    Precision,
    SeparatorConfig,
    load_config,
)


def test_detector_fusion_defaults_differ_from_standalone_fusion():
    """The detector runs fusion with its own weights and without model refinement."""
    standalone = FusionOptions()
    detector = DetectorConfig().fusion
    assert standalone.weights.edge == 0.3
    assert standalone.quality_threshold == 0.7
    assert standalone.allow_model_refine
    assert detector.weights.edge == 0.35
    assert detector.weights.model == 0.10
    assert detector.quality_threshold == 0.65
    assert not detector.allow_model_refine


def test_fusion_edge_options():
    edge = FusionOptions().edge
    assert (edge.low_threshold, edge.high_threshold, edge.blur_size) == (40, 120, 7)
    assert (edge.min_area, edge.max_area) == (5_000, 150_000)


def test_load_config_partial_override(tmp_path):
    """Keys not in the file keep their defaults, including nested detector-specific ones."""
    path = tmp_path / "config.json"
    path.write_text(json.dumps({
        "detector": {
            "expected_count": 7,
            "fusion": {"quality_threshold": 0.5, "strategy": "voting"},
            "legacy": {"top_band_sizes": [100, 500]},
        },
        "extraction": {"precision": "standard", "alpha_feathering": 1.5},
    }))

    config = load_config(path)

    assert isinstance(config, SeparatorConfig)
    assert config.detector.expected_count == 7
    assert config.detector.fusion.quality_threshold == 0.5
    assert config.detector.fusion.strategy == FusionStrategy.VOTING
    # Untouched detector-specific fusion defaults survive the partial override
    assert config.detector.fusion.weights.edge == 0.35
    assert not config.detector.fusion.allow_model_refine
    assert config.detector.legacy.top_band_sizes == (100, 500)
    assert config.extraction.precision == Precision.STANDARD
    assert config.extraction.alpha_feathering == 1.5
    assert config.extraction.padding == 5


def test_load_config_rejects_unknown_keys(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"detector": {"expected_cnt": 3}}))
    with pytest.raises(ValueError, match="expected_cnt"):
        load_config(path)


def test_load_config_rejects_bad_enum(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"extraction": {"precision": "sloppy"}}))
    with pytest.raises(ValueError):
        load_config(path)


def test_load_config_rejects_invalid_json(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json")
    with pytest.raises(ValueError, match="invalid config"):
        load_config(path)
