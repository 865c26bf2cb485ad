import json

import pytest

from services.errors import FeatureUnknown
from services.pricing import (
    DEFAULT_PRICING,
    explicit_cost_value,
    load_pricing_table,
    normalize_metadata_value,
    pricing_table_from_dict,
    resolve_cost,
)


def test_explicit_cost_always_wins():
    assert resolve_cost("video_gen", 42, {"duration": 5}) == 42
    assert resolve_cost("not_a_feature", 42) == 42
    assert resolve_cost("test_feature", 0) == 0
    assert resolve_cost("test_feature", 42.0) == 42


@pytest.mark.parametrize("bad_cost", [-1, 2.5, float("nan"), float("inf"), "42", True, None, {"cost": 1}])
def test_unusable_explicit_cost_falls_through_to_table(bad_cost):
    assert resolve_cost("test_feature", bad_cost) == 10


def test_duration_rule_prices_video_generation():
    assert resolve_cost("video_gen", metadata={"duration": 5}) == 200
    assert resolve_cost("video_gen", metadata={"duration": "10"}) == 500
    assert resolve_cost("kling_video", metadata={"duration": 5.0}) == 200


def test_metadata_without_matching_rule_uses_base_price():
    assert resolve_cost("kling_video", metadata={"duration": 7}) == 250
    assert resolve_cost("kling_video", metadata={}) == 250
    assert resolve_cost("kling_video") == 250


def test_compound_rule_requires_every_key():
    assert resolve_cost("kling_v21_t2v", metadata={"aspect_ratio": "9:16", "duration": 10}) == 600
    assert resolve_cost("kling_v21_t2v", metadata={"aspect_ratio": "1:1", "duration": "5"}) == 300
    assert resolve_cost("kling_v21_t2v", metadata={"duration": 10}) == 300
    assert resolve_cost("kling_v21_t2v", metadata={"aspect_ratio": "4:3", "duration": 10}) == 300


def test_unknown_feature_without_cost_is_rejected():
    with pytest.raises(FeatureUnknown):
        resolve_cost("teleportation")


def test_rule_only_feature_without_match_is_rejected():
    with pytest.raises(FeatureUnknown) as exc_info:
        resolve_cost("video_gen", metadata={"duration": 7})
    assert exc_info.value.code == "UNKNOWN_FEATURE_TYPE"
    assert exc_info.value.status_code == 400


def test_metadata_value_normalization():
    assert normalize_metadata_value(5) == "5"
    assert normalize_metadata_value(5.0) == "5"
    assert normalize_metadata_value(" 5 ") == "5"
    assert normalize_metadata_value("16:9") == "16:9"
    assert normalize_metadata_value("HD") == "hd"
    assert normalize_metadata_value(True) == "true"
    assert normalize_metadata_value(float("nan")) is None
    assert normalize_metadata_value("") is None
    assert normalize_metadata_value([5]) is None


def test_explicit_cost_value_rejects_booleans_and_fractions():
    assert explicit_cost_value(7) == 7
    assert explicit_cost_value(False) is None
    assert explicit_cost_value(7.5) is None


def test_pricing_table_from_dict_builds_rules():
    table = pricing_table_from_dict(
        {
            "base_prices": {"upscale": 15},
            "metadata_rules": {
                "upscale": [{"keys": ["scale", "format"], "prices": {"4|PNG": 40, "2|png": 20}}],
            },
        }
    )
    assert resolve_cost("upscale", table=table) == 15
    assert resolve_cost("upscale", metadata={"scale": 4, "format": "png"}, table=table) == 40
    assert resolve_cost("upscale", metadata={"scale": "2", "format": "PNG"}, table=table) == 20
    with pytest.raises(FeatureUnknown):
        resolve_cost("test_feature", table=table)


@pytest.mark.parametrize(
    "raw",
    [
        {"base_prices": {"upscale": -1}},
        {"base_prices": {"upscale": "ten"}},
        {"metadata_rules": {"upscale": [{"keys": [], "prices": {}}]}},
        {"metadata_rules": {"upscale": [{"keys": ["scale"], "prices": {"2|png": 20}}]}},
        {"metadata_rules": {"upscale": ["scale"]}},
    ],
)
def test_pricing_table_from_dict_rejects_malformed_input(raw):
    with pytest.raises(ValueError):
        pricing_table_from_dict(raw)


def test_load_pricing_table_defaults_and_file(tmp_path):
    assert load_pricing_table("") is DEFAULT_PRICING

    path = tmp_path / "pricing.json"
    path.write_text(json.dumps({"base_prices": {"gemini_chat": 3}}), encoding="utf-8")
    table = load_pricing_table(str(path))
    assert resolve_cost("gemini_chat", table=table) == 3
