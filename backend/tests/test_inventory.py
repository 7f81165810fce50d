"""
Tests for configuration normalization, availability counting and images.
"""

from khareedo.services.inventory import (
    attach_layout_images,
    count_available,
    cover_image,
    has_unit_type,
    layout_key,
    normalize_configurations,
    normalize_connectivity,
    ordered_images,
    price_range,
)
from khareedo.utils.json_fields import safe_json, string_list


class TestCountAvailable:

    def test_counts_available_sub_configurations(self):
        configurations = [{"subConfigurations": [
            {"availabilityStatus": "Available"},
            {"availabilityStatus": "Sold"},
        ]}]
        assert count_available(configurations) == 1

    def test_ready_counts_as_open(self):
        configurations = [{"unitType": "3 BHK", "subConfigurations": [
            {"availabilityStatus": "Ready"},
            {"availabilityStatus": "Reserved"},
            {"availabilityStatus": "Available"},
        ]}]
        assert count_available(configurations) == 2

    def test_legacy_flat_configuration(self):
        configurations = [
            {"unitType": "2 BHK", "price": "55 Lakh", "availabilityStatus": "Available"},
            {"unitType": "3 BHK", "price": "80 Lakh", "availabilityStatus": "Sold"},
        ]
        assert count_available(configurations) == 1

    def test_malformed_entries_are_skipped(self):
        configurations = [None, "2 BHK", {"subConfigurations": [None, {"availabilityStatus": "Available"}]}]
        assert count_available(configurations) == 1

    def test_empty_or_missing(self):
        assert count_available([]) == 0
        assert count_available(None) == 0
        assert count_available([{"unitType": "2 BHK", "subConfigurations": []}]) == 0

    def test_missing_status_counts_as_available(self):
        nested = [{"unitType": "2BHK", "subConfigurations": [{"price": 5_000_000}]}]
        flat = [{"unitType": "2BHK", "price": 5_000_000}]
        for configurations in (nested, flat):
            assert count_available(configurations) == 1
            assert count_available(normalize_configurations(configurations)) == 1


class TestNormalizeConfigurations:

    def test_legacy_shape_becomes_nested(self):
        result = normalize_configurations([{"unitType": "2 BHK", "carpetArea": "950 sqft", "price": "55 Lakh"}])
        assert result == [{
            "unitType": "2 BHK",
            "subConfigurations": [{
                "carpetArea": "950 sqft",
                "price": 5_500_000,
                "availabilityStatus": "Available",
                "layoutPlanImages": [],
            }],
        }]

    def test_canonical_prices_are_normalized(self):
        result = normalize_configurations([{"unitType": "3 BHK", "subConfigurations": [
            {"carpetArea": "1400", "price": "1.1 Cr", "availabilityStatus": "Sold", "layoutPlanImages": ["", "a.png"]},
        ]}])
        sub = result[0]["subConfigurations"][0]
        assert sub["price"] == 11_000_000
        assert sub["availabilityStatus"] == "Sold"
        assert sub["layoutPlanImages"] == ["a.png"]

    def test_nested_sub_without_status_defaults_to_available(self):
        result = normalize_configurations([{"unitType": "2BHK", "subConfigurations": [{"price": 5_000_000}]}])
        assert result[0]["subConfigurations"][0]["availabilityStatus"] == "Available"

    def test_price_range_over_both_shapes(self):
        configurations = [
            {"unitType": "2 BHK", "price": "45 Lakh"},
            {"unitType": "3 BHK", "subConfigurations": [{"price": 7_000_000}, {"price": 0}]},
        ]
        assert price_range(configurations) == (4_500_000, 7_000_000)
        assert price_range([]) == (0, 0)

    def test_unit_type_match_ignores_spacing(self):
        configurations = [{"unitType": "2 BHK", "subConfigurations": []}]
        assert has_unit_type(configurations, "2bhk")
        assert not has_unit_type(configurations, "3 BHK")


class TestLayouts:

    def test_layout_key(self):
        assert layout_key("2 BHK", "1200.5 sqft") == "2BHK_1200"
        assert layout_key("Studio", None) == "Studio_0"

    def test_attach_by_key_index_and_mapping(self):
        configurations = normalize_configurations([
            {"unitType": "2 BHK", "subConfigurations": [
                {"carpetArea": "950 sqft", "price": 1},
                {"carpetArea": "1100 sqft", "price": 2},
            ]},
        ])
        uploaded = {"2BHK_950": ["https://cdn/950.png"], "0_1": ["https://cdn/1100.png"]}
        mapping = {"2 BHK": {"950 sqft": "https://cdn/extra.png"}}

        result = attach_layout_images(configurations, uploaded, mapping)
        subs = result[0]["subConfigurations"]
        assert subs[0]["layoutPlanImages"] == ["https://cdn/950.png", "https://cdn/extra.png"]
        assert subs[1]["layoutPlanImages"] == ["https://cdn/1100.png"]


class TestImages:

    def test_cover_first_then_order(self):
        images = [
            {"url": "c", "order": 3},
            {"url": "a", "order": 1},
            {"url": "cover", "isCover": True, "order": 9},
            {"order": 2},
        ]
        assert [img["url"] for img in ordered_images(images)] == ["cover", "a", "c"]
        assert cover_image(images) == "cover"

    def test_no_images(self):
        assert ordered_images(None) == []
        assert cover_image([]) is None


class TestLenientFields:

    def test_malformed_json_falls_back(self):
        assert safe_json("{not json", []) == []
        assert safe_json('{"a": 1}', []) == []
        assert safe_json('[{"unitType": "2 BHK"}]', []) == [{"unitType": "2 BHK"}]

    def test_string_list_accepts_csv_and_json(self):
        assert string_list("Gym, Pool ,") == ["Gym", "Pool"]
        assert string_list('["Gym", " ", null]') == ["Gym"]
        assert string_list(None) == []

    def test_connectivity_keeps_named_points(self):
        result = normalize_connectivity({
            "schools": [{"name": "DPS", "latitude": "18.5", "longitude": 73.8}, {"latitude": 1}],
            "malls": [{"name": "ignored"}],
        })
        assert result["schools"] == [{"name": "DPS", "latitude": 18.5, "longitude": 73.8}]
        assert result["hospitals"] == []
        assert "malls" not in result
