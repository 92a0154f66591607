"""
Unit tests for variant extraction.

Payload shapes mirror design-service and __NEXT_DATA__ responses seen in the wild.
"""

import pytest

from extractor import (
    UNKNOWN,
    VariantCandidate,
    choose_download_url,
    collect_url_candidates,
    extract_estimated_grams,
    extract_estimated_hours,
    extract_instances_from_payload,
    extract_material,
    extract_model_title,
    extract_printer,
    extract_settings_summary,
    file_name_from_url,
    merge_profile,
    needs_profile_enrichment,
    score_variant_like_item,
    select_best_variant_array,
    to_variant_candidate,
)

SITE = "https://makerworld.com"
TARGET = "Bambu Lab P2S"

PLATES_INSTANCE = {
    "id": 2577822,
    "profileId": 601017329,
    "title": "0.2mm layer, 2 walls, 15% infill",
    "extention": {
        "modelInfo": {
            "plates": [
                {"prediction": 6527},
                {"prediction": 6103},
                {"prediction": 1474},
                {"prediction": 12401},
                {"prediction": 4228},
                {"prediction": 22366},
                {"prediction": 7039},
            ],
        },
    },
    "prediction": 60138,
    "weight": 403,
}


class TestMetrics:
    """Tests for extract_estimated_hours() and extract_estimated_grams()"""

    def test_plate_predictions_are_seconds(self):
        assert extract_estimated_hours(PLATES_INSTANCE) == pytest.approx(16.705, abs=0.001)

    def test_plates_win_over_direct_value(self):
        node = {"prediction": 100000, "plates": [{"prediction": 3600}, {"prediction": 7200}]}
        assert extract_estimated_hours(node) == 3.0

    def test_direct_labelled_hours(self):
        assert extract_estimated_hours({"prediction": "16.7 h", "createTime": 396556}) == 16.7

    def test_hours_missing(self):
        assert extract_estimated_hours({"title": "no time"}) is None

    def test_direct_grams(self):
        assert extract_estimated_grams(PLATES_INSTANCE) == 403.0

    def test_plate_grams_are_summed(self):
        assert extract_estimated_grams({"plates": [{"weight": 10}, {"weight": 5.5}]}) == 15.5


class TestPrinterMaterialSettings:
    """Tests for extract_printer(), extract_material() and extract_settings_summary()"""

    def test_compatibility_object(self):
        node = {"extention": {"modelInfo": {"compatibility": {"devModelName": "N7", "devProductName": "P2S"}}}}
        assert extract_printer(node, TARGET) == "P2S"

    def test_compatibility_list_prefers_compatible_entry(self):
        node = {"compatibility": [{"devProductName": "A1"}, {"devProductName": "X1 Carbon"}]}
        assert extract_printer(node, TARGET) == "X1 Carbon"

    def test_compatibility_list_falls_back_to_first(self):
        node = {"otherCompatibility": ["Prusa MK4", "Voron 2.4"]}
        assert extract_printer(node, TARGET) == "Prusa MK4"

    def test_direct_printer_field(self):
        assert extract_printer({"printerName": "Bambu Lab P2S"}, TARGET) == "Bambu Lab P2S"

    def test_free_text_compatibility_field_is_not_a_printer(self):
        node = {"printerName": "Bambu Lab P2S", "compatibilityNote": "Check the description"}
        assert extract_printer(node, TARGET) == "Bambu Lab P2S"

    def test_largest_compatibility_array_leads(self):
        node = {"compatibility": {"devProductName": "Voron"}, "otherCompatibility": ["Prusa MK4", "Prusa XL"]}
        assert extract_printer(node, TARGET) == "Prusa MK4"

    def test_printer_unknown(self):
        assert extract_printer({"title": "x"}, TARGET) == UNKNOWN

    def test_material(self):
        assert extract_material({"filamentName": "PETG HF"}) == "PETG HF"
        assert extract_material({}) == UNKNOWN

    def test_settings_summary(self):
        node = {
            "layerHeight": "0.2",
            "nozzleDiameter": 0.4,
            "sparseInfillDensity": "15%",
            "wallLoops": 2,
            "supportEnabled": False,
            "speedProfile": "Standard",
        }
        summary = extract_settings_summary(node)
        assert summary.layer_height_mm == 0.2
        assert summary.nozzle_mm == 0.4
        assert summary.infill_percent == 15.0
        assert summary.wall_loops == 2.0
        assert summary.support_enabled is False
        assert summary.speed_profile == "Standard"
        assert summary.filament_profile is None

    def test_empty_settings(self):
        assert extract_settings_summary({"title": "x"}).is_empty()


class TestDownloadUrls:
    """Tests for collect_url_candidates() and choose_download_url()"""

    def test_escaped_and_relative_urls(self):
        node = {
            "text": "see https:\\/\\/cdn.example.com\\/files\\/a.3mf",
            "path": "/api/download/123",
            "plain": "/about",
        }
        assert collect_url_candidates(node, SITE) == [
            "https://cdn.example.com/files/a.3mf",
            "https://makerworld.com/api/download/123",
        ]

    def test_first_download_like_url_wins(self):
        node = {"cover": "https://img.example.com/cover.png", "file": "https://cdn.example.com/model.stl"}
        assert choose_download_url(node, SITE) == "https://cdn.example.com/model.stl"

    def test_no_download_url(self):
        assert choose_download_url({"cover": "https://img.example.com/cover.png"}, SITE) is None

    def test_file_name_from_url(self):
        assert file_name_from_url("https://cdn.example.com/files/My%20Part.3mf?x=1") == "My Part.3mf"
        assert file_name_from_url("https://cdn.example.com/") == "makerworld-model"


class TestVariantArrays:
    """Tests for scoring and locating the variant array"""

    RELATED = [{"title": f"Related model {i}", "image": f"/thumb-{i}.jpg"} for i in range(1, 5)]
    INSTANCES = [
        {
            "id": 2609620,
            "profileId": 2609620,
            "title": "0.2mm Balanced",
            "printerName": "Bambu Lab P2S",
            "material": "PLA Basic",
            "prediction": "2.4 h",
            "weight": 55,
        }
    ]

    def test_score_variant(self):
        assert score_variant_like_item(self.INSTANCES[0], SITE) == 11

    def test_score_decoy(self):
        assert score_variant_like_item(self.RELATED[0], SITE) == 0
        assert score_variant_like_item("not an object", SITE) == 0

    def test_best_array_beats_longer_decoy(self):
        assert select_best_variant_array([self.RELATED, self.INSTANCES], SITE) is self.INSTANCES

    def test_tie_prefers_longer_array(self):
        short = [{"x": 1}]
        long = [{"x": 1}, {"x": 2}]
        assert select_best_variant_array([short, long], SITE) is long

    def test_payload_with_decoy_array(self):
        payload = {
            "props": {
                "pageProps": {
                    "data": self.RELATED,
                    "design": {"title": "Cushiony Keyboard Wrist Rest", "instances": self.INSTANCES},
                }
            }
        }
        assert extract_instances_from_payload(payload, SITE) == self.INSTANCES

    def test_payload_is_array(self):
        assert extract_instances_from_payload(self.INSTANCES, SITE) == self.INSTANCES

    def test_payload_without_arrays(self):
        assert extract_instances_from_payload({"error": "blocked"}, SITE) == []

    def test_model_title(self):
        assert extract_model_title({"design": {"title": "Seed Starter"}}) == "Seed Starter"
        assert extract_model_title({"displayName": "Shown"}) == "Shown"
        assert extract_model_title({}, fallback="From page") == "From page"
        assert extract_model_title({}) == "MakerWorld model"


class TestCandidates:
    """Tests for to_variant_candidate() and merge_profile()"""

    def test_full_candidate(self):
        candidate = to_variant_candidate(PLATES_INSTANCE, TARGET, SITE)
        assert candidate.variant_id == 2577822
        assert candidate.profile_id == 601017329
        assert candidate.name == "0.2mm layer, 2 walls, 15% infill"
        assert candidate.estimated_grams == 403.0
        assert candidate.printer == UNKNOWN

    def test_rejects_node_without_ids(self):
        assert to_variant_candidate({"title": "no ids"}, TARGET, SITE) is None
        assert to_variant_candidate(["not", "a", "dict"], TARGET, SITE) is None

    def test_default_name(self):
        assert to_variant_candidate({"id": 5}, TARGET, SITE).name == "MakerWorld variant 5"

    def test_primary_id_falls_back_to_profile(self):
        candidate = VariantCandidate(variant_id=None, profile_id=77, name="x")
        assert candidate.primary_id == 77
        assert candidate.matches_id(77)

    def test_needs_enrichment(self):
        incomplete = VariantCandidate(variant_id=1, profile_id=2, name="a", printer="Bambu Lab P2S")
        complete = VariantCandidate(
            variant_id=1,
            profile_id=2,
            name="a",
            printer="Bambu Lab P2S",
            material="PLA",
            estimated_hours=1.0,
            estimated_grams=2.0,
        )
        no_profile = VariantCandidate(variant_id=1, profile_id=None, name="a")
        assert needs_profile_enrichment(incomplete) is True
        assert needs_profile_enrichment(complete) is False
        assert needs_profile_enrichment(no_profile) is False

    def test_merge_fills_only_unknown_fields(self):
        candidate = VariantCandidate(
            variant_id=1,
            profile_id=2,
            name="a",
            material="PETG Basic",
            estimated_hours=5.0,
            payload={"id": 1},
        )
        profile = {
            "printerName": "Bambu Lab X1 Carbon",
            "material": "PLA Basic",
            "prediction": 7200,
            "weight": 25,
            "layerHeight": 0.28,
            "downloadUrl": "https://cdn.example.com/files/profile.3mf",
        }
        merged = merge_profile(candidate, profile, TARGET, SITE)
        assert merged.printer == "Bambu Lab X1 Carbon"
        assert merged.material == "PETG Basic"
        assert merged.estimated_hours == 5.0
        assert merged.estimated_grams == 25.0
        assert merged.settings_summary.layer_height_mm == 0.28
        assert merged.download_url == "https://cdn.example.com/files/profile.3mf"
        assert merged.payload == {"id": 1, "profile_payload": profile}
        assert candidate.printer == UNKNOWN
