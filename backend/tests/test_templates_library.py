"""Tests for the built-in protocol template catalog."""

import pytest

from evofit.core.errors import NotFoundError
from evofit.services.protocols.schemas import Intensity, ProtocolType
from evofit.services.protocols.templates_library import ProtocolTemplatesLibrary, templates_library


class TestCatalog:
    def test_template_ids_are_unique(self):
        ids = [t.id for t in templates_library.templates]
        assert len(ids) == len(set(ids)) == 12

    def test_get_template(self):
        template = templates_library.get_template("parasite-cleanse-intensive")
        assert template.protocol_type == ProtocolType.parasite_cleanse
        assert template.default_intensity == Intensity.intensive
        assert template.default_duration == 60

    def test_unknown_template(self):
        with pytest.raises(NotFoundError) as exc:
            templates_library.get_template("nope")
        assert exc.value.kind == "template"

    def test_default_configuration_is_a_fresh_copy(self):
        config = templates_library.default_configuration("parasite-cleanse-intensive")
        assert config["template_id"] == "parasite-cleanse-intensive"
        assert config["type"] == "parasite-cleanse"
        config["phases"].append({"name": "extra"})
        again = templates_library.default_configuration("parasite-cleanse-intensive")
        assert len(again["phases"]) == 3

    def test_custom_catalog(self):
        template = templates_library.get_template("custom")
        library = ProtocolTemplatesLibrary([template])
        assert [t.id for t in library.templates] == ["custom"]
        assert library.categories() == ["custom"]


class TestQueries:
    def test_filter_by_type(self):
        cleanses = templates_library.list_templates(protocol_type="parasite-cleanse")
        assert [t.id for t in cleanses] == ["parasite-cleanse", "parasite-cleanse-intensive"]

    def test_filter_by_category_and_intensity(self):
        results = templates_library.list_templates(category="weight_loss", intensity="high")
        assert [t.id for t in results] == ["fat-loss-advanced"]

    def test_categories_keep_catalog_order(self):
        categories = templates_library.categories()
        assert categories[0] == "weight_loss"
        assert len(categories) == len(set(categories))
        assert "custom" in categories

    def test_search_is_case_insensitive(self):
        assert {t.id for t in templates_library.search("CARDIOVASCULAR")} == {"heart-health"}

    def test_empty_search_returns_everything(self):
        assert len(templates_library.search("  ")) == 12


class TestRecommendations:
    def test_condition_matches_health_focus(self):
        results = templates_library.recommend(age=55, conditions=["diabetes"])
        assert results[0].id == "metabolic-health"

    def test_seniors_are_steered_away_from_intensive(self):
        results = templates_library.recommend(age=70)
        assert len(results) == ProtocolTemplatesLibrary.RECOMMENDATION_LIMIT
        assert all(t.default_intensity != Intensity.intensive for t in results)

    def test_experience_matches_audience(self):
        results = templates_library.recommend(experience="beginners")
        assert results[0].id == "weight-loss-beginner"
