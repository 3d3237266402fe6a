"""
Tests for slug helpers
"""
import pytest

from saas_core.utils import slugify, unique_slug


@pytest.mark.unit
class TestSlugs:

    @pytest.mark.parametrize(
        "text, expected",
        [
            ("Acme Corp", "acme-corp"),
            ("  Déjà  Vu!! ", "d-j-vu"),
            ("R&D / Ops", "r-d-ops"),
        ],
    )
    def test_slugify(self, text, expected):
        assert slugify(text) == expected

    def test_empty_text_gets_random_slug(self):
        slug = slugify("!!!")

        assert len(slug) == 8
        assert slug != slugify("!!!")

    def test_unique_slug_appends_counter(self):
        taken = {"marketing", "marketing-2"}

        assert unique_slug("Marketing", taken.__contains__) == "marketing-3"
        assert unique_slug("Sales", taken.__contains__) == "sales"
