"""
Fragment Classifier & Evidence Catalog Tests
============================================
"""

import random
import pytest
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from accident_analysis import evidence
from accident_analysis.fragments import (
    classify,
    count_by_category,
    from_classified,
    reclassify,
    toggle_unusual,
    unusual_facts,
    verified_facts,
)
from accident_analysis.schemas import ClassifiedFragment, FragmentCategory


# =============================================================================
# Fragments
# =============================================================================

class TestClassify:
    """classify / reclassify / toggle_unusual"""

    def test_classify_builds_fragment(self):
        """classify should trim content and keep the witness"""
        fragment = classify(1, "  Sol mouillé  ", "verified_fact", witness_id=4)

        assert fragment.accident_id == 1
        assert fragment.witness_id == 4
        assert fragment.content == "Sol mouillé"
        assert fragment.category == FragmentCategory.VERIFIED_FACT
        assert fragment.is_unusual is False

    @pytest.mark.parametrize("raw", ["fact", "", None, 3, "VERIFIED"])
    def test_unknown_category_defaults_to_other(self, raw):
        """Unknown category labels fall back to other"""
        assert classify(1, "Texte", raw).category == FragmentCategory.OTHER

    def test_category_parse_is_case_insensitive(self):
        """Category labels are parsed case-insensitively"""
        assert classify(1, "Texte", "To_Verify").category == FragmentCategory.TO_VERIFY

    def test_empty_content_rejected(self):
        """Blank fragment content is rejected"""
        with pytest.raises(ValueError):
            classify(1, "   ")

    def test_reclassify_keeps_content(self):
        """reclassify changes the category only"""
        fragment = classify(1, "Il allait trop vite", "opinion")
        changed = reclassify(fragment, FragmentCategory.TO_VERIFY)

        assert changed.category == FragmentCategory.TO_VERIFY
        assert changed.content == fragment.content
        assert fragment.category == FragmentCategory.OPINION

    def test_toggle_unusual_independent_of_category(self):
        """The unusual flag is independent of the category"""
        fragment = classify(1, "Porte ouverte", "verified_fact")
        flagged = toggle_unusual(fragment, True)

        assert flagged.is_unusual is True
        assert flagged.category == FragmentCategory.VERIFIED_FACT
        assert toggle_unusual(flagged, False).is_unusual is False

    def test_from_classified(self):
        """AI proposals become fragments of the accident"""
        proposal = ClassifiedFragment(content="Sol mouillé", category=FragmentCategory.VERIFIED_FACT, confidence=0.9)
        fragment = from_classified(2, proposal, witness_id=7)

        assert fragment.accident_id == 2
        assert fragment.witness_id == 7
        assert fragment.category == FragmentCategory.VERIFIED_FACT


class TestCounts:
    """Derived counts"""

    def test_counts(self):
        """count_by_category counts each category and the total"""
        fragments = [
            classify(1, "a", "verified_fact", is_unusual=True),
            classify(1, "b", "verified_fact"),
            classify(1, "c", "opinion"),
            classify(1, "d", "to_verify", is_unusual=True),
            classify(1, "e", "nonsense"),
        ]
        counts = count_by_category(fragments)

        assert counts.verified_fact == 2
        assert counts.opinion == 1
        assert counts.to_verify == 1
        assert counts.other == 1
        assert counts.unusual == 2
        assert counts.total == 5
        assert [f.content for f in verified_facts(fragments)] == ["a", "b"]
        assert [f.content for f in unusual_facts(fragments)] == ["a", "d"]

    def test_category_counts_sum_to_total(self):
        """Category counts always sum to the total"""
        rng = random.Random(1234)
        labels = [c.value for c in FragmentCategory] + ["bogus", None]

        fragments = []
        for step in range(300):
            if fragments and rng.random() < 0.4:
                i = rng.randrange(len(fragments))
                fragments[i] = reclassify(fragments[i], rng.choice(labels))
            else:
                fragments.append(classify(1, f"fragment {step}", rng.choice(labels)))

            counts = count_by_category(fragments)
            assert counts.verified_fact + counts.opinion + counts.to_verify + counts.other == counts.total
            assert counts.total == len(fragments)

    def test_empty_counts(self):
        """No fragments gives zero counts"""
        counts = count_by_category([])
        assert counts.total == 0
        assert counts.unusual == 0


# =============================================================================
# Evidence
# =============================================================================

class TestEvidenceCatalog:
    """catalog / mark_useful / edit"""

    def test_catalog(self):
        """catalog should create an evidence item not yet marked useful"""
        item = evidence.catalog(1, "Photo du sol", file_name="sol.jpg")

        assert item.accident_id == 1
        assert item.is_useful is False
        assert item.file_name == "sol.jpg"

    def test_catalog_requires_description(self):
        """Evidence without a description is rejected"""
        with pytest.raises(ValueError):
            evidence.catalog(1, "")

    def test_mark_useful_and_filter(self):
        """useful_evidence returns only items marked useful"""
        items = [evidence.catalog(1, "Photo"), evidence.catalog(1, "Gants")]
        items[1] = evidence.mark_useful(items[1], True)

        assert [e.description for e in evidence.useful_evidence(items)] == ["Gants"]

    def test_edit(self):
        """edit updates description and file name"""
        item = evidence.catalog(1, "Photo")
        edited = evidence.edit(item, description="Photo du sol mouillé", file_url="https://files/1.jpg")

        assert edited.description == "Photo du sol mouillé"
        assert edited.file_url == "https://files/1.jpg"

    def test_edit_rejects_unknown_and_blank(self):
        """edit rejects unknown fields and blank descriptions"""
        item = evidence.catalog(1, "Photo")
        with pytest.raises(ValueError):
            evidence.edit(item, accident_id=2)
        with pytest.raises(ValueError):
            evidence.edit(item, description="  ")
