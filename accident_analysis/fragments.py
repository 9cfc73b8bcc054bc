"""
Fragment Classifier
===================

Pure helpers over testimony fragments. Storage assigns ids; these
functions only build and transform Fragment values, so the same rules
apply whether fragments come from a witness, the AI classifier or a
manual fact entry.

Counts are always recomputed from the fragment set, never stored.
"""

import logging
from typing import Iterable, List, Optional

from .schemas import (
    ClassifiedFragment,
    Fragment,
    FragmentCategory,
    FragmentCounts,
)

logger = logging.getLogger(__name__)


def classify(
    accident_id: int,
    content: str,
    category: object = FragmentCategory.OTHER,
    witness_id: Optional[int] = None,
    is_unusual: bool = False,
) -> Fragment:
    """
    Build a new fragment.

    Unrecognized categories fall back to OTHER instead of failing.
    """
    content = (content or "").strip()
    if not content:
        raise ValueError("Fragment content must not be empty")

    parsed = FragmentCategory.parse(category)
    if parsed == FragmentCategory.OTHER and category not in (FragmentCategory.OTHER, "other"):
        logger.debug(f"Unknown fragment category {category!r}, defaulting to other")

    return Fragment(
        accident_id=accident_id,
        witness_id=witness_id,
        content=content,
        category=parsed,
        is_unusual=is_unusual,
    )


def from_classified(
    accident_id: int,
    proposal: ClassifiedFragment,
    witness_id: Optional[int] = None,
) -> Fragment:
    """Turn an AI proposal into a fragment owned by the accident"""
    return classify(accident_id, proposal.content, proposal.category, witness_id)


def reclassify(fragment: Fragment, category: object) -> Fragment:
    """Return a copy with a new category; content is untouched"""
    return fragment.model_copy(update={"category": FragmentCategory.parse(category)})


def toggle_unusual(fragment: Fragment, flag: bool) -> Fragment:
    """Return a copy with is_unusual set; category is untouched"""
    return fragment.model_copy(update={"is_unusual": bool(flag)})


def count_by_category(fragments: Iterable[Fragment]) -> FragmentCounts:
    counts = FragmentCounts()
    for fragment in fragments:
        key = fragment.category.value
        setattr(counts, key, getattr(counts, key) + 1)
        if fragment.is_unusual:
            counts.unusual += 1
        counts.total += 1
    return counts


def verified_facts(fragments: Iterable[Fragment]) -> List[Fragment]:
    """Fragments usable as cause-tree node candidates"""
    return [f for f in fragments if f.category == FragmentCategory.VERIFIED_FACT]


def unusual_facts(fragments: Iterable[Fragment]) -> List[Fragment]:
    return [f for f in fragments if f.is_unusual]
