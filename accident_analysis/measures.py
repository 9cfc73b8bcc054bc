"""
Preventive-Measure Linker
=========================

Keeps the ordered list of preventive measures of one cause tree and links
each measure to a fact node by id.

Two conventions matter here:
- A measure should target a NECESSARY fact. This is not enforced; attaching
  a measure to another category only logs a warning.
- fact_content is a snapshot taken when the measure is created. Editing the
  node afterwards does not touch it, so the export shows what was reviewed.
  stale_measures() lists the measures whose snapshot no longer matches.
"""

import logging
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional

from .errors import NotFound
from .schemas import CauseNode, NodeCategory, PreventiveMeasure, Priority

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = {"fact_content", "can_eliminate", "can_reduce", "measure", "priority"}


def _normalize_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    unknown = set(fields) - EDITABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown preventive measure fields: {sorted(unknown)}")

    normalized = dict(fields)
    if "priority" in normalized:
        normalized["priority"] = Priority(normalized["priority"])
    for flag in ("can_eliminate", "can_reduce"):
        if flag in normalized and not isinstance(normalized[flag], bool):
            raise ValueError(f"{flag} must be a boolean, got {normalized[flag]!r}")
    for text in ("fact_content", "measure"):
        if text in normalized:
            normalized[text] = str(normalized[text] or "")
    return normalized


class PreventiveMeasureLinker:
    """
    Ordered preventive measures, at most one per fact id.

    Usage:
        linker = PreventiveMeasureLinker(tree.find_node)
        linker.upsert_measure("node-1", measure="Install anti-slip flooring", priority="high")
    """

    def __init__(
        self,
        resolve_node: Callable[[str], Optional[CauseNode]],
        measures: Iterable[PreventiveMeasure] = (),
    ):
        self._resolve_node = resolve_node
        self._measures: List[PreventiveMeasure] = [m.model_copy() for m in measures]

    def __iter__(self) -> Iterator[PreventiveMeasure]:
        return iter(self.all())

    def __len__(self) -> int:
        return len(self._measures)

    def all(self) -> List[PreventiveMeasure]:
        return [m.model_copy() for m in self._measures]

    def find(self, fact_id: str) -> Optional[PreventiveMeasure]:
        for measure in self._measures:
            if measure.fact_id == fact_id:
                return measure.model_copy()
        return None

    def _index_of(self, fact_id: str) -> Optional[int]:
        for index, measure in enumerate(self._measures):
            if measure.fact_id == fact_id:
                return index
        return None

    # -------------------------------------------------------------------------
    # Edits
    # -------------------------------------------------------------------------

    def upsert_measure(self, fact_id: str, **fields) -> PreventiveMeasure:
        """
        Merge fields into the measure for fact_id, or append a new one.

        New measures default to priority=medium and both flags False, and
        snapshot the node content unless fact_content is given.

        Raises:
            NotFound: creating a measure for a fact absent from the tree
            ValueError: unknown field or invalid priority
        """
        fields = _normalize_fields(fields)

        index = self._index_of(fact_id)
        if index is not None:
            merged = self._measures[index].model_copy(update=fields)
            self._measures[index] = merged
            return merged.model_copy()

        node = self._resolve_node(fact_id)
        if node is None:
            raise NotFound("CauseNode", fact_id)
        if node.category != NodeCategory.NECESSARY:
            logger.warning(
                f"Preventive measure attached to {node.category.value} fact {fact_id}; "
                "measures normally target necessary facts"
            )

        fields.setdefault("fact_content", node.content)
        measure = PreventiveMeasure(fact_id=fact_id, **fields)
        self._measures.append(measure)
        return measure.model_copy()

    def update_at(self, index: int, **fields) -> PreventiveMeasure:
        """Edit the measure at a list position (the form edits measures by row)"""
        fields = _normalize_fields(fields)
        if index < 0 or index >= len(self._measures):
            raise NotFound("PreventiveMeasure", index)
        updated = self._measures[index].model_copy(update=fields)
        self._measures[index] = updated
        return updated.model_copy()

    def remove(self, fact_id: str) -> PreventiveMeasure:
        index = self._index_of(fact_id)
        if index is None:
            raise NotFound("PreventiveMeasure", fact_id)
        return self._measures.pop(index)

    def replace_all(self, measures: Iterable[PreventiveMeasure]) -> None:
        self._measures = [m.model_copy() for m in measures]

    # -------------------------------------------------------------------------
    # Review queries
    # -------------------------------------------------------------------------

    def necessary_facts_without_measure(self, nodes: Iterable[CauseNode]) -> List[CauseNode]:
        covered = {m.fact_id for m in self._measures}
        return [
            n for n in nodes
            if n.category == NodeCategory.NECESSARY and n.id not in covered
        ]

    def stale_measures(self) -> List[PreventiveMeasure]:
        """Measures whose fact_content snapshot differs from the current node content"""
        stale = []
        for measure in self._measures:
            node = self._resolve_node(measure.fact_id)
            if node is not None and node.content != measure.fact_content:
                stale.append(measure.model_copy())
        return stale

    def orphaned_measures(self) -> List[PreventiveMeasure]:
        """Measures whose fact node was deleted after the measure was written"""
        return [m.model_copy() for m in self._measures if self._resolve_node(m.fact_id) is None]
