"""
Analysis Exporter
=================

Build the export snapshot of one accident analysis: a single
JSON-serialisable dict handed to document generators (PDF, image).
Rendering itself happens elsewhere.
"""

from typing import Any, Dict, List, Sequence

from .cause_tree import CauseTree, measure_to_wire, node_to_wire
from .fragments import count_by_category, unusual_facts, verified_facts
from .evidence import useful_evidence
from .schemas import Accident, Fragment, MaterialEvidence, Witness


def _accident_header(accident: Accident) -> Dict[str, Any]:
    header = accident.model_dump(mode="json")
    if accident.is_anonymized:
        for key in ("victim_name", "victim_first_name"):
            header[key] = None
    return header


def _fragment_entry(fragment: Fragment) -> Dict[str, Any]:
    return {
        "id": fragment.id,
        "witness_id": fragment.witness_id,
        "content": fragment.content,
        "category": fragment.category.value,
        "is_unusual": fragment.is_unusual,
    }


def _review_warnings(tree: CauseTree) -> List[str]:
    warnings = []
    for node in tree.measures.necessary_facts_without_measure(tree.nodes):
        warnings.append(f"Necessary fact {node.id} has no preventive measure")
    for measure in tree.measures.stale_measures():
        warnings.append(f"Measure for {measure.fact_id} was written against an older fact wording")
    for measure in tree.measures.orphaned_measures():
        warnings.append(f"Measure for {measure.fact_id} refers to a deleted fact")
    return warnings


def build_export_snapshot(
    accident: Accident,
    witnesses: Sequence[Witness],
    fragments: Sequence[Fragment],
    evidence: Sequence[MaterialEvidence],
    tree: CauseTree,
) -> Dict[str, Any]:
    """
    Assemble the fully-resolved analysis.

    Edges are flattened to {"from", "to", "type"}; measures keep their
    stored order. Victim names are blanked when the accident is anonymized.
    """
    counts = count_by_category(fragments)

    return {
        "accident": _accident_header(accident),
        "witnesses": [
            {"id": w.id, "first_name": w.first_name, "last_name": w.last_name, "position": w.position}
            for w in witnesses
        ],
        "fragment_counts": counts.model_dump(),
        "verified_facts": [_fragment_entry(f) for f in verified_facts(fragments)],
        "unusual_facts": [_fragment_entry(f) for f in unusual_facts(fragments)],
        "useful_evidence": [
            {"id": e.id, "description": e.description, "file_name": e.file_name, "file_url": e.file_url}
            for e in useful_evidence(evidence)
        ],
        "cause_tree": {
            "nodes": [node_to_wire(n) for n in tree.nodes],
            "edges": [
                {"from": from_id, "to": edge.to, "type": edge.relation.value}
                for from_id, edge in tree.edges()
            ],
            "root_causes": [n.id for n in tree.root_causes()],
        },
        "preventive_measures": [measure_to_wire(m) for m in tree.measures],
        "warnings": _review_warnings(tree),
    }
