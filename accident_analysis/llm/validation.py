"""
AI Response Validation
======================

Parse-don't-trust step between the AI collaborators and the core.

Raw JSON dicts from the services go in; typed, clamped and cross-checked
models come out, or AIResponseInvalid is raised. The single tolerated
defect is a preventive measure whose factId is not a node of the same
response: it is dropped and reported in `warnings`.
"""

import logging
import math
from typing import Any, Dict, List, Optional, Set

from ..errors import AIResponseInvalid
from ..schemas import (
    CauseEdge,
    CauseNode,
    ClassifiedFragment,
    ClassifierResult,
    FragmentCategory,
    GeneratedCauseTree,
    NodeCategory,
    Position,
    PreventiveMeasure,
    Priority,
    RelationType,
)

logger = logging.getLogger(__name__)

DEFAULT_SUMMARY = "Analyse non disponible"
DEFAULT_NODE_CONTENT = "Fait non spécifié"
DEFAULT_CONFIDENCE = 0.5


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def clamp_confidence(value: Any) -> float:
    number = _as_float(value)
    if number is None:
        return DEFAULT_CONFIDENCE
    return max(0.0, min(1.0, number))


def _as_flag(value: Any) -> bool:
    # Models sometimes answer "true"/"false" as strings
    if isinstance(value, str):
        return value.strip().lower() in ("true", "oui", "yes")
    return value is True


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


# =============================================================================
# Testimony classifier
# =============================================================================

def validate_testimony_analysis(raw: Any) -> ClassifierResult:
    """
    Validate a classifier payload.

    {fragments: [{content, type, confidence, reasoning}], summary, recommendations}

    Raises:
        AIResponseInvalid: payload is not an object or fragments[] is missing
    """
    if not isinstance(raw, dict):
        raise AIResponseInvalid("Testimony analysis is not an object")

    items = raw.get("fragments")
    if not isinstance(items, list):
        raise AIResponseInvalid("Testimony analysis has no fragments array")

    warnings: List[str] = []
    fragments: List[ClassifiedFragment] = []

    for index, item in enumerate(items):
        if not isinstance(item, dict):
            warnings.append(f"fragment #{index} is not an object, skipped")
            continue

        content = _text(item.get("content"))
        if not content:
            warnings.append(f"fragment #{index} has no content, skipped")
            continue

        category = FragmentCategory.parse(item.get("type"))
        if category == FragmentCategory.OTHER and item.get("type") not in ("other", None):
            warnings.append(f"fragment #{index} type {item.get('type')!r} defaulted to other")

        fragments.append(ClassifiedFragment(
            content=content,
            category=category,
            confidence=clamp_confidence(item.get("confidence")),
            reasoning=_text(item.get("reasoning")),
        ))

    recommendations = raw.get("recommendations")
    if not isinstance(recommendations, list):
        recommendations = []

    for warning in warnings:
        logger.warning(f"Testimony analysis: {warning}")

    return ClassifierResult(
        fragments=fragments,
        summary=_text(raw.get("summary")) or DEFAULT_SUMMARY,
        recommendations=[r.strip() for r in recommendations if isinstance(r, str) and r.strip()],
        warnings=warnings,
    )


# =============================================================================
# Cause-tree generator
# =============================================================================

def _coordinate(value: Any, fallback: float) -> float:
    number = _as_float(value)
    if not number:
        number = fallback
    return max(0.0, number)


def _parse_generated_node(item: Any, index: int, problems: List[str], warnings: List[str]) -> Optional[CauseNode]:
    if not isinstance(item, dict):
        problems.append(f"node #{index} is not an object")
        return None

    node_id = _text(item.get("id")) or f"node-{index + 1}"

    raw_type = item.get("type")
    try:
        category = NodeCategory(raw_type)
    except ValueError:
        category = NodeCategory.NORMAL
        if raw_type is not None:
            warnings.append(f"node {node_id} type {raw_type!r} defaulted to normal")

    connections = item.get("connections")
    if connections is None:
        connections = []
    if not isinstance(connections, list):
        problems.append(f"node {node_id} connections is not a list")
        connections = []

    edges = []
    for conn in connections:
        if not isinstance(conn, dict):
            problems.append(f"node {node_id} has a connection that is not an object")
            continue
        target = _text(conn.get("to"))
        try:
            relation = RelationType(conn.get("type"))
        except ValueError:
            problems.append(f"node {node_id} -> {target or '?'} has unknown relation {conn.get('type')!r}")
            continue
        if not target:
            problems.append(f"node {node_id} has a connection without target")
            continue
        edges.append(CauseEdge(to=target, relation=relation))

    return CauseNode(
        id=node_id,
        content=_text(item.get("content")) or DEFAULT_NODE_CONTENT,
        category=category,
        position=Position(
            x=_coordinate(item.get("x"), 100 + index * 150),
            y=_coordinate(item.get("y"), 100 + (index % 3) * 100),
        ),
        edges=edges,
    )


def _check_edges(nodes: List[CauseNode], problems: List[str]) -> None:
    ids: Set[str] = set()
    for node in nodes:
        if node.id in ids:
            problems.append(f"duplicate node id {node.id}")
        ids.add(node.id)

    for node in nodes:
        for edge in node.edges:
            if edge.to == node.id:
                problems.append(f"self-loop on {node.id}")
            elif edge.to not in ids:
                problems.append(f"edge {node.id} -> {edge.to} points to an unknown node")


def _parse_generated_measure(item: Any, index: int, nodes_by_id: Dict[str, CauseNode], warnings: List[str]) -> Optional[PreventiveMeasure]:
    if not isinstance(item, dict):
        warnings.append(f"preventive measure #{index} is not an object, dropped")
        return None

    fact_id = _text(item.get("factId"))
    node = nodes_by_id.get(fact_id)
    if node is None:
        warnings.append(f"preventive measure #{index} references unknown fact {fact_id!r}, dropped")
        return None

    try:
        priority = Priority(item.get("priority"))
    except ValueError:
        priority = Priority.MEDIUM

    if node.category != NodeCategory.NECESSARY:
        warnings.append(f"preventive measure #{index} targets {node.category.value} fact {fact_id}")

    return PreventiveMeasure(
        fact_id=fact_id,
        fact_content=_text(item.get("factContent")) or node.content,
        can_eliminate=_as_flag(item.get("canEliminate")),
        can_reduce=_as_flag(item.get("canReduce")),
        measure=_text(item.get("measure")),
        priority=priority,
    )


def validate_cause_tree_generation(raw: Any) -> GeneratedCauseTree:
    """
    Validate a generator payload.

    {nodes: [{id, content, type, x, y, connections: [{to, type}]}], preventiveMeasures: [...]}

    Raises:
        AIResponseInvalid: nodes[] missing or empty, duplicate ids, dangling
            or self-looping edges, unknown relation types
    """
    if not isinstance(raw, dict):
        raise AIResponseInvalid("Cause tree generation is not an object")

    items = raw.get("nodes")
    if not isinstance(items, list) or not items:
        raise AIResponseInvalid("Cause tree generation has no nodes")

    problems: List[str] = []
    warnings: List[str] = []

    nodes = []
    for index, item in enumerate(items):
        node = _parse_generated_node(item, index, problems, warnings)
        if node is not None:
            nodes.append(node)
    _check_edges(nodes, problems)

    if problems:
        raise AIResponseInvalid("Cause tree generation failed validation", problems)

    nodes_by_id = {n.id: n for n in nodes}
    raw_measures = raw.get("preventiveMeasures")
    if raw_measures is None:
        raw_measures = []
    if not isinstance(raw_measures, list):
        warnings.append("preventiveMeasures is not a list, ignored")
        raw_measures = []

    measures = []
    seen_facts: Set[str] = set()
    for index, item in enumerate(raw_measures):
        measure = _parse_generated_measure(item, index, nodes_by_id, warnings)
        if measure is None:
            continue
        if measure.fact_id in seen_facts:
            warnings.append(f"preventive measure #{index} duplicates fact {measure.fact_id}, dropped")
            continue
        seen_facts.add(measure.fact_id)
        measures.append(measure)

    for warning in warnings:
        logger.warning(f"Cause tree generation: {warning}")

    return GeneratedCauseTree(nodes=nodes, preventive_measures=measures, warnings=warnings)
