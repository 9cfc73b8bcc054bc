"""
Cause-Tree Graph Engine
=======================

Node/edge structure of one accident's INRS cause tree.

Nodes are facts; each node owns its outgoing edges (there is no separate
edge table). Two construction paths share the same structural checks:
- manual: add_node / update_node / delete_node / add_edge / remove_edge
- generative: replace_from_generated with a validated AI node set

Structural rules:
- every edge target is a node of the same tree (delete_node cascades)
- no self-loops
- node ids are unique within the tree
Cycles are allowed; INRS trees may converge and diverge.

Persisted form (treeData/preventiveMeasures JSON):
    {
      "accidentId": 12,
      "treeData": {"nodes": [{"id", "content", "type", "x", "y",
                              "connections": [{"to", "type"}]}]},
      "preventiveMeasures": [{"factId", "factContent", "canEliminate",
                              "canReduce", "measure", "priority"}]
    }
"""

import logging
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple, Union

from pydantic import ValidationError

from .errors import InvalidEdge, MalformedTree, NotFound
from .ids import IdAllocator, UuidIdAllocator
from .measures import PreventiveMeasureLinker
from .schemas import (
    CauseEdge,
    CauseNode,
    NodeCategory,
    Position,
    PreventiveMeasure,
    RelationType,
)

logger = logging.getLogger(__name__)

PositionLike = Union[Position, Tuple[float, float], None]


# =============================================================================
# Wire format
# =============================================================================

def node_to_wire(node: CauseNode) -> Dict[str, Any]:
    return {
        "id": node.id,
        "content": node.content,
        "type": node.category.value,
        "x": node.position.x,
        "y": node.position.y,
        "connections": [
            {"to": edge.to, "type": edge.relation.value} for edge in node.edges
        ],
    }


def measure_to_wire(measure: PreventiveMeasure) -> Dict[str, Any]:
    return {
        "factId": measure.fact_id,
        "factContent": measure.fact_content,
        "canEliminate": measure.can_eliminate,
        "canReduce": measure.can_reduce,
        "measure": measure.measure,
        "priority": measure.priority.value,
    }


def _node_from_wire(raw: Any, index: int) -> CauseNode:
    if not isinstance(raw, dict):
        raise MalformedTree(f"Node #{index} is not an object")

    node_id = raw.get("id")
    if not isinstance(node_id, str) or not node_id.strip():
        raise MalformedTree(f"Node #{index} has no id")

    connections = raw.get("connections") or []
    if not isinstance(connections, list):
        raise MalformedTree(f"Node {node_id} connections is not a list")

    try:
        edges = [
            CauseEdge(to=conn["to"], relation=RelationType(conn["type"]))
            for conn in connections
        ]
        return CauseNode(
            id=node_id,
            content=raw.get("content") or "",
            category=NodeCategory(raw.get("type") or NodeCategory.NORMAL.value),
            position=Position(x=raw.get("x", 0), y=raw.get("y", 0)),
            edges=edges,
        )
    except (KeyError, TypeError, ValueError, ValidationError) as e:
        raise MalformedTree(f"Node {node_id} is malformed: {e}") from e


def _wire_flag(raw: Dict[str, Any], key: str, index: int) -> bool:
    value = raw.get(key, False)
    if not isinstance(value, bool):
        raise MalformedTree(f"Preventive measure #{index} {key} is not a boolean: {value!r}")
    return value


def _measure_from_wire(raw: Any, index: int) -> PreventiveMeasure:
    if not isinstance(raw, dict):
        raise MalformedTree(f"Preventive measure #{index} is not an object")
    can_eliminate = _wire_flag(raw, "canEliminate", index)
    can_reduce = _wire_flag(raw, "canReduce", index)
    try:
        return PreventiveMeasure(
            fact_id=raw["factId"],
            fact_content=raw.get("factContent") or "",
            can_eliminate=can_eliminate,
            can_reduce=can_reduce,
            measure=raw.get("measure") or "",
            priority=raw.get("priority") or "medium",
        )
    except (KeyError, ValidationError) as e:
        raise MalformedTree(f"Preventive measure #{index} is malformed: {e}") from e


def _index_nodes(nodes: Iterable[CauseNode]) -> Dict[str, CauseNode]:
    """
    Copy nodes into an id index, checking the structural rules.

    Raises MalformedTree on duplicate ids, dangling edges or self-loops.
    """
    indexed: Dict[str, CauseNode] = {}
    for node in nodes:
        if node.id in indexed:
            raise MalformedTree(f"Duplicate node id: {node.id}")
        indexed[node.id] = node.model_copy(deep=True)

    for node in indexed.values():
        for edge in node.edges:
            if edge.to == node.id:
                raise MalformedTree(f"Self-loop on node {node.id}")
            if edge.to not in indexed:
                raise MalformedTree(f"Dangling edge {node.id} -> {edge.to}")
    return indexed


def _as_position(position: PositionLike) -> Position:
    if position is None:
        return Position()
    if isinstance(position, Position):
        return position.model_copy()
    x, y = position
    return Position(x=x, y=y)


# =============================================================================
# Graph engine
# =============================================================================

class CauseTree:
    """
    Cause tree of one accident.

    Usage:
        tree = CauseTree(accident_id=1)
        wet = tree.add_node("Sol mouillé", NodeCategory.NECESSARY, (100, 100))
        fall = tree.add_node("Chute", NodeCategory.NECESSARY, (300, 100))
        tree.add_edge(wet.id, fall.id, RelationType.SEQUENCE)
        blob = tree.serialize()
    """

    def __init__(self, accident_id: int, id_allocator: Optional[IdAllocator] = None):
        self.accident_id = accident_id
        self._ids = id_allocator or UuidIdAllocator()
        self._nodes: Dict[str, CauseNode] = {}
        self.measures = PreventiveMeasureLinker(self._lookup)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    @property
    def nodes(self) -> List[CauseNode]:
        return [n.model_copy(deep=True) for n in self._nodes.values()]

    # Public accessors hand out copies; edits go through the methods below.

    def _lookup(self, node_id: str) -> Optional[CauseNode]:
        return self._nodes.get(node_id)

    def _node(self, node_id: str) -> CauseNode:
        node = self._nodes.get(node_id)
        if node is None:
            raise NotFound("CauseNode", node_id)
        return node

    def find_node(self, node_id: str) -> Optional[CauseNode]:
        node = self._nodes.get(node_id)
        return node.model_copy(deep=True) if node is not None else None

    def get_node(self, node_id: str) -> CauseNode:
        return self._node(node_id).model_copy(deep=True)

    def _edges(self) -> Iterator[Tuple[str, CauseEdge]]:
        for node in self._nodes.values():
            for edge in node.edges:
                yield node.id, edge

    def edges(self) -> Iterator[Tuple[str, CauseEdge]]:
        """Yield (from_id, edge) for every edge, in node order"""
        for from_id, edge in self._edges():
            yield from_id, edge.model_copy()

    def edge_count(self) -> int:
        return sum(len(n.edges) for n in self._nodes.values())

    def predecessors(self, node_id: str) -> List[str]:
        self._node(node_id)
        return [from_id for from_id, edge in self._edges() if edge.to == node_id]

    def root_causes(self) -> List[CauseNode]:
        """Nodes no edge points to (where the causal chains start)"""
        targets = {edge.to for _, edge in self._edges()}
        return [n.model_copy(deep=True) for n in self._nodes.values() if n.id not in targets]

    # -------------------------------------------------------------------------
    # Manual edits
    # -------------------------------------------------------------------------

    def _allocate_id(self) -> str:
        node_id = self._ids.next_id()
        while node_id in self._nodes:
            node_id = self._ids.next_id()
        return node_id

    def add_node(
        self,
        content: str,
        category: NodeCategory = NodeCategory.NORMAL,
        position: PositionLike = None,
    ) -> CauseNode:
        node = CauseNode(
            id=self._allocate_id(),
            content=content,
            category=NodeCategory(category),
            position=_as_position(position),
        )
        self._nodes[node.id] = node
        logger.debug(f"Tree {self.accident_id}: added node {node.id}")
        return node.model_copy(deep=True)

    def update_node(
        self,
        node_id: str,
        *,
        content: Optional[str] = None,
        category: Optional[NodeCategory] = None,
        position: PositionLike = None,
    ) -> CauseNode:
        """Merge the given fields; edges are left as they are"""
        node = self._node(node_id)
        if content is not None:
            node.content = content
        if category is not None:
            node.category = NodeCategory(category)
        if position is not None:
            node.position = _as_position(position)
        return node.model_copy(deep=True)

    def delete_node(self, node_id: str) -> CauseNode:
        """Remove a node and every edge pointing to it"""
        node = self._nodes.pop(node_id, None)
        if node is None:
            raise NotFound("CauseNode", node_id)

        removed = 0
        for other in self._nodes.values():
            kept = [e for e in other.edges if e.to != node_id]
            removed += len(other.edges) - len(kept)
            other.edges = kept

        logger.debug(f"Tree {self.accident_id}: deleted node {node_id} ({removed} incoming edges)")
        return node

    def add_edge(self, from_id: str, to_id: str, relation: Union[RelationType, str]) -> CauseEdge:
        """
        Append an edge to from_id's edge list.

        Duplicates are not merged; callers that retry must check first.

        Raises:
            NotFound: either endpoint is absent
            InvalidEdge: self-loop or unknown relation type
        """
        source = self._node(from_id)
        self._node(to_id)
        if from_id == to_id:
            raise InvalidEdge(f"Self-loop on node {from_id} is not a causal relation")
        try:
            relation = RelationType(relation)
        except ValueError:
            raise InvalidEdge(f"Unknown relation type: {relation!r}")

        edge = CauseEdge(to=to_id, relation=relation)
        source.edges.append(edge)
        return edge.model_copy()

    def remove_edge(
        self,
        from_id: str,
        to_id: str,
        relation: Optional[Union[RelationType, str]] = None,
    ) -> int:
        """Remove edges from_id -> to_id (optionally of one relation); returns count removed"""
        source = self._node(from_id)
        if relation is not None:
            try:
                relation = RelationType(relation)
            except ValueError:
                raise InvalidEdge(f"Unknown relation type: {relation!r}")

        kept = [
            e for e in source.edges
            if not (e.to == to_id and (relation is None or e.relation == relation))
        ]
        removed = len(source.edges) - len(kept)
        source.edges = kept
        return removed

    # -------------------------------------------------------------------------
    # Generative path
    # -------------------------------------------------------------------------

    def replace_from_generated(
        self,
        nodes: Iterable[CauseNode],
        measures: Iterable[PreventiveMeasure] = (),
    ) -> None:
        """
        Discard the current tree and install a generated node set.

        Everything is checked before the swap, so a failure leaves the
        current tree untouched. Measures pointing outside the new node set
        are dropped.
        """
        indexed = _index_nodes(nodes)

        kept_measures = []
        for measure in measures:
            if measure.fact_id in indexed:
                kept_measures.append(measure)
            else:
                logger.warning(
                    f"Tree {self.accident_id}: dropping measure for unknown fact {measure.fact_id}"
                )

        self._nodes = indexed
        self.measures.replace_all(kept_measures)
        logger.info(
            f"Tree {self.accident_id}: installed generated tree "
            f"({len(indexed)} nodes, {self.edge_count()} edges, {len(kept_measures)} measures)"
        )

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def serialize(self) -> Dict[str, Any]:
        """
        Persisted form of the tree.

        Raises:
            MalformedTree: the node set fails the structural checks
        """
        nodes = _index_nodes(self._nodes.values())
        return {
            "accidentId": self.accident_id,
            "treeData": {"nodes": [node_to_wire(n) for n in nodes.values()]},
            "preventiveMeasures": [measure_to_wire(m) for m in self.measures],
        }

    @classmethod
    def deserialize(
        cls,
        blob: Any,
        accident_id: Optional[int] = None,
        id_allocator: Optional[IdAllocator] = None,
    ) -> "CauseTree":
        """
        Rebuild a tree from its persisted form.

        Raises:
            MalformedTree: bad shape, duplicate node id, dangling edge or self-loop
        """
        if not isinstance(blob, dict):
            raise MalformedTree("Cause tree blob is not an object")

        if accident_id is None:
            accident_id = blob.get("accidentId")
        if accident_id is None:
            raise MalformedTree("Cause tree blob has no accidentId")

        tree_data = blob.get("treeData")
        raw_nodes = tree_data.get("nodes") if isinstance(tree_data, dict) else None
        if not isinstance(raw_nodes, list):
            raise MalformedTree("treeData.nodes missing or not a list")

        raw_measures = blob.get("preventiveMeasures") or []
        if not isinstance(raw_measures, list):
            raise MalformedTree("preventiveMeasures is not a list")

        nodes = [_node_from_wire(raw, i) for i, raw in enumerate(raw_nodes)]
        indexed = _index_nodes(nodes)
        measures = [_measure_from_wire(raw, i) for i, raw in enumerate(raw_measures)]

        tree = cls(accident_id, id_allocator)
        tree._nodes = indexed
        tree.measures.replace_all(measures)
        return tree

    def load(self, blob: Any) -> None:
        """Replace this tree's state from a blob; unchanged if the blob is malformed"""
        restored = CauseTree.deserialize(blob, accident_id=self.accident_id)
        self._nodes = restored._nodes
        self.measures.replace_all(restored.measures)
