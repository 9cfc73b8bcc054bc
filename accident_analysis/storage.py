"""
Analysis Storage
================

Persistence port used by the orchestrator, and two implementations:
- InMemoryStorage: dict-backed, for tests and single-process tools
- SqlStorage: SQLAlchemy, on an explicit Database handle

Accidents, witnesses, fragments and evidence are keyed by integer
surrogate ids assigned on insert. The cause tree is keyed by accident id
and saved as a whole (replace on save, last write wins).

Every read returns a copy; mutating a returned model never changes
stored state until it is passed back to an update method.
"""

import copy
import itertools
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from sqlalchemy import extract, func, select

from .db import (
    AccidentRow,
    CauseTreeRow,
    Database,
    FragmentRow,
    MaterialEvidenceRow,
    WitnessRow,
)
from .errors import NotFound
from .schemas import Accident, Fragment, MaterialEvidence, Witness

logger = logging.getLogger(__name__)


class AnalysisStorage(ABC):
    """Persistence boundary of the analysis workflow"""

    # -- accidents --
    @abstractmethod
    def create_accident(self, accident: Accident) -> Accident: ...

    @abstractmethod
    def get_accident(self, accident_id: int) -> Accident:
        """Raises NotFound"""

    @abstractmethod
    def update_accident(self, accident: Accident) -> Accident: ...

    @abstractmethod
    def delete_accident(self, accident_id: int) -> None:
        """Delete the accident with its witnesses, fragments, evidence and tree"""

    @abstractmethod
    def list_accidents(self) -> List[Accident]: ...

    @abstractmethod
    def count_accidents_for_year(self, year: int) -> int: ...

    @abstractmethod
    def accident_number_exists(self, accident_number: str) -> bool: ...

    # -- witnesses --
    @abstractmethod
    def add_witness(self, witness: Witness) -> Witness: ...

    @abstractmethod
    def list_witnesses(self, accident_id: int) -> List[Witness]: ...

    # -- fragments --
    @abstractmethod
    def add_fragment(self, fragment: Fragment) -> Fragment: ...

    @abstractmethod
    def get_fragment(self, fragment_id: int) -> Fragment: ...

    @abstractmethod
    def update_fragment(self, fragment: Fragment) -> Fragment: ...

    @abstractmethod
    def delete_fragment(self, fragment_id: int) -> None: ...

    @abstractmethod
    def list_fragments(self, accident_id: int) -> List[Fragment]: ...

    # -- evidence --
    @abstractmethod
    def add_evidence(self, item: MaterialEvidence) -> MaterialEvidence: ...

    @abstractmethod
    def get_evidence(self, evidence_id: int) -> MaterialEvidence: ...

    @abstractmethod
    def update_evidence(self, item: MaterialEvidence) -> MaterialEvidence: ...

    @abstractmethod
    def delete_evidence(self, evidence_id: int) -> None: ...

    @abstractmethod
    def list_evidence(self, accident_id: int) -> List[MaterialEvidence]: ...

    # -- cause tree --
    @abstractmethod
    def save_cause_tree(self, accident_id: int, blob: Dict[str, Any]) -> None:
        """Replace the stored tree of an accident with blob"""

    @abstractmethod
    def load_cause_tree(self, accident_id: int) -> Optional[Dict[str, Any]]:
        """Stored blob, or None when no tree was saved yet"""


# =============================================================================
# In-memory
# =============================================================================

class InMemoryStorage(AnalysisStorage):
    """Dict-backed storage; one instance per workflow or test"""

    def __init__(self):
        self._accidents: Dict[int, Accident] = {}
        self._witnesses: Dict[int, Witness] = {}
        self._fragments: Dict[int, Fragment] = {}
        self._evidence: Dict[int, MaterialEvidence] = {}
        self._trees: Dict[int, Dict[str, Any]] = {}
        self._ids = {
            "accident": itertools.count(1),
            "witness": itertools.count(1),
            "fragment": itertools.count(1),
            "evidence": itertools.count(1),
        }

    def _require_accident(self, accident_id: int) -> None:
        if accident_id not in self._accidents:
            raise NotFound("Accident", accident_id)

    @staticmethod
    def _insert(table: Dict[int, Any], model, new_id: int):
        stored = model.model_copy(update={"id": new_id}, deep=True)
        table[new_id] = stored
        return stored.model_copy(deep=True)

    @staticmethod
    def _get(table: Dict[int, Any], entity: str, key: int):
        item = table.get(key)
        if item is None:
            raise NotFound(entity, key)
        return item.model_copy(deep=True)

    @staticmethod
    def _replace(table: Dict[int, Any], entity: str, model):
        if model.id not in table:
            raise NotFound(entity, model.id)
        table[model.id] = model.model_copy(deep=True)
        return model.model_copy(deep=True)

    # -- accidents --

    def create_accident(self, accident: Accident) -> Accident:
        return self._insert(self._accidents, accident, next(self._ids["accident"]))

    def get_accident(self, accident_id: int) -> Accident:
        return self._get(self._accidents, "Accident", accident_id)

    def update_accident(self, accident: Accident) -> Accident:
        return self._replace(self._accidents, "Accident", accident)

    def delete_accident(self, accident_id: int) -> None:
        self._require_accident(accident_id)
        del self._accidents[accident_id]
        for table in (self._witnesses, self._fragments, self._evidence):
            for key in [k for k, v in table.items() if v.accident_id == accident_id]:
                del table[key]
        self._trees.pop(accident_id, None)

    def list_accidents(self) -> List[Accident]:
        return [a.model_copy(deep=True) for a in self._accidents.values()]

    def count_accidents_for_year(self, year: int) -> int:
        return sum(1 for a in self._accidents.values() if a.created_at.year == year)

    def accident_number_exists(self, accident_number: str) -> bool:
        return any(a.accident_number == accident_number for a in self._accidents.values())

    # -- witnesses --

    def add_witness(self, witness: Witness) -> Witness:
        self._require_accident(witness.accident_id)
        return self._insert(self._witnesses, witness, next(self._ids["witness"]))

    def list_witnesses(self, accident_id: int) -> List[Witness]:
        return [w.model_copy(deep=True) for w in self._witnesses.values() if w.accident_id == accident_id]

    # -- fragments --

    def add_fragment(self, fragment: Fragment) -> Fragment:
        self._require_accident(fragment.accident_id)
        return self._insert(self._fragments, fragment, next(self._ids["fragment"]))

    def get_fragment(self, fragment_id: int) -> Fragment:
        return self._get(self._fragments, "Fragment", fragment_id)

    def update_fragment(self, fragment: Fragment) -> Fragment:
        return self._replace(self._fragments, "Fragment", fragment)

    def delete_fragment(self, fragment_id: int) -> None:
        if self._fragments.pop(fragment_id, None) is None:
            raise NotFound("Fragment", fragment_id)

    def list_fragments(self, accident_id: int) -> List[Fragment]:
        return [f.model_copy(deep=True) for f in self._fragments.values() if f.accident_id == accident_id]

    # -- evidence --

    def add_evidence(self, item: MaterialEvidence) -> MaterialEvidence:
        self._require_accident(item.accident_id)
        return self._insert(self._evidence, item, next(self._ids["evidence"]))

    def get_evidence(self, evidence_id: int) -> MaterialEvidence:
        return self._get(self._evidence, "MaterialEvidence", evidence_id)

    def update_evidence(self, item: MaterialEvidence) -> MaterialEvidence:
        return self._replace(self._evidence, "MaterialEvidence", item)

    def delete_evidence(self, evidence_id: int) -> None:
        if self._evidence.pop(evidence_id, None) is None:
            raise NotFound("MaterialEvidence", evidence_id)

    def list_evidence(self, accident_id: int) -> List[MaterialEvidence]:
        return [e.model_copy(deep=True) for e in self._evidence.values() if e.accident_id == accident_id]

    # -- cause tree --

    def save_cause_tree(self, accident_id: int, blob: Dict[str, Any]) -> None:
        self._require_accident(accident_id)
        self._trees[accident_id] = copy.deepcopy(blob)

    def load_cause_tree(self, accident_id: int) -> Optional[Dict[str, Any]]:
        self._require_accident(accident_id)
        blob = self._trees.get(accident_id)
        return copy.deepcopy(blob) if blob is not None else None


# =============================================================================
# SQLAlchemy
# =============================================================================

ACCIDENT_FIELDS = (
    "accident_number", "date", "time", "location", "establishment", "description",
    "severity", "victim_name", "victim_first_name", "victim_position", "is_anonymized",
    "status", "stage", "created_at", "updated_at",
)
WITNESS_FIELDS = ("accident_id", "first_name", "last_name", "position", "testimony", "created_at")
FRAGMENT_FIELDS = ("accident_id", "witness_id", "content", "category", "is_unusual", "created_at")
EVIDENCE_FIELDS = ("accident_id", "description", "is_useful", "file_name", "file_url", "created_at")


def _row_values(model, fields) -> Dict[str, Any]:
    return {name: getattr(model, name) for name in fields}


def _to_model(model_cls, row, fields):
    values = _row_values(row, fields)
    values["id"] = row.id
    return model_cls(**values)


class SqlStorage(AnalysisStorage):
    """
    SQLAlchemy-backed storage.

    Usage:
        database = Database.from_settings()
        database.init_db()
        storage = SqlStorage(database)
    """

    def __init__(self, database: Database):
        self.database = database

    @staticmethod
    def _require(session, row_cls, entity: str, key: int):
        row = session.get(row_cls, key)
        if row is None:
            raise NotFound(entity, key)
        return row

    def _insert(self, row_cls, model_cls, model, fields):
        with self.database.session() as session:
            if "accident_id" in fields:
                self._require(session, AccidentRow, "Accident", model.accident_id)
            row = row_cls(**_row_values(model, fields))
            session.add(row)
            session.flush()
            return _to_model(model_cls, row, fields)

    def _get(self, row_cls, model_cls, entity, key, fields):
        with self.database.session() as session:
            return _to_model(model_cls, self._require(session, row_cls, entity, key), fields)

    def _update(self, row_cls, model_cls, entity, model, fields):
        with self.database.session() as session:
            row = self._require(session, row_cls, entity, model.id)
            for name, value in _row_values(model, fields).items():
                setattr(row, name, value)
            session.flush()
            return _to_model(model_cls, row, fields)

    def _delete(self, row_cls, entity, key):
        with self.database.session() as session:
            session.delete(self._require(session, row_cls, entity, key))

    def _list(self, row_cls, model_cls, accident_id, fields):
        with self.database.session() as session:
            rows = session.scalars(
                select(row_cls).where(row_cls.accident_id == accident_id).order_by(row_cls.id)
            ).all()
            return [_to_model(model_cls, r, fields) for r in rows]

    # -- accidents --

    def create_accident(self, accident: Accident) -> Accident:
        return self._insert(AccidentRow, Accident, accident, ACCIDENT_FIELDS)

    def get_accident(self, accident_id: int) -> Accident:
        return self._get(AccidentRow, Accident, "Accident", accident_id, ACCIDENT_FIELDS)

    def update_accident(self, accident: Accident) -> Accident:
        return self._update(AccidentRow, Accident, "Accident", accident, ACCIDENT_FIELDS)

    def delete_accident(self, accident_id: int) -> None:
        # ORM cascade removes witnesses, fragments, evidence and the tree
        self._delete(AccidentRow, "Accident", accident_id)

    def list_accidents(self) -> List[Accident]:
        with self.database.session() as session:
            rows = session.scalars(select(AccidentRow).order_by(AccidentRow.id)).all()
            return [_to_model(Accident, r, ACCIDENT_FIELDS) for r in rows]

    def count_accidents_for_year(self, year: int) -> int:
        with self.database.session() as session:
            return session.scalar(
                select(func.count(AccidentRow.id)).where(extract("year", AccidentRow.created_at) == year)
            ) or 0

    def accident_number_exists(self, accident_number: str) -> bool:
        with self.database.session() as session:
            return session.scalar(
                select(AccidentRow.id).where(AccidentRow.accident_number == accident_number)
            ) is not None

    # -- witnesses --

    def add_witness(self, witness: Witness) -> Witness:
        return self._insert(WitnessRow, Witness, witness, WITNESS_FIELDS)

    def list_witnesses(self, accident_id: int) -> List[Witness]:
        return self._list(WitnessRow, Witness, accident_id, WITNESS_FIELDS)

    # -- fragments --

    def add_fragment(self, fragment: Fragment) -> Fragment:
        return self._insert(FragmentRow, Fragment, fragment, FRAGMENT_FIELDS)

    def get_fragment(self, fragment_id: int) -> Fragment:
        return self._get(FragmentRow, Fragment, "Fragment", fragment_id, FRAGMENT_FIELDS)

    def update_fragment(self, fragment: Fragment) -> Fragment:
        return self._update(FragmentRow, Fragment, "Fragment", fragment, FRAGMENT_FIELDS)

    def delete_fragment(self, fragment_id: int) -> None:
        self._delete(FragmentRow, "Fragment", fragment_id)

    def list_fragments(self, accident_id: int) -> List[Fragment]:
        return self._list(FragmentRow, Fragment, accident_id, FRAGMENT_FIELDS)

    # -- evidence --

    def add_evidence(self, item: MaterialEvidence) -> MaterialEvidence:
        return self._insert(MaterialEvidenceRow, MaterialEvidence, item, EVIDENCE_FIELDS)

    def get_evidence(self, evidence_id: int) -> MaterialEvidence:
        return self._get(MaterialEvidenceRow, MaterialEvidence, "MaterialEvidence", evidence_id, EVIDENCE_FIELDS)

    def update_evidence(self, item: MaterialEvidence) -> MaterialEvidence:
        return self._update(MaterialEvidenceRow, MaterialEvidence, "MaterialEvidence", item, EVIDENCE_FIELDS)

    def delete_evidence(self, evidence_id: int) -> None:
        self._delete(MaterialEvidenceRow, "MaterialEvidence", evidence_id)

    def list_evidence(self, accident_id: int) -> List[MaterialEvidence]:
        return self._list(MaterialEvidenceRow, MaterialEvidence, accident_id, EVIDENCE_FIELDS)

    # -- cause tree --

    def save_cause_tree(self, accident_id: int, blob: Dict[str, Any]) -> None:
        tree_data = copy.deepcopy(blob.get("treeData") or {"nodes": []})
        measures = copy.deepcopy(blob.get("preventiveMeasures") or [])

        with self.database.session() as session:
            self._require(session, AccidentRow, "Accident", accident_id)
            row = session.scalar(select(CauseTreeRow).where(CauseTreeRow.accident_id == accident_id))
            if row is None:
                session.add(CauseTreeRow(
                    accident_id=accident_id,
                    tree_data=tree_data,
                    preventive_measures=measures,
                ))
            else:
                # new objects so the JSON columns are flagged dirty
                row.tree_data = tree_data
                row.preventive_measures = measures
        logger.debug(f"Saved cause tree for accident {accident_id} ({len(tree_data.get('nodes', []))} nodes)")

    def load_cause_tree(self, accident_id: int) -> Optional[Dict[str, Any]]:
        with self.database.session() as session:
            self._require(session, AccidentRow, "Accident", accident_id)
            row = session.scalar(select(CauseTreeRow).where(CauseTreeRow.accident_id == accident_id))
            if row is None:
                return None
            return {
                "accidentId": accident_id,
                "treeData": copy.deepcopy(row.tree_data),
                "preventiveMeasures": copy.deepcopy(row.preventive_measures),
            }
