"""
Pydantic Schemas for Accident Analysis
======================================

Stable, minimal schemas for the INRS cause-tree workflow.

Entities:
- Accident (root aggregate) owning Witnesses, Fragments, MaterialEvidence
- CauseNode / CauseEdge / PreventiveMeasure (one cause tree per accident)

AI contracts:
- Testimony classifier: ClassifierRequest -> ClassifierResult
- Cause-tree generator: GeneratorRequest -> GeneratedCauseTree
"""

from typing import List, Optional
from pydantic import BaseModel, Field
from enum import Enum
from datetime import datetime


# =============================================================================
# ENUMS
# =============================================================================

class FragmentCategory(str, Enum):
    """
    Semantic category of a testimony fragment.

    - VERIFIED_FACT: Observed, checkable fact (fait avéré)
    - OPINION: Interpretation or judgement of the witness
    - TO_VERIFY: Needs cross-checking before use (à vérifier)
    - OTHER: Anything else, and the fallback for unknown labels
    """
    VERIFIED_FACT = "verified_fact"
    OPINION = "opinion"
    TO_VERIFY = "to_verify"
    OTHER = "other"

    @classmethod
    def parse(cls, raw: object) -> "FragmentCategory":
        """Lenient parse; unknown or missing labels map to OTHER."""
        if isinstance(raw, cls):
            return raw
        if isinstance(raw, str):
            try:
                return cls(raw.strip().lower())
            except ValueError:
                pass
        return cls.OTHER


class NodeCategory(str, Enum):
    """
    INRS fact category of a cause-tree node.

    - NECESSARY: Without it the accident would not have happened
    - UNUSUAL: Variation from the usual way of working
    - NORMAL: Usual working condition
    """
    NECESSARY = "necessary"
    UNUSUAL = "unusual"
    NORMAL = "normal"


class RelationType(str, Enum):
    """
    Causal relation carried by an edge.

    - SEQUENCE: "to" follows "from" in a chain (enchaînement)
    - CONJUNCTION: "from" AND another fact jointly cause "to"
    - DISJUNCTION: "from" OR an alternative independently causes "to"
    """
    SEQUENCE = "sequence"
    CONJUNCTION = "conjunction"
    DISJUNCTION = "disjunction"


class Priority(str, Enum):
    """Preventive measure priority"""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Severity(str, Enum):
    """Accident severity as declared"""
    MINOR = "minor"
    MODERATE = "moderate"
    SEVERE = "severe"


class AccidentStatus(str, Enum):
    """Accident lifecycle status"""
    DRAFT = "draft"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class AnalysisStage(str, Enum):
    """Workflow stage, forward-only"""
    DECLARED = "declared"
    TESTIMONY_CLASSIFIED = "testimony_classified"
    SUMMARY_VALIDATED = "summary_validated"
    TREE_BUILT = "tree_built"

    @property
    def rank(self) -> int:
        return STAGE_ORDER.index(self)

    @property
    def status(self) -> AccidentStatus:
        return STAGE_STATUS[self]


STAGE_ORDER = [
    AnalysisStage.DECLARED,
    AnalysisStage.TESTIMONY_CLASSIFIED,
    AnalysisStage.SUMMARY_VALIDATED,
    AnalysisStage.TREE_BUILT,
]

STAGE_STATUS = {
    AnalysisStage.DECLARED: AccidentStatus.DRAFT,
    AnalysisStage.TESTIMONY_CLASSIFIED: AccidentStatus.IN_PROGRESS,
    AnalysisStage.SUMMARY_VALIDATED: AccidentStatus.IN_PROGRESS,
    AnalysisStage.TREE_BUILT: AccidentStatus.COMPLETED,
}


class LLMMode(str, Enum):
    """LLM usage mode"""
    NONE = "none"           # AI features disabled
    OPENAI = "openai"
    OPENROUTER = "openrouter"


# =============================================================================
# ACCIDENT AGGREGATE
# =============================================================================

class WitnessInput(BaseModel):
    """Witness details supplied at declaration time or later"""
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    position: str = Field(..., description="Job title / poste occupé")
    testimony: Optional[str] = None


class Witness(WitnessInput):
    """Stored witness"""
    id: Optional[int] = None
    accident_id: int
    created_at: datetime = Field(default_factory=datetime.utcnow)


class AccidentDeclaration(BaseModel):
    """Fields the user fills in when declaring an accident"""
    date: datetime
    time: str = Field(..., description="Local time of the accident, e.g. 14:30")
    location: str
    establishment: str
    description: Optional[str] = None
    severity: Optional[Severity] = None
    victim_name: Optional[str] = None
    victim_first_name: Optional[str] = None
    victim_position: Optional[str] = None
    is_anonymized: bool = False

    class Config:
        json_schema_extra = {
            "example": {
                "date": "2024-03-12T00:00:00",
                "time": "14:30",
                "location": "Atelier de découpe",
                "establishment": "Usine de Lyon",
                "description": "Chute de plain-pied près de la presse",
                "severity": "moderate",
            }
        }


class Accident(AccidentDeclaration):
    """Root aggregate of one investigation"""
    id: Optional[int] = None
    accident_number: str
    status: AccidentStatus = AccidentStatus.DRAFT
    stage: AnalysisStage = AnalysisStage.DECLARED
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class Fragment(BaseModel):
    """
    Classified excerpt of witness or victim testimony.

    content and accident_id never change after creation; only category
    and is_unusual are mutated.
    """
    id: Optional[int] = None
    accident_id: int
    witness_id: Optional[int] = Field(None, description="None for victim or manual facts")
    content: str
    category: FragmentCategory = FragmentCategory.OTHER
    is_unusual: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)


class MaterialEvidence(BaseModel):
    """Material evidence item (photo, equipment, document)"""
    id: Optional[int] = None
    accident_id: int
    description: str
    is_useful: bool = False
    file_name: Optional[str] = None
    file_url: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


# =============================================================================
# CAUSE TREE
# =============================================================================

class Position(BaseModel):
    """Canvas coordinates of a node"""
    x: float = 0.0
    y: float = 0.0


class CauseEdge(BaseModel):
    """Directed edge, owned by its source node"""
    to: str
    relation: RelationType


class CauseNode(BaseModel):
    """
    Fact in a cause tree.

    The id is a string unique within the tree (not a database key).
    """
    id: str
    content: str
    category: NodeCategory = NodeCategory.NORMAL
    position: Position = Field(default_factory=Position)
    edges: List[CauseEdge] = Field(default_factory=list)


class PreventiveMeasure(BaseModel):
    """
    Recommendation attached to a (normally necessary) fact.

    fact_content is a snapshot taken when the measure is created; it is not
    refreshed when the node content is edited later.
    """
    fact_id: str
    fact_content: str = ""
    can_eliminate: bool = False
    can_reduce: bool = False
    measure: str = ""
    priority: Priority = Priority.MEDIUM


# =============================================================================
# AI CONTRACTS
# =============================================================================

class ClassifierRequest(BaseModel):
    """Input sent to the testimony classifier"""
    testimony: str = Field(..., min_length=1)
    accident_context: Optional[str] = None


class ClassifiedFragment(BaseModel):
    """Fragment proposed by the testimony classifier"""
    content: str
    category: FragmentCategory = FragmentCategory.OTHER
    confidence: float = Field(0.5, ge=0.0, le=1.0)
    reasoning: str = ""


class ClassifierResult(BaseModel):
    """Validated classifier output"""
    fragments: List[ClassifiedFragment] = Field(default_factory=list)
    summary: str = "Analyse non disponible"
    recommendations: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class GeneratorRequest(BaseModel):
    """Input sent to the cause-tree generator"""
    facts: List[str] = Field(..., min_length=1)
    accident_description: str = ""


class GeneratedCauseTree(BaseModel):
    """Validated generator output, ready for CauseTree.replace_from_generated"""
    nodes: List[CauseNode] = Field(..., min_length=1)
    preventive_measures: List[PreventiveMeasure] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


# =============================================================================
# WORKFLOW OUTPUTS
# =============================================================================

class FragmentCounts(BaseModel):
    """Derived fragment counts; always recomputed"""
    verified_fact: int = 0
    opinion: int = 0
    to_verify: int = 0
    other: int = 0
    unusual: int = 0
    total: int = 0


class AnalysisStats(BaseModel):
    """Dashboard counters over all stored accidents"""
    total_analyses: int = 0
    draft: int = 0
    in_progress: int = 0
    completed: int = 0
