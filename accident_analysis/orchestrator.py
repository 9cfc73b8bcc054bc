"""
Analysis Orchestrator
=====================

Drives the four-stage INRS workflow for one accident at a time:

    declared -> testimony_classified -> summary_validated -> tree_built

Stage (and the derived status draft / in_progress / completed) only moves
forward. Earlier-stage data stays editable in every stage without
demoting the accident.

Collaborators are injected: a storage handle, the two AI services and
optionally a node id allocator factory. AI calls are async and bounded by
ai_call_timeout; everything else is synchronous.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, TypeVar, Union

from .cause_tree import CauseTree
from .config import Settings, get_settings
from .errors import AIServiceUnavailable, InsufficientFacts
from .exporter import build_export_snapshot
from .ids import IdAllocator
from .llm import (
    CauseTreeGeneratorService,
    DisabledAIService,
    StatementClassifierService,
    build_ai_services,
    validate_cause_tree_generation,
    validate_testimony_analysis,
)
from .schemas import (
    Accident,
    AccidentDeclaration,
    AccidentStatus,
    AnalysisStage,
    AnalysisStats,
    ClassifiedFragment,
    ClassifierRequest,
    ClassifierResult,
    Fragment,
    FragmentCategory,
    FragmentCounts,
    GeneratorRequest,
    MaterialEvidence,
    Witness,
    WitnessInput,
)
from .storage import AnalysisStorage
from . import evidence as evidence_catalog
from . import fragments as fragment_classifier

logger = logging.getLogger(__name__)

T = TypeVar("T")

DECLARATION_FIELDS = set(AccidentDeclaration.model_fields)


@dataclass
class TreeGenerationResult:
    """Outcome of one successful auto-generation"""
    tree: CauseTree
    accident: Accident
    warnings: List[str] = field(default_factory=list)


class AnalysisOrchestrator:
    """
    Workflow facade over storage, fragment/evidence rules, the cause tree
    and the AI collaborators.

    Usage:
        orchestrator = AnalysisOrchestrator(InMemoryStorage())
        accident = orchestrator.declare_accident(declaration)
        orchestrator.add_manual_fact(accident.id, "Sol mouillé")
        result = await orchestrator.generate_cause_tree(accident.id)
    """

    def __init__(
        self,
        storage: AnalysisStorage,
        classifier: Optional[StatementClassifierService] = None,
        generator: Optional[CauseTreeGeneratorService] = None,
        id_allocator_factory: Optional[Callable[[], IdAllocator]] = None,
        ai_call_timeout: float = 60.0,
        accident_number_prefix: str = "ACC",
    ):
        disabled = DisabledAIService()
        self.storage = storage
        self.classifier = classifier or disabled
        self.generator = generator or disabled
        self.id_allocator_factory = id_allocator_factory
        self.ai_call_timeout = ai_call_timeout
        self.accident_number_prefix = accident_number_prefix

    @classmethod
    def from_settings(cls, storage: AnalysisStorage, settings: Optional[Settings] = None) -> "AnalysisOrchestrator":
        settings = settings or get_settings()
        classifier, generator = build_ai_services(settings)
        return cls(
            storage,
            classifier=classifier,
            generator=generator,
            ai_call_timeout=settings.ai_call_timeout,
            accident_number_prefix=settings.accident_number_prefix,
        )

    # =========================================================================
    # Stage machine
    # =========================================================================

    def _advance(self, accident_id: int, stage: AnalysisStage) -> Accident:
        """Move the accident forward to stage; never backwards"""
        accident = self.storage.get_accident(accident_id)
        if stage.rank <= accident.stage.rank:
            return accident

        previous = accident.stage
        accident.stage = stage
        accident.status = stage.status
        accident.updated_at = datetime.utcnow()
        accident = self.storage.update_accident(accident)
        logger.info(
            f"Accident {accident.accident_number}: {previous.value} -> {stage.value} "
            f"(status {accident.status.value})"
        )
        return accident

    async def _call_ai(self, call: Awaitable[T], label: str) -> T:
        try:
            return await asyncio.wait_for(call, timeout=self.ai_call_timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"{label} timed out after {self.ai_call_timeout}s")
            raise AIServiceUnavailable(f"{label} timed out after {self.ai_call_timeout}s") from e

    # =========================================================================
    # Accidents & witnesses
    # =========================================================================

    def _next_accident_number(self, year: int) -> str:
        sequence = self.storage.count_accidents_for_year(year) + 1
        number = f"{self.accident_number_prefix}-{year}-{sequence:03d}"
        # deletions can free a count that is still used by a later number
        while self.storage.accident_number_exists(number):
            sequence += 1
            number = f"{self.accident_number_prefix}-{year}-{sequence:03d}"
        return number

    def declare_accident(
        self,
        declaration: AccidentDeclaration,
        witnesses: Iterable[WitnessInput] = (),
    ) -> Accident:
        """Create the accident record (stage declared, status draft) and its witnesses"""
        now = datetime.utcnow()
        accident = Accident(
            **declaration.model_dump(),
            accident_number=self._next_accident_number(now.year),
            status=AccidentStatus.DRAFT,
            stage=AnalysisStage.DECLARED,
            created_at=now,
            updated_at=now,
        )
        accident = self.storage.create_accident(accident)

        for witness in witnesses:
            self.add_witness(accident.id, witness)

        logger.info(f"Declared accident {accident.accident_number} (id={accident.id})")
        return accident

    def get_accident(self, accident_id: int) -> Accident:
        return self.storage.get_accident(accident_id)

    def list_accidents(self) -> List[Accident]:
        return self.storage.list_accidents()

    def update_accident(self, accident_id: int, **fields) -> Accident:
        """
        Edit declaration fields in any stage.

        status and stage are owned by the workflow and rejected here.
        """
        unknown = set(fields) - DECLARATION_FIELDS
        if unknown:
            raise ValueError(f"Fields not editable on an accident: {sorted(unknown)}")

        accident = self.storage.get_accident(accident_id)
        merged = AccidentDeclaration(**{**accident.model_dump(include=DECLARATION_FIELDS), **fields})
        accident = accident.model_copy(update={**merged.model_dump(), "updated_at": datetime.utcnow()})
        return self.storage.update_accident(accident)

    def delete_accident(self, accident_id: int) -> None:
        self.storage.delete_accident(accident_id)
        logger.info(f"Deleted accident {accident_id}")

    def add_witness(self, accident_id: int, witness: WitnessInput) -> Witness:
        return self.storage.add_witness(Witness(accident_id=accident_id, **witness.model_dump()))

    def list_witnesses(self, accident_id: int) -> List[Witness]:
        self.storage.get_accident(accident_id)
        return self.storage.list_witnesses(accident_id)

    # =========================================================================
    # Testimony & fragments
    # =========================================================================

    async def analyze_testimony(
        self,
        accident_id: int,
        testimony: str,
        accident_context: Optional[str] = None,
    ) -> ClassifierResult:
        """
        Ask the classifier for fragment proposals. Nothing is persisted;
        the user reviews the proposals and passes the kept ones to
        save_fragments.

        Raises:
            AIServiceUnavailable: timeout or transport failure
            AIResponseInvalid: response failed validation
        """
        accident = self.storage.get_accident(accident_id)
        request = ClassifierRequest(
            testimony=testimony,
            accident_context=accident_context if accident_context is not None else accident.description,
        )
        raw = await self._call_ai(self.classifier.classify(request), "Testimony classifier")
        result = validate_testimony_analysis(raw)
        logger.info(
            f"Accident {accident.accident_number}: classifier proposed {len(result.fragments)} fragments"
            + (f" ({len(result.warnings)} warnings)" if result.warnings else "")
        )
        return result

    def save_fragments(
        self,
        accident_id: int,
        proposals: Iterable[ClassifiedFragment],
        witness_id: Optional[int] = None,
    ) -> List[Fragment]:
        """Persist reviewed classifier proposals; advances to testimony_classified"""
        self.storage.get_accident(accident_id)
        saved = [
            self.storage.add_fragment(fragment_classifier.from_classified(accident_id, proposal, witness_id))
            for proposal in proposals
        ]
        if saved:
            self._advance(accident_id, AnalysisStage.TESTIMONY_CLASSIFIED)
        return saved

    def classify_fragment(
        self,
        accident_id: int,
        content: str,
        category: Union[FragmentCategory, str] = FragmentCategory.OTHER,
        witness_id: Optional[int] = None,
        is_unusual: bool = False,
    ) -> Fragment:
        """Manual classification of one fragment; advances to testimony_classified"""
        self.storage.get_accident(accident_id)
        fragment = self.storage.add_fragment(
            fragment_classifier.classify(accident_id, content, category, witness_id, is_unusual)
        )
        self._advance(accident_id, AnalysisStage.TESTIMONY_CLASSIFIED)
        return fragment

    def add_manual_fact(self, accident_id: int, content: str, is_unusual: bool = False) -> Fragment:
        """A fact typed by the investigator: verified, not tied to a witness"""
        return self.classify_fragment(
            accident_id, content, FragmentCategory.VERIFIED_FACT, witness_id=None, is_unusual=is_unusual
        )

    def reclassify_fragment(self, fragment_id: int, category: Union[FragmentCategory, str]) -> Fragment:
        fragment = self.storage.get_fragment(fragment_id)
        return self.storage.update_fragment(fragment_classifier.reclassify(fragment, category))

    def toggle_unusual(self, fragment_id: int, flag: bool) -> Fragment:
        fragment = self.storage.get_fragment(fragment_id)
        return self.storage.update_fragment(fragment_classifier.toggle_unusual(fragment, flag))

    def delete_fragment(self, fragment_id: int) -> None:
        self.storage.delete_fragment(fragment_id)

    def list_fragments(self, accident_id: int) -> List[Fragment]:
        self.storage.get_accident(accident_id)
        return self.storage.list_fragments(accident_id)

    def fragment_counts(self, accident_id: int) -> FragmentCounts:
        return fragment_classifier.count_by_category(self.list_fragments(accident_id))

    # =========================================================================
    # Material evidence
    # =========================================================================

    def add_evidence(
        self,
        accident_id: int,
        description: str,
        is_useful: bool = False,
        file_name: Optional[str] = None,
        file_url: Optional[str] = None,
    ) -> MaterialEvidence:
        self.storage.get_accident(accident_id)
        return self.storage.add_evidence(
            evidence_catalog.catalog(accident_id, description, is_useful, file_name, file_url)
        )

    def update_evidence(self, evidence_id: int, **fields) -> MaterialEvidence:
        item = self.storage.get_evidence(evidence_id)
        return self.storage.update_evidence(evidence_catalog.edit(item, **fields))

    def mark_evidence_useful(self, evidence_id: int, flag: bool) -> MaterialEvidence:
        item = self.storage.get_evidence(evidence_id)
        return self.storage.update_evidence(evidence_catalog.mark_useful(item, flag))

    def delete_evidence(self, evidence_id: int) -> None:
        self.storage.delete_evidence(evidence_id)

    def list_evidence(self, accident_id: int) -> List[MaterialEvidence]:
        self.storage.get_accident(accident_id)
        return self.storage.list_evidence(accident_id)

    # =========================================================================
    # Summary
    # =========================================================================

    def validate_summary(self, accident_id: int) -> Accident:
        """
        Confirm the classified testimony; advances to summary_validated.

        Raises:
            InsufficientFacts: no verified_fact fragment yet
        """
        facts = fragment_classifier.verified_facts(self.list_fragments(accident_id))
        if not facts:
            raise InsufficientFacts(f"Accident {accident_id} has no verified facts to validate")
        return self._advance(accident_id, AnalysisStage.SUMMARY_VALIDATED)

    # =========================================================================
    # Cause tree
    # =========================================================================

    def _new_tree(self, accident_id: int) -> CauseTree:
        allocator = self.id_allocator_factory() if self.id_allocator_factory else None
        return CauseTree(accident_id, id_allocator=allocator)

    def open_tree(self, accident_id: int) -> CauseTree:
        """
        Load the persisted tree, or an empty one if none was saved.

        Raises:
            MalformedTree: persisted blob fails the structural checks
        """
        blob = self.storage.load_cause_tree(accident_id)
        tree = self._new_tree(accident_id)
        if blob is not None:
            tree.load(blob)
        return tree

    def save_tree(self, tree: CauseTree) -> Accident:
        """
        Persist the whole tree, replacing the previous version.

        Two sessions saving the same accident: the last save wins.
        A non-empty tree advances the accident to tree_built once it has
        a validated summary or at least one verified fact; otherwise the
        tree is stored and the stage is left alone.

        Raises:
            MalformedTree: the tree fails the structural checks
        """
        self.storage.save_cause_tree(tree.accident_id, tree.serialize())
        accident = self.storage.get_accident(tree.accident_id)
        if len(tree) and self._tree_stage_reached(accident):
            return self._advance(tree.accident_id, AnalysisStage.TREE_BUILT)
        return accident

    def _tree_stage_reached(self, accident: Accident) -> bool:
        if accident.stage.rank >= AnalysisStage.SUMMARY_VALIDATED.rank:
            return True
        facts = fragment_classifier.verified_facts(self.storage.list_fragments(accident.id))
        if not facts:
            logger.info(
                f"Accident {accident.accident_number}: tree saved, stage stays "
                f"{accident.stage.value} until a verified fact exists"
            )
        return bool(facts)

    async def generate_cause_tree(
        self,
        accident_id: int,
        tree: Optional[CauseTree] = None,
    ) -> TreeGenerationResult:
        """
        Replace the accident's tree with an AI-generated one and persist it.

        The AI response is fully validated before anything changes; on any
        failure the given tree and the stored tree are left as they were.

        Raises:
            InsufficientFacts: no verified facts (the AI is not called)
            ValueError: tree belongs to another accident
            AIServiceUnavailable: timeout or transport failure
            AIResponseInvalid: response failed validation
        """
        if tree is not None and tree.accident_id != accident_id:
            raise ValueError(
                f"Cause tree of accident {tree.accident_id} cannot be generated for accident {accident_id}"
            )

        accident = self.storage.get_accident(accident_id)
        facts = fragment_classifier.verified_facts(self.storage.list_fragments(accident_id))
        if not facts:
            raise InsufficientFacts(f"Accident {accident.accident_number} has no verified facts")

        if tree is None:
            tree = self.open_tree(accident_id)

        request = GeneratorRequest(
            facts=[f.content for f in facts],
            accident_description=accident.description or "",
        )
        raw = await self._call_ai(self.generator.generate(request), "Cause tree generator")
        generated = validate_cause_tree_generation(raw)

        tree.replace_from_generated(generated.nodes, generated.preventive_measures)
        accident = self.save_tree(tree)
        return TreeGenerationResult(tree=tree, accident=accident, warnings=list(generated.warnings))

    # =========================================================================
    # Export & stats
    # =========================================================================

    def export_snapshot(self, accident_id: int) -> Dict[str, Any]:
        """Fully-resolved analysis for document generation"""
        accident = self.storage.get_accident(accident_id)
        return build_export_snapshot(
            accident,
            self.storage.list_witnesses(accident_id),
            self.storage.list_fragments(accident_id),
            self.storage.list_evidence(accident_id),
            self.open_tree(accident_id),
        )

    def analysis_stats(self) -> AnalysisStats:
        stats = AnalysisStats()
        for accident in self.storage.list_accidents():
            stats.total_analyses += 1
            if accident.status == AccidentStatus.DRAFT:
                stats.draft += 1
            elif accident.status == AccidentStatus.IN_PROGRESS:
                stats.in_progress += 1
            elif accident.status == AccidentStatus.COMPLETED:
                stats.completed += 1
        return stats
