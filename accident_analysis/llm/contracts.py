"""
AI Service Contracts
====================

The orchestrator depends on these two interfaces only. Implementations
return the raw decoded JSON object; llm.validation turns it into typed
models. Tests plug in fakes.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict

from ..errors import AIServiceUnavailable
from ..schemas import ClassifierRequest, GeneratorRequest


class StatementClassifierService(ABC):
    """Splits a testimony into categorized fragments"""

    @abstractmethod
    async def classify(self, request: ClassifierRequest) -> Dict[str, Any]:
        """Return {fragments: [...], summary, recommendations}"""


class CauseTreeGeneratorService(ABC):
    """Proposes a cause tree and preventive measures from verified facts"""

    @abstractmethod
    async def generate(self, request: GeneratorRequest) -> Dict[str, Any]:
        """Return {nodes: [...], preventiveMeasures: [...]}"""


class DisabledAIService(StatementClassifierService, CauseTreeGeneratorService):
    """Stand-in used when LLM_MODE=none"""

    def __init__(self, reason: str = "AI features disabled (LLM_MODE=none)"):
        self.reason = reason

    async def classify(self, request: ClassifierRequest) -> Dict[str, Any]:
        raise AIServiceUnavailable(self.reason)

    async def generate(self, request: GeneratorRequest) -> Dict[str, Any]:
        raise AIServiceUnavailable(self.reason)
