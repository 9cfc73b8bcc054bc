"""
LLM Module
==========

AI collaborators of the analysis workflow.

Architecture:
- Testimony classifier: splits a testimony into categorized fragments
- Cause-tree generator: proposes nodes, edges and preventive measures
- validation: turns raw JSON into typed models or raises AIResponseInvalid

Both clients speak the OpenAI chat-completions format, so LLM_MODE picks
OpenAI or OpenRouter without changing the prompts.

Usage:
    from accident_analysis.llm import build_ai_services

    classifier, generator = build_ai_services(get_settings())
    raw = await classifier.classify(ClassifierRequest(testimony=text))
"""

import logging
from typing import Optional, Tuple

from ..config import Settings, get_settings
from ..schemas import LLMMode
from .openai_base import OpenAICompatibleClient, LLMCallResult, parse_json_robust, safe_log_content
from .contracts import StatementClassifierService, CauseTreeGeneratorService, DisabledAIService
from .testimony import StatementClassifierLLM, ClassifierStats
from .tree_generator import CauseTreeGeneratorLLM, GeneratorStats
from .validation import validate_testimony_analysis, validate_cause_tree_generation

logger = logging.getLogger(__name__)


def build_ai_services(
    settings: Optional[Settings] = None,
) -> Tuple[StatementClassifierService, CauseTreeGeneratorService]:
    """
    Build (classifier, generator) for the configured LLM_MODE.

    LLM_MODE=none, or a missing API key, yields DisabledAIService for both;
    the manual workflow keeps working and AI calls raise AIServiceUnavailable.
    """
    settings = settings or get_settings()

    for warning in settings.validate_llm_config():
        logger.warning(warning)

    if settings.llm_mode == LLMMode.OPENAI:
        api_key, model, base_url = settings.openai_api_key, settings.openai_model, settings.openai_base_url
    elif settings.llm_mode == LLMMode.OPENROUTER:
        api_key, model, base_url = settings.openrouter_api_key, settings.openrouter_model, settings.openrouter_base_url
    else:
        logger.info("AI features disabled (LLM_MODE=none)")
        disabled = DisabledAIService()
        return disabled, disabled

    if not api_key:
        disabled = DisabledAIService(f"AI features disabled: no API key for LLM_MODE={settings.llm_mode.value}")
        return disabled, disabled

    def make_client(app_name: str) -> OpenAICompatibleClient:
        return OpenAICompatibleClient(
            api_key=api_key,
            model=model,
            base_url=base_url,
            timeout=settings.llm_timeout,
            app_name=app_name,
        )

    classifier = StatementClassifierLLM(
        make_client("INRS Testimony Classifier"),
        temperature=settings.testimony_temperature,
        max_tokens=settings.llm_max_tokens,
    )
    generator = CauseTreeGeneratorLLM(
        make_client("INRS Cause Tree Generator"),
        temperature=settings.tree_temperature,
        max_tokens=settings.llm_max_tokens,
    )
    return classifier, generator


__all__ = [
    # Base
    "OpenAICompatibleClient",
    "LLMCallResult",
    "parse_json_robust",
    "safe_log_content",
    # Contracts
    "StatementClassifierService",
    "CauseTreeGeneratorService",
    "DisabledAIService",
    # Clients
    "StatementClassifierLLM",
    "ClassifierStats",
    "CauseTreeGeneratorLLM",
    "GeneratorStats",
    # Validation
    "validate_testimony_analysis",
    "validate_cause_tree_generation",
    "build_ai_services",
]
