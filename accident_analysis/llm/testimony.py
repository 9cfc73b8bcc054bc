"""
Testimony Classifier LLM Client
===============================

Splits a witness or victim testimony into fragments and labels each one
verified_fact / opinion / to_verify / other, following the INRS method.

Role:
- Propose fragments, never persist them
- JSON output, validated downstream by llm.validation
"""

import logging
from typing import Any, Dict, Optional
from dataclasses import dataclass

from ..errors import AIResponseInvalid, AIServiceUnavailable
from ..schemas import ClassifierRequest
from .contracts import StatementClassifierService
from .openai_base import OpenAICompatibleClient, request_json

logger = logging.getLogger(__name__)


TESTIMONY_SYSTEM_PROMPT = (
    "Vous êtes un expert en analyse d'accidents du travail selon la méthode INRS. "
    "Analysez les témoignages avec précision et objectivité."
)

TESTIMONY_USER_PROMPT = """Analysez le témoignage suivant concernant un accident du travail selon la méthode INRS.
Classifiez chaque élément significatif en tant que : fait avéré, opinion, élément à vérifier, ou autre.
{context}
Témoignage à analyser:
"{testimony}"

Instructions:
- Identifiez tous les éléments factuels distincts
- Distinguez clairement les faits observés des opinions et interprétations
- Identifiez les éléments qui nécessitent une vérification supplémentaire
- Évaluez la confiance de classification (0-1)

Répondez au format JSON avec la structure suivante:
{{
  "fragments": [
    {{
      "content": "texte exact du fragment identifié",
      "type": "verified_fact|opinion|to_verify|other",
      "confidence": 0.8,
      "reasoning": "explication du classement choisi"
    }}
  ],
  "summary": "résumé objectif de l'analyse du témoignage",
  "recommendations": ["recommandation 1 pour l'enquête", "recommandation 2"]
}}"""


def build_testimony_prompt(testimony: str, accident_context: Optional[str] = None) -> str:
    context = f"\nContexte de l'accident: {accident_context}\n" if accident_context else ""
    return TESTIMONY_USER_PROMPT.format(context=context, testimony=testimony)


@dataclass
class ClassifierStats:
    """Statistics for classifier calls"""
    calls: int = 0
    successful: int = 0
    failed: int = 0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    fragments_proposed: int = 0


class StatementClassifierLLM(StatementClassifierService):
    """
    Testimony classifier backed by an OpenAI-compatible chat API.

    Raises AIServiceUnavailable on transport failures and
    AIResponseInvalid when the model does not answer with a JSON object.
    """

    def __init__(
        self,
        client: OpenAICompatibleClient,
        temperature: float = 0.3,
        max_tokens: int = 4096,
    ):
        self.client = client
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.stats = ClassifierStats()
        logger.info(f"Testimony classifier initialized with model: {client.model}")

    async def close(self):
        await self.client.close()

    async def classify(self, request: ClassifierRequest) -> Dict[str, Any]:
        self.stats.calls += 1

        messages = [
            {"role": "system", "content": TESTIMONY_SYSTEM_PROMPT},
            {"role": "user", "content": build_testimony_prompt(request.testimony, request.accident_context)}
        ]

        try:
            data, result = await request_json(
                self.client,
                messages,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                label="Testimony classifier",
            )
        except (AIServiceUnavailable, AIResponseInvalid):
            self.stats.failed += 1
            raise

        self.stats.successful += 1
        self.stats.total_input_tokens += result.input_tokens
        self.stats.total_output_tokens += result.output_tokens

        fragments = data.get("fragments")
        if isinstance(fragments, list):
            self.stats.fragments_proposed += len(fragments)
            logger.info(f"Testimony classifier proposed {len(fragments)} fragments")

        return data

    def get_stats(self) -> Dict[str, Any]:
        """Get classifier statistics"""
        return {
            "calls": self.stats.calls,
            "successful": self.stats.successful,
            "failed": self.stats.failed,
            "total_input_tokens": self.stats.total_input_tokens,
            "total_output_tokens": self.stats.total_output_tokens,
            "fragments_proposed": self.stats.fragments_proposed
        }
