"""
Cause-Tree Generator LLM Client
===============================

Builds an INRS cause tree (necessary / unusual / normal facts linked by
sequence, conjunction or disjunction) plus preventive measures from the
verified facts of an accident.
"""

import logging
from typing import Any, Dict, List
from dataclasses import dataclass

from ..errors import AIResponseInvalid, AIServiceUnavailable
from ..schemas import GeneratorRequest
from .contracts import CauseTreeGeneratorService
from .openai_base import OpenAICompatibleClient, request_json

logger = logging.getLogger(__name__)


TREE_SYSTEM_PROMPT = (
    "Vous êtes un expert en méthode d'analyse d'accidents INRS. "
    "Créez des arbres des causes structurés et des mesures de prévention pertinentes."
)

TREE_USER_PROMPT = """Créez un arbre des causes selon la méthode INRS pour l'accident suivant.

Description de l'accident: {description}

Faits avérés identifiés:
{facts}

Instructions INRS:
- Identifiez les faits NÉCESSAIRES (sans lesquels l'accident n'aurait pas eu lieu)
- Identifiez les faits INHABITUELS (variations par rapport à la normale)
- Identifiez les faits HABITUELS (conditions normales de travail)
- Établissez les liaisons logiques: enchaînement (→), conjonction (+), disjonction (×)
- Proposez des mesures de prévention pour chaque fait nécessaire

Répondez au format JSON avec la structure suivante:
{{
  "nodes": [
    {{
      "id": "node-1",
      "content": "description précise du fait",
      "type": "necessary|unusual|normal",
      "x": 100,
      "y": 100,
      "connections": [
        {{
          "to": "node-2",
          "type": "sequence|conjunction|disjunction"
        }}
      ]
    }}
  ],
  "preventiveMeasures": [
    {{
      "factId": "node-1",
      "factContent": "description du fait nécessaire",
      "canEliminate": true,
      "canReduce": false,
      "measure": "mesure de prévention spécifique et réalisable",
      "priority": "high|medium|low"
    }}
  ]
}}"""


def build_tree_prompt(facts: List[str], accident_description: str) -> str:
    numbered = "\n".join(f"{i}. {fact}" for i, fact in enumerate(facts, 1))
    return TREE_USER_PROMPT.format(description=accident_description, facts=numbered)


@dataclass
class GeneratorStats:
    """Statistics for generator calls"""
    calls: int = 0
    successful: int = 0
    failed: int = 0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    nodes_proposed: int = 0


class CauseTreeGeneratorLLM(CauseTreeGeneratorService):
    """Cause-tree generator backed by an OpenAI-compatible chat API"""

    def __init__(
        self,
        client: OpenAICompatibleClient,
        temperature: float = 0.4,
        max_tokens: int = 4096,
    ):
        self.client = client
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.stats = GeneratorStats()
        logger.info(f"Cause tree generator initialized with model: {client.model}")

    async def close(self):
        await self.client.close()

    async def generate(self, request: GeneratorRequest) -> Dict[str, Any]:
        self.stats.calls += 1

        messages = [
            {"role": "system", "content": TREE_SYSTEM_PROMPT},
            {"role": "user", "content": build_tree_prompt(request.facts, request.accident_description)}
        ]

        try:
            data, result = await request_json(
                self.client,
                messages,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                label="Cause tree generator",
            )
        except (AIServiceUnavailable, AIResponseInvalid):
            self.stats.failed += 1
            raise

        self.stats.successful += 1
        self.stats.total_input_tokens += result.input_tokens
        self.stats.total_output_tokens += result.output_tokens

        nodes = data.get("nodes")
        if isinstance(nodes, list):
            self.stats.nodes_proposed += len(nodes)
            logger.info(f"Cause tree generator proposed {len(nodes)} nodes from {len(request.facts)} facts")

        return data

    def get_stats(self) -> Dict[str, Any]:
        """Get generator statistics"""
        return {
            "calls": self.stats.calls,
            "successful": self.stats.successful,
            "failed": self.stats.failed,
            "total_input_tokens": self.stats.total_input_tokens,
            "total_output_tokens": self.stats.total_output_tokens,
            "nodes_proposed": self.stats.nodes_proposed
        }
