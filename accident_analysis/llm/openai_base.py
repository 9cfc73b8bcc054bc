"""
OpenAI-Compatible Base Client
=============================

Shared async HTTP client for chat-completions APIs (OpenAI, OpenRouter).
Used by both the testimony classifier and the cause-tree generator.
"""

import hashlib
import json
import httpx
import logging
from typing import Optional, Dict, Any, List, Tuple
from dataclasses import dataclass

from ..errors import AIResponseInvalid, AIServiceUnavailable

logger = logging.getLogger(__name__)


@dataclass
class LLMCallResult:
    """Result from an LLM API call"""
    content: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    raw_response: Optional[Dict] = None
    success: bool = True
    error: Optional[str] = None
    timed_out: bool = False


class OpenAICompatibleClient:
    """
    Base async client for /chat/completions endpoints.

    Never raises on transport problems; failures come back as
    LLMCallResult(success=False) so callers decide how to surface them.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = "https://api.openai.com/v1",
        timeout: int = 30,
        app_name: str = "INRS Cause Tree",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.app_name = app_name
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client"""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def close(self):
        """Close the HTTP client"""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def call(
        self,
        messages: List[Dict[str, str]],
        response_format: Optional[Dict] = None,
        temperature: float = 0,
        max_tokens: int = 2048
    ) -> LLMCallResult:
        """
        Make a chat-completions call.

        Args:
            messages: List of message dicts with role and content
            response_format: Optional response format (e.g., {"type": "json_object"})
            temperature: Sampling temperature
            max_tokens: Maximum response tokens

        Returns:
            LLMCallResult with content or error
        """
        if not self.api_key:
            return LLMCallResult(
                content="",
                model=self.model,
                success=False,
                error="API key not configured"
            )

        payload = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }

        if response_format:
            payload["response_format"] = response_format

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "X-Title": self.app_name
        }

        try:
            client = await self._get_client()
            response = await client.post(
                f"{self.base_url}/chat/completions",
                json=payload,
                headers=headers
            )
            response.raise_for_status()
            data = response.json()

            # Extract content
            try:
                content = data["choices"][0]["message"]["content"]
            except (KeyError, IndexError, TypeError) as e:
                logger.error(f"Chat completion response missing content: {e}")
                return LLMCallResult(
                    content="",
                    model=self.model,
                    success=False,
                    error=f"Response missing content: {e}",
                    raw_response=data
                )

            if content is None:
                content = ""

            usage = data.get("usage", {})

            return LLMCallResult(
                content=content,
                model=self.model,
                input_tokens=usage.get("prompt_tokens", 0),
                output_tokens=usage.get("completion_tokens", 0),
                raw_response=data,
                success=True
            )

        except httpx.TimeoutException as e:
            logger.error(f"Chat completion timed out after {self.timeout}s: {e!r}")
            return LLMCallResult(
                content="",
                model=self.model,
                success=False,
                error=f"Timeout after {self.timeout}s",
                timed_out=True
            )
        except httpx.HTTPStatusError as e:
            logger.error(f"Chat completion API error: {e.response.status_code}")
            return LLMCallResult(
                content="",
                model=self.model,
                success=False,
                error=f"HTTP {e.response.status_code}: {e.response.text[:200]}"
            )
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Chat completion request failed: {e}")
            return LLMCallResult(
                content="",
                model=self.model,
                success=False,
                error=str(e)
            )


# =============================================================================
# Robust JSON Parser
# =============================================================================

def parse_json_robust(content: str) -> Tuple[Optional[Dict], bool, str]:
    """
    Parse JSON content robustly, handling common LLM output issues.

    Handles:
    - Empty content
    - Markdown code blocks (```json...```)
    - Prefix text before JSON
    - Multiple JSON objects (takes largest)

    Returns:
        Tuple of (parsed_dict, success, error_message)
    """
    if not content:
        return None, False, "Empty content"

    content = content.strip()

    # Step 1: Remove markdown code blocks
    if "```json" in content:
        start = content.find("```json") + 7
        end = content.find("```", start)
        if end > start:
            content = content[start:end].strip()
    elif "```" in content:
        start = content.find("```") + 3
        end = content.find("```", start)
        if end > start:
            content = content[start:end].strip()

    # Step 2: Try direct parsing
    try:
        data = json.loads(content)
        if isinstance(data, dict):
            return data, True, ""
    except json.JSONDecodeError:
        pass

    # Step 3: Find largest {...} block
    brace_blocks = []
    depth = 0
    start_idx = None

    for i, char in enumerate(content):
        if char == '{':
            if depth == 0:
                start_idx = i
            depth += 1
        elif char == '}' and depth > 0:
            depth -= 1
            if depth == 0 and start_idx is not None:
                brace_blocks.append(content[start_idx:i + 1])
                start_idx = None

    for block in sorted(brace_blocks, key=len, reverse=True):
        try:
            data = json.loads(block)
            return data, True, ""
        except json.JSONDecodeError:
            continue

    return None, False, "No JSON object found in content"


def safe_log_content(content: str, max_chars: int = 120) -> str:
    """
    Create a safe log representation of content (length, hash, preview).
    """
    if not content:
        return "(empty)"

    content_hash = hashlib.sha256(content.encode()).hexdigest()[:12]
    preview = content[:max_chars].replace('\n', ' ')

    return f"len={len(content)} hash={content_hash} preview='{preview}...'"


async def request_json(
    client: OpenAICompatibleClient,
    messages: List[Dict[str, str]],
    temperature: float,
    max_tokens: int,
    label: str,
) -> Tuple[Dict[str, Any], LLMCallResult]:
    """
    Run one JSON-mode call and return the decoded object.

    Raises:
        AIServiceUnavailable: transport failure, timeout or HTTP error
        AIResponseInvalid: the model answered with something that is not a JSON object
    """
    result = await client.call(
        messages=messages,
        response_format={"type": "json_object"},
        temperature=temperature,
        max_tokens=max_tokens
    )

    if not result.success:
        logger.error(f"{label} call failed: {result.error}")
        raise AIServiceUnavailable(f"{label} unavailable: {result.error}")

    logger.debug(f"{label} response: {safe_log_content(result.content)}")

    data, ok, error = parse_json_robust(result.content)
    if not ok or not isinstance(data, dict):
        logger.error(f"{label} returned non-JSON content: {safe_log_content(result.content)}")
        raise AIResponseInvalid(f"{label} returned invalid JSON", [error or "not an object"])

    return data, result
