"""
LLM Gateway Infrastructure
==========================

Wrapper for LLM providers (OpenAI, Anthropic, Z.AI) providing a clean
interface for completion and embedding operations.

This module abstracts the client implementation following the
Dependency Inversion Principle - the application layer depends on
ILLMGateway, not on a provider SDK. The provider strategy is chosen once
at startup by create_llm_gateway().
"""

import asyncio
import hashlib
import json
import math
import random
import time
from abc import ABC, abstractmethod
from typing import List, Optional

import anthropic
import openai
from anthropic import AsyncAnthropic
from openai import AsyncOpenAI
from zai import ZaiClient

from complaint_triage.config import LLMProvider, Settings, settings
from complaint_triage.core import (
    ConfigurationException,
    EmbeddingUnavailableException,
    LLMException,
    ProviderUnavailableException,
)
from complaint_triage.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

ANTHROPIC_JSON_INSTRUCTION = (
    "\n\nYou must respond with valid JSON only. "
    "Do not include any text before or after the JSON object."
)
# Transient Anthropic statuses the SDK raises as a plain APIStatusError
RETRYABLE_STATUS_CODES = {408, 409, 529}


class EmbeddingResult:
    """Result of an embedding generation."""

    def __init__(self, embedding: List[float], model: str, total_tokens: int = 0):
        self.embedding = embedding
        self.model = model
        self.total_tokens = total_tokens
        self.dimension = len(embedding)


class CompletionResult:
    """Result of a chat completion."""

    def __init__(
        self,
        content: str,
        model: str,
        prompt_tokens: int,
        completion_tokens: int,
        latency_ms: int
    ):
        self.content = content
        self.model = model
        self.prompt_tokens = prompt_tokens
        self.completion_tokens = completion_tokens
        self.total_tokens = prompt_tokens + completion_tokens
        self.latency_ms = latency_ms


class ILLMGateway(ABC):
    """
    Interface for language-model operations.

    Following Interface Segregation Principle - only the two operations
    the pipeline needs are defined.
    """

    @abstractmethod
    async def complete(
        self,
        messages: List[dict],
        json_mode: bool = False,
        temperature: float = 0.3,
        max_tokens: int = 1000
    ) -> CompletionResult:
        """
        Generate a chat completion.

        Raises:
            ProviderUnavailableException: Network failure, timeout or rate limit
            LLMException: Any other provider error
        """

    @abstractmethod
    async def embed(self, text: str) -> EmbeddingResult:
        """
        Generate an embedding vector.

        Raises:
            EmbeddingUnavailableException: If no vector can be produced
        """


class OpenAIGateway(ILLMGateway):
    """
    OpenAI client implementation for GPT models.

    Provides async wrapper around OpenAI SDK operations.
    """

    def __init__(self, api_key: Optional[str] = None, client: Optional[AsyncOpenAI] = None):
        self._api_key = api_key or settings.openai_api_key
        if client is None and not self._api_key:
            raise ConfigurationException("OpenAI API key not configured")

        self._client = client or AsyncOpenAI(api_key=self._api_key)
        self._model = settings.llm_model
        self._embedding_model = settings.embedding_model

    async def embed(self, text: str) -> EmbeddingResult:
        """
        Generate embedding for text using OpenAI embedding model.

        Raises:
            EmbeddingUnavailableException: If embedding generation fails
        """
        try:
            response = await self._client.embeddings.create(
                model=self._embedding_model,
                input=text
            )
        except openai.OpenAIError as e:
            raise EmbeddingUnavailableException(f"Embedding generation failed: {str(e)}")

        usage = getattr(response, "usage", None)
        return EmbeddingResult(
            embedding=list(response.data[0].embedding),
            model=self._embedding_model,
            total_tokens=getattr(usage, "total_tokens", 0) or 0
        )

    async def complete(
        self,
        messages: List[dict],
        json_mode: bool = False,
        temperature: float = 0.3,
        max_tokens: int = 1000
    ) -> CompletionResult:
        """
        Generate chat completion using OpenAI GPT.

        Args:
            messages: List of message dicts with 'role' and 'content'
            json_mode: Ask the provider for a JSON object response
            temperature: Sampling temperature (0-1)
            max_tokens: Maximum tokens to generate
        """
        start_time = time.perf_counter()

        kwargs = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                **kwargs
            )
        except (openai.APITimeoutError, openai.APIConnectionError, openai.RateLimitError) as e:
            raise ProviderUnavailableException(f"OpenAI unavailable: {str(e)}")
        except openai.InternalServerError as e:
            raise ProviderUnavailableException(f"OpenAI server error: {str(e)}")
        except openai.OpenAIError as e:
            raise LLMException(f"Chat completion failed: {str(e)}")

        latency_ms = int((time.perf_counter() - start_time) * 1000)

        return CompletionResult(
            content=response.choices[0].message.content or "",
            model=response.model or self._model,
            prompt_tokens=response.usage.prompt_tokens if response.usage else 0,
            completion_tokens=response.usage.completion_tokens if response.usage else 0,
            latency_ms=latency_ms
        )


class AnthropicGateway(ILLMGateway):
    """
    Anthropic Messages API implementation over the Anthropic SDK.

    Anthropic has no JSON response mode, so in json_mode the system prompt
    gets a JSON-only instruction and the assistant turn is prefilled with
    ``{``. The prefill is prepended back onto the returned content.
    Anthropic offers no embedding endpoint.
    """

    def __init__(self, api_key: Optional[str] = None, client: Optional[AsyncAnthropic] = None):
        self._api_key = api_key or settings.anthropic_api_key
        if client is None and not self._api_key:
            raise ConfigurationException("Anthropic API key not configured")

        self._client = client or AsyncAnthropic(
            api_key=self._api_key,
            base_url=settings.anthropic_base_url,
            timeout=settings.llm_timeout_seconds
        )
        self._model = settings.llm_model

    @staticmethod
    def _build_request(
        model: str,
        messages: List[dict],
        json_mode: bool,
        temperature: float,
        max_tokens: int
    ) -> dict:
        system_parts = [m["content"] for m in messages if m.get("role") == "system"]
        conversation = [
            {"role": m["role"], "content": m["content"]}
            for m in messages
            if m.get("role") != "system"
        ]

        system = "\n\n".join(system_parts)
        if json_mode:
            system += ANTHROPIC_JSON_INSTRUCTION
            conversation.append({"role": "assistant", "content": "{"})

        request = {
            "model": model,
            "messages": conversation,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if system:
            request["system"] = system
        return request

    async def complete(
        self,
        messages: List[dict],
        json_mode: bool = False,
        temperature: float = 0.3,
        max_tokens: int = 1000
    ) -> CompletionResult:
        start_time = time.perf_counter()
        request = self._build_request(self._model, messages, json_mode, temperature, max_tokens)

        try:
            response = await self._client.messages.create(**request)
        except (anthropic.APITimeoutError, anthropic.APIConnectionError) as e:
            raise ProviderUnavailableException(f"Anthropic unavailable: {str(e)}")
        except (anthropic.RateLimitError, anthropic.InternalServerError) as e:
            raise ProviderUnavailableException(
                f"Anthropic returned {e.status_code}",
                details={"status_code": e.status_code}
            )
        except anthropic.APIStatusError as e:
            if e.status_code in RETRYABLE_STATUS_CODES:
                raise ProviderUnavailableException(
                    f"Anthropic returned {e.status_code}",
                    details={"status_code": e.status_code}
                )
            raise LLMException(
                f"Anthropic request failed with {e.status_code}",
                details={"status_code": e.status_code}
            )
        except anthropic.AnthropicError as e:
            raise LLMException(f"Chat completion failed: {str(e)}")

        text = "".join(
            block.text for block in response.content
            if getattr(block, "type", None) == "text"
        )
        if json_mode:
            text = "{" + text

        usage = response.usage
        latency_ms = int((time.perf_counter() - start_time) * 1000)

        return CompletionResult(
            content=text,
            model=response.model or self._model,
            prompt_tokens=usage.input_tokens if usage else 0,
            completion_tokens=usage.output_tokens if usage else 0,
            latency_ms=latency_ms
        )

    async def embed(self, text: str) -> EmbeddingResult:
        raise EmbeddingUnavailableException("Anthropic does not provide an embedding API")

    async def close(self) -> None:
        await self._client.close()


class ZAIGateway(ILLMGateway):
    """
    Z.AI SDK client implementation for GLM models.

    The SDK is synchronous, so calls run in a worker thread.
    """

    def __init__(self, api_key: Optional[str] = None):
        self._api_key = api_key or settings.zai_api_key
        if not self._api_key:
            raise ConfigurationException("Z.AI API key not configured")

        self._client = ZaiClient(api_key=self._api_key)
        self._model = settings.llm_model
        self._embedding_model = settings.embedding_model

    async def embed(self, text: str) -> EmbeddingResult:
        try:
            response = await asyncio.to_thread(
                self._client.embeddings.create,
                model=self._embedding_model,
                input=text
            )
        except Exception as e:
            raise EmbeddingUnavailableException(f"Embedding generation failed: {str(e)}")

        return EmbeddingResult(
            embedding=list(response.data[0].embedding),
            model=self._embedding_model
        )

    async def complete(
        self,
        messages: List[dict],
        json_mode: bool = False,
        temperature: float = 0.3,
        max_tokens: int = 1000
    ) -> CompletionResult:
        start_time = time.perf_counter()

        kwargs = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = await asyncio.to_thread(
                self._client.chat.completions.create,
                model=self._model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                **kwargs
            )
        except Exception as e:
            raise ProviderUnavailableException(f"Chat completion failed: {str(e)}")

        latency_ms = int((time.perf_counter() - start_time) * 1000)
        content = response.choices[0].message.content or ""

        usage = getattr(response, "usage", None)
        if usage is not None:
            prompt_tokens = usage.prompt_tokens
            completion_tokens = usage.completion_tokens
        else:
            # Estimate when the SDK does not report usage
            prompt_tokens = len(str(messages)) // 4
            completion_tokens = len(content) // 4

        return CompletionResult(
            content=content,
            model=self._model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            latency_ms=latency_ms
        )


def pseudo_embedding(text: str, dimension: int) -> List[float]:
    """Deterministic unit vector seeded from the text hash."""
    seed = int(hashlib.sha256(text.encode()).hexdigest()[:8], 16)
    rng = random.Random(seed)
    vector = [rng.uniform(-1, 1) for _ in range(dimension)]
    norm = math.sqrt(sum(v * v for v in vector)) or 1.0
    return [v / norm for v in vector]


class MockLLMGateway(ILLMGateway):
    """
    Mock LLM gateway for local runs and tests.

    Returns predictable, schema-valid responses for each triage stage
    without calling external APIs.
    """

    MODEL = "mock-model"

    def __init__(self, dimension: Optional[int] = None):
        self._dimension = dimension or settings.embedding_dimension

    async def embed(self, text: str) -> EmbeddingResult:
        return EmbeddingResult(
            embedding=pseudo_embedding(text, self._dimension),
            model="mock-embedding",
            total_tokens=len(text.split())
        )

    async def complete(
        self,
        messages: List[dict],
        json_mode: bool = False,
        temperature: float = 0.3,
        max_tokens: int = 1000
    ) -> CompletionResult:
        user_content = str(messages[-1].get("content", "")) if messages else ""
        response = self._response_for(user_content)
        content = json.dumps(response) if json_mode else f"```json\n{json.dumps(response, indent=2)}\n```"

        return CompletionResult(
            content=content,
            model=self.MODEL,
            prompt_tokens=len(user_content.split()),
            completion_tokens=len(content.split()),
            latency_ms=1
        )

    @staticmethod
    def _response_for(prompt: str) -> dict:
        if '"executiveSummary"' in prompt:
            return {
                "executiveSummary": "Mock: The consumer reports a dispute with a business. "
                                    "The business has not resolved the issue.",
                "keyIssues": ["Unresolved consumer dispute"],
                "recommendedActions": ["Contact the business for a response"],
                "reasoning": "Mock summary.",
                "confidence": 0.9,
            }
        if '"isSystemic"' in prompt:
            return {
                "isSystemic": True,
                "title": "Mock systemic pattern",
                "description": "Mock: several complaints describe the same practice.",
                "commonPatterns": ["Same practice reported"],
                "sharedPractices": [],
                "affectedConsumerProfile": "General consumers",
                "potentialRegulatoryConcern": "Possible misleading conduct",
                "recommendedAction": "Open an investigation",
                "riskLevel": "medium",
                "reasoning": "Mock clustering analysis.",
                "confidence": 0.8,
            }
        if '"complexityFactors"' in prompt:
            return {
                "riskLevel": "medium",
                "complexityFactors": {
                    "legalNuance": 0.3,
                    "investigationDepth": 0.3,
                    "monetaryValue": 0.2,
                    "partiesInvolved": 0.2,
                    "novelty": 0.1,
                    "publicHarm": 0.2,
                },
                "complexityScore": 0.3,
                "publicHarmIndicator": 0.2,
                "vulnerabilityScore": 0.1,
                "systemicImpactScore": 0.1,
                "resolutionProbability": 0.7,
                "recommendedRouting": "line_1_auto",
                "reasoning": "Mock risk assessment.",
                "confidence": 0.85,
            }
        if '"primaryCategory"' in prompt:
            return {
                "primaryCategory": "refund_dispute",
                "secondaryCategories": [],
                "legalCategory": "consumer_guarantees",
                "relevantLegislation": ["Australian Consumer Law"],
                "isCivilDispute": False,
                "isSystemicRisk": False,
                "breachLikelihood": 0.5,
                "breachType": None,
                "regulatoryJurisdiction": "federal",
                "reasoning": "Mock classification.",
                "confidence": 0.88,
            }
        return {
            "businessName": None,
            "productOrService": None,
            "complaintCategory": "other",
            "industry": "other",
            "monetaryValue": None,
            "monetaryCurrency": "AUD",
            "incidentDate": None,
            "timeline": [],
            "parties": [],
            "evidenceMentioned": [],
            "urgencyIndicators": [],
            "vulnerabilityIndicators": [],
            "keyFacts": [],
            "reasoning": "Mock extraction.",
            "confidence": 0.9,
        }


def create_llm_gateway(config: Optional[Settings] = None) -> ILLMGateway:
    """
    Select the provider strategy once, at startup.

    Raises:
        ConfigurationException: If the selected provider is missing credentials
    """
    config = config or settings

    if config.mock_llm or config.llm_provider == LLMProvider.MOCK.value:
        logger.info("Using mock LLM gateway")
        return MockLLMGateway(dimension=config.embedding_dimension)

    if config.llm_provider == LLMProvider.ANTHROPIC.value:
        gateway: ILLMGateway = AnthropicGateway(api_key=config.anthropic_api_key)
    elif config.llm_provider == LLMProvider.ZAI.value:
        gateway = ZAIGateway(api_key=config.zai_api_key)
    else:
        gateway = OpenAIGateway(api_key=config.openai_api_key)

    logger.info(
        "LLM gateway initialized",
        extra={"provider": config.llm_provider, "model": config.llm_model}
    )
    return gateway
