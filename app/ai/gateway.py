"""
Product Workspace Platform
LLM Gateway.

Provider-agnostic LLM router with:
    - Multi-provider support (Anthropic Claude, OpenAI, local stub)
    - Auto-retry with exponential backoff
    - Budget and rate-limit checks through the cost manager
    - Token tracking & cost logging (AIUsageLog)
    - Audit logging (AIAuditLog)

Usage:
    from app.ai.gateway import LLMGateway
    gw = LLMGateway()
    result = gw.chat([{"role": "user", "content": "Suggest dependencies"}],
                     purpose="dependency_suggestions", workspace_id=3)
"""

import hashlib
import json
import logging
import os
import re
import time
from abc import ABC, abstractmethod

from sqlalchemy.exc import SQLAlchemyError

from app.models import db
from app.models.ai import HAIKU_MODEL, SONNET_MODEL, AIAuditLog, AIUsageLog, calculate_cost

logger = logging.getLogger(__name__)


class AIUnavailableError(RuntimeError):
    """Raised when every retry against the resolved provider failed."""


class BudgetExceededError(RuntimeError):
    """Raised when a call would exceed a cost budget or rate limit."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


# ── Provider Abstract Base ────────────────────────────────────────────────────

class LLMProvider(ABC):
    """Abstract interface for LLM providers."""

    @abstractmethod
    def chat(self, messages: list, model: str, **kwargs) -> dict:
        """
        Send a chat completion request.

        Args:
            messages: List of {"role": "...", "content": "..."} dicts.
            model: Model identifier string.
            **kwargs: temperature, max_tokens.

        Returns:
            dict with keys: content, prompt_tokens, completion_tokens, model
        """
        ...


# ── Anthropic Provider ────────────────────────────────────────────────────────

class AnthropicProvider(LLMProvider):
    """Claude API (Anthropic) provider."""

    def __init__(self):
        self.api_key = os.getenv("ANTHROPIC_API_KEY", "")
        self._client = None

    def _get_client(self):
        if self._client is None:
            try:
                import anthropic
            except ImportError as exc:
                raise RuntimeError("anthropic package not installed. Run: pip install anthropic") from exc
            self._client = anthropic.Anthropic(api_key=self.api_key)
        return self._client

    def chat(self, messages: list, model: str = HAIKU_MODEL, **kwargs) -> dict:
        client = self._get_client()

        system_msg = ""
        chat_messages = []
        for m in messages:
            if m["role"] == "system":
                system_msg = m["content"]
            else:
                chat_messages.append(m)

        params = {
            "model": model,
            "messages": chat_messages,
            "max_tokens": kwargs.get("max_tokens", 2048),
            "temperature": kwargs.get("temperature", 0.3),
        }
        if system_msg:
            params["system"] = system_msg

        response = client.messages.create(**params)
        return {
            "content": response.content[0].text,
            "prompt_tokens": response.usage.input_tokens,
            "completion_tokens": response.usage.output_tokens,
            "model": model,
        }


# ── OpenAI Provider ───────────────────────────────────────────────────────────

class OpenAIProvider(LLMProvider):
    """OpenAI chat completions provider."""

    def __init__(self):
        self.api_key = os.getenv("OPENAI_API_KEY", "")
        self._client = None

    def _get_client(self):
        if self._client is None:
            try:
                import openai
            except ImportError as exc:
                raise RuntimeError("openai package not installed. Run: pip install openai") from exc
            self._client = openai.OpenAI(api_key=self.api_key)
        return self._client

    def chat(self, messages: list, model: str = "gpt-4o-mini", **kwargs) -> dict:
        client = self._get_client()
        response = client.chat.completions.create(
            model=model,
            messages=messages,
            max_tokens=kwargs.get("max_tokens", 2048),
            temperature=kwargs.get("temperature", 0.3),
        )
        choice = response.choices[0]
        return {
            "content": choice.message.content or "",
            "prompt_tokens": response.usage.prompt_tokens,
            "completion_tokens": response.usage.completion_tokens,
            "model": model,
        }


# ── Local Stub Provider (for dev/test without API keys) ──────────────────────

class LocalStubProvider(LLMProvider):
    """
    Local stub that returns deterministic responses for dev/testing.
    No API key required.
    """

    def chat(self, messages: list, model: str = "local-stub", **kwargs) -> dict:
        user_msg = ""
        for m in reversed(messages):
            if m["role"] == "user":
                user_msg = m["content"]
                break

        content = self._generate_stub_response(user_msg)
        return {
            "content": content,
            "prompt_tokens": len(user_msg.split()) * 2,
            "completion_tokens": len(content.split()) * 2,
            "model": "local-stub",
        }

    @staticmethod
    def _generate_stub_response(user_msg: str) -> str:
        """Context-aware canned answer keyed on the prompt's wording."""
        lower = user_msg.lower()

        if "dependencies between" in lower:
            ids = [int(i) for i in re.findall(r"\[(\d+)\]", user_msg)]
            suggestions = []
            if len(ids) >= 2:
                suggestions.append({
                    "source_id": ids[1],
                    "target_id": ids[0],
                    "connection_type": "dependency",
                    "reason": "The second item builds on the first.",
                    "confidence": 0.75,
                    "strength": 0.7,
                })
            return json.dumps(suggestions)

        if "align" in lower and "strateg" in lower:
            items = [int(i) for i in re.findall(r"\[W(\d+)\]", user_msg)]
            strategies = [int(i) for i in re.findall(r"\[S(\d+)\]", user_msg)]
            suggestions = []
            if items and strategies:
                suggestions.append({
                    "work_item_id": items[0],
                    "strategy_id": strategies[-1],
                    "confidence": 0.7,
                    "reason": "Shared domain vocabulary.",
                    "alignment_strength": "medium",
                })
            return json.dumps({"suggestions": suggestions})

        if "acceptance criteria" in lower or "definition of done" in lower:
            return json.dumps([
                "GIVEN a signed-in user WHEN they open the feature THEN it loads in under 2 seconds",
                "GIVEN invalid input WHEN the user submits THEN a clear error is shown",
            ])

        if "story points" in lower:
            return "5"

        if "tags" in lower:
            return "core, usability, onboarding"

        return "Draft generated locally. Configure an AI provider key for real suggestions."


# ── LLM Gateway (Main Interface) ─────────────────────────────────────────────

class LLMGateway:
    """
    Central gateway for all LLM calls.

    Features:
        - Provider routing based on model name
        - Auto-retry with exponential backoff
        - Optional budget/rate-limit check before the call
        - Token/cost tracking and audit logging (flushed, never committed)
    """

    PROVIDER_MAP = {
        SONNET_MODEL: "anthropic",
        HAIKU_MODEL: "anthropic",
        "claude-3-5-haiku-20241022": "anthropic",
        "gpt-4o-mini": "openai",
        "gpt-4o": "openai",
        "local-stub": "local",
    }

    DEFAULT_CHAT_MODEL = os.getenv("LLM_DEFAULT_CHAT_MODEL", HAIKU_MODEL)

    def __init__(self, cost_manager=None, retry_backoff: float = 1.0):
        self._providers = {}
        self._cost_manager = cost_manager
        self._retry_backoff = retry_backoff
        self._init_providers()

    def _init_providers(self):
        """Register the local stub always, real providers when their key is set."""
        self._providers["local"] = LocalStubProvider()
        if os.getenv("ANTHROPIC_API_KEY"):
            self._providers["anthropic"] = AnthropicProvider()
        if os.getenv("OPENAI_API_KEY"):
            self._providers["openai"] = OpenAIProvider()

    def register_provider(self, name: str, provider: LLMProvider) -> None:
        self._providers[name] = provider

    @property
    def available_providers(self) -> list[str]:
        return sorted(self._providers)

    def _get_provider(self, model: str) -> tuple[LLMProvider, str]:
        """Resolve model to provider; falls back to the local stub."""
        provider_name = self.PROVIDER_MAP.get(model, "local")
        if provider_name in self._providers:
            return self._providers[provider_name], provider_name

        logger.warning(
            "Provider '%s' not available (no API key?). Falling back to local stub for model '%s'.",
            provider_name, model,
        )
        return self._providers["local"], "local"

    def chat(
        self,
        messages: list,
        model: str | None = None,
        *,
        purpose: str = "",
        user_id: int | None = None,
        workspace_id: int | None = None,
        work_item_id: int | None = None,
        max_retries: int = 3,
        **kwargs,
    ) -> dict:
        """
        Send a chat completion request with budget check and retries.

        Returns:
            dict: {content, prompt_tokens, completion_tokens, model, cost_usd,
                   latency_ms, provider}

        Raises:
            BudgetExceededError: the cost manager refused the call.
            AIUnavailableError: every attempt failed.
        """
        model = model or self.DEFAULT_CHAT_MODEL

        if self._cost_manager is not None:
            estimated_tokens = kwargs.get("max_tokens", 2048)
            check = self._cost_manager.check_request(
                model=model, estimated_tokens=estimated_tokens,
                user_id=user_id, workspace_id=workspace_id, work_item_id=work_item_id,
            )
            if not check["allowed"]:
                raise BudgetExceededError(check["reason"])

        provider, provider_name = self._get_provider(model)
        prompt_hash = hashlib.sha256(json.dumps(messages).encode()).hexdigest()
        prompt_summary = messages[-1]["content"][:500] if messages else ""

        last_error = None
        for attempt in range(1, max_retries + 1):
            start_time = time.time()
            try:
                result = provider.chat(messages, model, **kwargs)
            except Exception as e:  # provider SDKs raise their own hierarchies
                last_error = e
                logger.warning("LLM call attempt %d/%d failed: %s", attempt, max_retries, e)
                if attempt < max_retries and self._retry_backoff:
                    time.sleep(min(self._retry_backoff * 2 ** (attempt - 1), 4))
                continue

            latency_ms = int((time.time() - start_time) * 1000)
            used_model = result.get("model") or model
            cost = calculate_cost(used_model, result["prompt_tokens"], result["completion_tokens"])
            result.update(cost_usd=cost, latency_ms=latency_ms, provider=provider_name)

            self._log_usage(
                provider=provider_name, model=used_model,
                prompt_tokens=result["prompt_tokens"],
                completion_tokens=result["completion_tokens"],
                cost_usd=cost, latency_ms=latency_ms, purpose=purpose,
                user_id=user_id, workspace_id=workspace_id, work_item_id=work_item_id,
                success=True,
            )
            self._log_audit(
                action="llm_call", provider=provider_name, model=used_model,
                user_id=user_id, workspace_id=workspace_id,
                prompt_hash=prompt_hash, prompt_summary=prompt_summary,
                tokens_used=result["prompt_tokens"] + result["completion_tokens"],
                cost_usd=cost, latency_ms=latency_ms,
                response_summary=result["content"][:500], success=True,
            )
            return result

        self._log_usage(
            provider=provider_name, model=model,
            prompt_tokens=0, completion_tokens=0, cost_usd=0.0, latency_ms=0,
            purpose=purpose, user_id=user_id, workspace_id=workspace_id,
            work_item_id=work_item_id, success=False, error_message=str(last_error),
        )
        self._log_audit(
            action="llm_call", provider=provider_name, model=model,
            user_id=user_id, workspace_id=workspace_id,
            prompt_hash=prompt_hash, prompt_summary=prompt_summary,
            tokens_used=0, cost_usd=0.0, latency_ms=0,
            response_summary="", success=False, error_message=str(last_error),
        )
        raise AIUnavailableError(f"LLM call failed after {max_retries} retries: {last_error}")

    # ── Internal Logging ──────────────────────────────────────────────────

    @staticmethod
    def _log_usage(*, provider, model, prompt_tokens, completion_tokens, cost_usd,
                   latency_ms, purpose, user_id, workspace_id, work_item_id,
                   success, error_message=None):
        """Persist a usage row inside a savepoint so the caller's work survives."""
        try:
            with db.session.begin_nested():
                db.session.add(AIUsageLog(
                    provider=provider, model=model,
                    prompt_tokens=prompt_tokens,
                    completion_tokens=completion_tokens,
                    total_tokens=prompt_tokens + completion_tokens,
                    cost_usd=cost_usd, latency_ms=latency_ms,
                    user_id=user_id, workspace_id=workspace_id, work_item_id=work_item_id,
                    purpose=purpose, success=success, error_message=error_message,
                ))
        except SQLAlchemyError as e:
            logger.error("Failed to log AI usage: %s", e)

    @staticmethod
    def _log_audit(*, action, provider, model, user_id, workspace_id, prompt_hash,
                   prompt_summary, tokens_used, cost_usd, latency_ms,
                   response_summary, success, error_message=None):
        """Persist an audit row inside a savepoint."""
        try:
            with db.session.begin_nested():
                db.session.add(AIAuditLog(
                    action=action, provider=provider, model=model,
                    user_id=user_id, workspace_id=workspace_id,
                    prompt_hash=prompt_hash, prompt_summary=prompt_summary,
                    tokens_used=tokens_used, cost_usd=cost_usd,
                    latency_ms=latency_ms, response_summary=response_summary,
                    success=success, error_message=error_message,
                ))
        except SQLAlchemyError as e:
            logger.error("Failed to log AI audit: %s", e)


def parse_json_payload(content: str):
    """Pull the first JSON array or object out of a model response.

    Whichever bracket opens first wins, so ``{"suggestions": [...]}`` comes
    back as the object.  Returns None when nothing parseable is found.
    """
    content = content or ""
    patterns = [r"\[[\s\S]*\]", r"\{[\s\S]*\}"]
    if -1 < content.find("{") < content.find("[") or "[" not in content:
        patterns.reverse()
    for pattern in patterns:
        match = re.search(pattern, content)
        if not match:
            continue
        try:
            return json.loads(match.group(0))
        except json.JSONDecodeError:
            continue
    return None
