"""
AI layer: field tiers, opportunity detection, cost manager, gateway,
prompt registry and the /api/v1/ai field endpoints.

All generation runs against the local stub provider; no API keys needed.
"""

from datetime import datetime, timedelta, timezone

import pytest

from app.ai import field_detector, field_tiers
from app.ai.cost_manager import CostManager
from app.ai.gateway import (
    AIUnavailableError,
    BudgetExceededError,
    LLMGateway,
    LLMProvider,
    parse_json_payload,
)
from app.ai.prompt_registry import PromptRegistry, PromptTemplate
from app.core.exceptions import ValidationError
from app.models import db
from app.models.ai import HAIKU_MODEL, SONNET_MODEL, AIAuditLog, AIUsageLog


class FailingProvider(LLMProvider):
    def __init__(self, failures=None):
        self.calls = 0
        self.failures = failures

    def chat(self, messages, model, **kwargs):
        self.calls += 1
        if self.failures is None or self.calls <= self.failures:
            raise RuntimeError("connection reset")
        return {"content": "recovered", "prompt_tokens": 3, "completion_tokens": 1,
                "model": "local-stub"}


class RecordingGateway:
    """Stands in for LLMGateway in pure field-generation tests."""

    def __init__(self):
        self.calls = []

    def chat(self, messages, **kwargs):
        self.calls.append({"messages": messages, **kwargs})
        return {"content": f"value-{len(self.calls)}", "prompt_tokens": 10,
                "completion_tokens": 5, "model": kwargs.get("model"), "cost_usd": 0.001}


@pytest.fixture()
def no_provider_keys(monkeypatch):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)


@pytest.fixture()
def use_gateway(app, no_provider_keys):
    """Install a gateway on the app for the duration of one test."""
    def _install(gateway=None):
        gateway = gateway or LLMGateway(cost_manager=CostManager(), retry_backoff=0)
        app._ai_gateway = gateway
        return gateway
    yield _install
    if hasattr(app, "_ai_gateway"):
        del app._ai_gateway


def _usage_row(**fields):
    row = AIUsageLog(provider="local", model=fields.pop("model", "local-stub"), **fields)
    db.session.add(row)
    db.session.commit()
    return row


# ═════════════════════════════════════════════════════════════════════════════
# Field tiers
# ═════════════════════════════════════════════════════════════════════════════


class TestFieldTiers:
    def test_tier_lookup(self):
        assert field_tiers.get_tier("purpose") == "CRITICAL"
        assert field_tiers.get_tier("tags") == "HIGH"
        assert field_tiers.get_tier("name") == "MEDIUM"
        assert field_tiers.get_tier("owner") == "LOW"
        assert field_tiers.get_tier("favourite_colour") == "LOW"

    def test_model_and_budget_follow_tier(self):
        assert field_tiers.select_model("acceptance_criteria") == SONNET_MODEL
        assert field_tiers.select_model("story_points") == SONNET_MODEL
        assert field_tiers.select_model("status") == HAIKU_MODEL
        assert field_tiers.get_token_budget("purpose") == 800
        assert field_tiers.get_token_budget("status") == 300

    def test_low_and_unknown_fields_not_enhanceable(self):
        assert field_tiers.is_enhanceable("name")
        assert not field_tiers.is_enhanceable("owner")
        assert not field_tiers.is_enhanceable("favourite_colour")

    def test_sort_by_priority_is_stable(self):
        ordered = field_tiers.sort_by_priority(["owner", "name", "tags", "purpose", "story_points"])
        assert ordered == ["purpose", "tags", "story_points", "name", "owner"]

    def test_estimate_cost(self):
        estimate = field_tiers.estimate_cost(["purpose", "tags"])
        assert estimate == {
            "total_tokens": 1300,
            "estimated_cost": "$0.0065",
            "breakdown": {"purpose": 800, "tags": 500},
        }

    def test_detect_enhanceable_fields(self):
        item = {"purpose": "Let users export reports as CSV", "tags": ["reports"]}
        fields = [s["field"] for s in field_tiers.detect_enhanceable_fields(item)]
        assert fields == [
            "customer_impact", "acceptance_criteria", "definition_of_done",
            "story_points", "business_value",
        ]

    def test_short_purpose_is_enhanceable(self):
        suggestions = field_tiers.detect_enhanceable_fields({"purpose": "Export"})
        assert suggestions[0]["field"] == "purpose"
        assert suggestions[0]["priority"] == 1


class TestFieldGeneration:
    def test_generate_field_uses_tier_model_and_budget(self):
        gateway = RecordingGateway()
        item = {"id": 7, "name": "CSV export", "purpose": "Export reports", "category": "reports"}
        result = field_tiers.generate_field(gateway, "tags", item, {"id": 3})

        call = gateway.calls[0]
        assert call["model"] == SONNET_MODEL
        assert call["max_tokens"] == 500
        assert call["work_item_id"] == 7
        assert call["workspace_id"] == 3
        assert "CSV export" in call["messages"][-1]["content"]
        assert result["value"] == "value-1"
        assert result["tokens_used"] == 15
        assert result["confidence"] == 0.9
        assert result["missing_dependencies"] == []

    def test_missing_dependencies_lower_confidence(self):
        result = field_tiers.generate_field(RecordingGateway(), "tags", {"name": "CSV export"})
        assert result["confidence"] == 0.7
        assert result["missing_dependencies"] == ["purpose", "category"]

    def test_low_tier_field_rejected(self):
        with pytest.raises(ValidationError, match="not AI-enhanceable"):
            field_tiers.generate_field(RecordingGateway(), "owner", {"name": "X"})

    def test_batch_feeds_results_forward(self):
        gateway = RecordingGateway()
        result = field_tiers.generate_batch(gateway, ["tags", "owner", "purpose"], {"name": "CSV export"})

        assert list(result["results"]) == ["purpose", "tags"]
        assert "Purpose: value-1" in gateway.calls[1]["messages"][-1]["content"]
        assert result["results"]["tags"]["missing_dependencies"] == ["category"]
        assert result["errors"] == {"owner": "Field owner is not AI-enhanceable"}
        assert result["total_tokens"] == 30
        assert (result["fields_generated"], result["fields_failed"]) == (2, 1)
        assert result["success"] is True


# ═════════════════════════════════════════════════════════════════════════════
# Opportunity detection
# ═════════════════════════════════════════════════════════════════════════════


class TestFieldDetector:
    def test_empty_critical_fields_only_when_present(self):
        item = {"name": "X", "purpose": "", "acceptance_criteria": []}
        names = [o["rule_name"] for o in field_detector.detect_opportunities(item)]
        assert names == [
            "empty_critical_purpose",
            "empty_critical_acceptance_criteria",
            "empty_customer_impact",
            "empty_definition_of_done",
            "empty_tags",
        ]

    def test_rule_triggers(self):
        item = {
            "purpose": "A" * 60,
            "customer_impact": "Saves support time",
            "acceptance_criteria": ["a"],
            "definition_of_done": ["d"],
            "success_metrics": ["m"],
            "execution_steps": ["1", "2", "3", "4", "5"],
            "story_points": 5,
            "tags": ["x"],
            "business_value": "critical",
            "priority": "low",
        }
        names = [o["rule_name"] for o in field_detector.detect_opportunities(item)]
        assert names == ["missing_risk_assessment", "inconsistent_priority"]

    def test_opportunity_estimates(self):
        item = {"purpose": "A" * 60, "acceptance_criteria": ["a"], "execution_steps": ["s"],
                "customer_impact": "x", "success_metrics": ["m"], "definition_of_done": ["d"],
                "story_points": 3}
        opportunity = next(o for o in field_detector.detect_opportunities(item)
                           if o["rule_name"] == "poor_categorization")
        assert opportunity["priority"] == "low"
        assert opportunity["affected_fields"] == ["tags", "category"]
        assert opportunity["estimated_cost"] == "$0.0050"
        assert opportunity["estimated_time"] == "~8s"

    def test_duplicates_keep_first_rule(self):
        names = [o["rule_name"] for o in field_detector.detect_opportunities({"purpose": "Short"})]
        assert "short_purpose" in names
        assert "empty_purpose" not in names

    @pytest.mark.parametrize("count,expected", [(3, "~12s"), (15, "~1m"), (16, "~2m")])
    def test_generation_time(self, count, expected):
        assert field_detector.estimate_generation_time(count) == expected


# ═════════════════════════════════════════════════════════════════════════════
# Cost manager
# ═════════════════════════════════════════════════════════════════════════════


class TestCostManager:
    def test_estimate_cost(self):
        assert CostManager.estimate_cost(SONNET_MODEL, 1000, 1000) == pytest.approx(0.018)
        assert CostManager.estimate_cost("unknown-model", 1000, 1000) == 0.0

    def test_budget_overrides(self):
        manager = CostManager(budgets={"per_field": 0.10})
        assert manager.budgets["per_field"] == 0.10
        assert manager.budgets["per_work_item"] == 0.50

    def test_per_field_budget(self):
        check = CostManager().check_budget(0.06, field=True)
        assert check["allowed"] is False
        assert check["reason"] == "Budget exceeded: Maximum $0.05 per field"

    def test_work_item_budget_counts_successful_calls_only(self, make_item):
        item = make_item("Search")
        _usage_row(work_item_id=item["id"], cost_usd=0.45, success=True)
        _usage_row(work_item_id=item["id"], cost_usd=1.00, success=False)

        manager = CostManager()
        assert manager.check_budget(0.04, work_item_id=item["id"])["allowed"] is True
        refused = manager.check_budget(0.06, work_item_id=item["id"])
        assert refused["allowed"] is False
        assert "per work item" in refused["reason"]
        assert refused["used"] == pytest.approx(0.45)

    def test_workspace_daily_budget_ignores_older_days(self, workspace):
        yesterday = datetime.now(timezone.utc) - timedelta(days=2)
        _usage_row(workspace_id=workspace["id"], cost_usd=5.0, created_at=yesterday)
        _usage_row(workspace_id=workspace["id"], cost_usd=0.9)

        manager = CostManager(budgets={"per_workspace_daily": 1.0})
        assert manager.check_budget(0.05, workspace_id=workspace["id"])["allowed"] is True
        refused = manager.check_budget(0.2, workspace_id=workspace["id"])
        assert refused["reason"] == "Budget exceeded: Maximum $1.0 per workspace per day"

    def test_rate_limits(self, make_user):
        user = make_user("ana@acme.io")
        manager = CostManager(rate_limits={"requests_per_minute": 2})
        assert manager.check_rate_limit(user.id, 100)["allowed"] is True

        _usage_row(user_id=user.id, total_tokens=10)
        _usage_row(user_id=user.id, total_tokens=10)
        check = manager.check_rate_limit(user.id, 100)
        assert check["allowed"] is False
        assert check["wait_seconds"] == 60

    def test_token_rate_limit(self, make_user):
        user = make_user("ana@acme.io")
        check = CostManager().check_rate_limit(user.id, 60_000)
        assert check["reason"] == "Rate limit: Maximum 50000 tokens per minute"

    def test_anonymous_calls_skip_rate_limit(self):
        assert CostManager().check_rate_limit(None, 10**9) == {"allowed": True}

    def test_usage_summary(self, workspace):
        _usage_row(workspace_id=workspace["id"], model=HAIKU_MODEL, total_tokens=100, cost_usd=0.01)
        _usage_row(workspace_id=workspace["id"], model=HAIKU_MODEL, total_tokens=50, cost_usd=0.02)
        _usage_row(model=SONNET_MODEL, total_tokens=999, cost_usd=1.0)

        summary = CostManager().usage_summary(workspace_id=workspace["id"], days=7)
        assert summary["days"] == 7
        assert summary["total_requests"] == 2
        assert summary["total_tokens"] == 150
        assert summary["total_cost_usd"] == pytest.approx(0.03)
        assert summary["by_model"] == [
            {"model": HAIKU_MODEL, "requests": 2, "tokens": 150, "cost_usd": 0.03},
        ]


# ═════════════════════════════════════════════════════════════════════════════
# Gateway & prompts
# ═════════════════════════════════════════════════════════════════════════════


class TestGateway:
    MESSAGES = [{"role": "user", "content": "Write a purpose statement"}]

    def test_local_stub_always_registered(self, no_provider_keys):
        assert LLMGateway().available_providers == ["local"]

    def test_real_providers_registered_from_env(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        assert LLMGateway().available_providers == ["anthropic", "local"]

    def test_unavailable_provider_falls_back_to_stub(self, no_provider_keys):
        result = LLMGateway(retry_backoff=0).chat(self.MESSAGES, model=SONNET_MODEL, purpose="test")
        assert result["provider"] == "local"
        assert result["model"] == "local-stub"
        assert result["cost_usd"] == 0.0
        assert result["prompt_tokens"] == 8
        assert AIUsageLog.query.count() == 1
        assert AIAuditLog.query.count() == 1

    def test_retry_recovers(self, no_provider_keys):
        gateway = LLMGateway(retry_backoff=0)
        provider = FailingProvider(failures=2)
        gateway.register_provider("local", provider)

        assert gateway.chat(self.MESSAGES, model="local-stub")["content"] == "recovered"
        assert provider.calls == 3

    def test_exhausted_retries_log_failure(self, no_provider_keys):
        gateway = LLMGateway(retry_backoff=0)
        provider = FailingProvider()
        gateway.register_provider("local", provider)

        with pytest.raises(AIUnavailableError):
            gateway.chat(self.MESSAGES, model="local-stub", purpose="test")
        assert provider.calls == 3
        row = AIUsageLog.query.one()
        assert row.success is False
        assert row.error_message == "connection reset"

    def test_budget_refusal_skips_provider(self, no_provider_keys, workspace):
        gateway = LLMGateway(cost_manager=CostManager(budgets={"per_workspace_daily": 0.0}),
                             retry_backoff=0)
        provider = FailingProvider()
        gateway.register_provider("local", provider)

        with pytest.raises(BudgetExceededError, match="per workspace per day"):
            gateway.chat(self.MESSAGES, model=HAIKU_MODEL, workspace_id=workspace["id"])
        assert provider.calls == 0
        assert AIUsageLog.query.count() == 0

    def test_parse_json_payload(self):
        assert parse_json_payload('Sure:\n```json\n[{"a": 1}]\n```') == [{"a": 1}]
        assert parse_json_payload('{"suggestions": [{"a": 1}]}') == {"suggestions": [{"a": 1}]}
        assert parse_json_payload("no structured answer") is None
        assert parse_json_payload("[not json") is None
        assert parse_json_payload(None) is None


class TestPromptRegistry:
    def test_builtin_templates(self):
        names = [t["name"] for t in PromptRegistry().list_templates()]
        assert names == ["dependency_suggestions", "field_enhancement", "strategy_alignment"]

    def test_render(self):
        messages = PromptRegistry().render("dependency_suggestions", work_items="[1] Login")
        assert [m["role"] for m in messages] == ["system", "user"]
        assert "[1] Login" in messages[1]["content"]

    def test_unknown_template(self):
        with pytest.raises(KeyError):
            PromptRegistry().render("nope")

    def test_unknown_variables_left_in_place(self):
        template = PromptTemplate("greet", "v1", system="", user="Hi {{ name }} {{other}}")
        assert template.render(name="Ana") == [{"role": "user", "content": "Hi Ana {{other}}"}]


# ═════════════════════════════════════════════════════════════════════════════
# Endpoints
# ═════════════════════════════════════════════════════════════════════════════


class TestAIEndpoints:
    def test_providers_and_prompts(self, client, use_gateway):
        use_gateway()
        assert client.get("/api/v1/ai/providers").get_json()["providers"] == ["local"]
        assert len(client.get("/api/v1/ai/prompts").get_json()["prompts"]) == 3

    def test_estimate(self, client):
        body = client.post("/api/v1/ai/estimate", json={"field_names": ["purpose", "tags"]}).get_json()
        assert body["total_tokens"] == 1300
        assert body["tiers"] == {"purpose": "CRITICAL", "tags": "HIGH"}
        assert body["models"]["tags"] == SONNET_MODEL
        assert client.post("/api/v1/ai/estimate", json={}).status_code == 400

    def test_opportunities(self, client, make_item):
        item = make_item("Export", purpose="Short")
        body = client.get(f"/api/v1/ai/work-items/{item['id']}/opportunities").get_json()

        names = [o["rule_name"] for o in body["opportunities"]]
        assert "empty_critical_customer_impact" in names
        assert "poor_categorization" in names
        assert body["opportunities"][0]["priority"] == "high"
        assert body["opportunities"][-1]["priority"] == "low"
        assert body["enhanceable_fields"][0]["field"] == "purpose"
        assert body["estimate"]["total_tokens"] > 0

    def test_opportunities_unknown_item(self, client):
        assert client.get("/api/v1/ai/work-items/999/opportunities").status_code == 404

    def test_generate_field(self, client, use_gateway, make_item, workspace):
        use_gateway()
        item = make_item("Onboarding", purpose="Guide new users through setup", category="growth")
        res = client.post(f"/api/v1/ai/work-items/{item['id']}/generate", json={"field_name": "tags"})

        assert res.status_code == 200
        body = res.get_json()
        assert body["value"] == "core, usability, onboarding"
        assert body["model"] == "local-stub"
        assert body["confidence"] == 0.9

        usage = client.get(f"/api/v1/ai/usage?workspace_id={workspace['id']}").get_json()
        assert usage["total_requests"] == 1
        audit = client.get(f"/api/v1/ai/audit-log?workspace_id={workspace['id']}").get_json()
        assert audit["items"][0]["action"] == "llm_call"

    def test_generate_validation(self, client, use_gateway, make_item):
        use_gateway()
        item = make_item("Onboarding")
        url = f"/api/v1/ai/work-items/{item['id']}/generate"
        assert client.post(url, json={}).status_code == 400
        res = client.post(url, json={"field_name": "owner"})
        assert res.status_code == 400
        assert "not AI-enhanceable" in res.get_json()["error"]

    def test_generate_batch(self, client, use_gateway, make_item):
        use_gateway()
        item = make_item("Onboarding")
        url = f"/api/v1/ai/work-items/{item['id']}/generate/batch"
        body = client.post(url, json={"field_names": ["story_points", "purpose", "owner"]}).get_json()

        assert list(body["results"]) == ["purpose", "story_points"]
        assert body["results"]["story_points"]["value"] == "5"
        assert list(body["errors"]) == ["owner"]
        assert client.post(url, json={"field_names": "purpose"}).status_code == 400

    def test_provider_outage_returns_502_and_keeps_usage(self, client, use_gateway, make_item, workspace):
        gateway = use_gateway()
        gateway.register_provider("local", FailingProvider())
        item = make_item("Onboarding")

        res = client.post(f"/api/v1/ai/work-items/{item['id']}/generate", json={"field_name": "purpose"})
        assert res.status_code == 502
        assert res.get_json()["code"] == "ERR_UPSTREAM"

        usage = client.get(f"/api/v1/ai/usage?workspace_id={workspace['id']}").get_json()
        assert usage["total_requests"] == 1

    def test_audit_log_requires_workspace(self, client):
        assert client.get("/api/v1/ai/audit-log").status_code == 400
