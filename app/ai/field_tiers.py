"""
Product Workspace Platform
Field enhancement — tiered AI generation of work item fields.

Tiers drive the model choice and the token budget:

    CRITICAL → sonnet tier, 800 tokens
    HIGH     → sonnet tier, 500 tokens
    MEDIUM   → haiku tier,  300 tokens
    LOW      → haiku tier,  150 tokens  (never enhanced)

Fields listed in FIELD_DEPENDENCIES pull the values they depend on into the
prompt context; batches run CRITICAL first so later fields see earlier output.
"""

import logging
from datetime import datetime, timezone

from app.ai.prompt_registry import PromptRegistry
from app.core.exceptions import ValidationError
from app.models.ai import HAIKU_MODEL, SONNET_MODEL

logger = logging.getLogger(__name__)

FIELD_TIERS = {
    "CRITICAL": (
        "purpose", "customer_impact", "success_metrics", "acceptance_criteria",
        "definition_of_done", "execution_steps", "milestone_criteria", "risks",
        "risk_mitigation", "usp", "integration_type", "ai_rationale",
    ),
    "HIGH": (
        "priority", "health", "planned_start_date", "planned_end_date",
        "story_points", "estimated_hours", "business_value", "strategic_alignment",
        "tags", "category", "step_order", "step_duration", "step_dependencies",
        "validation_criteria", "resource_description", "resource_url", "milestone_name",
        "risk_severity",
    ),
    "MEDIUM": (
        "name", "status", "target_release", "effort_confidence", "progress_percent",
        "stage_ready_to_advance", "stage_completion_percent", "blockers", "stakeholders",
        "resource_type", "quantity_needed", "cost_estimate", "risk_category",
        "prerequisite_category", "inspiration_title",
    ),
    "LOW": (
        "type", "owner", "contributors", "assigned_to", "milestone_owner", "risk_owner",
    ),
}
TIER_ORDER = ("CRITICAL", "HIGH", "MEDIUM", "LOW")

FIELD_DEPENDENCIES = {
    "priority": ("business_value", "customer_impact", "dependencies"),
    "health": ("progress_percent", "blockers", "planned_end_date"),
    "story_points": ("execution_steps", "complexity"),
    "estimated_hours": ("story_points", "execution_steps"),
    "planned_end_date": ("planned_start_date", "estimated_hours"),
    "tags": ("purpose", "category"),
    "acceptance_criteria": ("purpose", "customer_impact"),
    "definition_of_done": ("acceptance_criteria",),
    "risks": ("purpose", "execution_steps", "category"),
    "execution_steps": ("purpose", "timeline"),
    "success_metrics": ("customer_impact", "business_value"),
}

TOKEN_BUDGETS = {"CRITICAL": 800, "HIGH": 500, "MEDIUM": 300, "LOW": 150}

# Conservative blended price used for estimates shown before generation.
ESTIMATE_USD_PER_MILLION_TOKENS = 5

FIELD_PROMPTS = {
    "purpose": (
        "Write a clear, concise purpose statement for this work item.\n"
        "Work item: {name}\nType: {type}\n\n"
        "Answer: what does it do, who is it for, which problem does it solve. "
        "Keep it under 200 words."
    ),
    "customer_impact": (
        "Describe the customer impact of this work item.\n"
        "Work item: {name}\nPurpose: {purpose}\n\n"
        "Cover who benefits, which pain points it addresses and the measurable improvement."
    ),
    "acceptance_criteria": (
        "Generate 3-5 testable acceptance criteria for this work item.\n"
        "Work item: {name}\nPurpose: {purpose}\nCustomer impact: {customer_impact}\n\n"
        "Format each as GIVEN / WHEN / THEN."
    ),
    "definition_of_done": (
        "Generate a definition of done checklist (5-8 items) for this work item.\n"
        "Work item: {name}\nPurpose: {purpose}\nAcceptance criteria: {acceptance_criteria}"
    ),
    "execution_steps": (
        "Break this work item into 5-8 sequential implementation steps.\n"
        "Work item: {name}\nPurpose: {purpose}\nTimeline: {timeline}"
    ),
    "risks": (
        "Identify 3-5 key risks with mitigation, severity and probability.\n"
        "Work item: {name}\nPurpose: {purpose}\nCategory: {category}"
    ),
    "success_metrics": (
        "Define 3-5 SMART success metrics as metric / target / measurement.\n"
        "Work item: {name}\nPurpose: {purpose}\nCustomer impact: {customer_impact}"
    ),
    "priority": (
        "Return one of critical, high, medium, low for this work item and explain in one sentence.\n"
        "Work item: {name}\nBusiness value: {business_value}\nCustomer impact: {customer_impact}"
    ),
    "story_points": (
        "Estimate story points on the Fibonacci scale (1,2,3,5,8,13,21).\n"
        "Work item: {name}\nPurpose: {purpose}\nExecution steps: {execution_steps}"
    ),
    "estimated_hours": (
        "Estimate total development hours.\n"
        "Work item: {name}\nStory points: {story_points}\nExecution steps: {execution_steps}"
    ),
    "tags": (
        "Generate 3-5 relevant tags as a comma-separated list.\n"
        "Work item: {name}\nPurpose: {purpose}\nCategory: {category}"
    ),
    "strategic_alignment": (
        "In 2-3 sentences, explain how this work item aligns with the product strategy.\n"
        "Work item: {name}\nPurpose: {purpose}\nWorkspace goals: {workspace_goals}"
    ),
}
GENERIC_PROMPT = (
    "Generate appropriate content for the {field} field.\n"
    "Work item: {name}\nPurpose: {purpose}"
)

_registry = PromptRegistry()


def get_tier(field_name: str) -> str:
    for tier in TIER_ORDER:
        if field_name in FIELD_TIERS[tier]:
            return tier
    return "LOW"


def select_model(field_name: str) -> str:
    return SONNET_MODEL if get_tier(field_name) in ("CRITICAL", "HIGH") else HAIKU_MODEL


def get_token_budget(field_name: str) -> int:
    return TOKEN_BUDGETS[get_tier(field_name)]


def is_enhanceable(field_name: str) -> bool:
    return any(field_name in FIELD_TIERS[t] for t in ("CRITICAL", "HIGH", "MEDIUM"))


def sort_by_priority(field_names) -> list[str]:
    """Stable sort: CRITICAL, HIGH, MEDIUM, then everything else."""
    return sorted(field_names, key=lambda f: TIER_ORDER.index(get_tier(f)))


def estimate_cost(field_names) -> dict:
    breakdown = {f: get_token_budget(f) for f in field_names}
    total = sum(breakdown.values())
    cost = total / 1_000_000 * ESTIMATE_USD_PER_MILLION_TOKENS
    return {"total_tokens": total, "estimated_cost": f"${cost:.4f}", "breakdown": breakdown}


def _is_empty(value) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False


def detect_enhanceable_fields(item: dict) -> list[dict]:
    """Fields worth generating for ``item`` (a work item dict), CRITICAL first."""
    suggestions = []
    purpose = item.get("purpose") or ""

    def add(field, tier, reason):
        suggestions.append({"field": field, "tier": tier, "reason": reason,
                            "priority": 1 if tier == "CRITICAL" else 2})

    if len(purpose) < 20:
        add("purpose", "CRITICAL", "Clear purpose statement is foundation for all planning")
    if _is_empty(item.get("customer_impact")):
        add("customer_impact", "CRITICAL", "Understanding customer impact drives prioritization")
    if _is_empty(item.get("acceptance_criteria")):
        add("acceptance_criteria", "CRITICAL", "Define clear success criteria before implementation")
    if _is_empty(item.get("definition_of_done")):
        add("definition_of_done", "CRITICAL", "Quality gates ensure consistent delivery standards")
    if not item.get("story_points") and purpose:
        add("story_points", "HIGH", "Effort estimation helps with planning and prioritization")
    if _is_empty(item.get("tags")):
        add("tags", "HIGH", "Tags improve discoverability and organization")
    if not item.get("business_value") and purpose:
        add("business_value", "HIGH", "Business value assessment enables ROI-based prioritization")

    return sorted(suggestions, key=lambda s: s["priority"])


def build_context(field_name: str, item: dict, workspace: dict | None = None) -> dict:
    workspace = workspace or {}
    context = {
        "name": item.get("name") or "",
        "purpose": item.get("purpose") or "",
        "type": item.get("type") or "",
        "category": item.get("category") or "",
        "workspace_goals": workspace.get("custom_instructions") or "",
        "existing_fields": {},
    }
    for dep in FIELD_DEPENDENCIES.get(field_name, ()):
        if not _is_empty(item.get(dep)):
            context["existing_fields"][dep] = item[dep]

    timeline_items = item.get("timeline_items") or []
    if timeline_items:
        context["timeline"] = [
            {"timeline": t.get("timeline"), "difficulty": t.get("difficulty")}
            for t in timeline_items
        ]
    return context


def build_field_prompt(field_name: str, context: dict) -> str:
    existing = context["existing_fields"]
    values = {
        "field": field_name,
        "name": context["name"],
        "type": context["type"],
        "purpose": context["purpose"] or "Not specified",
        "category": context["category"] or "Not specified",
        "workspace_goals": context["workspace_goals"] or "Not specified",
        "timeline": ", ".join(t["timeline"] for t in context.get("timeline", [])) or "Not specified",
    }
    for key in ("customer_impact", "acceptance_criteria", "business_value",
                "execution_steps", "story_points"):
        value = existing.get(key)
        if isinstance(value, list):
            value = f"{len(value)} defined" if key == "execution_steps" else "; ".join(map(str, value))
        values[key] = value or "N/A"
    return FIELD_PROMPTS.get(field_name, GENERIC_PROMPT).format(**values)


def generate_field(gateway, field_name: str, item: dict, workspace: dict | None = None,
                   user_id=None) -> dict:
    """Generate one field through ``gateway``.

    Raises ValidationError for fields outside the enhanceable tiers.
    """
    if not is_enhanceable(field_name):
        raise ValidationError(f"Field {field_name} is not AI-enhanceable")

    dependencies = FIELD_DEPENDENCIES.get(field_name, ())
    missing = [d for d in dependencies if _is_empty(item.get(d))]
    if missing:
        logger.debug("Missing dependencies for %s: %s", field_name, missing)

    context = build_context(field_name, item, workspace)
    messages = _registry.render(
        "field_enhancement",
        workspace_goals=context["workspace_goals"] or "none",
        field_prompt=build_field_prompt(field_name, context),
    )
    result = gateway.chat(
        messages,
        model=select_model(field_name),
        purpose="field_enhancement",
        user_id=user_id,
        workspace_id=(workspace or {}).get("id"),
        work_item_id=item.get("id"),
        max_tokens=get_token_budget(field_name),
        temperature=0.7,
    )
    return {
        "field_name": field_name,
        "value": result["content"],
        "model": result["model"],
        "tokens_used": result["prompt_tokens"] + result["completion_tokens"],
        "cost_usd": result["cost_usd"],
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "confidence": 0.9 if not missing else 0.7,
        "dependencies": list(dependencies),
        "missing_dependencies": missing,
    }


def generate_batch(gateway, field_names, item: dict, workspace: dict | None = None,
                   user_id=None) -> dict:
    """Generate several fields, feeding each result into the next one's context."""
    results, errors = {}, {}
    total_tokens = 0
    enriched = dict(item)

    for field_name in sort_by_priority(field_names):
        try:
            result = generate_field(gateway, field_name, enriched, workspace, user_id=user_id)
        except (ValidationError, RuntimeError) as exc:
            logger.warning("Failed to generate %s: %s", field_name, exc)
            errors[field_name] = str(exc)
            continue
        results[field_name] = result
        enriched[field_name] = result["value"]
        total_tokens += result["tokens_used"]

    return {
        "success": bool(results),
        "results": results,
        "errors": errors,
        "total_tokens": total_tokens,
        "fields_generated": len(results),
        "fields_failed": len(errors),
    }
