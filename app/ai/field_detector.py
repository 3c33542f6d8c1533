"""
Product Workspace Platform
Field detector — finds work item fields where AI generation would help.

Each rule inspects a work item dict and, when it fires, yields an
opportunity {rule_name, priority, message, affected_fields, estimated_cost,
estimated_time}.  Opportunities are de-duplicated on their affected field
set and returned high → medium → low.
"""

from app.ai import field_tiers

PRIORITY_ORDER = {"high": 1, "medium": 2, "low": 3}
SECONDS_PER_FIELD = 4


def _empty(value) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False


def _has(item, field) -> bool:
    return not _empty(item.get(field))


# (rule name, priority, message, affected fields, trigger)
DETECTION_RULES = (
    (
        "short_purpose", "medium",
        "Purpose statement is very short - expand it for better clarity",
        ("purpose",),
        lambda f: _has(f, "purpose") and len(f["purpose"]) < 50,
    ),
    (
        "missing_acceptance_criteria", "high",
        "Define acceptance criteria before implementation",
        ("acceptance_criteria",),
        lambda f: _has(f, "purpose") and not _has(f, "acceptance_criteria"),
    ),
    (
        "missing_execution_steps", "high",
        "Break down the work item into actionable execution steps",
        ("execution_steps",),
        lambda f: _has(f, "purpose") and not _has(f, "execution_steps"),
    ),
    (
        "missing_definition_of_done", "high",
        "Define done criteria to ensure quality standards",
        ("definition_of_done",),
        lambda f: _has(f, "acceptance_criteria") and not _has(f, "definition_of_done"),
    ),
    (
        "missing_success_metrics", "high",
        "Define measurable success metrics",
        ("success_metrics",),
        lambda f: _has(f, "customer_impact") and not _has(f, "success_metrics"),
    ),
    (
        "missing_estimation", "medium",
        "Estimate effort based on execution steps",
        ("story_points", "estimated_hours"),
        lambda f: _has(f, "execution_steps") and not f.get("story_points")
        and not f.get("estimated_hours"),
    ),
    (
        "poor_categorization", "low",
        "Add tags and category for better organization",
        ("tags", "category"),
        lambda f: _has(f, "purpose") and not _has(f, "tags") and not _has(f, "category"),
    ),
    (
        "missing_risk_assessment", "medium",
        "Identify and mitigate potential risks",
        ("risks",),
        lambda f: len(f.get("execution_steps") or []) >= 5 and not _has(f, "risks"),
    ),
    (
        "inconsistent_priority", "medium",
        "Priority doesn't match business value - recalculate",
        ("priority",),
        lambda f: f.get("business_value") == "critical"
        and f.get("priority") not in ("critical", "high"),
    ),
)


def estimate_generation_time(field_count: int) -> str:
    seconds = field_count * SECONDS_PER_FIELD
    if seconds < 60:
        return f"~{seconds}s"
    return f"~{-(-seconds // 60)}m"


def _opportunity(rule_name, priority, message, fields):
    fields = list(fields)
    return {
        "rule_name": rule_name,
        "priority": priority,
        "message": message,
        "affected_fields": fields,
        "estimated_cost": field_tiers.estimate_cost(fields)["estimated_cost"],
        "estimated_time": estimate_generation_time(len(fields)),
    }


def detect_opportunities(item: dict) -> list[dict]:
    opportunities = []

    for field in field_tiers.FIELD_TIERS["CRITICAL"]:
        if field in item and _empty(item[field]):
            opportunities.append(_opportunity(
                f"empty_critical_{field}", "high",
                f"Critical field '{field}' is empty - AI can help!", [field],
            ))

    for rule_name, priority, message, fields, trigger in DETECTION_RULES:
        if trigger(item):
            opportunities.append(_opportunity(rule_name, priority, message, fields))

    tier_priority = {"CRITICAL": "high", "HIGH": "medium"}
    for suggestion in field_tiers.detect_enhanceable_fields(item):
        opportunities.append(_opportunity(
            f"empty_{suggestion['field']}",
            tier_priority.get(suggestion["tier"], "low"),
            suggestion["reason"],
            [suggestion["field"]],
        ))

    seen = set()
    unique = []
    for opp in opportunities:
        key = tuple(sorted(opp["affected_fields"]))
        if key in seen:
            continue
        seen.add(key)
        unique.append(opp)
    return sorted(unique, key=lambda o: PRIORITY_ORDER[o["priority"]])
