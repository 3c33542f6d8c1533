"""Workspace template service — list, create, apply and seed templates.

System templates (``is_system``) have no team and are visible to every team;
team templates are visible to their own team only.  Applying a template is
best-effort: individual failures are collected in ``errors`` and do not
abort the rest.
"""
import logging

from app.core.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from app.models import db
from app.models.workspace import WorkspaceTemplate
from app.services import department_service, work_item_service

logger = logging.getLogger(__name__)

TEMPLATE_CATEGORIES = {"general", "product", "engineering", "marketing", "operations"}

SYSTEM_TEMPLATES = [
    {
        "name": "SaaS Product Launch",
        "description": "Core departments and starter work items for launching a SaaS product.",
        "category": "product",
        "icon": "rocket",
        "template_data": {
            "departments": [
                {"name": "Product", "color": "#6366f1", "icon": "lightbulb"},
                {"name": "Engineering", "color": "#10b981", "icon": "code"},
                {"name": "Marketing", "color": "#f59e0b", "icon": "megaphone"},
            ],
            "work_items": [
                {"name": "User onboarding flow", "type": "feature",
                 "purpose": "Guide new users to their first success", "priority": "high",
                 "department": "Product"},
                {"name": "Billing integration", "type": "feature",
                 "purpose": "Charge customers for subscriptions", "priority": "critical",
                 "department": "Engineering"},
                {"name": "Launch landing page", "type": "concept",
                 "purpose": "Explain the product and collect sign-ups", "priority": "medium",
                 "department": "Marketing"},
            ],
            "tags": ["launch", "mvp"],
        },
    },
    {
        "name": "Mobile App",
        "description": "Departments and starter work items for a mobile app.",
        "category": "engineering",
        "icon": "smartphone",
        "template_data": {
            "departments": [
                {"name": "Design", "color": "#ec4899", "icon": "palette"},
                {"name": "Engineering", "color": "#10b981", "icon": "code"},
                {"name": "QA", "color": "#0ea5e9", "icon": "check-circle"},
            ],
            "work_items": [
                {"name": "Authentication screens", "type": "feature",
                 "purpose": "Sign in and sign up on mobile", "priority": "high",
                 "department": "Design"},
                {"name": "Push notifications", "type": "feature",
                 "purpose": "Re-engage users with timely updates", "priority": "medium",
                 "department": "Engineering"},
                {"name": "Crash reporting", "type": "enhancement",
                 "purpose": "Capture and triage crashes in production", "priority": "high",
                 "department": "QA"},
            ],
            "tags": ["mobile"],
        },
    },
]


def _validate_template_data(data):
    if not isinstance(data, dict):
        raise ValidationError("template_data must be an object")
    for key in ("departments", "work_items", "tags"):
        if key in data and not isinstance(data[key], list):
            raise ValidationError(f"template_data.{key} must be a list")
    for dept in data.get("departments", []):
        if not isinstance(dept, dict) or not (dept.get("name") or "").strip():
            raise ValidationError("Every template department needs a name")
    for item in data.get("work_items", []):
        if not isinstance(item, dict) or not (item.get("name") or "").strip():
            raise ValidationError("Every template work item needs a name")


def list_templates(team_id, category=None):
    query = WorkspaceTemplate.query.filter(
        (WorkspaceTemplate.is_system.is_(True)) | (WorkspaceTemplate.team_id == team_id)
    )
    if category:
        query = query.filter_by(category=category)
    return query.order_by(WorkspaceTemplate.is_system.desc(), WorkspaceTemplate.name).all()


def get_template(template_id):
    template = db.session.get(WorkspaceTemplate, template_id)
    if template is None:
        raise NotFoundError("Template", template_id)
    return template


def check_access(template, team_id):
    if not template.is_system and template.team_id != team_id:
        raise PermissionDeniedError("Cannot access this template")


def create_template(team_id, data, user_id=None):
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("Template name is required")
    category = data.get("category") or "general"
    if category not in TEMPLATE_CATEGORIES:
        raise ValidationError(f"category must be one of: {', '.join(sorted(TEMPLATE_CATEGORIES))}")
    template_data = data.get("template_data") or {}
    _validate_template_data(template_data)

    template = WorkspaceTemplate(
        team_id=team_id,
        name=name,
        description=data.get("description") or "",
        category=category,
        icon=data.get("icon") or "layout-template",
        is_system=False,
        template_data=template_data,
        created_by=user_id,
    )
    db.session.add(template)
    db.session.flush()
    logger.info("Template %s created for team %s", template.id, team_id)
    return template


def update_template(template, data):
    if template.is_system:
        raise PermissionDeniedError("System templates cannot be modified")
    if "name" in data:
        if not (data["name"] or "").strip():
            raise ValidationError("Template name is required")
        template.name = data["name"].strip()
    if "category" in data:
        if data["category"] not in TEMPLATE_CATEGORIES:
            raise ValidationError(
                f"category must be one of: {', '.join(sorted(TEMPLATE_CATEGORIES))}"
            )
        template.category = data["category"]
    if "template_data" in data:
        _validate_template_data(data["template_data"])
        template.template_data = data["template_data"]
    for field in ("description", "icon"):
        if field in data:
            setattr(template, field, data[field])
    db.session.flush()
    return template


def delete_template(template):
    if template.is_system:
        raise PermissionDeniedError("System templates cannot be deleted")
    db.session.delete(template)
    db.session.flush()


def apply_template(template, workspace, user_id=None, create_departments=True,
                   create_work_items=True, add_tags=True):
    """Create departments, work items and tags from a template in ``workspace``.

    Returns {success, departments_created, work_items_created, tags_added[, errors]}.
    """
    check_access(template, workspace.team_id)
    data = template.template_data or {}
    tags = [t for t in data.get("tags", []) if isinstance(t, str) and t.strip()] if add_tags else []
    result = {
        "success": True,
        "departments_created": 0,
        "work_items_created": 0,
        "tags_added": 0,
        "errors": [],
    }

    department_ids = {}
    if create_departments:
        for dept in data.get("departments", []):
            name = (dept.get("name") or "").strip()
            existing = department_service.find_by_name(workspace.team_id, name)
            if existing is not None:
                department_ids[name] = existing.id
                result["errors"].append(f'Department "{name}" already exists, skipped')
                continue
            try:
                with db.session.begin_nested():
                    created = department_service.create_department(
                        workspace.team_id,
                        {"name": name, "color": dept.get("color"), "icon": dept.get("icon")},
                        user_id=user_id,
                    )
            except ValidationError as exc:
                result["errors"].append(f'Failed to create department "{name}": {exc}')
                continue
            department_ids[name] = created.id
            result["departments_created"] += 1

    if create_work_items:
        for entry in data.get("work_items", []):
            payload = {
                "name": entry.get("name"),
                "type": entry.get("type") or "feature",
                "purpose": entry.get("purpose") or "",
                "priority": entry.get("priority") or "medium",
                "department_id": department_ids.get(entry.get("department")),
                "tags": list(tags),
            }
            try:
                with db.session.begin_nested():
                    work_item_service.create_work_item(workspace, payload, user_id=user_id)
            except ValidationError as exc:
                result["errors"].append(f'Failed to create work item "{entry.get("name")}": {exc}')
                continue
            result["work_items_created"] += 1

    result["tags_added"] = len(tags)
    if not result["errors"]:
        del result["errors"]
    logger.info(
        "Template %s applied to workspace %s: %s departments, %s work items",
        template.id, workspace.id, result["departments_created"], result["work_items_created"],
    )
    return result


def seed_system_templates():
    """Insert built-in templates that are missing.  Returns the number added."""
    added = 0
    for definition in SYSTEM_TEMPLATES:
        exists = WorkspaceTemplate.query.filter_by(name=definition["name"], is_system=True).first()
        if exists:
            continue
        db.session.add(WorkspaceTemplate(team_id=None, is_system=True, **definition))
        added += 1
    db.session.flush()
    return added
