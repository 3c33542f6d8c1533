"""Department service layer — team-scoped grouping of work items.

Members read; owners and admins create, update and delete (checked by the
blueprint).  Deleting a department leaves its work items unassigned.
"""
import logging

from sqlalchemy import func

from app.core.exceptions import NotFoundError, ValidationError
from app.models import db
from app.models.work_item import WorkItem
from app.models.workspace import HEX_COLOR_PATTERN, Department

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("name", "description", "color", "icon", "is_default", "sort_order")


def list_departments(team_id):
    """Departments ordered by sort order then name, each with work_item_count."""
    departments = (
        Department.query.filter_by(team_id=team_id)
        .order_by(Department.sort_order, Department.name)
        .all()
    )
    counts = dict(
        db.session.query(WorkItem.department_id, func.count(WorkItem.id))
        .filter(WorkItem.team_id == team_id, WorkItem.department_id.isnot(None))
        .group_by(WorkItem.department_id)
        .all()
    )
    result = []
    for dept in departments:
        d = dept.to_dict()
        d["work_item_count"] = counts.get(dept.id, 0)
        result.append(d)
    return result


def get_department(department_id):
    department = db.session.get(Department, department_id)
    if department is None:
        raise NotFoundError("Department", department_id)
    return department


def _clear_default(team_id, keep_id=None):
    query = Department.query.filter_by(team_id=team_id, is_default=True)
    if keep_id is not None:
        query = query.filter(Department.id != keep_id)
    query.update({"is_default": False}, synchronize_session=False)


def _check(data):
    if "name" in data and not (data["name"] or "").strip():
        raise ValidationError("name is required")
    color = data.get("color")
    if color and not HEX_COLOR_PATTERN.match(color):
        raise ValidationError("color must be a hex color like #6366f1")


def create_department(team_id, data, user_id=None):
    if not (data.get("name") or "").strip():
        raise ValidationError("name is required")
    _check(data)

    last = (
        Department.query.filter_by(team_id=team_id)
        .order_by(Department.sort_order.desc())
        .first()
    )
    next_sort_order = last.sort_order + 1 if last else 0

    if data.get("is_default"):
        _clear_default(team_id)

    department = Department(
        team_id=team_id,
        name=data["name"].strip(),
        description=data.get("description") or "",
        color=data.get("color") or "#6366f1",
        icon=data.get("icon") or "folder",
        is_default=bool(data.get("is_default", False)),
        sort_order=next_sort_order,
        created_by=user_id,
    )
    db.session.add(department)
    db.session.flush()
    logger.info("Department %s created in team %s", department.id, team_id)
    return department


def update_department(department, data):
    data = {k: v for k, v in data.items() if k in UPDATABLE_FIELDS}
    _check(data)
    if data.get("is_default"):
        _clear_default(department.team_id, keep_id=department.id)
    for field, value in data.items():
        setattr(department, field, value.strip() if field == "name" else value)
    db.session.flush()
    return department


def delete_department(department):
    WorkItem.query.filter_by(department_id=department.id).update(
        {"department_id": None}, synchronize_session=False,
    )
    db.session.delete(department)
    db.session.flush()


def find_by_name(team_id, name):
    """Case-insensitive lookup used when applying templates."""
    return (
        Department.query.filter_by(team_id=team_id)
        .filter(func.lower(Department.name) == (name or "").strip().lower())
        .first()
    )
