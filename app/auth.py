"""
Product Workspace Platform
Team membership & role checks.

Identity is resolved per request by app.middleware.jwt_auth into
``g.current_user_id``.  Authorization is team-based:

    owner / admin  — manage departments, templates, invitations
    member         — read/write workspace content

When API_AUTH_ENABLED=false and no X-User-Id header is sent, the request
runs in development bypass mode (``g.auth_bypass``) and membership checks
are skipped.
"""

import logging

from flask import g

from app.core.exceptions import NotFoundError, PermissionDeniedError
from app.models import db
from app.models.team import ADMIN_ROLES, TeamMember
from app.models.workspace import Workspace

logger = logging.getLogger(__name__)


def get_current_user_id():
    return getattr(g, "current_user_id", None)


def is_auth_bypassed() -> bool:
    return bool(getattr(g, "auth_bypass", False))


def get_membership(team_id, user_id=None):
    user_id = user_id if user_id is not None else get_current_user_id()
    if user_id is None:
        return None
    return TeamMember.query.filter_by(team_id=team_id, user_id=user_id).first()


def require_team_member(team_id):
    """Return the caller's TeamMember row or raise PermissionDeniedError.

    Returns None in bypass mode.
    """
    if is_auth_bypassed():
        return None
    member = get_membership(team_id)
    if member is None:
        logger.info("Membership denied: user=%s team=%s", get_current_user_id(), team_id)
        raise PermissionDeniedError("Not a team member")
    return member


def require_team_admin(team_id, action="perform this action"):
    if is_auth_bypassed():
        return None
    member = require_team_member(team_id)
    if member.role not in ADMIN_ROLES:
        raise PermissionDeniedError(f"Only team owners and admins can {action}")
    return member


def get_workspace_for_member(workspace_id) -> Workspace:
    """Load a workspace and check the caller belongs to its team."""
    workspace = db.session.get(Workspace, workspace_id)
    if workspace is None:
        raise NotFoundError("Workspace", workspace_id)
    require_team_member(workspace.team_id)
    return workspace
