"""
Team blueprint — teams, members, invitations and departments.

Endpoints:
    TEAM        /api/v1/teams                                   GET, POST
                /api/v1/teams/<tid>                             GET
    MEMBER      /api/v1/teams/<tid>/members                     GET
                /api/v1/teams/<tid>/members/<mid>               PUT, DELETE   (admin)
    INVITATION  /api/v1/teams/<tid>/invitations                 GET, POST     (admin)
                /api/v1/teams/<tid>/invitations/<iid>           DELETE        (admin)
                /api/v1/invitations/<token>/accept              POST
    DEPARTMENT  /api/v1/teams/<tid>/departments                 GET, POST     (POST admin)
                /api/v1/departments/<id>                        PUT, DELETE   (admin)
"""

import logging

from flask import Blueprint, jsonify, request

from app.auth import get_current_user_id, require_team_admin, require_team_member
from app.blueprints import register_error_handlers
from app.models.team import Team
from app.services import department_service, team_service
from app.utils.errors import E, api_error
from app.utils.helpers import db_commit_or_error

logger = logging.getLogger(__name__)

team_bp = Blueprint("team", __name__, url_prefix="/api/v1")
register_error_handlers(team_bp)


# ═══════════════════════════════════════════════════════════════════════════
#  TEAMS
# ═══════════════════════════════════════════════════════════════════════════

@team_bp.route("/teams", methods=["GET"])
def list_teams():
    user_id = get_current_user_id()
    if user_id is None:
        teams = Team.query.order_by(Team.name).all()
    else:
        teams = team_service.list_teams_for_user(user_id)
    return jsonify({"items": [t.to_dict() for t in teams], "total": len(teams)})


@team_bp.route("/teams", methods=["POST"])
def create_team():
    data = request.get_json(silent=True) or {}
    team = team_service.create_team(data.get("name"), get_current_user_id())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(team.to_dict()), 201


@team_bp.route("/teams/<int:tid>", methods=["GET"])
def get_team(tid):
    team = team_service.get_team(tid)
    require_team_member(tid)
    return jsonify(team.to_dict())


# ═══════════════════════════════════════════════════════════════════════════
#  MEMBERS
# ═══════════════════════════════════════════════════════════════════════════

@team_bp.route("/teams/<int:tid>/members", methods=["GET"])
def list_members(tid):
    team_service.get_team(tid)
    require_team_member(tid)
    members = team_service.list_members(tid)
    return jsonify({"items": [m.to_dict() for m in members], "total": len(members)})


@team_bp.route("/teams/<int:tid>/members/<int:mid>", methods=["PUT"])
def update_member(tid, mid):
    require_team_admin(tid, "change member roles")
    data = request.get_json(silent=True) or {}
    member = team_service.update_member_role(tid, mid, data.get("role"))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(member.to_dict())


@team_bp.route("/teams/<int:tid>/members/<int:mid>", methods=["DELETE"])
def remove_member(tid, mid):
    require_team_admin(tid, "remove members")
    team_service.remove_member(tid, mid)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"deleted": True, "id": mid})


# ═══════════════════════════════════════════════════════════════════════════
#  INVITATIONS
# ═══════════════════════════════════════════════════════════════════════════

@team_bp.route("/teams/<int:tid>/invitations", methods=["GET"])
def list_invitations(tid):
    require_team_admin(tid, "view invitations")
    status = request.args.get("status", "pending")
    invitations = team_service.list_invitations(tid, status=None if status == "all" else status)
    return jsonify({"items": [i.to_dict() for i in invitations], "total": len(invitations)})


@team_bp.route("/teams/<int:tid>/invitations", methods=["POST"])
def create_invitation(tid):
    team_service.get_team(tid)
    require_team_admin(tid, "invite members")
    data = request.get_json(silent=True) or {}
    if not data.get("email"):
        return api_error(E.VALIDATION_REQUIRED, "email is required")

    invitation = team_service.create_invitation(
        tid, data["email"], data.get("role", "member"), invited_by=get_current_user_id(),
    )
    err = db_commit_or_error()
    if err:
        return err

    email_result = team_service.send_invitation_email(invitation)
    body = invitation.to_dict()
    body["email_status"] = email_result["status"] if email_result else "skipped"
    return jsonify(body), 201


@team_bp.route("/teams/<int:tid>/invitations/<int:iid>", methods=["DELETE"])
def revoke_invitation(tid, iid):
    require_team_admin(tid, "revoke invitations")
    invitation = team_service.revoke_invitation(tid, iid)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(invitation.to_dict())


@team_bp.route("/invitations/<token>/accept", methods=["POST"])
def accept_invitation(token):
    user_id = get_current_user_id()
    if user_id is None:
        return api_error(E.UNAUTHORIZED, "Sign in to accept an invitation")
    member = team_service.accept_invitation(token, user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(member.to_dict()), 200


# ═══════════════════════════════════════════════════════════════════════════
#  DEPARTMENTS
# ═══════════════════════════════════════════════════════════════════════════

@team_bp.route("/teams/<int:tid>/departments", methods=["GET"])
def list_departments(tid):
    require_team_member(tid)
    departments = department_service.list_departments(tid)
    return jsonify({"items": departments, "total": len(departments)})


@team_bp.route("/teams/<int:tid>/departments", methods=["POST"])
def create_department(tid):
    team_service.get_team(tid)
    require_team_admin(tid, "create departments")
    data = request.get_json(silent=True) or {}
    department = department_service.create_department(tid, data, user_id=get_current_user_id())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(department.to_dict()), 201


@team_bp.route("/departments/<int:did>", methods=["PUT"])
def update_department(did):
    department = department_service.get_department(did)
    require_team_admin(department.team_id, "update departments")
    data = request.get_json(silent=True) or {}
    department_service.update_department(department, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(department.to_dict())


@team_bp.route("/departments/<int:did>", methods=["DELETE"])
def delete_department(did):
    department = department_service.get_department(did)
    require_team_admin(department.team_id, "delete departments")
    department_service.delete_department(department)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"deleted": True, "id": did})
