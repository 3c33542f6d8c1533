"""
Team Service — accounts, teams, memberships and invitations.

Transaction policy: flush only; the route handler commits.
"""

import logging
import re
from datetime import datetime, timedelta, timezone

from email_validator import EmailNotValidError, validate_email
from flask import current_app

from app.core.exceptions import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from app.models import db
from app.models.team import TEAM_ROLES, Invitation, Team, TeamMember, User
from app.services.email_service import EmailService
from app.utils.crypto import generate_token, hash_password, verify_password

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8


def normalize_email(email: str) -> str:
    try:
        return validate_email(email or "", check_deliverability=False).normalized
    except EmailNotValidError as exc:
        raise ValidationError(f"Invalid email: {exc}") from exc


def _slugify(name: str) -> str:
    base = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-") or "team"
    slug = base[:80]
    while Team.query.filter_by(slug=slug).first() is not None:
        slug = f"{base[:80]}-{generate_token(4).lower()}"
    return slug


# ═══════════════════════════════════════════════════════════════
# Accounts
# ═══════════════════════════════════════════════════════════════
def register_user(email: str, password: str, name: str | None = None) -> User:
    email = normalize_email(email)
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if User.query.filter_by(email=email).first():
        raise ConflictError("User", "email", email)

    user = User(email=email, name=name or email.split("@")[0],
                password_hash=hash_password(password))
    db.session.add(user)
    db.session.flush()
    logger.info("User %s registered", user.id)
    return user


def authenticate(email: str, password: str) -> User:
    try:
        email = normalize_email(email)
    except ValidationError as exc:
        raise ValidationError("Invalid credentials", status=401) from exc
    user = User.query.filter_by(email=email).first()
    if user is None or not user.is_active or not verify_password(password or "", user.password_hash):
        logger.info("Failed login for %s", email)
        raise ValidationError("Invalid credentials", status=401)
    user.last_login_at = datetime.now(timezone.utc)
    db.session.flush()
    return user


def get_user(user_id) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User", user_id)
    return user


# ═══════════════════════════════════════════════════════════════
# Teams and members
# ═══════════════════════════════════════════════════════════════
def create_team(name: str, owner_id) -> Team:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Team name is required")
    team = Team(name=name, slug=_slugify(name))
    db.session.add(team)
    db.session.flush()
    if owner_id is not None:
        db.session.add(TeamMember(team_id=team.id, user_id=owner_id, role="owner"))
        db.session.flush()
    logger.info("Team %s created by user %s", team.id, owner_id)
    return team


def list_teams_for_user(user_id) -> list[Team]:
    return (
        Team.query.join(TeamMember, TeamMember.team_id == Team.id)
        .filter(TeamMember.user_id == user_id)
        .order_by(Team.name)
        .all()
    )


def get_team(team_id) -> Team:
    team = db.session.get(Team, team_id)
    if team is None:
        raise NotFoundError("Team", team_id)
    return team


def list_members(team_id) -> list[TeamMember]:
    return TeamMember.query.filter_by(team_id=team_id).order_by(TeamMember.joined_at).all()


def update_member_role(team_id, member_id, role: str) -> TeamMember:
    if role not in TEAM_ROLES:
        raise ValidationError(f"role must be one of: {', '.join(sorted(TEAM_ROLES))}")
    member = TeamMember.query.filter_by(id=member_id, team_id=team_id).first()
    if member is None:
        raise NotFoundError("Team member", member_id)
    if member.role == "owner" and role != "owner":
        owners = TeamMember.query.filter_by(team_id=team_id, role="owner").count()
        if owners <= 1:
            raise ValidationError("A team must keep at least one owner")
    member.role = role
    db.session.flush()
    return member


def remove_member(team_id, member_id) -> None:
    member = TeamMember.query.filter_by(id=member_id, team_id=team_id).first()
    if member is None:
        raise NotFoundError("Team member", member_id)
    if member.role == "owner":
        raise PermissionDeniedError("The team owner cannot be removed")
    db.session.delete(member)
    db.session.flush()


# ═══════════════════════════════════════════════════════════════
# Invitations
# ═══════════════════════════════════════════════════════════════
def create_invitation(team_id, email: str, role: str = "member", invited_by=None) -> Invitation:
    email = normalize_email(email)
    if role not in TEAM_ROLES or role == "owner":
        raise ValidationError("role must be admin or member")

    existing_member = (
        TeamMember.query.join(User, User.id == TeamMember.user_id)
        .filter(TeamMember.team_id == team_id, User.email == email)
        .first()
    )
    if existing_member:
        raise ConflictError("Team member", "email", email, message="User is already a team member")

    pending = Invitation.query.filter_by(team_id=team_id, email=email, status="pending").first()
    if pending and not pending.is_expired():
        raise ConflictError("Invitation", "email", email,
                            message="An invitation is already pending for this email")

    days = current_app.config.get("INVITATION_EXPIRES_DAYS", 7)
    invitation = Invitation(
        team_id=team_id,
        email=email,
        role=role,
        token=generate_token(),
        status="pending",
        invited_by=invited_by,
        expires_at=datetime.now(timezone.utc) + timedelta(days=days),
    )
    db.session.add(invitation)
    db.session.flush()
    logger.info("Invitation %s created for team %s", invitation.id, team_id)
    return invitation


def send_invitation_email(invitation: Invitation) -> dict | None:
    team = db.session.get(Team, invitation.team_id)
    inviter = db.session.get(User, invitation.invited_by) if invitation.invited_by else None
    base_url = current_app.config.get("APP_BASE_URL", "").rstrip("/")
    return EmailService.send_from_template(
        to_email=invitation.email,
        template_name="team_invitation",
        context={
            "team_name": team.name if team else "your team",
            "inviter_name": (inviter.name or inviter.email) if inviter else "A teammate",
            "role": invitation.role,
            "accept_url": f"{base_url}/invitations/{invitation.token}",
            "expires_at": invitation.expires_at.date().isoformat(),
        },
    )


def list_invitations(team_id, status: str | None = "pending") -> list[Invitation]:
    query = Invitation.query.filter_by(team_id=team_id)
    if status:
        query = query.filter_by(status=status)
    return query.order_by(Invitation.created_at.desc()).all()


def revoke_invitation(team_id, invitation_id) -> Invitation:
    invitation = Invitation.query.filter_by(id=invitation_id, team_id=team_id).first()
    if invitation is None:
        raise NotFoundError("Invitation", invitation_id)
    invitation.status = "revoked"
    db.session.flush()
    return invitation


def accept_invitation(token: str, user_id) -> TeamMember:
    invitation = Invitation.query.filter_by(token=token).first()
    if invitation is None:
        raise NotFoundError("Invitation")
    if invitation.status != "pending":
        raise ValidationError(f"Invitation is {invitation.status}")
    if invitation.is_expired():
        raise ValidationError("Invitation has expired", status=410)

    user = get_user(user_id)
    if user.email.lower() != invitation.email.lower():
        raise PermissionDeniedError("Invitation was sent to a different email address")

    member = TeamMember.query.filter_by(team_id=invitation.team_id, user_id=user.id).first()
    if member is None:
        member = TeamMember(team_id=invitation.team_id, user_id=user.id, role=invitation.role)
        db.session.add(member)
    invitation.status = "accepted"
    invitation.accepted_at = datetime.now(timezone.utc)
    db.session.flush()
    logger.info("User %s joined team %s via invitation", user.id, invitation.team_id)
    return member
