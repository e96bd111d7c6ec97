import logging
import secrets
from typing import Dict, List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session

from errors import (
    EventNotOpen,
    Forbidden,
    NotFound,
    TeamFull,
    TeamNotForming,
    ValidationFailed,
    WorkflowError,
)
from event_lifecycle import OPEN_STATUSES
from models import (
    Event,
    EventType,
    Registration,
    Team,
    TeamMember,
    TeamMemberOrigin,
    TeamMemberStatus,
    TeamRegistrationOutcome,
    TeamStatus,
    User,
    UserRole,
)
from registration_workflow import create_team_member_registration, live_registration
from time_utils import utc_now

logger = logging.getLogger(__name__)

DEFAULT_TEAM_SIZE = 4


def make_invite_code() -> str:
    return secrets.token_hex(5).upper()


def _next_invite_code(db: Session) -> str:
    candidate = make_invite_code()
    while db.query(Team.id).filter(Team.invite_code == candidate).first():
        candidate = make_invite_code()
    return candidate


def load_team(db: Session, team_id: int) -> Team:
    team = db.query(Team).filter(Team.id == team_id).first()
    if not team:
        raise NotFound("Team not found")
    return team


def team_by_code(db: Session, invite_code: str) -> Team:
    team = db.query(Team).filter(Team.invite_code == (invite_code or "").strip().upper()).first()
    if not team:
        raise NotFound("Invalid invite code")
    return team


def teams_for_user(db: Session, user_id: int) -> List[Team]:
    member_team_ids = db.query(TeamMember.team_id).filter(TeamMember.user_id == user_id)
    return (
        db.query(Team)
        .filter(or_(Team.leader_id == user_id, Team.id.in_(member_team_ids)))
        .order_by(Team.created_at.desc(), Team.id.desc())
        .all()
    )


def _member_entry(team: Team, user_id: int) -> Optional[TeamMember]:
    return next((m for m in team.members if m.user_id == user_id), None)


def create_team(db: Session, event: Event, leader: User, name: str) -> Team:
    if event.event_type != EventType.HACKATHON:
        raise ValidationFailed("Not a hackathon event")
    if event.status not in OPEN_STATUSES:
        raise EventNotOpen()

    member_team_ids = db.query(TeamMember.team_id).filter(TeamMember.user_id == leader.id)
    existing = (
        db.query(Team)
        .filter(
            Team.event_id == event.id,
            Team.status != TeamStatus.CANCELLED,
            or_(Team.leader_id == leader.id, Team.id.in_(member_team_ids)),
        )
        .first()
    )
    if existing:
        raise ValidationFailed("Already in a team for this event")

    team = Team(
        name=name.strip(),
        event_id=event.id,
        leader_id=leader.id,
        max_size=event.team_size or DEFAULT_TEAM_SIZE,
        invite_code=_next_invite_code(db),
        status=TeamStatus.FORMING,
    )
    db.add(team)
    db.commit()
    db.refresh(team)
    logger.info("Team %s created for event %s by user %s", team.id, event.id, leader.id)
    return team


def request_to_join(db: Session, team: Team, user: User) -> Team:
    if team.status != TeamStatus.FORMING:
        raise TeamNotForming()
    if team.accepted_count >= team.max_size:
        raise TeamFull()
    if team.leader_id == user.id:
        raise ValidationFailed("You are the team leader")
    if _member_entry(team, user.id):
        raise ValidationFailed("Already in this team")

    team.members.append(TeamMember(user_id=user.id, status=TeamMemberStatus.PENDING, origin=TeamMemberOrigin.JOIN_REQUEST))
    db.commit()
    db.refresh(team)
    return team


def invite_member(db: Session, team: Team, leader: User, email: str) -> Team:
    if team.leader_id != leader.id:
        raise Forbidden("Only team leader can invite")
    if team.status != TeamStatus.FORMING:
        raise TeamNotForming()

    invitee = db.query(User).filter(User.email == (email or "").strip().lower()).first()
    if not invitee or invitee.role != UserRole.PARTICIPANT:
        raise NotFound("User not found with that email")
    if invitee.id == team.leader_id or _member_entry(team, invitee.id):
        raise ValidationFailed("User already in team or invited")

    team.members.append(TeamMember(user_id=invitee.id, status=TeamMemberStatus.PENDING, origin=TeamMemberOrigin.INVITE))
    db.commit()
    db.refresh(team)
    return team


def respond(db: Session, team: Team, user: User, action: str, member_id: Optional[int] = None) -> Tuple[Team, Optional[Dict]]:
    """Accept or decline a pending entry.

    Invitees answer their own invitation; the leader answers join requests by
    passing the requester's ``member_id``. Returns the team and, when the accept
    filled the team, the fan-out report.
    """
    if action not in ("accept", "decline"):
        raise ValidationFailed("Action must be accept or decline")

    if member_id is not None:
        if team.leader_id != user.id:
            raise Forbidden("Only team leader can answer join requests")
        entry = next((m for m in team.members if m.id == member_id), None)
        if not entry or entry.origin != TeamMemberOrigin.JOIN_REQUEST:
            raise NotFound("No join request found")
    else:
        entry = _member_entry(team, user.id)
        if not entry or entry.origin != TeamMemberOrigin.INVITE:
            raise NotFound("No invite found")

    if entry.status != TeamMemberStatus.PENDING:
        raise ValidationFailed("Already responded")
    if team.status != TeamStatus.FORMING:
        raise TeamNotForming()

    if action == "accept":
        if team.accepted_count >= team.max_size:
            raise TeamFull()
        entry.status = TeamMemberStatus.ACCEPTED
    else:
        entry.status = TeamMemberStatus.DECLINED
    entry.responded_at = utc_now()

    report = None
    if action == "accept" and team.accepted_count >= team.max_size:
        team.status = TeamStatus.COMPLETE
        db.flush()
        report = complete_registrations(db, team)
    else:
        db.commit()
    db.refresh(team)
    return team, report


def leave_team(db: Session, team: Team, user: User) -> str:
    if team.leader_id == user.id:
        team.status = TeamStatus.CANCELLED
        db.commit()
        logger.info("Team %s disbanded by leader", team.id)
        return "Team disbanded (you were the leader)"

    entry = _member_entry(team, user.id)
    if not entry:
        raise NotFound("You are not in this team")
    team.members.remove(entry)
    if team.status == TeamStatus.COMPLETE:
        team.status = TeamStatus.FORMING
    db.commit()
    return "Left team"


def _register_member(db: Session, event: Event, team: Team, user_id: int) -> Tuple[TeamRegistrationOutcome, Optional[Registration], Optional[str]]:
    existing = live_registration(db, user_id, event.id)
    if existing:
        if existing.team_id == team.id:
            return TeamRegistrationOutcome.CREATED, None, None
        return TeamRegistrationOutcome.SKIPPED, None, "Already registered"
    try:
        registration = create_team_member_registration(db, event, user_id, team.id)
    except WorkflowError as exc:
        return TeamRegistrationOutcome.FAILED, None, exc.detail
    except Exception as exc:
        logger.exception("Team %s registration failed for user %s", team.id, user_id)
        return TeamRegistrationOutcome.FAILED, None, str(exc)
    return TeamRegistrationOutcome.CREATED, registration, None


def complete_registrations(db: Session, team: Team) -> Dict:
    """Create a registration for the leader and every accepted member.

    Each member runs in its own savepoint, so one failure is recorded on that
    member and the rest still go through. Running it again only retries the
    members that have no registration yet.
    """
    if team.status != TeamStatus.COMPLETE:
        raise ValidationFailed("Team is not complete")

    event = team.event
    results = []
    created_ids = []

    outcome, registration, reason = _register_member(db, event, team, team.leader_id)
    team.leader_registration_outcome = outcome
    results.append({"user_id": team.leader_id, "role": "leader", "outcome": outcome.value, "reason": reason})
    if registration:
        created_ids.append(registration.id)

    for member in team.members:
        if member.status != TeamMemberStatus.ACCEPTED:
            continue
        outcome, registration, reason = _register_member(db, event, team, member.user_id)
        member.registration_outcome = outcome
        results.append({"user_id": member.user_id, "role": "member", "outcome": outcome.value, "reason": reason})
        if registration:
            created_ids.append(registration.id)

    db.commit()
    failed = sum(1 for r in results if r["outcome"] == TeamRegistrationOutcome.FAILED.value)
    logger.info("Team %s registrations: %s created, %s failed", team.id, len(created_ids), failed)
    return {"team_id": team.id, "results": results, "created_registration_ids": created_ids}


def can_retry_registrations(team: Team, user: Optional[User] = None, organizer_id: Optional[int] = None) -> bool:
    if user is not None and team.leader_id == user.id:
        return True
    return organizer_id is not None and team.event.organizer_id == organizer_id
