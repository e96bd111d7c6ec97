import logging
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.orm import Session

from database import get_db
from errors import Forbidden
from event_lifecycle import load_event
from models import User
from notifications import send_ticket_email_task
from schemas import (
    MessageResponse,
    TeamActionResponse,
    TeamCreate,
    TeamInviteRequest,
    TeamJoinRequest,
    TeamRegistrationReport,
    TeamRespondRequest,
    TeamResponse,
)
from security import Identity, get_current_identity, require_participant
from team_workflow import (
    can_retry_registrations,
    complete_registrations,
    create_team,
    invite_member,
    leave_team,
    load_team,
    request_to_join,
    respond,
    team_by_code,
    teams_for_user,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _schedule_ticket_emails(background_tasks: BackgroundTasks, report: Optional[dict]) -> Optional[TeamRegistrationReport]:
    if not report:
        return None
    for registration_id in report["created_registration_ids"]:
        background_tasks.add_task(send_ticket_email_task, registration_id)
    return TeamRegistrationReport.model_validate(report)


@router.post("/teams", response_model=TeamResponse, status_code=status.HTTP_201_CREATED)
def create(
    payload: TeamCreate,
    user: User = Depends(require_participant),
    db: Session = Depends(get_db),
):
    event = load_event(db, payload.event_id)
    return TeamResponse.model_validate(create_team(db, event, user, payload.name))


@router.get("/teams/my", response_model=List[TeamResponse])
def my_teams(user: User = Depends(require_participant), db: Session = Depends(get_db)):
    return [TeamResponse.model_validate(team) for team in teams_for_user(db, user.id)]


@router.get("/teams/code/{invite_code}", response_model=TeamResponse)
def get_team_by_code(
    invite_code: str,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    return TeamResponse.model_validate(team_by_code(db, invite_code))


@router.get("/teams/{team_id}", response_model=TeamResponse)
def get_team(
    team_id: int,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    return TeamResponse.model_validate(load_team(db, team_id))


@router.post("/teams/join", response_model=TeamActionResponse)
def join_team(
    payload: TeamJoinRequest,
    user: User = Depends(require_participant),
    db: Session = Depends(get_db),
):
    team = request_to_join(db, team_by_code(db, payload.invite_code), user)
    return TeamActionResponse(message="Join request sent", team=TeamResponse.model_validate(team))


@router.post("/teams/{team_id}/invite", response_model=TeamActionResponse)
def invite(
    team_id: int,
    payload: TeamInviteRequest,
    user: User = Depends(require_participant),
    db: Session = Depends(get_db),
):
    team = invite_member(db, load_team(db, team_id), user, payload.email)
    return TeamActionResponse(message="Invite sent", team=TeamResponse.model_validate(team))


@router.post("/teams/{team_id}/respond", response_model=TeamActionResponse)
def respond_to_team(
    team_id: int,
    payload: TeamRespondRequest,
    background_tasks: BackgroundTasks,
    user: User = Depends(require_participant),
    db: Session = Depends(get_db),
):
    team, report = respond(db, load_team(db, team_id), user, payload.action, payload.member_id)
    message = "Accepted" if payload.action == "accept" else "Declined"
    return TeamActionResponse(
        message=message,
        team=TeamResponse.model_validate(team),
        registrations=_schedule_ticket_emails(background_tasks, report),
    )


@router.delete("/teams/{team_id}/leave", response_model=MessageResponse)
def leave(
    team_id: int,
    user: User = Depends(require_participant),
    db: Session = Depends(get_db),
):
    return MessageResponse(message=leave_team(db, load_team(db, team_id), user))


@router.post("/teams/{team_id}/complete-registrations", response_model=TeamActionResponse)
def retry_team_registrations(
    team_id: int,
    background_tasks: BackgroundTasks,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    team = load_team(db, team_id)
    if not can_retry_registrations(
        team,
        user=identity.user if not identity.is_organizer else None,
        organizer_id=identity.organizer.id if identity.is_organizer else None,
    ):
        raise Forbidden("Only the team leader or the event organizer can retry registrations")
    logger.info("Retrying registrations for team %s (requested by %s %s)", team.id, identity.role, identity.id)
    report = complete_registrations(db, team)
    db.refresh(team)
    return TeamActionResponse(
        message="Team registrations processed",
        team=TeamResponse.model_validate(team),
        registrations=_schedule_ticket_emails(background_tasks, report),
    )
