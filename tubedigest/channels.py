"""
Channels router: HTTP endpoints for the channel directory and the digest selection.

Delegates business logic to services.youtube_service and
services.selection_service. LimitExceeded and UpstreamUnavailable propagate
to the handlers registered in main (400 limit_exceeded / 503 upstream_error).
"""
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from tubedigest.auth import get_current_user
from tubedigest.database import get_db
from tubedigest.models import User
from tubedigest.services.selection_service import (
    get_selection,
    replace_selection,
    set_membership,
)
from tubedigest.services.youtube_service import list_channels

router = APIRouter(prefix="/channels")


# --- Request models ---


class SelectChannelsBody(BaseModel):
    """Full replacement of the selection; titles are snapshotted per channel id."""
    model_config = ConfigDict(populate_by_name=True)

    channel_ids: list[str] = Field(default_factory=list, alias="channelIds")
    titles: dict[str, str] = Field(default_factory=dict)


class UpdateSelectionBody(BaseModel):
    """Single-channel toggle. title is optional and only used when adding."""
    selected: bool
    title: str | None = Field(default=None, max_length=255)


# --- Endpoints ---


@router.get("")
def get_channels(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    List channels the user can choose from: their YouTube subscriptions, or the
    fallback list when no usable credential is stored. 503 if YouTube fails.
    """
    return list_channels(db, user.id)


@router.get("/selected")
def get_selected_channels(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Return the channels currently selected for digests."""
    return [entry.to_dict() for entry in get_selection(db, user.id)]


@router.post("/select")
def select_channels(
    body: SelectChannelsBody,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Replace the whole selection. 400 limit_exceeded when more than 10 ids are sent."""
    replace_selection(db, user.id, body.channel_ids, body.titles)
    return {"ok": True}


@router.put("/{channel_id}")
def update_channel_selection(
    channel_id: str,
    body: UpdateSelectionBody,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Select or deselect one channel (idempotent). 400 limit_exceeded past 10."""
    if not channel_id.strip():
        raise HTTPException(status_code=400, detail="channel_id cannot be empty")
    selected = set_membership(db, user.id, channel_id, body.selected, title=body.title)
    return {"ok": True, "selected": selected}
