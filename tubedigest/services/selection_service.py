"""
Selection store: the authoritative set of digest channels per user (max 10).

Both mutators (full replace and single toggle) run inside one transaction
with the user row locked (FOR UPDATE where the dialect supports it) and pass
through ensure_within_limit before commit, so neither path can leave more than
MAX_SELECTED_CHANNELS rows behind, including two tabs toggling at once.
A failed replace rolls back and the previous set stays visible.
"""
import logging
from dataclasses import dataclass

from sqlalchemy import func
from sqlalchemy.orm import Session

from tubedigest.config import MAX_SELECTED_CHANNELS
from tubedigest.errors import LimitExceeded
from tubedigest.models import ChannelSelection, User

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 255


@dataclass(frozen=True)
class SelectionEntry:
    user_id: str
    channel_id: str
    title: str

    def to_dict(self) -> dict:
        return {"channelId": self.channel_id, "title": self.title}


def ensure_within_limit(count: int, limit: int = MAX_SELECTED_CHANNELS) -> None:
    """Single invariant check for every selection write."""
    if count > limit:
        raise LimitExceeded(limit=limit, requested=count)


def clean_channel_ids(channel_ids: list) -> list[str]:
    """Strip ids, drop empty/non-string ones, dedupe keeping first occurrence."""
    seen: set[str] = set()
    result: list[str] = []
    for raw in channel_ids:
        if not isinstance(raw, str):
            continue
        cid = raw.strip()
        if not cid or cid in seen:
            continue
        seen.add(cid)
        result.append(cid)
    return result


def _snapshot_title(title: str | None, channel_id: str) -> str:
    title = (title or "").strip()
    return (title or channel_id)[:TITLE_MAX_LENGTH]


def _lock_user(db: Session, user_id: str) -> User:
    user = db.query(User).filter(User.id == user_id).with_for_update().one_or_none()
    if user is None:
        raise LookupError(f"Unknown user {user_id}")
    return user


def _count(db: Session, user_id: str) -> int:
    return (
        db.query(func.count(ChannelSelection.id))
        .filter(ChannelSelection.user_id == user_id)
        .scalar()
    )


def get_selection(db: Session, user_id: str) -> list[SelectionEntry]:
    """Current selection in insertion order."""
    rows = (
        db.query(ChannelSelection)
        .filter(ChannelSelection.user_id == user_id)
        .order_by(ChannelSelection.id)
        .all()
    )
    return [SelectionEntry(user_id=r.user_id, channel_id=r.channel_id, title=r.title) for r in rows]


def replace_selection(
    db: Session,
    user_id: str,
    channel_ids: list,
    titles: dict[str, str] | None = None,
) -> list[SelectionEntry]:
    """
    Replace the whole selection. More than MAX_SELECTED_CHANNELS ids raises
    LimitExceeded before anything is touched. Empty ids are dropped, duplicates
    collapsed; an empty result clears the selection.
    """
    ensure_within_limit(len(channel_ids))
    titles = titles or {}
    valid_ids = clean_channel_ids(channel_ids)

    try:
        _lock_user(db, user_id)
        db.query(ChannelSelection).filter(ChannelSelection.user_id == user_id).delete(
            synchronize_session=False
        )
        for cid in valid_ids:
            db.add(ChannelSelection(
                user_id=user_id,
                channel_id=cid,
                title=_snapshot_title(titles.get(cid), cid),
            ))
        db.flush()
        ensure_within_limit(_count(db, user_id))
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Replaced selection for user %s with %d channels", user_id, len(valid_ids))
    return get_selection(db, user_id)


def set_membership(
    db: Session,
    user_id: str,
    channel_id: str,
    selected: bool,
    title: str | None = None,
) -> bool:
    """
    Idempotently add or remove one channel. Adding an already-selected channel
    or removing an unselected one is a no-op. An add that would push the
    selection past MAX_SELECTED_CHANNELS raises LimitExceeded.
    Returns the resulting membership.
    """
    channel_id = (channel_id or "").strip()
    if not channel_id:
        raise ValueError("channel_id cannot be empty")

    try:
        _lock_user(db, user_id)
        existing = (
            db.query(ChannelSelection)
            .filter(ChannelSelection.user_id == user_id, ChannelSelection.channel_id == channel_id)
            .one_or_none()
        )
        if selected and existing is None:
            ensure_within_limit(_count(db, user_id) + 1)
            db.add(ChannelSelection(
                user_id=user_id,
                channel_id=channel_id,
                title=_snapshot_title(title, channel_id),
            ))
            db.flush()
            ensure_within_limit(_count(db, user_id))
        elif not selected and existing is not None:
            db.delete(existing)
        db.commit()
    except LimitExceeded:
        db.rollback()
        logger.info("Rejected selecting %s for user %s: limit reached", channel_id, user_id)
        raise
    except Exception:
        db.rollback()
        raise
    return selected


def has_completed_onboarding(db: Session, user_id: str) -> bool:
    return _count(db, user_id) > 0
