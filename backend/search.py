from typing import Iterable, List, Sequence, Tuple

from rapidfuzz import fuzz, utils

from models import Event, User
from time_utils import as_utc

SCORE_CUTOFF = 60
FOLLOWED_BOOST = 10
INTEREST_TAG_BOOST = 3


def _clean_text(value) -> str:
    if value is None:
        return ""
    return str(value).strip()


def match_score(event: Event, query: str) -> float:
    """Best similarity (0..100) of ``query`` against name, description and tags."""
    needle = _clean_text(query)
    if not needle:
        return 0.0
    fields = [_clean_text(event.name), _clean_text(event.description)] + [_clean_text(t) for t in event.tags or []]
    return max(
        (fuzz.partial_ratio(needle, field, processor=utils.default_process) for field in fields if field),
        default=0.0,
    )


def fuzzy_filter(events: Iterable[Event], query: str, cutoff: int = SCORE_CUTOFF) -> List[Event]:
    scored: List[Tuple[float, Event]] = []
    for event in events:
        score = match_score(event, query)
        if score >= cutoff:
            scored.append((score, event))
    scored.sort(key=lambda pair: pair[0], reverse=True)
    return [event for _, event in scored]


def relevance_score(event: Event, followed_ids: Sequence[int], interests: Sequence[str]) -> int:
    score = 0
    if event.organizer_id in followed_ids:
        score += FOLLOWED_BOOST
    lowered = [i.lower() for i in interests if i]
    for tag in event.tags or []:
        tag = str(tag).lower()
        if any(tag in interest or interest in tag for interest in lowered):
            score += INTEREST_TAG_BOOST
    return score


def order_by_preference(events: List[Event], user: User) -> List[Event]:
    followed = set(user.followed_organizer_ids)
    interests = user.areas_of_interest or []

    def sort_key(event: Event):
        created = as_utc(event.created_at)
        return (-relevance_score(event, followed, interests), -(created.timestamp() if created else 0), -event.id)

    return sorted(events, key=sort_key)
