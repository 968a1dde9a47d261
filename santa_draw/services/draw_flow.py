from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Hashable, Iterable, List, Optional, Sequence, Set, Tuple

from loguru import logger

from santa_draw.core.config import Settings, load_settings
from santa_draw.core.logging import setup_logging
from santa_draw.services.assignment import DrawPolicy, Pair, generate_assignments


class DrawFlowError(RuntimeError):
    pass


class ParticipantStatus(str, enum.Enum):
    INVITED = "invited"
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


@dataclass(frozen=True)
class RosterEntry:
    participant_id: Hashable
    status: ParticipantStatus


@dataclass(frozen=True)
class Restriction:
    blocker_id: Hashable
    blocked_id: Hashable


@dataclass(frozen=True)
class SecretSantaPair:
    giver_id: Hashable
    receiver_id: Hashable
    is_revealed: bool = False


@dataclass(frozen=True)
class DrawStatus:
    is_draw_performed: bool
    pairs_count: int
    confirmed_participants_count: int
    total_participants_count: int


def init_draw(settings: Optional[Settings] = None) -> DrawPolicy:
    """Configure logging from settings and return the matching draw policy.

    Call once at application startup and pass the policy to ``perform_draw``.
    """
    settings = settings or load_settings()
    setup_logging(settings.log_level, settings.log_path)
    policy = DrawPolicy.from_settings(settings)
    logger.bind(
        max_retries=policy.max_retries,
        step_budget=policy.step_budget,
        parallel=policy.parallel,
    ).info("Draw engine configured")
    return policy


def confirmed_participants(roster: Iterable[RosterEntry]) -> List[Hashable]:
    return [entry.participant_id for entry in roster if entry.status == ParticipantStatus.ACCEPTED]


def forbidden_pairs_for(
    restrictions: Iterable[Restriction],
    participant_ids: Sequence[Hashable],
) -> List[Pair]:
    """Turn restriction records into forbidden pairs for the confirmed roster.

    Restrictions involving someone who has not accepted are dropped; duplicates
    are passed through so the engine rejects them.
    """
    confirmed: Set[Hashable] = set(participant_ids)
    pairs: List[Tuple[Hashable, Hashable]] = []
    for restriction in restrictions:
        if restriction.blocker_id in confirmed and restriction.blocked_id in confirmed:
            pairs.append((restriction.blocker_id, restriction.blocked_id))
        else:
            logger.bind(
                blocker_id=restriction.blocker_id,
                blocked_id=restriction.blocked_id,
            ).debug("Skipping restriction for unconfirmed participant")
    return pairs


def perform_draw(
    roster: Sequence[RosterEntry],
    restrictions: Iterable[Restriction] = (),
    existing_pairs: Sequence[SecretSantaPair] = (),
    seed: Optional[int] = None,
    policy: Optional[DrawPolicy] = None,
) -> List[SecretSantaPair]:
    if existing_pairs:
        raise DrawFlowError("Draw already performed. Delete existing pairs first to redraw.")

    participant_ids = confirmed_participants(roster)
    forbidden = forbidden_pairs_for(restrictions, participant_ids)

    assignments = generate_assignments(participant_ids, forbidden, seed=seed, policy=policy)

    pairs = [SecretSantaPair(giver_id=giver, receiver_id=assignments[giver]) for giver in participant_ids]
    logger.bind(pairs=len(pairs), restrictions=len(forbidden)).info("Draw completed")
    return pairs


def draw_status(roster: Sequence[RosterEntry], pairs: Sequence[SecretSantaPair]) -> DrawStatus:
    return DrawStatus(
        is_draw_performed=len(pairs) > 0,
        pairs_count=len(pairs),
        confirmed_participants_count=len(confirmed_participants(roster)),
        total_participants_count=len(roster),
    )


def pair_for_participant(
    pairs: Iterable[SecretSantaPair],
    participant_id: Hashable,
) -> Optional[SecretSantaPair]:
    for pair in pairs:
        if pair.giver_id == participant_id:
            return pair
    return None
