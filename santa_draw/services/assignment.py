"""Constrained random Secret Santa draw.

A draw maps every participant (giver) to exactly one other participant
(receiver) so that each participant receives exactly once and no forbidden
``(giver, receiver)`` pair is used. Self-draws are always forbidden.

The search runs in two layers:

* a primary attempt that orders givers most-constrained-first, which fails
  fast on hard instances;
* a bounded number of retries with uniformly random giver orderings. Each
  attempt is limited by a step budget that doubles on every retry, and all
  attempts together share a total step budget.

Receivers are shuffled at every decision, so repeated draws of the same input
visibly vary. The draw does *not* sample uniformly over all valid
assignments; callers should not rely on any stronger fairness guarantee than
"different runs give different results".
"""

from __future__ import annotations

import enum
import random
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, replace
from typing import (
    Dict,
    FrozenSet,
    Hashable,
    Iterable,
    List,
    Optional,
    Sequence,
    Set,
    Tuple,
    Union,
)

from loguru import logger

MIN_PARTICIPANTS = 3

Pair = Tuple[Hashable, Hashable]


class AssignmentError(RuntimeError):
    def __init__(
        self,
        message: str,
        reason: Optional["DrawFailureReason"] = None,
        participant: Optional[Hashable] = None,
    ) -> None:
        super().__init__(message)
        self.reason = reason
        self.participant = participant


class DrawValidationError(ValueError):
    pass


class DrawFailureReason(str, enum.Enum):
    TOO_FEW_PARTICIPANTS = "too_few_participants"
    IMPOSSIBLE_DRAW = "impossible_draw"


@dataclass(frozen=True)
class DrawSuccess:
    assignment: Dict[Hashable, Hashable]

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class DrawFailure:
    """Draw outcome when no assignment is produced.

    ``participant`` is advisory: it names the giver or receiver that made the
    pre-check fail, when there is one. It never changes the verdict.
    """

    reason: DrawFailureReason
    message: str
    participant: Optional[Hashable] = None

    @property
    def ok(self) -> bool:
        return False


DrawResult = Union[DrawSuccess, DrawFailure]


@dataclass(frozen=True)
class DrawPolicy:
    max_retries: int = 5
    step_budget: int = 50_000
    total_step_budget: int = 200_000
    parallel: bool = False

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must not be negative.")
        if self.step_budget < 1:
            raise ValueError("step_budget must be at least 1.")
        if self.total_step_budget < 1:
            raise ValueError("total_step_budget must be at least 1.")

    @classmethod
    def from_settings(cls, settings) -> "DrawPolicy":
        return cls(
            max_retries=settings.draw_max_retries,
            step_budget=settings.draw_step_budget,
            total_step_budget=settings.draw_total_step_budget,
            parallel=settings.draw_parallel,
        )

    def budget_for(self, attempt: int) -> int:
        return min(self.step_budget * (2**attempt), self.total_step_budget)


@dataclass(frozen=True)
class DrawConstraints:
    participants: Tuple[Hashable, ...]
    forbidden: FrozenSet[Pair]
    # Receivers kept in roster order so seeded draws do not depend on hashing.
    allowed_receivers: Dict[Hashable, Tuple[Hashable, ...]]

    def allowed_sets(self) -> Dict[Hashable, FrozenSet[Hashable]]:
        return {giver: frozenset(receivers) for giver, receivers in self.allowed_receivers.items()}


@dataclass(frozen=True)
class SearchOutcome:
    assignment: Optional[Dict[Hashable, Hashable]]
    steps: int
    exhausted: bool

    @property
    def found(self) -> bool:
        return self.assignment is not None


@dataclass(frozen=True)
class _AttemptPlan:
    index: int
    order: List[Hashable]
    rng: random.Random
    step_budget: int


class _SearchAborted(Exception):
    pass


def _validate_participants(participants: Iterable[Hashable]) -> List[Hashable]:
    roster: List[Hashable] = []
    seen: Set[Hashable] = set()
    for participant in participants:
        try:
            duplicate = participant in seen
        except TypeError as exc:
            raise DrawValidationError(f"Participant {participant!r} is not hashable.") from exc
        if duplicate:
            raise DrawValidationError(f"Duplicate participant {participant!r}.")
        seen.add(participant)
        roster.append(participant)
    return roster


def _validate_forbidden_pairs(
    forbidden_pairs: Optional[Iterable[Pair]],
    roster: Sequence[Hashable],
) -> Set[Pair]:
    members = set(roster)
    validated: Set[Pair] = set()
    for raw_pair in forbidden_pairs or ():
        try:
            blocker, blocked = raw_pair
        except (TypeError, ValueError) as exc:
            raise DrawValidationError(
                f"Forbidden pair {raw_pair!r} must be a (blocker, blocked) pair."
            ) from exc
        for member in (blocker, blocked):
            try:
                unknown = member not in members
            except TypeError as exc:
                raise DrawValidationError(
                    f"Forbidden pair {raw_pair!r} has unhashable member {member!r}."
                ) from exc
            if unknown:
                raise DrawValidationError(
                    f"Forbidden pair {raw_pair!r} references unknown participant {member!r}."
                )
        pair = (blocker, blocked)
        if pair in validated:
            raise DrawValidationError(f"Duplicate forbidden pair {pair!r}.")
        validated.add(pair)
    return validated


def build_constraints(
    participants: Sequence[Hashable],
    forbidden_pairs: Iterable[Pair],
) -> DrawConstraints:
    roster = tuple(participants)
    forbidden = set(forbidden_pairs)
    for participant in roster:
        forbidden.add((participant, participant))

    allowed_receivers = {
        giver: tuple(receiver for receiver in roster if (giver, receiver) not in forbidden)
        for giver in roster
    }
    return DrawConstraints(
        participants=roster,
        forbidden=frozenset(forbidden),
        allowed_receivers=allowed_receivers,
    )


def check_feasibility(constraints: DrawConstraints) -> Optional[DrawFailure]:
    """Cheap local checks run before searching.

    A giver with no allowed receiver, or a receiver no giver may pick, rules
    out any assignment. Passing both checks does not guarantee one exists.
    """
    for giver in constraints.participants:
        if not constraints.allowed_receivers[giver]:
            return DrawFailure(
                DrawFailureReason.IMPOSSIBLE_DRAW,
                f"Participant {giver!r} is blocked from every other participant.",
                participant=giver,
            )

    reachable: Set[Hashable] = set()
    for receivers in constraints.allowed_receivers.values():
        reachable.update(receivers)
    for receiver in constraints.participants:
        if receiver not in reachable:
            return DrawFailure(
                DrawFailureReason.IMPOSSIBLE_DRAW,
                f"No participant is allowed to draw {receiver!r}.",
                participant=receiver,
            )
    return None


def constrained_order(constraints: DrawConstraints, rng: random.Random) -> List[Hashable]:
    order = list(constraints.participants)
    # Shuffle first so the stable sort breaks ties randomly.
    rng.shuffle(order)
    order.sort(key=lambda giver: len(constraints.allowed_receivers[giver]))
    return order


def random_order(constraints: DrawConstraints, rng: random.Random) -> List[Hashable]:
    order = list(constraints.participants)
    rng.shuffle(order)
    return order


def search_assignment(
    constraints: DrawConstraints,
    order: Sequence[Hashable],
    rng: random.Random,
    step_budget: Optional[int] = None,
    stop: Optional[threading.Event] = None,
) -> SearchOutcome:
    """Backtracking search with forward checking over ``order``.

    Returns an outcome with ``exhausted=True`` when every branch was explored
    without success, and ``exhausted=False`` when the budget ran out or
    ``stop`` was set first.
    """
    allowed = constraints.allowed_receivers
    allowed_sets = constraints.allowed_sets()
    order = list(order)
    assignment: Dict[Hashable, Hashable] = {}
    claimed: Set[Hashable] = set()
    steps = 0

    def has_options(position: int) -> bool:
        return all(not allowed_sets[giver] <= claimed for giver in order[position:])

    def backtrack(position: int) -> bool:
        nonlocal steps
        if position == len(order):
            return True

        giver = order[position]
        choices = [receiver for receiver in allowed[giver] if receiver not in claimed]
        rng.shuffle(choices)
        for receiver in choices:
            steps += 1
            if step_budget is not None and steps > step_budget:
                raise _SearchAborted()
            if stop is not None and stop.is_set():
                raise _SearchAborted()

            assignment[giver] = receiver
            claimed.add(receiver)
            if has_options(position + 1) and backtrack(position + 1):
                return True
            claimed.remove(receiver)
            del assignment[giver]
        return False

    try:
        found = backtrack(0)
    except _SearchAborted:
        return SearchOutcome(assignment=None, steps=steps, exhausted=False)
    if found:
        return SearchOutcome(assignment=dict(assignment), steps=steps, exhausted=False)
    return SearchOutcome(assignment=None, steps=steps, exhausted=True)


def _plan_attempts(
    constraints: DrawConstraints,
    rng: random.Random,
    policy: DrawPolicy,
) -> List[_AttemptPlan]:
    plans: List[_AttemptPlan] = []
    for index in range(policy.max_retries + 1):
        attempt_rng = random.Random(rng.getrandbits(64))
        if index == 0:
            order = constrained_order(constraints, attempt_rng)
        else:
            order = random_order(constraints, attempt_rng)
        plans.append(_AttemptPlan(index, order, attempt_rng, policy.budget_for(index)))
    return plans


def _run_attempt(
    constraints: DrawConstraints,
    plan: _AttemptPlan,
    stop: Optional[threading.Event] = None,
) -> SearchOutcome:
    outcome = search_assignment(constraints, plan.order, plan.rng, plan.step_budget, stop)
    logger.bind(attempt=plan.index, steps=outcome.steps).debug(
        "Draw attempt finished: found={found}, exhausted={exhausted}",
        found=outcome.found,
        exhausted=outcome.exhausted,
    )
    return outcome


def _run_sequential(
    constraints: DrawConstraints,
    plans: Sequence[_AttemptPlan],
    total_step_budget: int,
) -> Optional[Dict[Hashable, Hashable]]:
    """Run attempts in order until one succeeds or the total budget is spent.

    Once an attempt exhausts its ordering no assignment exists, so later
    retries are capped at the steps that attempt needed.
    """
    spent = 0
    retry_cap: Optional[int] = None
    for plan in plans:
        remaining = total_step_budget - spent
        if remaining <= 0:
            logger.bind(attempt=plan.index, steps=spent).debug("Draw step budget spent")
            break
        budget = min(plan.step_budget, remaining)
        if retry_cap is not None:
            budget = min(budget, retry_cap)

        outcome = _run_attempt(constraints, replace(plan, step_budget=budget))
        spent += outcome.steps
        if outcome.found:
            return outcome.assignment
        if outcome.exhausted and retry_cap is None:
            retry_cap = max(outcome.steps, 1)
    return None


def _run_parallel(
    constraints: DrawConstraints,
    plans: Sequence[_AttemptPlan],
) -> Optional[Dict[Hashable, Hashable]]:
    stop = threading.Event()
    with ThreadPoolExecutor(max_workers=len(plans)) as executor:
        futures = [executor.submit(_run_attempt, constraints, plan, stop) for plan in plans]
        for future in as_completed(futures):
            outcome = future.result()
            if outcome.found:
                stop.set()
                return outcome.assignment
            if outcome.exhausted:
                # One exhausted ordering rules out every other attempt.
                stop.set()
    return None


def draw(
    participants: Iterable[Hashable],
    forbidden_pairs: Optional[Iterable[Pair]] = None,
    *,
    seed: Optional[int] = None,
    policy: Optional[DrawPolicy] = None,
) -> DrawResult:
    policy = policy or DrawPolicy()
    roster = _validate_participants(participants)
    log = logger.bind(participants=len(roster), seed=seed)

    if len(roster) < MIN_PARTICIPANTS:
        log.info("Draw rejected: too few participants")
        return DrawFailure(
            DrawFailureReason.TOO_FEW_PARTICIPANTS,
            f"At least {MIN_PARTICIPANTS} participants are required, got {len(roster)}.",
        )

    forbidden = _validate_forbidden_pairs(forbidden_pairs, roster)
    constraints = build_constraints(roster, forbidden)

    failure = check_feasibility(constraints)
    if failure is not None:
        log.bind(participant=failure.participant).info("Draw rejected by pre-check")
        return failure

    plans = _plan_attempts(constraints, random.Random(seed), policy)
    if policy.parallel and len(plans) > 1:
        assignment = _run_parallel(constraints, plans)
    else:
        assignment = _run_sequential(constraints, plans, policy.total_step_budget)

    if assignment is None:
        log.info("Draw failed after {attempts} attempts", attempts=len(plans))
        return DrawFailure(
            DrawFailureReason.IMPOSSIBLE_DRAW,
            "Restrictions are too strict to find a valid draw.",
        )

    log.info("Draw completed")
    return DrawSuccess(assignment=assignment)


def generate_assignments(
    participant_ids: Iterable[Hashable],
    exclusions: Optional[Iterable[Pair]] = None,
    seed: Optional[int] = None,
    policy: Optional[DrawPolicy] = None,
) -> Dict[Hashable, Hashable]:
    result = draw(participant_ids, exclusions, seed=seed, policy=policy)
    if isinstance(result, DrawFailure):
        raise AssignmentError(result.message, reason=result.reason, participant=result.participant)
    return result.assignment
