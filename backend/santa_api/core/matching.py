"""Random gift assignment.

A valid assignment is a derangement: a permutation of the participants in
which nobody is mapped to themselves. We draw uniformly random permutations
and keep the first one without a fixed point. For n >= 2 the acceptance rate
tends to 1/e, so the expected number of attempts stays below 3.
"""
import random
from collections.abc import Hashable, Sequence
from typing import TypeVar

from santa_api.core.errors import DerangementUnattainable, InsufficientParticipants

T = TypeVar("T", bound=Hashable)

MAX_ATTEMPTS = 100

_default_rng = random.Random()


def generate_matches(
    participants: Sequence[T],
    rng: random.Random | None = None,
    max_attempts: int = MAX_ATTEMPTS,
) -> dict[T, T]:
    """Map every giver to a receiver, never to themselves.

    Raises:
        InsufficientParticipants: fewer than two ids were given.
        ValueError: the ids are not distinct.
        DerangementUnattainable: no derangement within ``max_attempts``.
    """
    if len(participants) < 2:
        raise InsufficientParticipants()

    givers = list(participants)
    if len(set(givers)) != len(givers):
        raise ValueError("participant ids must be distinct")

    rng = rng or _default_rng
    for _ in range(max_attempts):
        receivers = rng.sample(givers, len(givers))
        if all(giver != receiver for giver, receiver in zip(givers, receivers)):
            return dict(zip(givers, receivers))

    raise DerangementUnattainable(
        f"Could not produce a valid draw after {max_attempts} attempts"
    )
