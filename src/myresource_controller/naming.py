"""
Instance naming and discovery convention.

Every instance the controller creates carries the MANAGED_PREFIX in its
name. That prefix is the only ownership record: on each pass the
backends list the scope and treat anything matching it as ours. There
is no persisted list of instance IDs.
"""

from __future__ import annotations

import random
import threading
from collections import deque
from typing import Deque, Iterable, List, Optional, Set

from pydantic import BaseModel

MANAGED_PREFIX = "myresource-"

# Random suffixes are drawn from [0, SUFFIX_SPACE).
SUFFIX_SPACE = 1_000_000

# How many recently issued names a RandomNameGenerator refuses to repeat.
ISSUED_WINDOW = 4096


class ManagedInstance(BaseModel):
    """A cloud instance discovered by name prefix.

    Attributes:
        name: Instance name (GCP/Azure name, AWS Name tag).
        instance_id: Provider handle used for deletion. Same as name
            on GCP and Azure; the EC2 instance ID on AWS.
    """

    name: str
    instance_id: str


def is_managed(name: Optional[str]) -> bool:
    """Return True if a name follows the controller's naming convention."""
    return bool(name) and name.startswith(MANAGED_PREFIX)


def deletion_order(candidates: Iterable[ManagedInstance]) -> List[ManagedInstance]:
    """Order deletion candidates: ascending by name, then by instance ID.

    Backends delete from the head of this list, so the order is the same
    on every cloud regardless of how the provider listed them.
    """
    return sorted(candidates, key=lambda inst: (inst.name, inst.instance_id))


class NameGenerator:
    """Source of names for new instances."""

    def next_name(self) -> str:
        raise NotImplementedError


class RandomNameGenerator(NameGenerator):
    """Prefix plus a random numeric suffix.

    The last ``window`` names handed out are never repeated, so passes
    sharing one generator cannot collide while their creates are in
    flight. Older names are forgotten, which keeps memory flat in a
    long-running controller. Collisions with instances created by other
    processes are still possible.

    Args:
        rng: Random source; defaults to a private random.Random().
        prefix: Name prefix (default MANAGED_PREFIX).
        window: Number of recent names remembered; must be below SUFFIX_SPACE.
    """

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        prefix: str = MANAGED_PREFIX,
        window: int = ISSUED_WINDOW,
    ) -> None:
        if not 0 <= window < SUFFIX_SPACE:
            raise ValueError(f"window must be in [0, {SUFFIX_SPACE}): got {window}")
        self._rng = rng or random.Random()
        self._prefix = prefix
        self._window = window
        self._issued: Set[str] = set()
        self._recent: Deque[str] = deque()
        self._lock = threading.Lock()

    def next_name(self) -> str:
        with self._lock:
            while True:
                name = f"{self._prefix}{self._rng.randrange(SUFFIX_SPACE)}"
                if name not in self._issued:
                    break
            if self._window:
                self._issued.add(name)
                self._recent.append(name)
                if len(self._recent) > self._window:
                    self._issued.discard(self._recent.popleft())
            return name


class SequentialNameGenerator(NameGenerator):
    """Deterministic names (prefix-1, prefix-2, ...) for tests and dry runs."""

    def __init__(self, prefix: str = MANAGED_PREFIX, start: int = 1) -> None:
        self._prefix = prefix
        self._next = start
        self._lock = threading.Lock()

    def next_name(self) -> str:
        with self._lock:
            name = f"{self._prefix}{self._next}"
            self._next += 1
            return name
