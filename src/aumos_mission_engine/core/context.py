"""Explicit operator identity and clock.

Audit and timeline writers never read the current user, host or time from
the environment directly. They receive an OperatorContext, so tests can inject
deterministic values.
"""

import getpass
import socket
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from aumos_mission_engine.core.interfaces import IClock


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class FixedClock:
    """Clock frozen at a given instant. ``advance`` moves it forward."""

    def __init__(self, instant: datetime) -> None:
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=UTC)
        self._instant = instant

    def now(self) -> datetime:
        return self._instant

    def advance(self, delta: timedelta) -> None:
        self._instant = self._instant + delta


def _current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"


@dataclass(frozen=True)
class OperatorContext:
    """Who is acting, from which host, and what time it is.

    Attributes:
        actor: Operator or service account name recorded in audit entries.
        host: Machine name recorded in audit entries.
        clock: Time source for every timestamp the engine writes.
    """

    actor: str
    host: str
    clock: IClock = field(default_factory=SystemClock)

    @classmethod
    def from_environment(cls, clock: IClock | None = None) -> "OperatorContext":
        """Build a context from the process user and hostname."""
        return cls(actor=_current_user(), host=socket.gethostname(), clock=clock or SystemClock())

    def now(self) -> datetime:
        return self.clock.now()
