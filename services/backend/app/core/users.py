"""
In-memory user repository.

Stands in for a database: lookups run inside child spans and pay simulated
latency through the injected ``WorkSimulator``.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from opentelemetry.trace import Tracer

from services.backend.app.core.simulator import WorkSimulator
from services.backend.app.models.user import User

_SEED = (
    (1, "Alice", "alice@example.com", 1),
    (2, "Bob", "bob@example.com", 2),
    (3, "Charlie", "charlie@example.com", 3),
)


def _utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


class UserRepository:
    """Constant mock users; stateless apart from the clock."""

    def __init__(
        self,
        *,
        tracer: Tracer,
        simulator: WorkSimulator,
        list_latency_max_ms: int = 50,
        lookup_latency_max_ms: int = 100,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._tracer = tracer
        self._simulator = simulator
        self._list_latency_max_ms = list_latency_max_ms
        self._lookup_latency_max_ms = lookup_latency_max_ms
        self._clock = clock

    def _users(self) -> list[User]:
        now = self._clock()
        return [
            User(id=uid, name=name, email=email, created_at=now - timedelta(days=age))
            for uid, name, email, age in _SEED
        ]

    def list_users(self) -> list[User]:
        with self._tracer.start_as_current_span("fetch_users") as span:
            self._simulator.simulate_latency("fetch_users", self._list_latency_max_ms)
            users = self._users()
            span.set_attribute("db.rows_returned", len(users))
            return users

    def get_user(self, user_id: str) -> Optional[User]:
        """Look a user up by its raw path id; unknown or non-numeric ids return None."""
        with self._tracer.start_as_current_span("fetch_user_by_id") as span:
            span.set_attribute("db.query_id", user_id)
            self._simulator.simulate_latency(
                "fetch_user_by_id", self._lookup_latency_max_ms
            )
            for user in self._users():
                if str(user.id) == user_id:
                    return user
            return None
