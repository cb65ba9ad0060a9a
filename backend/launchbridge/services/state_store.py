"""State/nonce store for in-flight OIDC login attempts.

Every attempt is keyed by its ``state`` value and may be taken at most once.
Two backends share the same interface:

- ``InMemoryLoginAttemptStore`` for single-process deployments
- ``DatabaseLoginAttemptStore`` for deployments that share one database
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from launchbridge.exceptions import Conflict
from launchbridge.models.login_attempt import LoginAttemptRecord
from launchbridge.utils.log_redaction import short_id

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(minutes=10)


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class LoginAttempt:
    """One in-flight OIDC login initiation."""

    state: str
    nonce: str
    issuer: str
    target_link_uri: str
    created_at: datetime
    login_hint: str | None = None
    lti_message_hint: str | None = None
    client_id: str | None = None
    deployment_id: str | None = None

    def is_expired(self, now: datetime, ttl: timedelta) -> bool:
        return now - self.created_at > ttl


class LoginAttemptStore(ABC):
    """Key-value store with TTL expiry and atomic take-once semantics."""

    def __init__(self, ttl: timedelta = DEFAULT_TTL):
        self.ttl = ttl

    @abstractmethod
    async def put(self, state: str, attempt: LoginAttempt) -> None:
        """Insert an attempt.

        Raises:
            Conflict: If ``state`` is already present
        """

    @abstractmethod
    async def take_if_valid(self, state: str, now: datetime) -> LoginAttempt | None:
        """Atomically read and remove the attempt for ``state``.

        Returns None when the state is unknown, already taken, or older than
        the TTL. Only one of several concurrent callers can get the attempt.
        """

    @abstractmethod
    async def purge_expired(self, now: datetime) -> int:
        """Remove attempts older than the TTL, returning how many were dropped."""


class InMemoryLoginAttemptStore(LoginAttemptStore):
    """Process-local store backed by a dict."""

    def __init__(self, ttl: timedelta = DEFAULT_TTL, clock: Callable[[], datetime] = utc_now):
        super().__init__(ttl)
        self._clock = clock
        self._attempts: dict[str, LoginAttempt] = {}
        self._lock = asyncio.Lock()

    async def put(self, state: str, attempt: LoginAttempt) -> None:
        async with self._lock:
            self._purge_locked(self._clock())
            if state in self._attempts:
                raise Conflict(f"State {short_id(state)} already stored")
            self._attempts[state] = attempt

    async def take_if_valid(self, state: str, now: datetime) -> LoginAttempt | None:
        async with self._lock:
            attempt = self._attempts.pop(state, None)
            self._purge_locked(now)

        if attempt is None:
            return None
        if attempt.is_expired(now, self.ttl):
            logger.warning("Login attempt %s expired before completion", short_id(state))
            return None
        return attempt

    async def purge_expired(self, now: datetime) -> int:
        async with self._lock:
            return self._purge_locked(now)

    def _purge_locked(self, now: datetime) -> int:
        expired = [s for s, a in self._attempts.items() if a.is_expired(now, self.ttl)]
        for state in expired:
            del self._attempts[state]
        if expired:
            logger.info(f"Purged {len(expired)} expired login attempts")
        return len(expired)

    def __len__(self) -> int:
        return len(self._attempts)

    def __contains__(self, state: object) -> bool:
        return state in self._attempts


class DatabaseLoginAttemptStore(LoginAttemptStore):
    """Store backed by the ``lti_login_attempts`` table."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ttl: timedelta = DEFAULT_TTL,
        clock: Callable[[], datetime] = utc_now,
    ):
        super().__init__(ttl)
        self._session_factory = session_factory
        self._clock = clock

    async def put(self, state: str, attempt: LoginAttempt) -> None:
        async with self._session_factory() as db:
            await self._purge(db, self._clock())

            existing = await db.execute(
                select(LoginAttemptRecord.state).where(LoginAttemptRecord.state == state)
            )
            if existing.scalar_one_or_none() is not None:
                raise Conflict(f"State {short_id(state)} already stored")

            db.add(
                LoginAttemptRecord(
                    state=state,
                    nonce=attempt.nonce,
                    issuer=attempt.issuer,
                    target_link_uri=attempt.target_link_uri,
                    login_hint=attempt.login_hint,
                    lti_message_hint=attempt.lti_message_hint,
                    client_id=attempt.client_id,
                    deployment_id=attempt.deployment_id,
                    created_at=attempt.created_at,
                )
            )
            try:
                await db.commit()
            except IntegrityError as e:
                await db.rollback()
                raise Conflict(f"State {short_id(state)} already stored") from e

        logger.debug("Stored login attempt: %s", short_id(state))

    async def take_if_valid(self, state: str, now: datetime) -> LoginAttempt | None:
        async with self._session_factory() as db:
            result = await db.execute(
                select(LoginAttemptRecord).where(LoginAttemptRecord.state == state)
            )
            record = result.scalar_one_or_none()
            if record is None:
                return None

            attempt = LoginAttempt(
                state=record.state,
                nonce=record.nonce,
                issuer=record.issuer,
                target_link_uri=record.target_link_uri,
                created_at=record.created_at_utc(),
                login_hint=record.login_hint,
                lti_message_hint=record.lti_message_hint,
                client_id=record.client_id,
                deployment_id=record.deployment_id,
            )

            # The DELETE decides the winner when two launches race on one state
            deleted = await db.execute(
                delete(LoginAttemptRecord).where(LoginAttemptRecord.state == state)
            )
            await db.commit()
            if (deleted.rowcount or 0) == 0:  # type: ignore[union-attr]
                logger.warning("Login attempt %s consumed concurrently", short_id(state))
                return None

            await self._purge(db, now)

        if attempt.is_expired(now, self.ttl):
            logger.warning("Login attempt %s expired before completion", short_id(state))
            return None
        return attempt

    async def purge_expired(self, now: datetime) -> int:
        async with self._session_factory() as db:
            return await self._purge(db, now)

    async def _purge(self, db: AsyncSession, now: datetime) -> int:
        cutoff = now - self.ttl
        result = await db.execute(
            delete(LoginAttemptRecord).where(LoginAttemptRecord.created_at < cutoff)
        )
        await db.commit()

        deleted = result.rowcount or 0  # type: ignore[union-attr]
        if deleted > 0:
            logger.info(f"Cleaned up {deleted} expired login attempts")
        return deleted
