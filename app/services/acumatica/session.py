"""Acumatica session cookie cache backed by ``acumatica_session_cache``.

Each sync invocation is stateless, so the cache lives in the database rather
than in process memory. A token is only ever replaced wholesale: the old row
is marked invalid and a new row is written. Two workers logging in at the same
moment both succeed; the newest row wins on the next lookup and any cookie the
ERP later rejects is invalidated on its first 401.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import timedelta
from typing import TypeVar

from sqlalchemy.orm import Session

from app.config import settings
from app.models.acumatica import AcumaticaSession
from app.services.acumatica.client import AcumaticaAuthError, AcumaticaClient
from app.services.acumatica.credentials import AcumaticaCredentials
from app.services.acumatica.retry import LOGIN_POLICY, RetryPolicy, retry_call
from app.services.common import utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AcumaticaSessionManager:
    def __init__(
        self,
        db: Session,
        client: AcumaticaClient,
        ttl_minutes: int | None = None,
        logout_grace_seconds: float | None = None,
        login_policy: RetryPolicy = LOGIN_POLICY,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.db = db
        self.client = client
        self.ttl = timedelta(minutes=ttl_minutes or settings.acumatica_session_ttl_minutes)
        self.logout_grace_seconds = (
            settings.acumatica_logout_grace_seconds if logout_grace_seconds is None else logout_grace_seconds
        )
        self.login_policy = login_policy
        self._sleep = sleep

    def _persist(self) -> None:
        # Inside a per-record savepoint the outer run owns the commit.
        if self.db.in_nested_transaction():
            self.db.flush()
        else:
            self.db.commit()

    def _valid_sessions(self, credentials: AcumaticaCredentials | None = None):
        query = self.db.query(AcumaticaSession).filter(AcumaticaSession.is_valid.is_(True))
        if credentials is not None:
            query = query.filter(AcumaticaSession.credential_key == credentials.cache_key)
        return query

    def get_cached(self, credentials: AcumaticaCredentials) -> AcumaticaSession | None:
        return (
            self._valid_sessions(credentials)
            .filter(AcumaticaSession.expires_at > utc_now())
            .order_by(AcumaticaSession.last_used_at.desc(), AcumaticaSession.created_at.desc())
            .first()
        )

    def get_session(self, credentials: AcumaticaCredentials, force_new: bool = False) -> str:
        if force_new:
            released = self._logout_sessions(self._valid_sessions(credentials).all())
            if released and self.logout_grace_seconds:
                self._sleep(self.logout_grace_seconds)
        else:
            cached = self.get_cached(credentials)
            if cached:
                cached.last_used_at = utc_now()
                self._persist()
                logger.debug("acumatica_session_reused session_id=%s", cached.id)
                return cached.session_cookie

        cookie = retry_call(
            lambda: self.client.login(credentials),
            self.login_policy,
            label="acumatica_login",
            sleep=self._sleep,
        )

        now = utc_now()
        self._valid_sessions(credentials).update({AcumaticaSession.is_valid: False}, synchronize_session=False)
        session_row = AcumaticaSession(
            credential_key=credentials.cache_key,
            session_cookie=cookie,
            expires_at=now + self.ttl,
            is_valid=True,
            last_used_at=now,
            created_at=now,
        )
        self.db.add(session_row)
        self._persist()
        logger.info("acumatica_session_created session_id=%s expires_at=%s", session_row.id, session_row.expires_at)
        return cookie

    def invalidate(self, token: str) -> int:
        count = (
            self.db.query(AcumaticaSession)
            .filter(AcumaticaSession.session_cookie == token)
            .filter(AcumaticaSession.is_valid.is_(True))
            .update({AcumaticaSession.is_valid: False}, synchronize_session=False)
        )
        self._persist()
        if count:
            logger.info("acumatica_session_invalidated count=%d", count)
        return count

    def _logout_sessions(self, sessions: list[AcumaticaSession]) -> int:
        for session_row in sessions:
            self.client.logout(session_row.session_cookie)
            session_row.is_valid = False
        if sessions:
            self._persist()
            logger.info("acumatica_sessions_logged_out count=%d", len(sessions))
        return len(sessions)

    def force_logout(self, credentials: AcumaticaCredentials | None = None) -> int:
        """Log out every cached session (optionally only one credential set's)."""
        return self._logout_sessions(self._valid_sessions(credentials).all())

    def call_with_session(self, credentials: AcumaticaCredentials, fn: Callable[[str], T]) -> T:
        """Run ``fn(token)``; on a rejected cookie re-login once and retry."""
        token = self.get_session(credentials)
        try:
            return fn(token)
        except AcumaticaAuthError as exc:
            if exc.status_code != 401:
                raise
            logger.info("acumatica_session_expired_retrying")
            self.invalidate(token)
            token = self.get_session(credentials)
            return fn(token)

    def call_in_savepoint(self, credentials: AcumaticaCredentials, fn: Callable[[str], T]) -> T:
        """Run ``fn(token)`` inside its own savepoint, re-logging in once on a 401.

        Session rows are only written between savepoints, so rolling back a
        failed record never discards a fresh login or revives a rejected cookie.
        """
        token = self.get_session(credentials)
        savepoint = self.db.begin_nested()
        try:
            value = fn(token)
        except AcumaticaAuthError as exc:
            savepoint.rollback()
            if exc.status_code != 401:
                raise
            logger.info("acumatica_session_expired_retrying")
            self.invalidate(token)
            token = self.get_session(credentials)
            savepoint = self.db.begin_nested()
            try:
                value = fn(token)
            except Exception:
                savepoint.rollback()
                raise
        except Exception:
            savepoint.rollback()
            raise
        savepoint.commit()
        return value
