from __future__ import annotations

import hashlib
from dataclasses import dataclass

from sqlalchemy.orm import Session

from app.models.acumatica import AcumaticaCredential
from app.services.acumatica.client import ConfigurationError


def normalize_base_url(url: str) -> str:
    url = url.strip().rstrip("/")
    if not url.startswith(("http://", "https://")):
        url = f"https://{url}"
    return url


@dataclass(frozen=True)
class AcumaticaCredentials:
    base_url: str
    username: str
    password: str
    company: str | None = None
    branch: str | None = None

    @property
    def cache_key(self) -> str:
        """Stable key for the session cache; never contains the password."""
        raw = "|".join([self.base_url.lower(), self.username, self.company or "", self.branch or ""])
        return hashlib.sha256(raw.encode()).hexdigest()[:40]

    @classmethod
    def build(
        cls,
        url: str | None,
        username: str | None,
        password: str | None,
        company: str | None = None,
        branch: str | None = None,
    ) -> AcumaticaCredentials:
        missing = [
            name
            for name, value in (("url", url), ("username", username), ("password", password))
            if not value
        ]
        if missing:
            raise ConfigurationError(f"Acumatica credentials missing: {', '.join(missing)}")
        return cls(
            base_url=normalize_base_url(url),
            username=username,
            password=password,
            company=company or None,
            branch=branch or None,
        )


def load_active_credentials(db: Session) -> AcumaticaCredentials:
    row = (
        db.query(AcumaticaCredential)
        .filter(AcumaticaCredential.is_active.is_(True))
        .order_by(AcumaticaCredential.created_at.desc())
        .first()
    )
    if not row:
        raise ConfigurationError("No active Acumatica credentials are configured")
    return AcumaticaCredentials.build(row.acumatica_url, row.username, row.password, row.company, row.branch)


def resolve_credentials(db: Session, overrides: dict | None = None) -> AcumaticaCredentials:
    """Explicit request credentials win over the stored active set."""
    overrides = overrides or {}
    if overrides.get("url") or overrides.get("username"):
        return AcumaticaCredentials.build(
            overrides.get("url"),
            overrides.get("username"),
            overrides.get("password"),
            overrides.get("company"),
            overrides.get("branch"),
        )
    return load_active_credentials(db)
