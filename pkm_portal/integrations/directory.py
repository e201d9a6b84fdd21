"""
External identity directory gateway.

Three independently owned systems hold the identities the submission
workflow refers to:
  - student directory     — StudentRecord, keyed by student number
  - staff directory       — StaffRecord, keyed by staff id
  - org-unit directory    — OrgUnitRecord, keyed by unit code

All outbound HTTP calls to them go through DirectoryClient:
  - One batched GET per call: ``{base_url}?ids=k1,k2,...``
  - Timeout: bounded per call (DIRECTORY_TIMEOUT_SECONDS, default 5 s)
  - Retry: connection errors, timeouts and 5xx, up to ``retry_max`` extra attempts
  - Circuit breaker: ≥5 failures in 60 s → 30 s fast-fail
  - Never raises: failures are captured in DirectoryResult.error

The directories give no cross-referential guarantees: a student may
resolve while the org unit they point at does not.

Testability: pass a mock ``session`` to DirectoryClient() in tests instead
of letting it create a real requests.Session.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import requests

logger = logging.getLogger(__name__)

# ── Circuit breaker constants ──────────────────────────────────────────────
_CB_FAILURE_THRESHOLD = 5
_CB_WINDOW_SECONDS = 60
_CB_OPEN_DURATION_SECONDS = 30

# ── Retry / timeout defaults ───────────────────────────────────────────────
_DEFAULT_TIMEOUT = 5.0
_DEFAULT_RETRY_MAX = 1
_RETRY_BACKOFF_SECONDS = (0.2, 0.5)


# ── Records ─────────────────────────────────────────────────────────────────


def _first(payload: dict, *names: str) -> Any:
    for name in names:
        value = payload.get(name)
        if value not in (None, ""):
            return value
    return None


def _as_key(value: Any) -> str | None:
    return None if value in (None, "") else str(value)


@dataclass(frozen=True)
class OrgUnitRecord:
    """Faculty or study programme from the org-unit directory."""

    key: str
    name: str | None = None
    short_name: str | None = None
    level: str | None = None
    parent_key: str | None = None

    @classmethod
    def from_payload(cls, payload: dict) -> "OrgUnitRecord":
        return cls(
            key=_as_key(_first(payload, "key", "code", "id")),
            name=_first(payload, "name", "nama"),
            short_name=_first(payload, "short_name", "nama_singkat"),
            level=_first(payload, "level", "jenjang"),
            parent_key=_as_key(_first(payload, "parent_key", "faculty_code", "id_fakultas")),
        )

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "name": self.name,
            "short_name": self.short_name,
            "level": self.level,
            "parent_key": self.parent_key,
        }


@dataclass(frozen=True)
class StudentRecord:
    """Student from the student directory; ``org_unit`` is filled in by the resolver."""

    key: str
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    cohort: str | None = None
    org_unit_key: str | None = None
    org_unit: OrgUnitRecord | None = None

    @classmethod
    def from_payload(cls, payload: dict) -> "StudentRecord":
        return cls(
            key=_as_key(_first(payload, "key", "nim", "student_number")),
            name=_first(payload, "name", "nama"),
            email=_first(payload, "email"),
            phone=_first(payload, "phone", "no_hp"),
            cohort=_as_key(_first(payload, "cohort", "angkatan")),
            org_unit_key=_as_key(_first(payload, "org_unit_key", "programme_code", "id_prodi")),
        )

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "cohort": self.cohort,
            "org_unit_key": self.org_unit_key,
            "org_unit": self.org_unit.to_dict() if self.org_unit else None,
        }


@dataclass(frozen=True)
class StaffRecord:
    """Lecturer / staff member from the staff directory."""

    key: str
    employee_number: str | None = None
    name: str | None = None
    email: str | None = None
    expertise: str | None = None
    org_unit_key: str | None = None
    org_unit: OrgUnitRecord | None = None

    @classmethod
    def from_payload(cls, payload: dict) -> "StaffRecord":
        return cls(
            key=_as_key(_first(payload, "key", "id", "staff_id")),
            employee_number=_as_key(_first(payload, "employee_number", "nip")),
            name=_first(payload, "name", "nama"),
            email=_first(payload, "email"),
            expertise=_first(payload, "expertise", "bidang_keahlian"),
            org_unit_key=_as_key(_first(payload, "org_unit_key", "faculty_code", "id_fakultas")),
        )

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "employee_number": self.employee_number,
            "name": self.name,
            "email": self.email,
            "expertise": self.expertise,
            "org_unit_key": self.org_unit_key,
            "org_unit": self.org_unit.to_dict() if self.org_unit else None,
        }


# ── Per-key resolution outcome ──────────────────────────────────────────────


@dataclass(frozen=True)
class Resolved:
    record: Any


@dataclass(frozen=True)
class Missing:
    key: str


@dataclass(frozen=True)
class DependencyError:
    key: str
    reason: str


Resolution = Resolved | Missing | DependencyError


@dataclass
class DirectoryResult:
    """Outcome of one batched lookup.

    Attributes:
        provider:     Directory name ("student", "staff", "org_unit").
        requested:    Keys asked for.
        records:      key → record for every key the directory returned.
        error:        Human-readable failure, or None when the call succeeded.
        duration_ms:  Round-trip latency, retries included.
    """

    provider: str
    requested: frozenset[str]
    records: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def missing(self) -> set[str]:
        if not self.ok:
            return set()
        return set(self.requested) - set(self.records)

    def resolution(self, key: str) -> Resolution:
        if not self.ok:
            return DependencyError(key, self.error)
        record = self.records.get(key)
        return Resolved(record) if record is not None else Missing(key)


class CircuitOpenError(Exception):
    """Raised internally when the breaker is open for this directory."""


# ── Client ──────────────────────────────────────────────────────────────────


class DirectoryClient:
    """Batched, bounded-latency reader for one external identity directory.

    Usage:
        students = DirectoryClient("student", url, StudentRecord, timeout=5)
        result = students.lookup({"2021001", "2021002"})
        if result.ok:
            record = result.records.get("2021001")
    """

    def __init__(
        self,
        provider: str,
        base_url: str,
        record_cls,
        *,
        api_key: str | None = None,
        timeout: float = _DEFAULT_TIMEOUT,
        retry_max: int = _DEFAULT_RETRY_MAX,
        backoff: tuple[float, ...] = _RETRY_BACKOFF_SECONDS,
        session: requests.Session | None = None,
    ) -> None:
        self.provider = provider
        self.base_url = (base_url or "").rstrip("/")
        self.record_cls = record_cls
        self.timeout = timeout
        self.retry_max = retry_max
        self.backoff = backoff
        self._api_key = api_key
        self._session = session
        self._failures: list[datetime] = []
        self._open_until: datetime | None = None

    # ── HTTP session ─────────────────────────────────────────────────────────

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    # ── Circuit breaker ──────────────────────────────────────────────────────

    def _check_circuit(self) -> None:
        now = datetime.now(timezone.utc)
        if self._open_until and now < self._open_until:
            raise CircuitOpenError(f"{self.provider} circuit open until {self._open_until.isoformat()}")
        if self._open_until and now >= self._open_until:
            self._open_until = None
            self._failures.clear()

    def _record_failure(self) -> None:
        now = datetime.now(timezone.utc)
        window_start = now - timedelta(seconds=_CB_WINDOW_SECONDS)
        self._failures = [t for t in self._failures if t >= window_start]
        self._failures.append(now)
        if len(self._failures) >= _CB_FAILURE_THRESHOLD:
            self._open_until = now + timedelta(seconds=_CB_OPEN_DURATION_SECONDS)
            logger.warning(
                "Directory circuit opened provider=%s failures=%d",
                self.provider, len(self._failures),
            )

    def _record_success(self) -> None:
        self._failures.clear()

    # ── Lookup ───────────────────────────────────────────────────────────────

    def lookup(self, keys) -> DirectoryResult:
        """Fetch every key in one round trip. Missing keys are simply absent."""
        requested = frozenset(str(k) for k in keys if k not in (None, ""))
        result = DirectoryResult(provider=self.provider, requested=requested)
        if not requested:
            return result
        if not self.base_url:
            result.error = f"{self.provider} directory URL is not configured"
            return result

        start = time.monotonic()
        try:
            self._check_circuit()
            payload = self._get_with_retry(sorted(requested))
            records = self._parse(payload, requested)
        except CircuitOpenError as exc:
            result.error = str(exc)
        except (requests.RequestException, ValueError) as exc:
            self._record_failure()
            result.error = f"{type(exc).__name__}: {exc}"
        else:
            self._record_success()
            result.records = records
        result.duration_ms = int((time.monotonic() - start) * 1000)

        if result.ok:
            logger.debug(
                "Directory lookup provider=%s requested=%d found=%d duration_ms=%d",
                self.provider, len(requested), len(result.records), result.duration_ms,
            )
        else:
            logger.warning(
                "Directory lookup failed provider=%s requested=%d error=%s",
                self.provider, len(requested), result.error,
            )
        return result

    def _get_with_retry(self, keys: list[str]) -> Any:
        last_exc: Exception | None = None
        for attempt in range(self.retry_max + 1):
            if attempt and self.backoff:
                time.sleep(self.backoff[min(attempt - 1, len(self.backoff) - 1)])
            try:
                resp = self.session.get(
                    self.base_url,
                    params={"ids": ",".join(keys)},
                    headers=self._headers(),
                    timeout=self.timeout,
                )
            except (requests.ConnectionError, requests.Timeout) as exc:
                last_exc = exc
                continue
            if resp.status_code >= 500:
                last_exc = requests.HTTPError(f"HTTP {resp.status_code}", response=resp)
                continue
            resp.raise_for_status()
            return resp.json()
        raise last_exc

    def _parse(self, payload: Any, requested: frozenset[str]) -> dict[str, Any]:
        items = payload.get("data") if isinstance(payload, dict) else payload
        if items is None:
            items = []
        if not isinstance(items, list):
            raise ValueError(f"unexpected payload shape: {type(items).__name__}")
        records: dict[str, Any] = {}
        for item in items:
            if not isinstance(item, dict):
                continue
            record = self.record_cls.from_payload(item)
            # Directories occasionally return neighbours of the requested keys.
            if record.key in requested:
                records[record.key] = record
        return records
