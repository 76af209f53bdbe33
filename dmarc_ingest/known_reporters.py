import dataclasses
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

import structlog

from dmarc_ingest.errors import UnknownReporterError

logger = structlog.get_logger()


class TrustLevel(Enum):
    UNTRUSTED = "untrusted"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ReporterStatus(Enum):
    PENDING_REVIEW = "pending_review"
    ACTIVE = "active"
    BLOCKED = "blocked"


@dataclass(frozen=True)
class KnownReporter:
    org_email: str
    org_name: str
    first_seen: datetime
    last_seen: datetime
    submitter: Optional[str] = None
    trust_level: TrustLevel = TrustLevel.UNTRUSTED
    status: ReporterStatus = ReporterStatus.PENDING_REVIEW
    notes: Optional[str] = None

    @property
    def is_trusted(self) -> bool:
        return (
            self.status == ReporterStatus.ACTIVE
            and self.trust_level != TrustLevel.UNTRUSTED
        )


@dataclass(frozen=True)
class CreateKnownReporterData:
    org_email: str
    org_name: str
    submitter: Optional[str] = None
    trust_level: TrustLevel = TrustLevel.UNTRUSTED
    status: ReporterStatus = ReporterStatus.PENDING_REVIEW
    notes: Optional[str] = None


@dataclass(frozen=True)
class UpdateKnownReporterData:
    """Fields left at ``None`` are not changed."""

    org_name: Optional[str] = None
    trust_level: Optional[TrustLevel] = None
    status: Optional[ReporterStatus] = None
    notes: Optional[str] = None

    def changes(self) -> Dict[str, object]:
        return {
            name: value
            for name, value in dataclasses.asdict(self).items()
            if value is not None
        }


class KnownReporterRepository(ABC):
    @abstractmethod
    async def create(self, data: CreateKnownReporterData) -> KnownReporter:
        pass

    @abstractmethod
    async def find_by_org_email(self, org_email: str) -> Optional[KnownReporter]:
        pass

    @abstractmethod
    async def update(
        self, org_email: str, data: UpdateKnownReporterData
    ) -> KnownReporter:
        """Raises :class:`UnknownReporterError` for an unknown reporter."""

    @abstractmethod
    async def update_last_seen(self, org_email: str) -> KnownReporter:
        """Raises :class:`UnknownReporterError` for an unknown reporter."""

    @abstractmethod
    async def list(self) -> List[KnownReporter]:
        """All reporters, most recently seen first."""


class InMemoryKnownReporterRepository(KnownReporterRepository):
    def __init__(
        self,
        reporters: Iterable[KnownReporter] = (),
        time_fn: Callable[[], float] = time.time,
    ):
        self._time = time_fn
        self._reporters: Dict[str, KnownReporter] = {
            reporter.org_email: reporter for reporter in reporters
        }

    def __len__(self) -> int:
        return len(self._reporters)

    def snapshot(self) -> List[KnownReporter]:
        return list(self._reporters.values())

    def merge_admin_changes(self, reporters: Iterable[KnownReporter]):
        """Adopt names, trust, status and notes from externally stored reporters.

        Only administrative commands change these fields, so stored values win.
        First contact and submitter stay as observed, last contact is the later
        of both.
        """
        for stored in reporters:
            current = self._reporters.get(stored.org_email)
            if current is None:
                self._reporters[stored.org_email] = stored
                continue
            self._reporters[stored.org_email] = dataclasses.replace(
                current,
                org_name=stored.org_name,
                trust_level=stored.trust_level,
                status=stored.status,
                notes=stored.notes,
                last_seen=max(current.last_seen, stored.last_seen),
            )

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._time(), tz=timezone.utc)

    def _get(self, org_email: str) -> KnownReporter:
        try:
            return self._reporters[org_email]
        except KeyError:
            raise UnknownReporterError(org_email) from None

    async def create(self, data: CreateKnownReporterData) -> KnownReporter:
        if data.org_email in self._reporters:
            raise ValueError(f"Reporter already exists: {data.org_email}")
        now = self._now()
        reporter = KnownReporter(
            org_email=data.org_email,
            org_name=data.org_name,
            submitter=data.submitter,
            trust_level=data.trust_level,
            status=data.status,
            notes=data.notes,
            first_seen=now,
            last_seen=now,
        )
        self._reporters[reporter.org_email] = reporter
        return reporter

    async def find_by_org_email(self, org_email: str) -> Optional[KnownReporter]:
        return self._reporters.get(org_email)

    async def update(
        self, org_email: str, data: UpdateKnownReporterData
    ) -> KnownReporter:
        reporter = dataclasses.replace(self._get(org_email), **data.changes())
        self._reporters[org_email] = reporter
        return reporter

    async def update_last_seen(self, org_email: str) -> KnownReporter:
        reporter = dataclasses.replace(self._get(org_email), last_seen=self._now())
        self._reporters[org_email] = reporter
        return reporter

    async def list(self) -> List[KnownReporter]:
        return sorted(
            self._reporters.values(),
            key=lambda reporter: reporter.last_seen,
            reverse=True,
        )


class KnownReporterService:
    """Trust and status lifecycle of the organisations sending reports.

    Reporters are identified by the email address from the report metadata.
    The submitter is recorded on first contact and never changed afterwards.
    """

    def __init__(self, repository: KnownReporterRepository):
        self.repository = repository

    async def get_or_create(
        self, org_email: str, org_name: str, submitter: Optional[str] = None
    ) -> KnownReporter:
        log = logger.bind(org_email=org_email, org_name=org_name)
        if await self.repository.find_by_org_email(org_email):
            return await self.repository.update_last_seen(org_email)

        await log.ainfo("Creating new reporter record.", submitter=submitter)
        return await self.repository.create(
            CreateKnownReporterData(
                org_email=org_email, org_name=org_name, submitter=submitter
            )
        )

    async def validate(self, org_email: str) -> bool:
        if not await self.repository.find_by_org_email(org_email):
            return False
        reporter = await self.repository.update_last_seen(org_email)
        return reporter.is_trusted

    async def update(
        self, org_email: str, data: UpdateKnownReporterData
    ) -> KnownReporter:
        reporter = await self.repository.update(org_email, data)
        await logger.ainfo(
            "Updated reporter.", org_email=org_email, changes=data.changes()
        )
        return reporter

    async def list(self) -> List[KnownReporter]:
        return await self.repository.list()
