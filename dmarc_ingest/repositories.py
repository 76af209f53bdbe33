import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from dmarc_ingest.errors import ReportAlreadyExistsError


@dataclass(frozen=True)
class StoredReportRecord:
    source_ip: str
    count: int
    disposition: str
    dkim: Optional[str]
    spf: Optional[str]
    header_from: str
    dkim_domain: Optional[str] = None
    dkim_result: Optional[str] = None
    dkim_selector: Optional[str] = None
    spf_domain: Optional[str] = None
    spf_result: Optional[str] = None


@dataclass(frozen=True)
class CreateDmarcReportData:
    mail_date: datetime
    report_id: str
    org_name: str
    org_email: str
    begin_date: datetime
    end_date: datetime
    domain: str
    policy: Optional[str] = None
    subdomain_policy: Optional[str] = None
    adkim: Optional[str] = None
    aspf: Optional[str] = None
    percentage: Optional[int] = None
    failure_reporting: Optional[str] = None
    records: List[StoredReportRecord] = field(default_factory=list)


@dataclass(frozen=True)
class StoredDmarcReport:
    id: str
    processed_date: datetime
    mail_date: datetime
    report_id: str
    org_name: str
    org_email: str
    begin_date: datetime
    end_date: datetime
    domain: str
    policy: Optional[str] = None
    subdomain_policy: Optional[str] = None
    adkim: Optional[str] = None
    aspf: Optional[str] = None
    percentage: Optional[int] = None
    failure_reporting: Optional[str] = None
    records: List[StoredReportRecord] = field(default_factory=list)

    @property
    def key(self) -> Tuple[str, str]:
        return (self.report_id, self.org_name)


class DmarcReportRepository(ABC):
    @abstractmethod
    async def create(self, data: CreateDmarcReportData) -> StoredDmarcReport:
        """Store a report together with its records.

        Raises :class:`ReportAlreadyExistsError` if a report with the same
        report ID and organisation name is already stored.
        """

    @abstractmethod
    async def find_by_report_id_and_org(
        self, report_id: str, org_name: str
    ) -> Optional[StoredDmarcReport]:
        pass

    @abstractmethod
    async def find_by_date_range(
        self, start: datetime, end: datetime
    ) -> List[StoredDmarcReport]:
        pass


class InMemoryDmarcReportRepository(DmarcReportRepository):
    def __init__(
        self,
        reports: Iterable[StoredDmarcReport] = (),
        time_fn: Callable[[], float] = time.time,
    ):
        self._time = time_fn
        self._reports: Dict[Tuple[str, str], StoredDmarcReport] = {
            report.key: report for report in reports
        }

    def __len__(self) -> int:
        return len(self._reports)

    def snapshot(self) -> List[StoredDmarcReport]:
        return list(self._reports.values())

    async def create(self, data: CreateDmarcReportData) -> StoredDmarcReport:
        key = (data.report_id, data.org_name)
        if key in self._reports:
            raise ReportAlreadyExistsError(data.report_id, data.org_name)
        report = StoredDmarcReport(
            id=uuid.uuid4().hex,
            processed_date=datetime.fromtimestamp(self._time(), tz=timezone.utc),
            mail_date=data.mail_date,
            report_id=data.report_id,
            org_name=data.org_name,
            org_email=data.org_email,
            begin_date=data.begin_date,
            end_date=data.end_date,
            domain=data.domain,
            policy=data.policy,
            subdomain_policy=data.subdomain_policy,
            adkim=data.adkim,
            aspf=data.aspf,
            percentage=data.percentage,
            failure_reporting=data.failure_reporting,
            records=list(data.records),
        )
        self._reports[key] = report
        return report

    async def find_by_report_id_and_org(
        self, report_id: str, org_name: str
    ) -> Optional[StoredDmarcReport]:
        return self._reports.get((report_id, org_name))

    async def find_by_date_range(
        self, start: datetime, end: datetime
    ) -> List[StoredDmarcReport]:
        return [
            report
            for report in self._reports.values()
            if report.begin_date >= start and report.end_date <= end
        ]
