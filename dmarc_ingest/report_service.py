from datetime import datetime
from enum import Enum
from typing import Optional, Union

import structlog

from dmarc_ingest.dmarc_report import DmarcReport, ReportRecord
from dmarc_ingest.errors import ReportAlreadyExistsError
from dmarc_ingest.repositories import (
    CreateDmarcReportData,
    DmarcReportRepository,
    StoredReportRecord,
)

logger = structlog.get_logger()


def _value(value: Union[Enum, str, None]) -> Optional[str]:
    return value.value if isinstance(value, Enum) else value


def _convert_record(record: ReportRecord) -> StoredReportRecord:
    dkim = record.auth_results.dkim[0] if record.auth_results.dkim else None
    spf = record.auth_results.spf[0] if record.auth_results.spf else None
    policy_evaluated = record.row.policy_evaluated
    return StoredReportRecord(
        source_ip=record.row.source_ip,
        count=record.row.count,
        disposition=_value(policy_evaluated.disposition),
        dkim=_value(policy_evaluated.dkim),
        spf=_value(policy_evaluated.spf),
        header_from=record.identifiers.header_from,
        dkim_domain=dkim.domain if dkim else None,
        dkim_result=_value(dkim.result) if dkim else None,
        dkim_selector=dkim.selector if dkim else None,
        spf_domain=spf.domain if spf else None,
        spf_result=_value(spf.result) if spf else None,
    )


def to_create_data(report: DmarcReport, mail_date: datetime) -> CreateDmarcReportData:
    metadata = report.report_metadata
    policy = report.policy_published
    return CreateDmarcReportData(
        mail_date=mail_date,
        report_id=metadata.report_id,
        org_name=metadata.org_name,
        org_email=metadata.email,
        begin_date=metadata.date_range.begin,
        end_date=metadata.date_range.end,
        domain=policy.domain,
        policy=_value(policy.p),
        subdomain_policy=_value(policy.sp),
        adkim=_value(policy.adkim),
        aspf=_value(policy.aspf),
        percentage=policy.pct,
        failure_reporting=policy.fo,
        records=[_convert_record(record) for record in report.records],
    )


class DmarcReportService:
    def __init__(self, repository: DmarcReportRepository):
        self.repository = repository

    async def process_report(self, report: DmarcReport, mail_date: datetime) -> bool:
        """Store a validated report unless it is already stored.

        Returns ``False`` if a report with the same report ID and organisation
        name exists, whether found up front or signalled by the repository.
        """
        report_id, org_name = report.key
        log = logger.bind(report_id=report_id, org_name=org_name)

        if await self.repository.find_by_report_id_and_org(report_id, org_name):
            await log.ainfo("Report already exists, skipping.")
            return False

        try:
            await self.repository.create(to_create_data(report, mail_date))
        except ReportAlreadyExistsError:
            await log.ainfo("Report stored concurrently, skipping.")
            return False

        await log.ainfo("Stored DMARC report.", records=len(report.records))
        return True
