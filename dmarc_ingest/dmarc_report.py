"""Domain model of a decoded aggregate report.

Values outside the schema enumerations, such as an SPF result of
``hardfail``, are kept as text.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Union

from dmarc_ingest.model.dmarc_aggregate_report import (
    AlignmentType,
    DispositionType,
    DkimresultType,
    DmarcresultType,
    PolicyOverrideType,
    SpfdomainScope,
    SpfresultType,
)


@dataclass(frozen=True)
class DateRange:
    begin: datetime
    end: datetime


@dataclass(frozen=True)
class ReportMetadata:
    org_name: Optional[str]
    email: Optional[str]
    report_id: Optional[str]
    date_range: Optional[DateRange]
    extra_contact_info: Optional[str] = None
    errors: Optional[List[str]] = None


@dataclass(frozen=True)
class PolicyPublished:
    domain: Optional[str]
    p: Union[DispositionType, str, None] = None
    sp: Union[DispositionType, str, None] = None
    adkim: Union[AlignmentType, str, None] = None
    aspf: Union[AlignmentType, str, None] = None
    pct: Union[int, str, None] = None
    fo: Optional[str] = None


@dataclass(frozen=True)
class PolicyOverride:
    type: Union[PolicyOverrideType, str, None]
    comment: Optional[str] = None


@dataclass(frozen=True)
class PolicyEvaluated:
    disposition: Union[DispositionType, str, None]
    dkim: Union[DmarcresultType, str, None] = None
    spf: Union[DmarcresultType, str, None] = None
    reasons: Optional[List[PolicyOverride]] = None


@dataclass(frozen=True)
class Row:
    source_ip: Optional[str]
    count: Union[int, str, None]
    policy_evaluated: PolicyEvaluated


@dataclass(frozen=True)
class Identifiers:
    header_from: Optional[str]
    envelope_to: Optional[str] = None
    envelope_from: Optional[str] = None


@dataclass(frozen=True)
class DkimAuthResult:
    domain: Optional[str]
    result: Union[DkimresultType, str, None]
    selector: Optional[str] = None
    human_result: Optional[str] = None


@dataclass(frozen=True)
class SpfAuthResult:
    domain: Optional[str]
    result: Union[SpfresultType, str, None]
    scope: Union[SpfdomainScope, str, None] = None


@dataclass(frozen=True)
class AuthResults:
    spf: List[SpfAuthResult] = field(default_factory=list)
    dkim: List[DkimAuthResult] = field(default_factory=list)


@dataclass(frozen=True)
class ReportRecord:
    row: Row
    identifiers: Identifiers
    auth_results: AuthResults


@dataclass(frozen=True)
class DmarcReport:
    report_metadata: ReportMetadata
    policy_published: PolicyPublished
    records: List[ReportRecord] = field(default_factory=list)
    version: Optional[Decimal] = None

    @property
    def key(self):
        return (self.report_metadata.report_id, self.report_metadata.org_name)
