from datetime import datetime, timezone
from typing import Optional
from xml.etree import ElementTree

from xsdata.exceptions import ParserError
from xsdata.formats.dataclass.context import XmlContext
from xsdata.formats.dataclass.parsers.config import ParserConfig
from xsdata.formats.dataclass.parsers.xml import XmlParser

from dmarc_ingest.dmarc_report import (
    AuthResults,
    DateRange,
    DkimAuthResult,
    DmarcReport,
    Identifiers,
    PolicyEvaluated,
    PolicyOverride,
    PolicyPublished,
    ReportMetadata,
    ReportRecord,
    Row,
    SpfAuthResult,
)
from dmarc_ingest.errors import ReportFormatError
from dmarc_ingest.model.dmarc_aggregate_report import (
    DateRangeType,
    Feedback,
    IdentifierType,
    PolicyEvaluatedType,
    RecordType,
)

_parser = XmlParser(
    context=XmlContext(), config=ParserConfig(fail_on_unknown_properties=False)
)


def _strip_namespaces(xml_content: str) -> str:
    # RFC 7489 and DMARCbis reports declare a default namespace, older ones none
    root = ElementTree.fromstring(xml_content)
    for element in root.iter():
        if isinstance(element.tag, str) and "}" in element.tag:
            element.tag = element.tag.rpartition("}")[2]
    return ElementTree.tostring(root, encoding="unicode")


def parse_dmarc_report(xml_content: str) -> DmarcReport:
    """Decode an aggregate report without checking required elements."""
    try:
        feedback = _parser.from_string(
            _strip_namespaces(xml_content.strip()), Feedback
        )
    except (ParserError, SyntaxError, ValueError) as err:
        raise ReportFormatError(f"Invalid XML: {err}") from err
    if feedback.report_metadata is None:
        raise ReportFormatError("Missing required field: report_metadata")
    if feedback.policy_published is None:
        raise ReportFormatError("Missing required field: policy_published")

    metadata = feedback.report_metadata
    policy = feedback.policy_published
    return DmarcReport(
        version=feedback.version,
        report_metadata=ReportMetadata(
            org_name=metadata.org_name,
            email=metadata.email,
            report_id=metadata.report_id,
            date_range=_convert_date_range(metadata.date_range),
            extra_contact_info=metadata.extra_contact_info,
            errors=list(metadata.error) or None,
        ),
        policy_published=PolicyPublished(
            domain=policy.domain,
            adkim=policy.adkim,
            aspf=policy.aspf,
            p=policy.p,
            sp=policy.sp,
            pct=policy.pct,
            fo=policy.fo,
        ),
        records=[_convert_record(record) for record in feedback.record],
    )


def _convert_date_range(date_range: Optional[DateRangeType]) -> Optional[DateRange]:
    if date_range is None:
        return None
    try:
        return DateRange(
            begin=_from_timestamp(date_range.begin),
            end=_from_timestamp(date_range.end),
        )
    except (TypeError, ValueError, OverflowError, OSError) as err:
        raise ReportFormatError(
            f"Invalid date_range: {date_range.begin!r} - {date_range.end!r}"
        ) from err


def _from_timestamp(value: Optional[str]) -> datetime:
    if value is None:
        raise ValueError("missing timestamp")
    return datetime.fromtimestamp(int(value.strip()), tz=timezone.utc)


def _convert_record(record: RecordType) -> ReportRecord:
    row = record.row
    identifiers = record.identifiers or IdentifierType()
    auth_results = record.auth_results
    return ReportRecord(
        row=Row(
            source_ip=row.source_ip if row else None,
            count=row.count if row else None,
            policy_evaluated=_convert_policy_evaluated(
                row.policy_evaluated if row else None
            ),
        ),
        identifiers=Identifiers(
            envelope_to=identifiers.envelope_to,
            envelope_from=identifiers.envelope_from,
            header_from=identifiers.header_from,
        ),
        auth_results=AuthResults(
            dkim=[
                DkimAuthResult(
                    domain=dkim.domain,
                    selector=dkim.selector,
                    result=dkim.result,
                    human_result=dkim.human_result,
                )
                for dkim in (auth_results.dkim if auth_results else [])
            ],
            spf=[
                SpfAuthResult(domain=spf.domain, scope=spf.scope, result=spf.result)
                for spf in (auth_results.spf if auth_results else [])
            ],
        ),
    )


def _convert_policy_evaluated(
    policy_evaluated: Optional[PolicyEvaluatedType],
) -> PolicyEvaluated:
    if policy_evaluated is None:
        return PolicyEvaluated(disposition=None)
    reasons = [
        PolicyOverride(type=reason.type, comment=reason.comment)
        for reason in policy_evaluated.reason
    ]
    return PolicyEvaluated(
        disposition=policy_evaluated.disposition,
        dkim=policy_evaluated.dkim,
        spf=policy_evaluated.spf,
        reasons=reasons or None,
    )


def validate_dmarc_report(report: DmarcReport):
    metadata = report.report_metadata
    for name in ("org_name", "email", "report_id", "date_range"):
        if not getattr(metadata, name):
            raise ReportFormatError(f"Missing required field: {name}")
    if metadata.date_range.begin > metadata.date_range.end:
        raise ReportFormatError("Invalid date_range: begin is after end")
    if not report.policy_published.domain:
        raise ReportFormatError("Missing required field: policy domain")
    pct = report.policy_published.pct
    if pct is not None and (
        not isinstance(pct, int) or isinstance(pct, bool) or not 0 <= pct <= 100
    ):
        raise ReportFormatError(f"Invalid pct value: {pct}")

    for index, record in enumerate(report.records):
        _validate_record(index, record)


def _validate_record(index: int, record: ReportRecord):
    count = record.row.count
    if not record.row.source_ip:
        raise ReportFormatError(f"Missing source_ip in record {index}")
    if not isinstance(count, int) or isinstance(count, bool) or count < 0:
        raise ReportFormatError(f"Invalid count in record {index}")
    if not record.row.policy_evaluated.disposition:
        raise ReportFormatError(f"Missing disposition in record {index}")
    if not record.identifiers.header_from:
        raise ReportFormatError(f"Missing header_from in record {index}")
    # envelope_from is omitted by some reporters and therefore not required
    if not record.auth_results.spf:
        raise ReportFormatError(f"Missing SPF results in record {index}")


def parse_and_validate_dmarc_report(xml_content: str) -> DmarcReport:
    try:
        report = parse_dmarc_report(xml_content)
        validate_dmarc_report(report)
    except ReportFormatError as err:
        raise ReportFormatError(f"Failed to parse DMARC report: {err}") from err
    return report
