from dmarc_ingest.model.dmarc_aggregate_report import (
    AlignmentType,
    AuthResultType,
    DateRangeType,
    DispositionType,
    DkimauthResultType,
    DkimresultType,
    DmarcresultType,
    Feedback,
    IdentifierType,
    PolicyEvaluatedType,
    PolicyOverrideReason,
    PolicyOverrideType,
    PolicyPublishedType,
    RecordType,
    ReportMetadataType,
    RowType,
    SpfauthResultType,
    SpfdomainScope,
    SpfresultType,
)

__all__ = [
    "AlignmentType",
    "AuthResultType",
    "DateRangeType",
    "DispositionType",
    "DkimauthResultType",
    "DkimresultType",
    "DmarcresultType",
    "Feedback",
    "IdentifierType",
    "PolicyEvaluatedType",
    "PolicyOverrideReason",
    "PolicyOverrideType",
    "PolicyPublishedType",
    "RecordType",
    "ReportMetadataType",
    "RowType",
    "SpfauthResultType",
    "SpfdomainScope",
    "SpfresultType",
]
