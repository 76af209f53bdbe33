"""xsdata binding of the RFC 7489 aggregate feedback report schema.

Every element is optional at the binding level. Which elements a report
must carry is decided by :func:`dmarc_ingest.deserialization.validate_dmarc_report`
so that a missing element yields a precise error instead of a binding failure.
Repeatable elements (``record``, ``error``, ``dkim``, ``spf``, ``reason``)
are bound to lists and therefore always decode to sequences.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Union

__NAMESPACE__ = "http://dmarc.org/dmarc-xml/0.1"


def _element(**extra: Any) -> Dict[str, Any]:
    return {"type": "Element", "namespace": "", **extra}


def _optional(**extra: Any) -> Any:
    return field(default=None, metadata=_element(**extra))


def _sequence(**extra: Any) -> Any:
    return field(default_factory=list, metadata=_element(**extra))


class AlignmentType(Enum):
    R = "r"
    S = "s"


class DispositionType(Enum):
    NONE_VALUE = "none"
    QUARANTINE = "quarantine"
    REJECT = "reject"


class DmarcresultType(Enum):
    PASS_VALUE = "pass"
    FAIL = "fail"


class DkimresultType(Enum):
    NONE_VALUE = "none"
    PASS_VALUE = "pass"
    FAIL = "fail"
    POLICY = "policy"
    NEUTRAL = "neutral"
    TEMPERROR = "temperror"
    PERMERROR = "permerror"


class SpfresultType(Enum):
    NONE_VALUE = "none"
    NEUTRAL = "neutral"
    PASS_VALUE = "pass"
    FAIL = "fail"
    SOFTFAIL = "softfail"
    TEMPERROR = "temperror"
    PERMERROR = "permerror"


class SpfdomainScope(Enum):
    HELO = "helo"
    MFROM = "mfrom"


class PolicyOverrideType(Enum):
    FORWARDED = "forwarded"
    SAMPLED_OUT = "sampled_out"
    TRUSTED_FORWARDER = "trusted_forwarder"
    MAILING_LIST = "mailing_list"
    LOCAL_POLICY = "local_policy"
    OTHER = "other"


@dataclass
class DateRangeType:
    # kept as text so that a malformed timestamp reaches the validator
    begin: Optional[str] = _optional()
    end: Optional[str] = _optional()


@dataclass
class ReportMetadataType:
    org_name: Optional[str] = _optional()
    email: Optional[str] = _optional()
    extra_contact_info: Optional[str] = _optional()
    report_id: Optional[str] = _optional()
    date_range: Optional[DateRangeType] = _optional()
    error: List[str] = _sequence()


@dataclass
class PolicyPublishedType:
    domain: Optional[str] = _optional()
    adkim: Optional[AlignmentType] = _optional()
    aspf: Optional[AlignmentType] = _optional()
    p: Optional[DispositionType] = _optional()
    sp: Optional[DispositionType] = _optional()
    np: Optional[DispositionType] = _optional()
    pct: Optional[Union[int, str]] = _optional()
    fo: Optional[str] = _optional()


@dataclass
class PolicyOverrideReason:
    type: Optional[PolicyOverrideType] = _optional()
    comment: Optional[str] = _optional()


@dataclass
class PolicyEvaluatedType:
    disposition: Optional[DispositionType] = _optional()
    dkim: Optional[DmarcresultType] = _optional()
    spf: Optional[DmarcresultType] = _optional()
    reason: List[PolicyOverrideReason] = _sequence()


@dataclass
class RowType:
    source_ip: Optional[str] = _optional()
    count: Optional[Union[int, str]] = _optional()
    policy_evaluated: Optional[PolicyEvaluatedType] = _optional()


@dataclass
class IdentifierType:
    envelope_to: Optional[str] = _optional()
    envelope_from: Optional[str] = _optional()
    header_from: Optional[str] = _optional()


@dataclass
class DkimauthResultType:
    class Meta:
        name = "DKIMAuthResultType"

    domain: Optional[str] = _optional()
    selector: Optional[str] = _optional()
    result: Optional[DkimresultType] = _optional()
    human_result: Optional[str] = _optional()


@dataclass
class SpfauthResultType:
    class Meta:
        name = "SPFAuthResultType"

    domain: Optional[str] = _optional()
    scope: Optional[SpfdomainScope] = _optional()
    result: Optional[SpfresultType] = _optional()


@dataclass
class AuthResultType:
    dkim: List[DkimauthResultType] = _sequence()
    spf: List[SpfauthResultType] = _sequence()


@dataclass
class RecordType:
    row: Optional[RowType] = _optional()
    identifiers: Optional[IdentifierType] = _optional()
    auth_results: Optional[AuthResultType] = _optional()


@dataclass
class Feedback:
    class Meta:
        name = "feedback"
        namespace = "http://dmarc.org/dmarc-xml/0.1"

    version: Optional[Decimal] = _optional()
    report_metadata: Optional[ReportMetadataType] = _optional()
    policy_published: Optional[PolicyPublishedType] = _optional()
    record: List[RecordType] = _sequence()
