import math
import re
from dataclasses import dataclass
from typing import List, Optional, Union
from urllib.parse import urlsplit

from dmarc_ingest.errors import RecordFormatError
from dmarc_ingest.records.policy import PolicyEvaluation, Strength
from dmarc_ingest.records.tags import build_tag_map, split_values, tokenize

POLICIES = ("none", "quarantine", "reject")
ALIGNMENTS = ("r", "s")
URI_SCHEMES = ("mailto", "http", "https")

DMARC_REGEX = re.compile(r"^v=DMARC1;(.+)$", re.IGNORECASE | re.DOTALL)


@dataclass(frozen=True)
class DmarcRecord:
    p: str
    v: str = "DMARC1"
    sp: Optional[str] = None
    rua: Optional[List[str]] = None
    ruf: Optional[List[str]] = None
    adkim: Optional[str] = None
    aspf: Optional[str] = None
    pct: Optional[Union[int, float]] = None
    fo: Optional[List[str]] = None


def validate_dmarc_record(record: str) -> DmarcRecord:
    match = DMARC_REGEX.match(record.strip())
    if not match:
        raise RecordFormatError(
            "Invalid DMARC record format: Must start with v=DMARC1"
        )

    tags = build_tag_map(
        (tag.lower(), value)
        for tag, value in tokenize(match.group(1), quoted_values=True)
    )

    policy = tags.get("p")
    if not policy:
        raise RecordFormatError("Missing required policy (p) tag")
    if policy not in POLICIES:
        raise RecordFormatError(f"Invalid policy value: {policy}")
    if "sp" in tags and tags["sp"] not in POLICIES:
        raise RecordFormatError(f"Invalid subdomain policy value: {tags['sp']}")

    if "adkim" in tags and tags["adkim"] not in ALIGNMENTS:
        raise RecordFormatError(f"Invalid DKIM alignment value: {tags['adkim']}")
    if "aspf" in tags and tags["aspf"] not in ALIGNMENTS:
        raise RecordFormatError(f"Invalid SPF alignment value: {tags['aspf']}")

    pct = _parse_percentage(tags["pct"]) if "pct" in tags else None
    rua = _parse_uris(tags["rua"], "rua") if "rua" in tags else None
    ruf = _parse_uris(tags["ruf"], "ruf") if "ruf" in tags else None

    return DmarcRecord(
        p=policy,
        sp=tags.get("sp"),
        rua=rua,
        ruf=ruf,
        adkim=tags.get("adkim"),
        aspf=tags.get("aspf"),
        pct=pct,
        fo=split_values(tags["fo"], ":") if "fo" in tags else None,
    )


def _parse_percentage(value: str) -> Union[int, float]:
    try:
        pct = float(value)
    except ValueError:
        raise RecordFormatError(f"Invalid percentage value: {value}") from None
    if math.isnan(pct) or not 0 <= pct <= 100:
        raise RecordFormatError(f"Invalid percentage value: {value}")
    return int(pct) if pct.is_integer() else pct


def _parse_uris(value: str, tag: str) -> List[str]:
    uris = split_values(value, ",")
    for uri in uris:
        try:
            parts = urlsplit(uri)
        except ValueError:
            raise RecordFormatError(f"Invalid {tag} URI format: {uri}") from None
        if not parts.scheme:
            raise RecordFormatError(f"Invalid {tag} URI format: {uri}")
        if parts.scheme.lower() not in URI_SCHEMES:
            raise RecordFormatError(f"Invalid protocol in {tag} URI: {uri}")
        if parts.scheme.lower() == "mailto":
            if "@" not in parts.path:
                raise RecordFormatError(f"Invalid {tag} URI format: {uri}")
        elif not parts.netloc:
            raise RecordFormatError(f"Invalid {tag} URI format: {uri}")
    return uris


def evaluate_dmarc_policy(record: DmarcRecord) -> PolicyEvaluation:
    evaluation = PolicyEvaluation()

    if record.p == "none":
        evaluation.downgrade(
            Strength.WEAK, "Consider implementing a quarantine or reject policy"
        )
    elif record.p == "quarantine":
        evaluation.strength = Strength.MODERATE

    if record.pct is not None and record.pct < 100:
        evaluation.downgrade(
            Strength.WEAK, "Increase policy application percentage to 100%"
        )

    if record.adkim in (None, "r"):
        evaluation.recommend("Consider strict DKIM alignment for enhanced security")
    if record.aspf in (None, "r"):
        evaluation.recommend("Consider strict SPF alignment for enhanced security")

    if not record.rua:
        evaluation.recommend("Add aggregate report URIs for monitoring")
    if not record.ruf:
        evaluation.recommend("Add failure report URIs for detailed error tracking")

    if record.sp is None and record.p != "reject":
        evaluation.recommend("Specify subdomain policy for comprehensive protection")

    return evaluation
