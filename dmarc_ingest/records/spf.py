import ipaddress
import re
from dataclasses import dataclass, field
from typing import List, Optional

from dmarc_ingest.errors import RecordFormatError
from dmarc_ingest.records.policy import PolicyEvaluation, Strength

QUALIFIERS = ("+", "-", "~", "?")
MECHANISMS = (
    "all",
    "include",
    "a",
    "mx",
    "ptr",
    "ip4",
    "ip6",
    "exists",
    "ip",
    "redirect",
    "exp",
)
MODIFIERS = ("redirect", "exp")

SPF_REGEX = re.compile(r"^v=spf1(?:\s+(.+))?$", re.IGNORECASE)
TERM_REGEX = re.compile(r"^([+\-~?])?([a-z]+\d?)(?:([:/=])(.*))?$", re.IGNORECASE)
LABEL_REGEX = re.compile(r"^[A-Za-z0-9_](?:[A-Za-z0-9_-]*[A-Za-z0-9])?$")


@dataclass(frozen=True)
class SpfTerm:
    mechanism: str
    qualifier: str = "+"
    value: Optional[str] = None


@dataclass(frozen=True)
class SpfRecord:
    terms: List[SpfTerm] = field(default_factory=list)
    version: str = "spf1"


def validate_spf_record(record: str) -> SpfRecord:
    match = SPF_REGEX.match(record.strip())
    if not match:
        raise RecordFormatError("Invalid SPF record format: Must start with v=spf1")
    if not match.group(1):
        raise RecordFormatError("Invalid SPF term: ")

    terms = [_parse_term(term) for term in match.group(1).split()]
    _validate_terms(terms)
    return SpfRecord(terms=terms)


def _parse_term(term: str) -> SpfTerm:
    match = TERM_REGEX.match(term)
    if not match:
        raise RecordFormatError(f"Invalid SPF term: {term}")

    qualifier, mechanism, separator, value = match.groups()
    mechanism = mechanism.lower()
    if mechanism not in MECHANISMS:
        raise RecordFormatError(f"Invalid SPF mechanism: {mechanism}")
    if separator == "=" and mechanism not in MODIFIERS:
        raise RecordFormatError(f"Invalid SPF term: {term}")
    if separator == "/":
        # "a/24" and friends carry a prefix length instead of a domain
        value = "/" + value

    if mechanism in ("include", "exists", "ip4", "ip6") and not (
        value and value.strip()
    ):
        raise RecordFormatError(f"Invalid domain for {mechanism}: {value or ''}")

    return SpfTerm(
        mechanism=mechanism,
        qualifier=qualifier or "+",
        value=value.strip() if value is not None else None,
    )


def _validate_terms(terms: List[SpfTerm]):
    all_terms = [term for term in terms if term.mechanism == "all"]
    if len(all_terms) > 1:
        raise RecordFormatError("Multiple 'all' mechanisms are not allowed")
    if all_terms and terms[-1] is not all_terms[0]:
        raise RecordFormatError("The 'all' mechanism must be the last term")

    for term in terms:
        _validate_mechanism_value(term)


def _validate_mechanism_value(term: SpfTerm):
    if term.mechanism == "ip4":
        if not is_valid_ipv4(term.value or ""):
            raise RecordFormatError(f"Invalid IPv4 address: {term.value}")
    elif term.mechanism == "ip6":
        if not is_valid_ipv6(term.value or ""):
            raise RecordFormatError(f"Invalid IPv6 address: {term.value}")
    elif term.mechanism in ("include", "exists"):
        if not is_valid_domain(term.value or ""):
            raise RecordFormatError(
                f"Invalid domain for {term.mechanism}: {term.value}"
            )
    elif term.mechanism in ("a", "mx") and term.value is not None:
        domain, _, prefix = term.value.partition("/")
        if term.value.startswith("/"):
            valid = _is_valid_prefix(prefix, 32)
        else:
            valid = is_valid_domain(domain) and (
                "/" not in term.value or _is_valid_prefix(prefix, 32)
            )
        if not valid:
            raise RecordFormatError(
                f"Invalid domain for {term.mechanism}: {term.value}"
            )


def is_valid_ipv4(value: str) -> bool:
    address, slash, prefix = value.partition("/")
    if slash and not _is_valid_prefix(prefix, 32):
        return False
    octets = address.split(".")
    return len(octets) == 4 and all(
        octet.isdigit() and 0 <= int(octet) <= 255 for octet in octets
    )


def is_valid_ipv6(value: str) -> bool:
    address, slash, prefix = value.partition("/")
    if slash and not _is_valid_prefix(prefix, 128):
        return False
    try:
        ipaddress.IPv6Address(address)
    except ValueError:
        return False
    return True


def is_valid_domain(domain: str) -> bool:
    return bool(domain) and all(
        LABEL_REGEX.match(label) for label in domain.rstrip(".").split(".")
    )


def _is_valid_prefix(prefix: str, maximum: int) -> bool:
    return prefix.isdigit() and 0 <= int(prefix) <= maximum


def evaluate_spf_policy(record: SpfRecord) -> PolicyEvaluation:
    evaluation = PolicyEvaluation()

    all_term = next((term for term in record.terms if term.mechanism == "all"), None)
    if all_term is None:
        evaluation.downgrade(
            Strength.WEAK, "Add an 'all' mechanism as the last term"
        )
    elif all_term.qualifier in ("+", "?"):
        evaluation.downgrade(
            Strength.WEAK,
            f"Change '{all_term.qualifier}all' to '-all' to reject unauthorized senders",
        )
    elif all_term.qualifier == "~":
        evaluation.downgrade(
            Strength.MODERATE,
            "Consider changing '~all' to '-all' for stronger protection",
        )

    if any(term.mechanism == "ptr" for term in record.terms):
        evaluation.downgrade(
            Strength.WEAK, "Remove 'ptr' mechanism as it is unreliable and slow"
        )

    if not any(term.mechanism in ("ip4", "ip6") for term in record.terms):
        evaluation.recommend(
            "Consider adding IP-based mechanisms for critical infrastructure"
        )

    return evaluation
