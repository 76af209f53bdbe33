import asyncio
import email
import email.policy
import functools
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from email.message import EmailMessage
from typing import Any, List, Optional, Tuple

import dkim
import dns.exception
import dns.resolver
import spf
import structlog
from publicsuffix2 import get_sld

from dmarc_ingest.errors import RecordFormatError
from dmarc_ingest.records.dmarc import DmarcRecord, validate_dmarc_record
from dmarc_ingest.records.tags import build_tag_map, tokenize

logger = structlog.get_logger()


@dataclass(frozen=True)
class SpfVerdict:
    result: str
    domain: Optional[str] = None
    explanation: Optional[str] = None


@dataclass(frozen=True)
class DkimVerdict:
    result: str
    domain: Optional[str] = None


@dataclass(frozen=True)
class DmarcVerdict:
    result: str
    policy: Optional[str] = None
    domain: Optional[str] = None


@dataclass(frozen=True)
class AuthenticationResult:
    spf: SpfVerdict
    dmarc: DmarcVerdict
    dkim: List[DkimVerdict] = field(default_factory=list)

    @property
    def is_dmarc_reject(self) -> bool:
        return self.dmarc.result == "fail" and self.dmarc.policy == "reject"


class Authenticator(ABC):
    @abstractmethod
    async def authenticate(
        self,
        raw_message: bytes,
        *,
        ip: Optional[str],
        helo: Optional[str],
        sender: Optional[str],
    ) -> AuthenticationResult:
        pass


def org_domain(domain: str) -> str:
    return get_sld(domain) or domain


def is_aligned(auth_domain: Optional[str], from_domain: str, mode: str) -> bool:
    if not auth_domain:
        return False
    auth_domain = auth_domain.lower()
    if mode == "s":
        return auth_domain == from_domain
    return org_domain(auth_domain) == org_domain(from_domain)


def _domain_of(address: Optional[str]) -> Optional[str]:
    if not address or "@" not in address:
        return None
    return address.rpartition("@")[2].strip("<> ").lower() or None


class MailAuthenticator(Authenticator):
    """Checks SPF, DKIM and DMARC of a received message.

    The checks do blocking DNS queries and run in the default executor.
    """

    def __init__(self, resolver: Optional[Any] = None):
        self.resolver = resolver or dns.resolver.Resolver()

    async def authenticate(
        self,
        raw_message: bytes,
        *,
        ip: Optional[str],
        helo: Optional[str],
        sender: Optional[str],
    ) -> AuthenticationResult:
        result = await asyncio.get_running_loop().run_in_executor(
            None,
            functools.partial(
                self.authenticate_sync, raw_message, ip=ip, helo=helo, sender=sender
            ),
        )
        await logger.adebug(
            "Authenticated message.",
            spf=result.spf.result,
            dkim=[verdict.result for verdict in result.dkim],
            dmarc=result.dmarc.result,
            dmarc_policy=result.dmarc.policy,
        )
        return result

    def authenticate_sync(
        self,
        raw_message: bytes,
        *,
        ip: Optional[str],
        helo: Optional[str],
        sender: Optional[str],
    ) -> AuthenticationResult:
        msg = email.message_from_bytes(raw_message, policy=email.policy.default)
        spf_verdict = self.check_spf(ip, helo, sender)
        dkim_verdicts = self.check_dkim(raw_message, msg)
        dmarc_verdict = self.check_dmarc(
            self._header_from_domain(msg), spf_verdict, dkim_verdicts
        )
        return AuthenticationResult(
            spf=spf_verdict, dkim=dkim_verdicts, dmarc=dmarc_verdict
        )

    @staticmethod
    def _header_from_domain(msg: EmailMessage) -> Optional[str]:
        try:
            header = msg["From"]
        except (IndexError, ValueError):
            return None
        if header is None or not getattr(header, "addresses", None):
            return None
        domain = header.addresses[0].domain
        return domain.lower() if domain else None

    @staticmethod
    def check_spf(
        ip: Optional[str], helo: Optional[str], sender: Optional[str]
    ) -> SpfVerdict:
        domain = _domain_of(sender) or (helo.lower() if helo else None)
        if not ip or not domain:
            return SpfVerdict(result="none", domain=domain)
        result, explanation = spf.check2(i=ip, s=sender or "", h=helo or domain)
        return SpfVerdict(result=result, domain=domain, explanation=explanation)

    @staticmethod
    def check_dkim(raw_message: bytes, msg: EmailMessage) -> List[DkimVerdict]:
        signature = msg.get("DKIM-Signature")
        if signature is None:
            return []
        try:
            domain = build_tag_map(tokenize(str(signature))).get("d")
        except RecordFormatError:
            return [DkimVerdict(result="permerror")]
        try:
            verified = dkim.verify(raw_message)
        except dkim.DKIMException:
            return [DkimVerdict(result="permerror", domain=domain)]
        return [DkimVerdict(result="pass" if verified else "fail", domain=domain)]

    def check_dmarc(
        self,
        from_domain: Optional[str],
        spf_verdict: SpfVerdict,
        dkim_verdicts: List[DkimVerdict],
    ) -> DmarcVerdict:
        if not from_domain:
            return DmarcVerdict(result="none")
        try:
            lookup = self.lookup_dmarc_record(from_domain)
        except dns.exception.DNSException:
            return DmarcVerdict(result="temperror", domain=from_domain)
        except RecordFormatError:
            return DmarcVerdict(result="permerror", domain=from_domain)
        if lookup is None:
            return DmarcVerdict(result="none", domain=from_domain)

        location, record = lookup
        policy = record.p
        if location != from_domain and record.sp:
            policy = record.sp

        spf_aligned = spf_verdict.result == "pass" and is_aligned(
            spf_verdict.domain, from_domain, record.aspf or "r"
        )
        dkim_aligned = any(
            verdict.result == "pass"
            and is_aligned(verdict.domain, from_domain, record.adkim or "r")
            for verdict in dkim_verdicts
        )
        return DmarcVerdict(
            result="pass" if spf_aligned or dkim_aligned else "fail",
            policy=policy,
            domain=from_domain,
        )

    def lookup_dmarc_record(self, domain: str) -> Optional[Tuple[str, DmarcRecord]]:
        for target in dict.fromkeys((domain, org_domain(domain))):
            try:
                answers = self.resolver.resolve(f"_dmarc.{target}", "TXT")
            except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
                continue
            records = [
                "".join(
                    part.decode("utf-8", "replace") if isinstance(part, bytes) else part
                    for part in rdata.strings
                )
                for rdata in answers
            ]
            records = [r for r in records if r.lower().startswith("v=dmarc1")]
            if records:
                return target, validate_dmarc_record(records[0])
        return None
