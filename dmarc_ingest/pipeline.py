import email
import email.policy
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.message import EmailMessage
from enum import Enum
from typing import Any, Callable, List, Optional, Tuple

import structlog

from dmarc_ingest.attachments import (
    Attachment,
    extract_xml_from_attachment,
    get_report_attachments,
)
from dmarc_ingest.authentication import Authenticator
from dmarc_ingest.deserialization import parse_and_validate_dmarc_report
from dmarc_ingest.dmarc_report import DmarcReport
from dmarc_ingest.errors import (
    FilenameFormatError,
    IngestError,
    PolicyViolationError,
    SubjectFormatError,
)
from dmarc_ingest.known_reporters import KnownReporterService
from dmarc_ingest.naming import (
    EmailSubjectInfo,
    parse_report_filename,
    parse_report_subject,
)
from dmarc_ingest.report_service import DmarcReportService

logger = structlog.get_logger()

ACCEPTED_REPLY = "250 Message accepted"


class IngestionState(Enum):
    RECEIVING = "receiving"
    AUTHENTICATING = "authenticating"
    PARSING = "parsing"
    EXTRACTING_ATTACHMENTS = "extracting_attachments"
    VALIDATING_REPORT = "validating_report"
    ENFORCING_TRUST = "enforcing_trust"
    PERSISTING = "persisting"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class UnknownReporterPolicy(Enum):
    REJECT = "reject"
    ALLOW = "allow"
    IGNORE = "ignore"


class AttachmentStatus(Enum):
    PERSISTED = "persisted"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    FAILED = "failed"
    # fails the whole message
    REJECTED = "rejected"


@dataclass(frozen=True)
class SmtpEnvelope:
    mail_from: Optional[str]
    rcpt_tos: List[str] = field(default_factory=list)
    peer_ip: Optional[str] = None
    helo: Optional[str] = None


@dataclass(frozen=True)
class AttachmentOutcome:
    filename: Optional[str]
    status: AttachmentStatus
    error: Optional[IngestError] = None
    report_key: Optional[Tuple[str, str]] = None
    domain: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status in (
            AttachmentStatus.PERSISTED,
            AttachmentStatus.DUPLICATE,
            AttachmentStatus.IGNORED,
        )


@dataclass(frozen=True)
class IngestionOutcome:
    state: IngestionState
    reply: str
    attachments: List[AttachmentOutcome] = field(default_factory=list)
    error: Optional[IngestError] = None
    states: List[IngestionState] = field(default_factory=list)

    @property
    def accepted(self) -> bool:
        return self.state == IngestionState.ACCEPTED


class _Transitions:
    def __init__(self, log: Any):
        self.log = log
        self.state: Optional[IngestionState] = None
        self.visited: List[IngestionState] = []

    async def enter(self, state: IngestionState):
        await self.log.adebug(
            "Ingestion state transition.",
            from_state=self.state.value if self.state else None,
            to_state=state.value,
        )
        self.state = state
        self.visited.append(state)

    async def accept(self, attachments: List[AttachmentOutcome]) -> IngestionOutcome:
        await self.enter(IngestionState.ACCEPTED)
        return IngestionOutcome(
            state=IngestionState.ACCEPTED,
            reply=ACCEPTED_REPLY,
            attachments=attachments,
            states=self.visited,
        )

    async def reject(
        self, error: IngestError, attachments: Optional[List[AttachmentOutcome]] = None
    ) -> IngestionOutcome:
        await self.enter(IngestionState.REJECTED)
        await self.log.awarning(
            "Rejected message.", error=error.message, kind=error.kind
        )
        return IngestionOutcome(
            state=IngestionState.REJECTED,
            reply=error.as_smtp_reply(),
            attachments=attachments or [],
            error=error,
            states=self.visited,
        )


class IngestionPipeline:
    """Decides whether a received message carrying DMARC aggregate reports
    is accepted and stores every valid report exactly once.

    Attachments are processed one after another. A failing attachment does
    not stop the processing of the remaining ones. The message is rejected
    if authentication or subject parsing fails, if an attachment fails the
    sender or trust check, or if no attachment could be processed.
    """

    # pylint: disable=too-many-arguments
    def __init__(
        self,
        *,
        report_service: DmarcReportService,
        reporter_service: KnownReporterService,
        authenticator: Optional[Authenticator] = None,
        strict_subject: bool = False,
        strict_filename: bool = False,
        validate_dmarc: bool = False,
        dmarc_reject: bool = False,
        unknown_reporter_policy: UnknownReporterPolicy = UnknownReporterPolicy.ALLOW,
        time_fn: Callable[[], float] = time.time,
    ):
        if validate_dmarc and authenticator is None:
            raise ValueError("DMARC validation requires an authenticator.")
        self.report_service = report_service
        self.reporter_service = reporter_service
        self.authenticator = authenticator
        self.strict_subject = strict_subject
        self.strict_filename = strict_filename
        self.validate_dmarc = validate_dmarc
        self.dmarc_reject = dmarc_reject
        self.unknown_reporter_policy = unknown_reporter_policy
        self._time = time_fn

    async def ingest(
        self, raw_message: bytes, envelope: SmtpEnvelope
    ) -> IngestionOutcome:
        run = _Transitions(logger)
        await run.enter(IngestionState.RECEIVING)
        await run.log.adebug("Received message.", size=len(raw_message))

        try:
            if self.validate_dmarc:
                await run.enter(IngestionState.AUTHENTICATING)
                await self._authenticate(raw_message, envelope)

            await run.enter(IngestionState.PARSING)
            msg = email.message_from_bytes(raw_message, policy=email.policy.default)
            subject = await self._parse_subject(msg)

            await run.enter(IngestionState.EXTRACTING_ATTACHMENTS)
            attachments = get_report_attachments(msg)
        except IngestError as err:
            return await run.reject(err)

        if not attachments:
            await run.log.ainfo("Message contains no report attachments.")
            return await run.accept([])

        mail_date = self._mail_date(msg)
        outcomes = []
        for attachment in attachments:
            outcomes.append(
                await self._process_attachment(
                    run, attachment, subject, envelope, mail_date
                )
            )

        for outcome in outcomes:
            if outcome.status == AttachmentStatus.REJECTED:
                return await run.reject(outcome.error, outcomes)
        if any(outcome.succeeded for outcome in outcomes):
            return await run.accept(outcomes)
        return await run.reject(outcomes[0].error, outcomes)

    async def _authenticate(self, raw_message: bytes, envelope: SmtpEnvelope):
        result = await self.authenticator.authenticate(
            raw_message,
            ip=envelope.peer_ip,
            helo=envelope.helo,
            sender=envelope.mail_from,
        )
        if result.is_dmarc_reject:
            if self.dmarc_reject:
                raise PolicyViolationError("rejected by DMARC validation policy")
            await logger.awarning(
                "Message failed DMARC validation.",
                dmarc_domain=result.dmarc.domain,
                dmarc_policy=result.dmarc.policy,
            )

    async def _parse_subject(self, msg: EmailMessage) -> Optional[EmailSubjectInfo]:
        subject_text = str(msg.get("Subject", ""))
        subject = parse_report_subject(subject_text)
        if subject is None:
            if self.strict_subject:
                raise SubjectFormatError("invalid DMARC report email subject")
            await logger.awarning(
                "Subject is not a DMARC report subject.", subject=subject_text
            )
        return subject

    def _mail_date(self, msg: EmailMessage) -> datetime:
        header = msg.get("Date")
        mail_date = getattr(header, "datetime", None)
        if mail_date is None:
            return datetime.fromtimestamp(self._time(), tz=timezone.utc)
        if mail_date.tzinfo is None:
            return mail_date.replace(tzinfo=timezone.utc)
        return mail_date

    # pylint: disable=too-many-arguments
    async def _process_attachment(
        self,
        run: _Transitions,
        attachment: Attachment,
        subject: Optional[EmailSubjectInfo],
        envelope: SmtpEnvelope,
        mail_date: datetime,
    ) -> AttachmentOutcome:
        log = logger.bind(filename=attachment.filename)
        report: Optional[DmarcReport] = None

        def outcome(status: AttachmentStatus, error=None) -> AttachmentOutcome:
            return AttachmentOutcome(
                filename=attachment.filename,
                status=status,
                error=error,
                report_key=report.key if report else None,
                domain=report.policy_published.domain if report else None,
            )

        try:
            await run.enter(IngestionState.VALIDATING_REPORT)
            xml = extract_xml_from_attachment(
                attachment.content, attachment.content_type, attachment.filename
            )
            report = parse_and_validate_dmarc_report(xml)
            report_id, org_name = report.key
            log = log.bind(report_id=report_id, org_name=org_name)

            await run.enter(IngestionState.ENFORCING_TRUST)
            try:
                self._check_sender(report, envelope)
                trusted = await self._enforce_trust(report, subject, log)
            except PolicyViolationError as err:
                await log.awarning("Rejected report attachment.", error=err.message)
                return outcome(AttachmentStatus.REJECTED, err)
            if not trusted:
                return outcome(AttachmentStatus.IGNORED)

            await self._cross_check(
                self.strict_subject, log, self._check_subject, report, subject
            )
            await self._cross_check(
                self.strict_filename,
                log,
                self._check_filename,
                report,
                subject,
                attachment.filename,
            )

            await run.enter(IngestionState.PERSISTING)
            stored = await self.report_service.process_report(report, mail_date)
        except IngestError as err:
            await log.awarning(
                "Failed to process report attachment.",
                error=err.message,
                kind=err.kind,
            )
            return outcome(AttachmentStatus.FAILED, err)

        return outcome(
            AttachmentStatus.PERSISTED if stored else AttachmentStatus.DUPLICATE
        )

    @staticmethod
    def _check_sender(report: DmarcReport, envelope: SmtpEnvelope):
        report_email = report.report_metadata.email or ""
        if (envelope.mail_from or "").casefold() != report_email.casefold():
            raise PolicyViolationError("sender does not match DMARC report email")

    async def _enforce_trust(
        self, report: DmarcReport, subject: Optional[EmailSubjectInfo], log: Any
    ) -> bool:
        org_email = report.report_metadata.email
        if await self.reporter_service.validate(org_email):
            return True

        if self.unknown_reporter_policy == UnknownReporterPolicy.REJECT:
            raise PolicyViolationError("untrusted DMARC reporter")
        if self.unknown_reporter_policy == UnknownReporterPolicy.IGNORE:
            await log.ainfo("Ignoring report of untrusted reporter.")
            return False

        await self.reporter_service.get_or_create(
            org_email,
            report.report_metadata.org_name,
            submitter=subject.submitter if subject else None,
        )
        return True

    @staticmethod
    async def _cross_check(strict: bool, log: Any, check: Callable, *args):
        try:
            check(*args)
        except IngestError as err:
            if strict:
                raise
            await log.awarning("Report failed cross-check.", error=err.message)

    @staticmethod
    def _check_subject(report: DmarcReport, subject: Optional[EmailSubjectInfo]):
        if subject is None:
            return
        if subject.domain.lower() != report.policy_published.domain.lower():
            raise PolicyViolationError(
                f"subject domain {subject.domain} does not match report domain "
                f"{report.policy_published.domain}"
            )
        if (
            subject.report_id is not None
            and subject.report_id != report.report_metadata.report_id
        ):
            raise PolicyViolationError(
                f"subject report ID {subject.report_id} does not match report ID "
                f"{report.report_metadata.report_id}"
            )

    @staticmethod
    def _check_filename(
        report: DmarcReport,
        subject: Optional[EmailSubjectInfo],
        filename: Optional[str],
    ):
        info = parse_report_filename(filename or "")
        if info is None:
            raise FilenameFormatError(f"invalid DMARC report filename: {filename}")
        if (
            subject is not None
            and subject.submitter is not None
            and subject.submitter.lower() != info.submitter.lower()
        ):
            raise PolicyViolationError(
                f"filename submitter {info.submitter} does not match subject "
                f"submitter {subject.submitter}"
            )
        if info.domain.lower() != report.policy_published.domain.lower():
            raise PolicyViolationError(
                f"filename domain {info.domain} does not match report domain "
                f"{report.policy_published.domain}"
            )
        date_range = report.report_metadata.date_range
        if not (
            date_range.begin.timestamp() <= info.begin
            and info.end <= date_range.end.timestamp()
        ):
            raise PolicyViolationError(
                "filename date range is outside of the report date range"
            )
