from dataclasses import dataclass, field
from typing import Dict

from dmarc_ingest.pipeline import AttachmentStatus, IngestionOutcome


@dataclass(frozen=True)
class ReportMeta:
    reporter: str
    domain: str


@dataclass(frozen=True)
class RejectionMeta:
    reply_code: str


@dataclass(frozen=True)
class FailureMeta:
    kind: str


@dataclass
class ReportCounts:
    stored_count: int = 0
    duplicate_count: int = 0
    ignored_count: int = 0


@dataclass
class IngestionMetrics:
    accepted_messages: int = 0
    rejected_messages: Dict[RejectionMeta, int] = field(default_factory=dict)
    reports: Dict[ReportMeta, ReportCounts] = field(default_factory=dict)
    attachment_failures: Dict[FailureMeta, int] = field(default_factory=dict)

    def update(self, outcome: IngestionOutcome):
        if outcome.accepted:
            self.accepted_messages += 1
        else:
            meta = RejectionMeta(outcome.reply.split(" ", 1)[0])
            self.rejected_messages[meta] = self.rejected_messages.get(meta, 0) + 1

        for attachment in outcome.attachments:
            if attachment.error is not None:
                failure = FailureMeta(attachment.error.kind)
                self.attachment_failures[failure] = (
                    self.attachment_failures.get(failure, 0) + 1
                )
                continue
            if attachment.report_key is None:
                continue
            meta = ReportMeta(
                reporter=attachment.report_key[1], domain=attachment.domain or ""
            )
            if meta not in self.reports:
                self.reports[meta] = ReportCounts()
            counts = self.reports[meta]
            if attachment.status == AttachmentStatus.PERSISTED:
                counts.stored_count += 1
            elif attachment.status == AttachmentStatus.DUPLICATE:
                counts.duplicate_count += 1
            elif attachment.status == AttachmentStatus.IGNORED:
                counts.ignored_count += 1
