from dmarc_ingest.errors import AttachmentFormatError, PolicyViolationError
from dmarc_ingest.ingest_metrics import (
    FailureMeta,
    IngestionMetrics,
    RejectionMeta,
    ReportCounts,
    ReportMeta,
)
from dmarc_ingest.pipeline import (
    AttachmentOutcome,
    AttachmentStatus,
    IngestionOutcome,
    IngestionState,
)

KEY = ("12598866915817748661", "google.com")


def attachment(status, error=None, key=KEY):
    return AttachmentOutcome(
        filename="report.xml",
        status=status,
        error=error,
        report_key=key,
        domain="mydomain.de",
    )


def test_counts_accepted_message_and_reports():
    metrics = IngestionMetrics()
    metrics.update(
        IngestionOutcome(
            state=IngestionState.ACCEPTED,
            reply="250 Message accepted",
            attachments=[
                attachment(AttachmentStatus.PERSISTED),
                attachment(AttachmentStatus.DUPLICATE),
                attachment(AttachmentStatus.IGNORED),
                attachment(
                    AttachmentStatus.FAILED,
                    AttachmentFormatError("broken"),
                    key=None,
                ),
            ],
        )
    )

    assert metrics == IngestionMetrics(
        accepted_messages=1,
        reports={
            ReportMeta("google.com", "mydomain.de"): ReportCounts(
                stored_count=1, duplicate_count=1, ignored_count=1
            )
        },
        attachment_failures={FailureMeta("AttachmentFormatError"): 1},
    )


def test_counts_rejections_by_reply_code():
    metrics = IngestionMetrics()
    error = PolicyViolationError("untrusted DMARC reporter")
    for _ in range(2):
        metrics.update(
            IngestionOutcome(
                state=IngestionState.REJECTED,
                reply=error.as_smtp_reply(),
                attachments=[attachment(AttachmentStatus.REJECTED, error)],
                error=error,
            )
        )

    assert metrics.accepted_messages == 0
    assert metrics.rejected_messages == {RejectionMeta("550"): 2}
    assert metrics.attachment_failures == {FailureMeta("PolicyViolationError"): 2}
    assert metrics.reports == {}
