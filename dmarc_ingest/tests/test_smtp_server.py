import smtplib
from types import SimpleNamespace

import pytest
from aiosmtpd.smtp import Envelope

from dmarc_ingest.errors import TransientInfrastructureError
from dmarc_ingest.known_reporters import (
    InMemoryKnownReporterRepository,
    KnownReporterService,
)
from dmarc_ingest.pipeline import IngestionPipeline, IngestionState
from dmarc_ingest.report_service import DmarcReportService
from dmarc_ingest.repositories import InMemoryDmarcReportRepository
from dmarc_ingest.smtp_server import (
    TEMPORARY_FAILURE_REPLY,
    DmarcReportHandler,
    SmtpServer,
)
from dmarc_ingest.tests.sample_emails import (
    SAMPLE_SENDER,
    create_email_with_attachment,
    create_zip_report,
)

from .conftest import send_email


class FailingPipeline:
    async def ingest(self, raw_message, envelope):
        raise RuntimeError("storage exploded")


def create_pipeline(reports: InMemoryDmarcReportRepository) -> IngestionPipeline:
    return IngestionPipeline(
        report_service=DmarcReportService(reports),
        reporter_service=KnownReporterService(InMemoryKnownReporterRepository()),
    )


def create_envelope(msg) -> Envelope:
    envelope = Envelope()
    envelope.mail_from = SAMPLE_SENDER
    envelope.rcpt_tos = ["dmarc@mydomain.de"]
    envelope.content = envelope.original_content = msg.as_bytes()
    return envelope


SESSION = SimpleNamespace(peer=("192.0.2.1", 42424), host_name="mail.google.com")


@pytest.mark.asyncio
async def test_handler_passes_smtp_envelope_to_pipeline():
    reports = InMemoryDmarcReportRepository()
    outcomes = []
    handler = DmarcReportHandler(create_pipeline(reports), on_outcome=outcomes.append)

    reply = await handler.handle_DATA(
        None, SESSION, create_envelope(create_email_with_attachment(create_zip_report()))
    )

    assert reply.startswith("250")
    assert len(reports) == 1
    assert [outcome.state for outcome in outcomes] == [IngestionState.ACCEPTED]


@pytest.mark.asyncio
async def test_handler_replies_with_rejection():
    outcomes = []
    handler = DmarcReportHandler(
        create_pipeline(InMemoryDmarcReportRepository()), on_outcome=outcomes.append
    )
    msg = create_email_with_attachment(create_zip_report(email="someone@else.org"))

    reply = await handler.handle_DATA(None, SESSION, create_envelope(msg))

    assert reply.startswith("550")
    assert not outcomes[0].accepted


@pytest.mark.asyncio
async def test_handler_answers_unexpected_errors_with_temporary_failure():
    handler = DmarcReportHandler(FailingPipeline())
    msg = create_email_with_attachment(create_zip_report())

    reply = await handler.handle_DATA(None, SESSION, create_envelope(msg))

    assert reply == TEMPORARY_FAILURE_REPLY
    assert reply.startswith("451")


@pytest.mark.asyncio
async def test_handler_replies_with_temporary_failure_if_outcome_is_not_recorded():
    def fail_to_record(outcome):
        raise TransientInfrastructureError("Failed to save state: No space left")

    handler = DmarcReportHandler(
        create_pipeline(InMemoryDmarcReportRepository()), on_outcome=fail_to_record
    )
    msg = create_email_with_attachment(create_zip_report())

    reply = await handler.handle_DATA(None, SESSION, create_envelope(msg))

    assert reply == "451 4.3.0 Failed to save state: No space left"


@pytest.mark.asyncio
async def test_server_receives_report_via_smtp():
    reports = InMemoryDmarcReportRepository()
    handler = DmarcReportHandler(create_pipeline(reports))

    async with SmtpServer(handler, host="127.0.0.1", port=0) as server:
        await send_email(
            create_email_with_attachment(create_zip_report()), server.host, server.port
        )

    assert len(reports) == 1


@pytest.mark.asyncio
async def test_server_rejects_report_from_other_sender():
    handler = DmarcReportHandler(create_pipeline(InMemoryDmarcReportRepository()))
    msg = create_email_with_attachment(create_zip_report(email="someone@else.org"))

    async with SmtpServer(handler, host="127.0.0.1", port=0) as server:
        with pytest.raises(smtplib.SMTPDataError) as exc_info:
            await send_email(msg, server.host, server.port)

    assert exc_info.value.smtp_code == 550
