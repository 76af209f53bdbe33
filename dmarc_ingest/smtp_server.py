import asyncio
import uuid
from typing import Callable, Optional

import structlog
from aiosmtpd.smtp import SMTP, Envelope, Session

from dmarc_ingest.errors import TransientInfrastructureError
from dmarc_ingest.logging import bind_message_context
from dmarc_ingest.pipeline import IngestionOutcome, IngestionPipeline, SmtpEnvelope

logger = structlog.get_logger()

TEMPORARY_FAILURE_REPLY = (
    f"{TransientInfrastructureError.smtp_reply} Temporary failure, try again later"
)


class DmarcReportHandler:
    """aiosmtpd handler feeding every received message into the pipeline."""

    def __init__(
        self,
        pipeline: IngestionPipeline,
        on_outcome: Optional[Callable[[IngestionOutcome], None]] = None,
    ):
        self.pipeline = pipeline
        self.on_outcome = on_outcome

    async def handle_DATA(
        self, server: SMTP, session: Session, envelope: Envelope
    ) -> str:
        peer_ip = session.peer[0] if isinstance(session.peer, tuple) else None
        smtp_envelope = SmtpEnvelope(
            mail_from=envelope.mail_from or "",
            rcpt_tos=list(envelope.rcpt_tos),
            peer_ip=peer_ip,
            helo=session.host_name,
        )
        raw_message = envelope.original_content or envelope.content or b""
        if isinstance(raw_message, str):
            raw_message = raw_message.encode("utf-8", errors="surrogateescape")

        with bind_message_context(
            session_id=uuid.uuid4().hex[:12],
            peer=peer_ip,
            mail_from=smtp_envelope.mail_from,
        ):
            try:
                outcome = await self.pipeline.ingest(raw_message, smtp_envelope)
                if self.on_outcome is not None:
                    self.on_outcome(outcome)
            except TransientInfrastructureError as err:
                await logger.awarning("Temporary ingestion failure.", exc_info=err)
                return err.as_smtp_reply()
            except Exception:  # pylint: disable=broad-except
                await logger.aexception("Unexpected error during ingestion.")
                return TEMPORARY_FAILURE_REPLY

            await logger.ainfo(
                "Processed message.", reply=outcome.reply, state=outcome.state.value
            )
            return outcome.reply


class SmtpServer:
    def __init__(
        self,
        handler: DmarcReportHandler,
        *,
        host: str = "0.0.0.0",
        port: int = 25,
        close_timeout_seconds: float = 30,
        data_size_limit: int = 32 * 1024 * 1024,
    ):
        self.handler = handler
        self.host = host
        self.port = port
        self.close_timeout_seconds = close_timeout_seconds
        self.data_size_limit = data_size_limit
        self._server: Optional[asyncio.AbstractServer] = None

    def _create_protocol(self) -> SMTP:
        return SMTP(self.handler, data_size_limit=self.data_size_limit)

    async def __aenter__(self):
        loop = asyncio.get_running_loop()
        self._server = await loop.create_server(
            self._create_protocol, host=self.host, port=self.port
        )
        # resolves port 0 to the port actually bound
        self.port = self._server.sockets[0].getsockname()[1]
        await logger.ainfo("SMTP server listening.", host=self.host, port=self.port)
        return self

    async def __aexit__(self, exc_type, exc, traceback):
        if self._server is None:
            return
        self._server.close()
        try:
            await asyncio.wait_for(
                self._server.wait_closed(), self.close_timeout_seconds
            )
        except asyncio.TimeoutError:
            await logger.awarning(
                "SMTP sessions did not close in time.",
                close_timeout_seconds=self.close_timeout_seconds,
            )
        self._server = None
