import argparse
import asyncio
import json
import signal
import sys
import time
from asyncio import CancelledError
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

import structlog

from dmarc_ingest.authentication import Authenticator, MailAuthenticator
from dmarc_ingest.config import IngestConfig, SmtpConfig
from dmarc_ingest.errors import (
    RecordFormatError,
    TransientInfrastructureError,
    UnknownReporterError,
)
from dmarc_ingest.ingest_metrics import IngestionMetrics
from dmarc_ingest.known_reporters import (
    InMemoryKnownReporterRepository,
    KnownReporterService,
    ReporterStatus,
    TrustLevel,
    UpdateKnownReporterData,
)
from dmarc_ingest.logging import configure_logging
from dmarc_ingest.pipeline import IngestionOutcome, IngestionPipeline
from dmarc_ingest.prometheus_exporter import PrometheusExporter
from dmarc_ingest.records import (
    evaluate_dkim_policy,
    evaluate_dmarc_policy,
    evaluate_spf_policy,
    validate_dkim_record,
    validate_dmarc_record,
    validate_spf_record,
)
from dmarc_ingest.report_service import DmarcReportService
from dmarc_ingest.repositories import InMemoryDmarcReportRepository
from dmarc_ingest.smtp_server import DmarcReportHandler, SmtpServer
from dmarc_ingest.state_persister import State, StatePersister

logger = structlog.get_logger()

DEFAULT_CONFIGURATION = "/etc/dmarc-ingest.json"

RECORD_CHECKS = {
    "spf": (validate_spf_record, evaluate_spf_policy),
    "dkim": (validate_dkim_record, evaluate_dkim_policy),
    "dmarc": (validate_dmarc_record, evaluate_dmarc_policy),
}


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Receive DMARC aggregate reports via SMTP, store them and "
        "provide a Prometheus endpoint for ingestion metrics."
    )
    parser.add_argument(
        "--configuration",
        type=argparse.FileType("r"),
        default=None,
        help=f"Configuration file (default: {DEFAULT_CONFIGURATION})",
    )
    parser.add_argument(
        "--debug",
        default=False,
        action="store_true",
        help="Enable debug logging",
    )
    commands = parser.add_subparsers(dest="command")
    commands.add_parser("serve", help="Run the SMTP ingestion server (default)")

    reporters = commands.add_parser("reporters", help="Manage known reporters")
    reporter_commands = reporters.add_subparsers(dest="reporters_command")
    reporter_commands.required = True
    reporter_commands.add_parser("list", help="List known reporters")
    update = reporter_commands.add_parser("update", help="Update a reporter")
    update.add_argument("org_email", metavar="EMAIL")
    update.add_argument(
        "--status", choices=[status.value for status in ReporterStatus]
    )
    update.add_argument(
        "--trust-level", choices=[level.value for level in TrustLevel]
    )
    update.add_argument("--notes")

    check = commands.add_parser(
        "check-record", help="Validate and evaluate a DNS TXT record"
    )
    check.add_argument("record_type", choices=sorted(RECORD_CHECKS))
    check.add_argument("text")
    return parser


def main(argv: Sequence[str]) -> int:
    args = create_parser().parse_args(argv)

    if args.command == "check-record":
        configure_logging({}, debug=args.debug)
        return check_record(args.record_type, args.text)

    configuration = load_configuration(args.configuration)
    configure_logging(configuration.get("logging", {}), debug=args.debug)
    config = IngestConfig.from_mapping(configuration)

    if args.command == "reporters":
        return asyncio.run(manage_reporters(args, StatePersister(config.state_path)))

    app = App(
        prometheus_addr=config.prometheus_addr,
        smtp=config.smtp,
        state_persister=StatePersister(config.state_path),
        authenticator=MailAuthenticator() if config.validate_dmarc else None,
        pipeline_options=dict(
            strict_subject=config.strict_subject,
            strict_filename=config.strict_filename,
            validate_dmarc=config.validate_dmarc,
            dmarc_reject=config.dmarc_reject,
            unknown_reporter_policy=config.unknown_reporter_policy,
        ),
        autosave_interval_seconds=config.autosave_interval_seconds,
    )
    asyncio.run(serve(app))
    return 0


async def serve(app: "App"):
    # SIGTERM shuts down like Ctrl+C, including the final state save
    asyncio.get_running_loop().add_signal_handler(
        signal.SIGTERM, asyncio.current_task().cancel
    )
    await app.run()


def run():
    sys.exit(main(sys.argv[1:]))


def load_configuration(configuration_file) -> Dict[str, Any]:
    if configuration_file is None:
        configuration_file = open(  # pylint: disable=consider-using-with
            DEFAULT_CONFIGURATION, "r", encoding="utf-8"
        )
    with configuration_file:
        return json.load(configuration_file)


def check_record(record_type: str, text: str) -> int:
    validate, evaluate = RECORD_CHECKS[record_type]
    try:
        record = validate(text)
    except RecordFormatError as err:
        print(f"invalid {record_type} record: {err}", file=sys.stderr)
        return 1
    evaluation = evaluate(record)
    print(f"strength: {evaluation.strength.value}")
    for recommendation in evaluation.recommendations:
        print(f"- {recommendation}")
    return 0


async def manage_reporters(args: argparse.Namespace, persister: StatePersister) -> int:
    state = persister.load()
    repository = InMemoryKnownReporterRepository(state.reporters)
    service = KnownReporterService(repository)

    if args.reporters_command == "list":
        for reporter in await service.list():
            print(
                f"{reporter.org_email}\t{reporter.org_name}\t{reporter.status.value}"
                f"\t{reporter.trust_level.value}\t{reporter.last_seen.isoformat()}"
            )
        return 0

    data = UpdateKnownReporterData(
        status=ReporterStatus(args.status) if args.status else None,
        trust_level=TrustLevel(args.trust_level) if args.trust_level else None,
        notes=args.notes,
    )
    try:
        await service.update(args.org_email, data)
    except UnknownReporterError:
        print(f"unknown reporter: {args.org_email}", file=sys.stderr)
        return 1
    state.reporters = repository.snapshot()
    persister.save(state)
    return 0


class App:
    # pylint: disable=too-many-instance-attributes

    # pylint: disable=too-many-arguments
    def __init__(
        self,
        *,
        prometheus_addr: Tuple[str, int],
        smtp: SmtpConfig,
        state_persister: StatePersister,
        authenticator: Optional[Authenticator] = None,
        pipeline_options: Optional[Dict[str, Any]] = None,
        exporter_cls: Callable[[IngestionMetrics], Any] = PrometheusExporter,
        autosave_interval_seconds: Optional[float] = 60,
        time_fn: Callable[[], float] = time.time,
    ):
        self.prometheus_addr = prometheus_addr
        self.smtp = smtp
        self.state_persister = state_persister
        self.authenticator = authenticator
        self.pipeline_options = pipeline_options or {}
        self.exporter_cls = exporter_cls
        self.exporter = exporter_cls(IngestionMetrics())
        self.autosave_interval_seconds = autosave_interval_seconds
        self.time_fn = time_fn
        self.report_repository = InMemoryDmarcReportRepository(time_fn=time_fn)
        self.reporter_repository = InMemoryKnownReporterRepository(time_fn=time_fn)
        self.smtp_server: Optional[SmtpServer] = None

    def _create_pipeline(self) -> IngestionPipeline:
        return IngestionPipeline(
            report_service=DmarcReportService(self.report_repository),
            reporter_service=KnownReporterService(self.reporter_repository),
            authenticator=self.authenticator,
            time_fn=self.time_fn,
            **self.pipeline_options,
        )

    async def run(self):
        state = self.state_persister.load()
        self.report_repository = InMemoryDmarcReportRepository(
            state.reports, time_fn=self.time_fn
        )
        self.reporter_repository = InMemoryKnownReporterRepository(
            state.reporters, time_fn=self.time_fn
        )
        self.exporter = self.exporter_cls(state.metrics)
        handler = DmarcReportHandler(
            self._create_pipeline(), on_outcome=self.record_outcome
        )
        await logger.ainfo(
            "Loaded state.",
            reports=len(self.report_repository),
            reporters=len(self.reporter_repository),
        )

        try:
            async with self.exporter.start_server(*self.prometheus_addr):
                async with SmtpServer(
                    handler,
                    host=self.smtp.host,
                    port=self.smtp.port,
                    close_timeout_seconds=self.smtp.close_timeout_seconds,
                    data_size_limit=self.smtp.data_size_limit,
                ) as self.smtp_server:
                    while True:
                        await asyncio.sleep(self.autosave_interval_seconds or 60)
                        if self.autosave_interval_seconds:
                            await self._autosave()
        except CancelledError:
            pass
        finally:
            self.smtp_server = None
            self._save_state()

    def record_outcome(self, outcome: IngestionOutcome):
        with self.exporter.get_metrics() as metrics:
            metrics.update(outcome)
        # stored reports and reporter contacts reach disk before the reply
        if any(attachment.report_key for attachment in outcome.attachments):
            self._save_state()

    async def _autosave(self):
        try:
            self._save_state()
        except TransientInfrastructureError:
            await logger.aexception("Failed to save state.")

    def _save_state(self):
        self.reporter_repository.merge_admin_changes(
            self.state_persister.load_reporters()
        )
        with self.exporter.get_metrics() as metrics:
            self.state_persister.save(
                State(
                    reports=self.report_repository.snapshot(),
                    reporters=self.reporter_repository.snapshot(),
                    metrics=metrics,
                )
            )
