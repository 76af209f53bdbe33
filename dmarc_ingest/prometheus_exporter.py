import threading
from contextlib import contextmanager
from typing import Any, Generator, Iterable, Tuple

import uvicorn
from prometheus_client.core import REGISTRY, CounterMetricFamily, GaugeMetricFamily
from prometheus_client.exposition import make_asgi_app

import dmarc_ingest
from dmarc_ingest.ingest_metrics import IngestionMetrics


class Server:
    def __init__(self, exporter: "PrometheusExporter", listen_addr: str, port: int):
        self.exporter = exporter
        config = uvicorn.Config(
            make_asgi_app(), host=listen_addr, port=port, log_config=None
        )
        self.server = uvicorn.Server(config)
        self.host = config.host
        self.port = port
        self._main_loop = None

    async def __aenter__(self):
        REGISTRY.register(self.exporter)
        config = self.server.config
        if not config.loaded:
            config.load()
        self.server.lifespan = config.lifespan_class(config)
        await self.server.startup()
        self._main_loop = self.server.main_loop()
        return self

    async def __aexit__(self, exc_type, exc, traceback):
        self.server.should_exit = True
        await self._main_loop
        self._main_loop = None
        await self.server.shutdown()
        REGISTRY.unregister(self.exporter)


class PrometheusExporter:
    REPORT_LABELS = ("reporter", "domain")
    REJECTION_LABELS = ("reply_code",)
    FAILURE_LABELS = ("kind",)

    def __init__(self, metrics: IngestionMetrics):
        self._metrics_lock = threading.Lock()
        self._metrics = metrics

    def start_server(self, listen_addr="127.0.0.1", port=9798) -> Server:
        return Server(self, listen_addr, port)

    @contextmanager
    def get_metrics(self) -> Generator[IngestionMetrics, None, None]:
        with self._metrics_lock:
            yield self._metrics

    def collect(self) -> Tuple[Any, ...]:
        build_info = GaugeMetricFamily(
            "dmarc_ingest_build_info",
            "A metric with a constant '1' value labeled by version of dmarc-ingest.",
            labels=("version",),
        )
        build_info.add_metric((dmarc_ingest.__version__,), 1.0)

        messages_accepted_total = CounterMetricFamily(
            "dmarc_ingest_messages_accepted_total",
            "Total number of accepted report emails.",
        )
        messages_rejected_total = CounterMetricFamily(
            "dmarc_ingest_messages_rejected_total",
            "Total number of rejected report emails.",
            labels=self.REJECTION_LABELS,
        )
        reports_stored_total = CounterMetricFamily(
            "dmarc_ingest_reports_stored_total",
            "Total number of stored aggregate reports.",
            labels=self.REPORT_LABELS,
        )
        reports_duplicate_total = CounterMetricFamily(
            "dmarc_ingest_reports_duplicate_total",
            "Total number of aggregate reports skipped as already stored.",
            labels=self.REPORT_LABELS,
        )
        reports_ignored_total = CounterMetricFamily(
            "dmarc_ingest_reports_ignored_total",
            "Total number of aggregate reports ignored from untrusted reporters.",
            labels=self.REPORT_LABELS,
        )
        attachment_failures_total = CounterMetricFamily(
            "dmarc_ingest_attachment_failures_total",
            "Total number of report attachments that could not be processed.",
            labels=self.FAILURE_LABELS,
        )

        with self._metrics_lock:
            messages_accepted_total.add_metric((), self._metrics.accepted_messages)
            for meta, count in self._metrics.rejected_messages.items():
                messages_rejected_total.add_metric(
                    self._meta2labels(meta, self.REJECTION_LABELS), count
                )
            for meta, counts in self._metrics.reports.items():
                labels = self._meta2labels(meta, self.REPORT_LABELS)
                reports_stored_total.add_metric(labels, counts.stored_count)
                reports_duplicate_total.add_metric(labels, counts.duplicate_count)
                reports_ignored_total.add_metric(labels, counts.ignored_count)
            for meta, count in self._metrics.attachment_failures.items():
                attachment_failures_total.add_metric(
                    self._meta2labels(meta, self.FAILURE_LABELS), count
                )

        return (
            build_info,
            messages_accepted_total,
            messages_rejected_total,
            reports_stored_total,
            reports_duplicate_total,
            reports_ignored_total,
            attachment_failures_total,
        )

    @staticmethod
    def _meta2labels(meta: object, labels: Iterable[str]) -> Tuple[str, ...]:
        return tuple(getattr(meta, label) for label in labels)
