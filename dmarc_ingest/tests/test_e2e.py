import json
import subprocess
import sys
from contextlib import contextmanager

import aiohttp
import pytest
from prometheus_client.parser import text_string_to_metric_families
from prometheus_client.samples import Sample

from dmarc_ingest.state_persister import StatePersister

from .conftest import send_email, try_until_success
from .sample_emails import create_email_with_attachment, create_zip_report


@contextmanager
def dmarc_ingest(config_path):
    proc = subprocess.Popen(
        [
            sys.executable,
            "-m",
            "dmarc_ingest",
            "--configuration",
            str(config_path),
            "serve",
        ],
        stdout=sys.stdout,
        stderr=sys.stderr,
        encoding="utf-8",
    )
    yield proc
    proc.terminate()
    try:
        proc.wait(20)
    except subprocess.TimeoutExpired:
        proc.kill()


@pytest.mark.asyncio
async def test_successful_processing_of_incoming_reports(tmp_path):
    # Given
    config = {
        "smtp": {"host": "127.0.0.1", "port": 8025},
        "listen_addr": "127.0.0.1",
        "port": 9798,
        "storage_path": str(tmp_path),
        "autosave_interval_seconds": 1,
    }
    config_path = tmp_path / "dmarc-ingest.json"
    with open(config_path, "w", encoding="utf-8") as f:
        json.dump(config, f)

    expected_meta = {"reporter": "google.com", "domain": "mydomain.de"}

    def expected_metrics(stored_count, duplicate_count):
        return {
            "dmarc_ingest_reports_stored_total": stored_count,
            "dmarc_ingest_reports_duplicate_total": duplicate_count,
            "dmarc_ingest_reports_ignored_total": 0,
        }

    # When
    with dmarc_ingest(config_path):
        url = f"http://{config['listen_addr']}:{config['port']}/metrics"
        msg = create_email_with_attachment(create_zip_report(report_id="1"))
        await try_until_success(
            lambda: send_email(msg, "127.0.0.1", 8025),
            timeout_seconds=20,
            max_fn_duration_seconds=10,
        )
        await try_until_success(
            lambda: assert_exported_metrics(url, expected_meta, expected_metrics(1, 0)),
            timeout_seconds=20,
        )

        for report_id in ("2", "2"):
            msg = create_email_with_attachment(create_zip_report(report_id=report_id))
            await send_email(msg, "127.0.0.1", 8025)
        await try_until_success(
            lambda: assert_exported_metrics(url, expected_meta, expected_metrics(2, 1)),
            timeout_seconds=20,
        )

    # Then
    state = StatePersister(tmp_path / "state.json").load()
    assert sorted(report.report_id for report in state.reports) == ["1", "2"]


async def assert_exported_metrics(url, expected_meta, expected_metrics):
    async with aiohttp.ClientSession() as session:
        async with session.get(url) as response:
            served_metrics = text_string_to_metric_families(await response.text())

    samples = [
        sample for served_metric in served_metrics for sample in served_metric.samples
    ]
    for prometheus_name, value in expected_metrics.items():
        assert (
            Sample(
                prometheus_name,
                labels=expected_meta,
                value=value,
                timestamp=None,
                exemplar=None,
            )
            in samples
        )
