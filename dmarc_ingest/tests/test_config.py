from pathlib import Path

import pytest

from dmarc_ingest.config import IngestConfig, SmtpConfig
from dmarc_ingest.pipeline import UnknownReporterPolicy


def test_defaults():
    config = IngestConfig.from_mapping({})
    assert config == IngestConfig()
    assert config.smtp == SmtpConfig(
        host="0.0.0.0", port=25, close_timeout_seconds=30, data_size_limit=33554432
    )
    assert config.prometheus_addr == ("127.0.0.1", 9798)
    assert config.state_path == Path("/var/lib/dmarc-ingest/state.json")


def test_maps_configuration_file():
    config = IngestConfig.from_mapping(
        {
            "smtp": {"host": "127.0.0.1", "port": 2525},
            "strict_subject": True,
            "unknown_reporter_policy": "reject",
            "storage_path": "/tmp/dmarc",
            "logging": {"root": {"level": "debug"}},
        }
    )

    assert config.smtp.port == 2525
    assert config.smtp.close_timeout_seconds == 30
    assert config.strict_subject
    assert config.unknown_reporter_policy == UnknownReporterPolicy.REJECT
    assert config.state_path == Path("/tmp/dmarc/state.json")
    assert config.logging == {"root": {"level": "debug"}}


@pytest.mark.parametrize(
    "configuration",
    [
        {"smtp": {"hostname": "localhost"}},
        {"imap": {}},
        {"unknown_reporter_policy": "quarantine"},
    ],
)
def test_rejects_invalid_configuration(configuration):
    with pytest.raises(ValueError):
        IngestConfig.from_mapping(configuration)
