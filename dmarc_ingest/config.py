from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Tuple

from dmarc_ingest.pipeline import UnknownReporterPolicy


@dataclass
class SmtpConfig:
    host: str = "0.0.0.0"
    port: int = 25
    close_timeout_seconds: float = 30
    data_size_limit: int = 32 * 1024 * 1024


@dataclass
class IngestConfig:
    # pylint: disable=too-many-instance-attributes
    smtp: SmtpConfig = field(default_factory=SmtpConfig)
    strict_subject: bool = False
    strict_filename: bool = False
    validate_dmarc: bool = False
    dmarc_reject: bool = False
    unknown_reporter_policy: UnknownReporterPolicy = UnknownReporterPolicy.ALLOW
    listen_addr: str = "127.0.0.1"
    port: int = 9798
    storage_path: Path = Path("/var/lib/dmarc-ingest")
    autosave_interval_seconds: float = 60
    logging: Dict[str, Any] = field(default_factory=dict)

    @property
    def prometheus_addr(self) -> Tuple[str, int]:
        return (self.listen_addr, self.port)

    @property
    def state_path(self) -> Path:
        return self.storage_path / "state.json"

    @classmethod
    def from_mapping(cls, configuration: Mapping[str, Any]) -> "IngestConfig":
        """Map the parsed JSON configuration file onto the config dataclasses.

        Raises :class:`ValueError` for unknown keys or an invalid unknown
        reporter policy.
        """
        values = dict(configuration)
        try:
            smtp = SmtpConfig(**values.pop("smtp", {}))
        except TypeError as err:
            raise ValueError(f"Invalid smtp configuration: {err}") from err
        if "unknown_reporter_policy" in values:
            values["unknown_reporter_policy"] = UnknownReporterPolicy(
                values["unknown_reporter_policy"]
            )
        if "storage_path" in values:
            values["storage_path"] = Path(values["storage_path"])
        try:
            return cls(smtp=smtp, **values)
        except TypeError as err:
            raise ValueError(f"Invalid configuration: {err}") from err
