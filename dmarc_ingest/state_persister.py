import json
import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from dataclasses_serialization.json import JSONSerializer

from dmarc_ingest.errors import TransientInfrastructureError
from dmarc_ingest.ingest_metrics import (
    FailureMeta,
    IngestionMetrics,
    RejectionMeta,
    ReportCounts,
    ReportMeta,
)
from dmarc_ingest.known_reporters import KnownReporter, ReporterStatus, TrustLevel
from dmarc_ingest.repositories import StoredDmarcReport


@dataclass
class State:
    reports: List[StoredDmarcReport] = field(default_factory=list)
    reporters: List[KnownReporter] = field(default_factory=list)
    metrics: IngestionMetrics = field(default_factory=IngestionMetrics)


# false positive, pylint: disable=no-value-for-parameter
@JSONSerializer.register_serializer(datetime)
def datetime_serializer(value: datetime) -> str:
    return value.isoformat()


@JSONSerializer.register_serializer(TrustLevel)
def trust_level_serializer(trust_level: TrustLevel) -> str:
    return trust_level.value


@JSONSerializer.register_serializer(ReporterStatus)
def reporter_status_serializer(status: ReporterStatus) -> str:
    return status.value


@JSONSerializer.register_serializer(IngestionMetrics)
def ingestion_metrics_serializer(metrics: IngestionMetrics) -> Dict[str, Any]:
    return JSONSerializer.serialize(
        {
            "accepted_messages": metrics.accepted_messages,
            "rejected_messages": [
                list(item) for item in metrics.rejected_messages.items()
            ],
            "reports": [list(item) for item in metrics.reports.items()],
            "attachment_failures": [
                list(item) for item in metrics.attachment_failures.items()
            ],
        }
    )


@JSONSerializer.register_deserializer(datetime)
def datetime_deserializer(_cls, obj: str) -> datetime:
    return datetime.fromisoformat(obj)


@JSONSerializer.register_deserializer(TrustLevel)
def trust_level_deserializer(_cls, obj: str) -> TrustLevel:
    return TrustLevel(obj)


@JSONSerializer.register_deserializer(ReporterStatus)
def reporter_status_deserializer(_cls, obj: str) -> ReporterStatus:
    return ReporterStatus(obj)


@JSONSerializer.register_deserializer(IngestionMetrics)
def ingestion_metrics_deserializer(_cls, obj) -> IngestionMetrics:
    return IngestionMetrics(
        accepted_messages=obj.get("accepted_messages", 0),
        rejected_messages=dict(
            (JSONSerializer.deserialize(RejectionMeta, meta), count)
            for meta, count in obj.get("rejected_messages", tuple())
        ),
        reports=dict(
            (
                JSONSerializer.deserialize(ReportMeta, meta),
                JSONSerializer.deserialize(ReportCounts, counts),
            )
            for meta, counts in obj.get("reports", tuple())
        ),
        attachment_failures=dict(
            (JSONSerializer.deserialize(FailureMeta, meta), count)
            for meta, count in obj.get("attachment_failures", tuple())
        ),
    )


class StatePersister:
    def __init__(self, path: Path):
        self.path = Path(path)

    def _read(self) -> Optional[Dict[str, Any]]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except OSError as err:
            raise TransientInfrastructureError(
                f"Failed to load state: {err.strerror}"
            ) from err

    def load(self) -> State:
        obj = self._read()
        if obj is None:
            return State()
        return JSONSerializer.deserialize(State, obj)

    def load_reporters(self) -> List[KnownReporter]:
        obj = self._read() or {}
        return [
            JSONSerializer.deserialize(KnownReporter, reporter)
            for reporter in obj.get("reporters", [])
        ]

    def save(self, state: State):
        # readers never see a partially written file
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(JSONSerializer.serialize(state), f)
            os.replace(tmp_path, self.path)
        except OSError as err:
            raise TransientInfrastructureError(
                f"Failed to save state: {err.strerror}"
            ) from err
