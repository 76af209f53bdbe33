import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from dmarc_ingest.errors import RecordFormatError
from dmarc_ingest.records.policy import PolicyEvaluation, Strength
from dmarc_ingest.records.tags import build_tag_map, split_values, tokenize

KEY_TYPES = ("rsa", "ed25519")
HASH_ALGORITHMS = ("sha1", "sha256")
SERVICE_TYPES = ("email", "*")

BASE64_REGEX = re.compile(r"^[A-Za-z0-9+/=]*$")


@dataclass(frozen=True)
class DkimRecord:
    v: str
    p: str
    k: str = "rsa"
    h: List[str] = field(default_factory=lambda: ["sha256"])
    s: List[str] = field(default_factory=lambda: ["*"])
    t: Optional[List[str]] = None
    n: Optional[str] = None

    @property
    def is_revoked(self) -> bool:
        return self.p == ""

    def to_dict(self) -> Dict[str, Any]:
        record: Dict[str, Any] = {
            "v": self.v,
            "p": self.p,
            "k": self.k,
            "h": list(self.h),
            "s": list(self.s),
        }
        if self.t is not None:
            record["t"] = list(self.t)
        if self.n is not None:
            record["n"] = self.n
        return record


def validate_dkim_record(record: str) -> DkimRecord:
    tags = build_tag_map(tokenize(record.strip()))

    version = tags.get("v")
    if not version:
        raise RecordFormatError("Missing required version (v) tag")
    if version != "DKIM1":
        raise RecordFormatError(f"Invalid DKIM version: {version}")
    if "p" not in tags:
        raise RecordFormatError("Missing required public key (p) tag")

    public_key = "".join(tags["p"].split())
    key_type = tags.get("k", "rsa")
    hashes = split_values(tags["h"], ":") if "h" in tags else ["sha256"]
    services = split_values(tags["s"], ":") if "s" in tags else ["*"]

    if key_type not in KEY_TYPES:
        raise RecordFormatError(f"Invalid key type: {key_type}")
    for hash_algorithm in hashes:
        if hash_algorithm not in HASH_ALGORITHMS:
            raise RecordFormatError(f"Invalid hash algorithm: {hash_algorithm}")
    for service in services:
        if service not in SERVICE_TYPES:
            raise RecordFormatError(f"Invalid service type: {service}")
    # an empty key is a revocation and therefore valid
    if not BASE64_REGEX.match(public_key):
        raise RecordFormatError("Invalid public key format")

    return DkimRecord(
        v=version,
        p=public_key,
        k=key_type,
        h=hashes,
        s=services,
        t=split_values(tags["t"], ":") if "t" in tags else None,
        n=tags.get("n"),
    )


def evaluate_dkim_policy(record: DkimRecord) -> PolicyEvaluation:
    evaluation = PolicyEvaluation()

    if record.k == "rsa":
        evaluation.recommend(
            "Consider using ED25519 for better performance and security"
        )

    if not record.h or "sha1" in record.h:
        evaluation.downgrade(
            Strength.WEAK, "Remove SHA1 and use only SHA256 for hashing"
        )

    if record.t and "y" in record.t:
        evaluation.downgrade(Strength.WEAK, "Remove testing flag for production use")

    return evaluation
