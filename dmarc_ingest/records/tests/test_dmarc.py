import pytest

from dmarc_ingest.errors import RecordFormatError
from dmarc_ingest.records.dmarc import (
    DmarcRecord,
    evaluate_dmarc_policy,
    validate_dmarc_record,
)
from dmarc_ingest.records.policy import Strength


def test_parses_full_record():
    record = validate_dmarc_record(
        "v=DMARC1; p=reject; sp=quarantine; adkim=s; aspf=r; pct=50; "
        "rua=mailto:dmarc@example.com,https://reports.example.com/dmarc; "
        "ruf=mailto:forensic@example.com; fo=0:1:d"
    )
    assert record == DmarcRecord(
        v="DMARC1",
        p="reject",
        sp="quarantine",
        adkim="s",
        aspf="r",
        pct=50,
        rua=["mailto:dmarc@example.com", "https://reports.example.com/dmarc"],
        ruf=["mailto:forensic@example.com"],
        fo=["0", "1", "d"],
    )


def test_tag_order_is_irrelevant():
    assert validate_dmarc_record("v=DMARC1;p=none;pct=100") == validate_dmarc_record(
        "v=DMARC1;pct=100;p=none"
    )


def test_prefix_is_case_insensitive():
    assert validate_dmarc_record("V=dmarc1; p=none").p == "none"


def test_quoted_values_may_contain_separators():
    record = validate_dmarc_record(
        'v=DMARC1; p=none; rua="mailto:a@example.com;mailto:b@example.com"'
    )
    assert record.rua == ["mailto:a@example.com;mailto:b@example.com"]


def test_fractional_percentage():
    assert validate_dmarc_record("v=DMARC1; p=none; pct=12.5").pct == 12.5


@pytest.mark.parametrize(
    "record,message",
    [
        ("p=none", "Invalid DMARC record format: Must start with v=DMARC1"),
        ("v=DMARC2; p=none", "Invalid DMARC record format: Must start with v=DMARC1"),
        (" v=DMARC1", "Invalid DMARC record format: Must start with v=DMARC1"),
        ("v=DMARC1; sp=none", "Missing required policy (p) tag"),
        ("v=DMARC1; p=monitor", "Invalid policy value: monitor"),
        ("v=DMARC1; p=none; sp=drop", "Invalid subdomain policy value: drop"),
        ("v=DMARC1; p=none; adkim=x", "Invalid DKIM alignment value: x"),
        ("v=DMARC1; p=none; aspf=relaxed", "Invalid SPF alignment value: relaxed"),
        ("v=DMARC1; p=none; pct=101", "Invalid percentage value: 101"),
        ("v=DMARC1; p=none; pct=-1", "Invalid percentage value: -1"),
        ("v=DMARC1; p=none; pct=all", "Invalid percentage value: all"),
        ("v=DMARC1; p=none; rua=ftp://example.com", "Invalid protocol in rua URI: ftp://example.com"),
        ("v=DMARC1; p=none; rua=dmarc@example.com", "Invalid rua URI format: dmarc@example.com"),
        ("v=DMARC1; p=none; ruf=mailto:nobody", "Invalid ruf URI format: mailto:nobody"),
        ("v=DMARC1; p=none; rua=https://", "Invalid rua URI format: https://"),
    ],
)
def test_rejects_invalid_records(record, message):
    with pytest.raises(RecordFormatError) as err:
        validate_dmarc_record(record)
    assert str(err.value) == message


@pytest.mark.parametrize(
    "record,strength",
    [
        ("v=DMARC1; p=none", Strength.WEAK),
        ("v=DMARC1; p=quarantine", Strength.MODERATE),
        ("v=DMARC1; p=reject", Strength.STRONG),
        ("v=DMARC1; p=reject; pct=99", Strength.WEAK),
        ("v=DMARC1; p=reject; pct=100", Strength.STRONG),
    ],
)
def test_evaluate_policy_strength(record, strength):
    assert evaluate_dmarc_policy(validate_dmarc_record(record)).strength == strength


def test_recommendations_do_not_change_strength():
    evaluation = evaluate_dmarc_policy(validate_dmarc_record("v=DMARC1; p=quarantine"))
    assert evaluation.strength == Strength.MODERATE
    assert evaluation.recommendations == [
        "Consider strict DKIM alignment for enhanced security",
        "Consider strict SPF alignment for enhanced security",
        "Add aggregate report URIs for monitoring",
        "Add failure report URIs for detailed error tracking",
        "Specify subdomain policy for comprehensive protection",
    ]


def test_strict_reject_policy_with_reporting_has_no_recommendations():
    evaluation = evaluate_dmarc_policy(
        validate_dmarc_record(
            "v=DMARC1; p=reject; adkim=s; aspf=s; "
            "rua=mailto:agg@example.com; ruf=mailto:forensic@example.com"
        )
    )
    assert evaluation.strength == Strength.STRONG
    assert evaluation.recommendations == []
