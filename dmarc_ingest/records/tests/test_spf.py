import pytest

from dmarc_ingest.errors import RecordFormatError
from dmarc_ingest.records.policy import Strength
from dmarc_ingest.records.spf import (
    SpfRecord,
    SpfTerm,
    evaluate_spf_policy,
    validate_spf_record,
)


def test_parses_terms_with_default_qualifier():
    record = validate_spf_record(
        "v=spf1 ip4:192.168.0.1 include:_spf.google.com mx -all"
    )
    assert record == SpfRecord(
        version="spf1",
        terms=[
            SpfTerm(mechanism="ip4", qualifier="+", value="192.168.0.1"),
            SpfTerm(mechanism="include", qualifier="+", value="_spf.google.com"),
            SpfTerm(mechanism="mx", qualifier="+"),
            SpfTerm(mechanism="all", qualifier="-"),
        ],
    )


def test_version_prefix_is_case_insensitive():
    assert validate_spf_record("V=SPF1 -ALL").terms == [
        SpfTerm(mechanism="all", qualifier="-")
    ]


@pytest.mark.parametrize(
    "record",
    [
        "v=spf1 ip6:2001:db8::/32 -all",
        "v=spf1 ip4:10.0.0.0/8 ~all",
        "v=spf1 a mx/24 a:mail.example.com/28 -all",
        "v=spf1 exists:example.com ?all",
        "v=spf1 redirect=_spf.example.com",
        "v=spf1 include:spf.protection.outlook.com -all",
    ],
)
def test_accepts_valid_records(record):
    parsed = validate_spf_record(record)
    evaluate_spf_policy(parsed)
    all_terms = [term for term in parsed.terms if term.mechanism == "all"]
    assert not all_terms or parsed.terms[-1] == all_terms[0]


@pytest.mark.parametrize(
    "record,message",
    [
        ("spf1 -all", "Must start with v=spf1"),
        ("v=spf2 -all", "Must start with v=spf1"),
        ("v=spf1", "Invalid SPF term"),
        ("v=spf1 all all", "Multiple 'all' mechanisms"),
        ("v=spf1 all mx", "must be the last term"),
        ("v=spf1 foo:bar -all", "Invalid SPF mechanism: foo"),
        ("v=spf1 include: -all", "Invalid domain for include"),
        ("v=spf1 ip4:256.0.0.1 -all", "Invalid IPv4 address: 256.0.0.1"),
        ("v=spf1 ip4:1.2.3 -all", "Invalid IPv4 address"),
        ("v=spf1 ip6:2001:db8::/129 -all", "Invalid IPv6 address"),
        ("v=spf1 ip6:1:2:3:4:5:6:7:8:9 -all", "Invalid IPv6 address"),
        ("v=spf1 ip6:gggg:: -all", "Invalid IPv6 address"),
        ("v=spf1 ip6:/64 -all", "Invalid IPv6 address"),
        ("v=spf1 ip6:2001:db8 -all", "Invalid IPv6 address"),
        ("v=spf1 exists:bad..domain -all", "Invalid domain for exists"),
        ("v=spf1 a:-bad.example.com -all", "Invalid domain for a"),
        ("v=spf1 mx: -all", "Invalid domain for mx"),
        ("v=spf1 ptr=example.com -all", "Invalid SPF term"),
    ],
)
def test_rejects_invalid_records(record, message):
    with pytest.raises(RecordFormatError) as err:
        validate_spf_record(record)
    assert message in str(err.value)


@pytest.mark.parametrize(
    "record,strength",
    [
        ("v=spf1 ip4:192.0.2.1 -all", Strength.STRONG),
        ("v=spf1 ip4:192.0.2.1 ~all", Strength.MODERATE),
        ("v=spf1 ip4:192.0.2.1 ?all", Strength.WEAK),
        ("v=spf1 ip4:192.0.2.1 +all", Strength.WEAK),
        ("v=spf1 ip4:192.0.2.1", Strength.WEAK),
        ("v=spf1 ip4:192.0.2.1 ptr -all", Strength.WEAK),
    ],
)
def test_evaluate_policy_strength(record, strength):
    assert evaluate_spf_policy(validate_spf_record(record)).strength == strength


def test_missing_ip_mechanisms_is_only_a_recommendation():
    evaluation = evaluate_spf_policy(validate_spf_record("v=spf1 mx -all"))
    assert evaluation.strength == Strength.STRONG
    assert evaluation.recommendations == [
        "Consider adding IP-based mechanisms for critical infrastructure"
    ]


def test_ptr_recommends_removal():
    evaluation = evaluate_spf_policy(validate_spf_record("v=spf1 ip4:192.0.2.1 ptr -all"))
    assert "Remove 'ptr' mechanism as it is unreliable and slow" in (
        evaluation.recommendations
    )
