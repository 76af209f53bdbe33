from .dkim import DkimRecord, evaluate_dkim_policy, validate_dkim_record
from .dmarc import DmarcRecord, evaluate_dmarc_policy, validate_dmarc_record
from .policy import PolicyEvaluation, Strength
from .spf import SpfRecord, SpfTerm, evaluate_spf_policy, validate_spf_record

__all__ = [
    "DkimRecord",
    "DmarcRecord",
    "PolicyEvaluation",
    "SpfRecord",
    "SpfTerm",
    "Strength",
    "evaluate_dkim_policy",
    "evaluate_dmarc_policy",
    "evaluate_spf_policy",
    "validate_dkim_record",
    "validate_dmarc_record",
    "validate_spf_record",
]
