import re
from dataclasses import dataclass
from typing import Optional

SUBJECT_REGEX = re.compile(
    r"^(?:\[([\w ]+)\]\s*)?"
    r"Report\s+Domain:\s*([a-zA-Z0-9][a-zA-Z0-9_.-]+[a-zA-Z0-9])"
    r"(?:\s+Submitter:\s*([a-zA-Z0-9][a-zA-Z0-9_.-]+[a-zA-Z0-9]))?"
    r"\s*(?:Report-ID:\s*<?([^>\s]+)>?)?$",
    re.IGNORECASE,
)

FILENAME_REGEX = re.compile(
    r"^((?:[a-zA-Z0-9_-]+\.)+[a-zA-Z]{2,})"
    r"!((?:[a-zA-Z0-9_-]+\.)+[a-zA-Z]{2,})"
    r"!(\d+)!(\d+)"
    r"((?:\.[^.]+)*)$",
    re.ASCII,
)


@dataclass(frozen=True)
class EmailSubjectInfo:
    domain: str
    tag: Optional[str] = None
    submitter: Optional[str] = None
    report_id: Optional[str] = None


@dataclass(frozen=True)
class AttachmentFilenameInfo:
    submitter: str
    domain: str
    begin: int
    end: int
    extension: str


def parse_report_subject(subject: str) -> Optional[EmailSubjectInfo]:
    """Parse a subject of the form
    ``[tag] Report Domain: <domain> Submitter: <submitter> Report-ID: <id>``.

    Everything but the domain is optional. Trailing text that is not part of
    the grammar makes the whole subject invalid.
    """
    match = SUBJECT_REGEX.fullmatch(subject.strip())
    if not match:
        return None
    tag, domain, submitter, report_id = match.groups()
    return EmailSubjectInfo(
        domain=domain, tag=tag, submitter=submitter, report_id=report_id
    )


def parse_report_filename(filename: str) -> Optional[AttachmentFilenameInfo]:
    """Parse a filename of the form ``submitter!domain!begin!end.ext[.ext]``."""
    match = FILENAME_REGEX.fullmatch(filename)
    if not match:
        return None
    submitter, domain, begin, end, extension = match.groups()
    return AttachmentFilenameInfo(
        submitter=submitter,
        domain=domain,
        begin=int(begin),
        end=int(end),
        extension=extension,
    )
