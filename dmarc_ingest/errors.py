class IngestError(Exception):
    """Base class of all errors the ingestion core reports to a caller.

    ``smtp_reply`` is the reply code and enhanced status code used when the
    error decides the fate of an SMTP transaction.
    """

    smtp_reply = "554 5.6.0"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self):
        return self.message

    @property
    def kind(self) -> str:
        return type(self).__name__

    def as_smtp_reply(self) -> str:
        return f"{self.smtp_reply} {self.message}"


class FormatError(IngestError):
    """Malformed record, report, subject or filename text."""


class RecordFormatError(FormatError):
    pass


class ReportFormatError(FormatError):
    pass


class AttachmentFormatError(FormatError):
    pass


class SubjectFormatError(FormatError):
    pass


class FilenameFormatError(FormatError):
    pass


class PolicyViolationError(IngestError):
    """Cross-field mismatch or a reporter that is not allowed to submit."""

    smtp_reply = "550 5.7.1"


class UnsupportedInputError(IngestError):
    smtp_reply = "554 5.6.1"


class UnsupportedAttachmentError(UnsupportedInputError):
    pass


class TransientInfrastructureError(IngestError):
    smtp_reply = "451 4.3.0"


class ReportAlreadyExistsError(Exception):
    def __init__(self, report_id: str, org_name: str):
        super().__init__(f"Report already exists: {report_id} ({org_name})")
        self.report_id = report_id
        self.org_name = org_name


class UnknownReporterError(LookupError):
    def __init__(self, org_email: str):
        super().__init__(f"Reporter not found: {org_email}")
        self.org_email = org_email
