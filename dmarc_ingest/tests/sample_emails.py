import io
from email.message import EmailMessage
from email.mime.application import MIMEApplication
from email.mime.base import MIMEBase
from email.mime.text import MIMEText
from gzip import GzipFile
from typing import Optional
from zipfile import ZipFile

from dmarc_ingest.model.tests.sample_data import create_sample_xml

SAMPLE_SENDER = "noreply-dmarc-support@google.com"
SAMPLE_SUBJECT = (
    "Report Domain: mydomain.de Submitter: google.com "
    "Report-ID: <12598866915817748661>"
)
SAMPLE_FILENAME = "google.com!mydomain.de!1607299200!1607385599"


def create_minimal_email(to="dmarc@mydomain.de", content=None):
    msg = EmailMessage()
    msg["Subject"] = "Minimal email"
    msg["From"] = SAMPLE_SENDER
    msg["To"] = to
    if content:
        msg.set_content(content)
    return msg


def create_xml_report(
    *, filename: str = SAMPLE_FILENAME + ".xml", **xml_args
) -> MIMEText:
    xml = MIMEText(create_sample_xml(**xml_args), "xml")
    xml.add_header("Content-Disposition", "attachment", filename=filename)
    return xml


def create_zip_report(
    *, filename: str = SAMPLE_FILENAME + ".zip", subtype="zip", **xml_args
) -> MIMEApplication:
    compressed = io.BytesIO()
    with ZipFile(compressed, "w") as zip_file:
        zip_file.writestr(SAMPLE_FILENAME + ".xml", create_sample_xml(**xml_args))

    zip_mime = MIMEApplication(compressed.getvalue(), subtype)
    zip_mime.add_header("Content-Disposition", "attachment", filename=filename)
    return zip_mime


def create_gzip_report(
    *, filename: str = SAMPLE_FILENAME + ".xml.gz", subtype="gzip", **xml_args
) -> MIMEApplication:
    gzip_mime = MIMEApplication(gzip_bytes(create_sample_xml(**xml_args)), subtype)
    gzip_mime.add_header("Content-Disposition", "attachment", filename=filename)
    return gzip_mime


def gzip_bytes(text: str) -> bytes:
    compressed = io.BytesIO()
    with GzipFile("report.xml", mode="wb", fileobj=compressed) as gzip_file:
        gzip_file.write(text.encode("utf-8"))
    return compressed.getvalue()


def zip_bytes(**entries: str) -> bytes:
    compressed = io.BytesIO()
    with ZipFile(compressed, "w") as zip_file:
        for name, text in entries.items():
            zip_file.writestr(name, text)
    return compressed.getvalue()


def create_email_with_attachment(
    *attachments: MIMEBase,
    to="dmarc@mydomain.de",
    sender=SAMPLE_SENDER,
    subject: Optional[str] = SAMPLE_SUBJECT,
):
    msg = EmailMessage()
    msg.set_content("This is a DMARC aggregate report.")
    msg.make_mixed()
    for attachment in attachments:
        msg.attach(attachment)
    if subject is not None:
        msg["Subject"] = subject
    msg["From"] = sender
    msg["To"] = to
    msg["Date"] = "Tue, 08 Dec 2020 04:15:22 +0000"
    return msg


def patch_zip_headers(
    content: bytes, *, flag_bits: int = 0, compress_type: Optional[int] = None
) -> bytes:
    """Rewrite flags and compression method of every entry in both the local
    and the central directory headers of a stored (uncompressed) archive."""
    data = bytearray(content)
    for signature, flags_offset in ((b"PK\x03\x04", 6), (b"PK\x01\x02", 8)):
        start = data.find(signature)
        while start != -1:
            data[start + flags_offset] |= flag_bits
            if compress_type is not None:
                method = start + flags_offset + 2
                data[method : method + 2] = compress_type.to_bytes(2, "little")
            start = data.find(signature, start + len(signature))
    return bytes(data)
