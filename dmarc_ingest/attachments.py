import gzip
import io
import zlib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Callable, List, Optional
from zipfile import BadZipFile, LargeZipFile, ZipFile

from dmarc_ingest.errors import (
    AttachmentFormatError,
    IngestError,
    UnsupportedAttachmentError,
)

GZIP_MAGIC = b"\x1f\x8b"
ZIP_MAGIC = b"PK\x03\x04"

REPORT_CONTENT_TYPES = ("application/zip", "application/gzip", "text/xml")
REPORT_FILE_EXTENSIONS = (".xml.gz", ".xml", ".zip")


@dataclass(frozen=True)
class Attachment:
    content: bytes
    content_type: str
    filename: Optional[str] = None


def is_report_attachment(attachment: Attachment) -> bool:
    filename = attachment.filename or ""
    return attachment.content_type in REPORT_CONTENT_TYPES or filename.endswith(
        REPORT_FILE_EXTENSIONS
    )


def get_report_attachments(msg: EmailMessage) -> List[Attachment]:
    attachments = []
    for part in msg.walk():
        if part.is_multipart():
            continue
        attachment = Attachment(
            content=part.get_payload(decode=True) or b"",
            content_type=part.get_content_type(),
            filename=part.get_filename(),
        )
        if is_report_attachment(attachment):
            attachments.append(attachment)
    return attachments


def is_gzip(content: bytes) -> bool:
    return content[:2] == GZIP_MAGIC


def is_zip(content: bytes) -> bool:
    return content[:4] == ZIP_MAGIC


def handle_gzip(content: bytes) -> str:
    try:
        return gzip.decompress(content).decode("utf-8")
    except (OSError, EOFError, zlib.error) as err:
        raise AttachmentFormatError(f"Invalid gzip data: {err}") from err


def handle_zip(content: bytes) -> str:
    try:
        with ZipFile(io.BytesIO(content), "r") as zip_file:
            names = zip_file.namelist()
            if not names:
                raise AttachmentFormatError("ZIP archive is empty")
            xml_name = next(
                (name for name in names if name.lower().endswith(".xml")), None
            )
            if xml_name is None:
                raise AttachmentFormatError("No XML file found in ZIP archive")
            with zip_file.open(xml_name, "r") as f:
                return f.read().decode("utf-8")
    except (BadZipFile, OSError, EOFError, zlib.error) as err:
        raise AttachmentFormatError(f"Invalid ZIP data: {err}") from err
    except (RuntimeError, NotImplementedError, LargeZipFile) as err:
        # encrypted entries and unsupported compression methods
        raise AttachmentFormatError(f"Unreadable ZIP entry: {err}") from err


def handle_xml(content: bytes) -> str:
    return content.decode("utf-8")


def _select_handler(
    content: bytes, content_type: str, filename: str
) -> Optional[Callable[[bytes], str]]:
    content_type = content_type.lower()
    if "gzip" in content_type or filename.endswith(".gz") or is_gzip(content):
        return handle_gzip
    if "zip" in content_type or filename.endswith(".zip") or is_zip(content):
        return handle_zip
    if "xml" in content_type or filename.endswith(".xml"):
        return handle_xml
    return None


def extract_xml_from_attachment(
    content: bytes, content_type: str, filename: Optional[str] = None
) -> str:
    """Decode the single XML payload of a report attachment.

    Gzip takes priority over zip, and zip over plain XML. Each format is
    recognised by its content type, its file extension or its magic number.
    """
    try:
        handler = _select_handler(content, content_type, filename or "")
        if handler is None:
            raise UnsupportedAttachmentError(
                f"Unsupported attachment type: {content_type}"
            )
        return handler(content)
    except UnicodeDecodeError as err:
        raise AttachmentFormatError(
            f"Failed to extract XML from attachment: {err}"
        ) from err
    except IngestError as err:
        raise type(err)(f"Failed to extract XML from attachment: {err}") from err

