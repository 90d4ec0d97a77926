import base64
import hashlib
import io
import logging
from dataclasses import dataclass
from typing import Optional

import pandas as pd

logger = logging.getLogger(__name__)

CSV_MEDIA_TYPE = "text/csv"
SPREADSHEET_SUFFIXES = (".xlsx", ".xls")


class FileIngestError(ValueError):
    pass


@dataclass(frozen=True)
class DataFile:
    name: str
    payload: str  # base64 of the UTF-8 CSV bytes
    media_type: str = CSV_MEDIA_TYPE


def spreadsheet_to_csv(raw: bytes) -> str:
    """Converts the first sheet of an Excel workbook to CSV text, rows kept exactly as in the sheet."""
    df = pd.read_excel(io.BytesIO(raw), sheet_name=0, header=None, dtype=object)
    return df.to_csv(index=False, header=False)


def encode_payload(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def decode_payload(payload: str) -> bytes:
    return base64.b64decode(payload)


def ingest_file(file_name: str, raw: bytes) -> DataFile:
    """
    Turns an uploaded spreadsheet or delimited-text file into a transportable CSV payload.
    Everything is sent to Gemini as CSV, whatever the upload format was.
    """
    try:
        if file_name.lower().endswith(SPREADSHEET_SUFFIXES):
            csv_text = spreadsheet_to_csv(raw)
        else:
            csv_text = raw.decode("utf-8-sig")
    except Exception as e:
        logger.exception("File processing error for %s", file_name)
        raise FileIngestError(f"Could not read '{file_name}': {e}") from e

    logger.info("Converted %s to CSV (%d characters)", file_name, len(csv_text))
    return DataFile(name=file_name, payload=encode_payload(csv_text))


class UploadSlot:
    """
    Ingested copy of whatever the file uploader currently holds.

    `sync()` is called on every script run: with no file it empties the slot, and a
    file is only converted again when its name or content changed.
    """

    def __init__(self):
        self.data_file: Optional[DataFile] = None
        self.error: Optional[str] = None
        self._key = None

    def sync(self, file_name: Optional[str] = None, raw: Optional[bytes] = None) -> Optional[DataFile]:
        if file_name is None:
            self.data_file, self.error, self._key = None, None, None
            return None

        key = (file_name, hashlib.sha1(raw).hexdigest())
        if key != self._key:
            self._key = key
            self.data_file, self.error = None, None
            try:
                self.data_file = ingest_file(file_name, raw)
            except FileIngestError as e:
                self.error = str(e)
        return self.data_file
