"""
File persistence for accounts, progress and scraped leads.
The file extension selects the encoding: .csv or .json.
"""

import csv
import json
import logging
import os
from pathlib import Path
from typing import Any, Iterable, List, Union

from leadrunner.errors import UnsupportedFileFormat
from leadrunner.models import Account, Lead

logger = logging.getLogger(__name__)

CSV = '.csv'
JSON = '.json'

PathLike = Union[str, Path]


def _format_of(path: PathLike) -> str:
    ext = Path(path).suffix.lower()
    if ext not in (CSV, JSON):
        raise UnsupportedFileFormat(str(path))
    return ext


def _as_record(record: Any) -> dict:
    if hasattr(record, 'to_record'):
        return record.to_record()
    return dict(record)


def _csv_fieldnames(rows: List[dict]) -> List[str]:
    names: List[str] = []
    for row in rows:
        for key in row:
            if key not in names:
                names.append(key)
    return names


def save_records(path: PathLike, records: Any):
    """
    Atomically write records to a CSV or JSON file.

    Args:
        path: Destination file; its extension selects the encoding
        records: List of dicts (or objects with to_record()); JSON files
            also accept a dict

    Raises:
        UnsupportedFileFormat: If the extension is neither .csv nor .json
    """
    fmt = _format_of(path)
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    # Atomic write: write to temp file, then rename
    temp_file = path.with_name(path.name + '.tmp')
    try:
        with open(temp_file, 'w', encoding='utf-8', newline='') as f:
            if fmt == CSV:
                rows = [_as_record(r) for r in records]
                writer = csv.DictWriter(f, fieldnames=_csv_fieldnames(rows))
                writer.writeheader()
                writer.writerows(rows)
            else:
                if isinstance(records, dict):
                    data = records
                else:
                    data = [_as_record(r) for r in records]
                json.dump(data, f, indent=2, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())

        temp_file.replace(path)

    except Exception:
        if temp_file.exists():
            temp_file.unlink()
        raise


def read_records(path: PathLike) -> Any:
    """
    Read records from a CSV or JSON file.

    Returns:
        List of dicts for CSV; the decoded document for JSON

    Raises:
        UnsupportedFileFormat: If the extension is neither .csv nor .json
    """
    fmt = _format_of(path)

    with open(path, 'r', encoding='utf-8', newline='') as f:
        if fmt == CSV:
            return list(csv.DictReader(f))
        return json.load(f)


def read_accounts(path: PathLike) -> List[Account]:
    """Load accounts from an input or progress file."""
    records = read_records(path)
    if isinstance(records, dict):
        records = [records]
    return [Account.from_record(r) for r in records]


def save_accounts(path: PathLike, accounts: Iterable[Account]):
    save_records(path, [a.to_record() for a in accounts])


class LeadWriter:
    """
    Append-only writer for scraped leads.

    CSV output gets a header only when the file is new or empty; JSON
    output is written one object per line.
    """

    def __init__(self, path: PathLike):
        self.path = Path(path)
        self.format = _format_of(self.path)
        self.written = 0

    def write_lead(self, lead: Union[Lead, dict]):
        self.write_leads([lead])

    def write_leads(self, leads: Iterable[Union[Lead, dict]]):
        """
        Append leads to the output file.

        Args:
            leads: Lead objects or raw dicts from the scraping capability
        """
        rows = [(l if isinstance(l, Lead) else Lead.from_record(l)).to_record() for l in leads]
        if not rows:
            return

        self.path.parent.mkdir(parents=True, exist_ok=True)
        new_file = not self.path.exists() or self.path.stat().st_size == 0

        with open(self.path, 'a', encoding='utf-8', newline='') as f:
            if self.format == CSV:
                writer = csv.DictWriter(f, fieldnames=list(rows[0]))
                if new_file:
                    writer.writeheader()
                writer.writerows(rows)
            else:
                for row in rows:
                    f.write(json.dumps(row, ensure_ascii=False))
                    f.write('\n')

        self.written += len(rows)
        logger.debug("Wrote %d leads to %s", len(rows), self.path)
