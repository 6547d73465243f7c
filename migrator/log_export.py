"""
CSV export of a job's log entries.
"""

import csv
import io
from typing import Iterable

from migrator.models import MigrationLog

CSV_HEADER = ["Timestamp", "Level", "Message", "Details"]
CSV_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
UTF8_BOM = "\ufeff"


def export_logs_csv(logs: Iterable[MigrationLog]) -> bytes:
    """Render log entries oldest first as UTF-8 CSV with a BOM (Excel-friendly)"""
    buffer = io.StringIO()
    buffer.write(UTF8_BOM)
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for log in sorted(logs, key=lambda entry: entry.timestamp):
        writer.writerow([
            log.timestamp.strftime(CSV_TIMESTAMP_FORMAT),
            log.level.value,
            log.message,
            log.details or "",
        ])
    return buffer.getvalue().encode("utf-8")
