"""CSV export of collected listings."""

import csv
import io
import logging
from datetime import date
from pathlib import Path
from typing import Iterable, Optional, Union

from bizdata.models import BusinessListing

logger = logging.getLogger(__name__)


def default_export_filename(today: Optional[date] = None) -> str:
    today = today or date.today()
    return f"business_data_{today.isoformat()}.csv"


def _write_rows(handle, listings: Iterable[BusinessListing]) -> int:
    writer = csv.writer(handle, lineterminator="\n")
    writer.writerow(BusinessListing.CSV_HEADERS)
    count = 0
    for listing in listings:
        writer.writerow(listing.csv_row())
        count += 1
    return count


def export_csv(listings: Iterable[BusinessListing]) -> str:
    """Serialize listings into CSV text with the fixed header row."""
    buffer = io.StringIO()
    _write_rows(buffer, listings)
    return buffer.getvalue()


def write_csv(listings: Iterable[BusinessListing], path: Union[str, Path]) -> Path:
    target = Path(path)
    if target.parent and not target.parent.exists():
        target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("w", encoding="utf-8", newline="") as fh:
        count = _write_rows(fh, listings)
    logger.info("Exported %d listings to %s", count, target)
    return target
