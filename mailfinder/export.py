"""
CSV export of job results and URL extraction from uploaded CSV text.
"""

import csv
import io
import logging
import re
from typing import List

import pandas as pd

from mailfinder.models import ExtractionJob

log = logging.getLogger(__name__)

EXPORT_COLUMNS = ["URL", "Email", "Status", "Extracted At"]

# Only the first columns of an uploaded sheet are scanned for URLs
MAX_CSV_COLUMNS = 10

_URL_CELL_RE = re.compile(r"^https?://[^\s/$.?#][^\s]*$", re.IGNORECASE)
_DOMAIN_CELL_RE = re.compile(
    r"^(?:www\.)?(?:[a-z0-9](?:[a-z0-9-]*[a-z0-9])?\.)+[a-z]{2,63}(?::\d+)?(?:/\S*)?$",
    re.IGNORECASE,
)


def render_results_csv(job: ExtractionJob) -> str:
    """
    One row per (URL, email); a URL without emails gets one row with an empty
    email. Every field is quoted.
    """
    rows = []
    for result in job.results:
        extracted = result.extracted_at.isoformat() if result.extracted_at else ""
        if not result.emails:
            rows.append([result.url, "", result.status, extracted])
            continue
        for email in result.emails:
            rows.append([result.url, email, result.status, extracted])

    df = pd.DataFrame(rows, columns=EXPORT_COLUMNS)
    return df.to_csv(index=False, quoting=csv.QUOTE_ALL, lineterminator="\n")


def is_url_like(cell: str) -> bool:
    if not cell or "@" in cell or " " in cell:
        return False
    return bool(_URL_CELL_RE.match(cell) or _DOMAIN_CELL_RE.match(cell))


def extract_urls_from_csv(text: str) -> List[str]:
    """
    URL-like cells (http(s) URLs or bare domains) from already-validated CSV
    text, scanning the first ``MAX_CSV_COLUMNS`` columns of every row, in
    order of appearance without duplicates.
    """
    if not text or not text.strip():
        return []

    df = pd.read_csv(
        io.StringIO(text),
        header=None,
        names=list(range(MAX_CSV_COLUMNS)),
        index_col=False,
        dtype=str,
        keep_default_na=False,
        skip_blank_lines=True,
        engine="python",
        on_bad_lines=lambda fields: fields[:MAX_CSV_COLUMNS],
    )

    urls: List[str] = []
    seen = set()
    for row in df.itertuples(index=False):
        for value in row:
            cell = str(value).strip().strip("\"'")
            if not is_url_like(cell):
                continue
            key = cell.lower()
            if key not in seen:
                seen.add(key)
                urls.append(cell)

    log.debug("Extracted %d URLs from %d CSV rows", len(urls), len(df))
    return urls
