"""
Output Writer
=============
Encodes saved pages and writes them to a file or stdout.

XML-ish text: one ``<page>`` block per record, blocks separated by a blank
line, content emitted as-is (no escaping).  JSON: an array of
``{"title", "url", "content"}`` objects, ``[]`` when nothing was saved.
"""

import json
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence, TextIO

from .errors import OutputError
from .processor import PageRecord
from .run_config import FORMAT_JSON, FORMAT_XML

logger = logging.getLogger(__name__)

PAGE_TEMPLATE = (
    "<page>\n"
    "  <title>{title}</title>\n"
    "  <url>{url}</url>\n"
    "  <content>\n"
    "{content}\n"
    "  </content>\n"
    "</page>"
)


def format_page_xml(record: PageRecord) -> str:
    return PAGE_TEMPLATE.format(title=record.title, url=record.url, content=record.markdown)


def format_xml(records: Sequence[PageRecord]) -> str:
    return "\n\n".join(format_page_xml(r) for r in records)


def format_json(records: Sequence[PageRecord]) -> str:
    items: List[dict] = [
        {"title": r.title, "url": r.url, "content": r.markdown}
        for r in records
    ]
    return json.dumps(items, indent=2, ensure_ascii=False)


def resolve_format(outfile: Optional[str], output_format: str = FORMAT_XML) -> str:
    """A ``.json`` outfile forces JSON; otherwise *output_format* wins."""
    if outfile and outfile.lower().endswith(".json"):
        return FORMAT_JSON
    return output_format or FORMAT_XML


def write_results(
    records: Sequence[PageRecord],
    outfile: Optional[str] = None,
    output_format: str = FORMAT_XML,
    stream: Optional[TextIO] = None,
) -> int:
    """
    Write *records* and return how many were written.

    Raises:
        OutputError: the file could not be written.
    """
    fmt = resolve_format(outfile, output_format)
    if fmt == FORMAT_JSON:
        payload = format_json(records)
    else:
        if not records:
            logger.info("[OUTPUT] No results to output.")
        payload = format_xml(records)

    if outfile:
        path = Path(outfile)
        try:
            if path.parent and not path.parent.exists():
                path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(payload, encoding="utf-8")
        except OSError as exc:
            raise OutputError(f"could not write {outfile}: {exc}") from exc
        logger.info(f"[OUTPUT] Wrote {len(records)} pages to {outfile} ({fmt})")
        return len(records)

    out = stream or sys.stdout
    if payload:
        out.write(payload)
        out.write("\n")
        out.flush()
    return len(records)
