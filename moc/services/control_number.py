"""
Control-number generator.

Format:  {PREFIX}-{AREA}-{CATEGORY}-{YYYY}-{NNNN}
  - PREFIX by request type: EMOC, BYPASS, OMOC, DMOC
  - AREA / CATEGORY upper-cased, omitted when blank
  - NNNN is a 4-digit sequence per (request type, year)

Examples: EMOC-PLANT1-PROC-2026-0001, DMOC-2026-0042

The unique index on moc_requests.control_number rejects a duplicate if two
submissions race for the same sequence; the losing commit rolls back.
"""

import re
from datetime import datetime, timezone

from sqlalchemy import func

from moc.models import db
from moc.models.enums import CONTROL_NUMBER_PREFIX
from moc.models.moc_request import MocRequest

_PART_CLEAN = re.compile(r"[^A-Z0-9]+")


def _clean_part(value):
    if not value:
        return None
    part = _PART_CLEAN.sub("", str(value).upper())
    return part or None


def next_sequence(request_type: str, year: int) -> int:
    """Return max(seq)+1 among numbered requests of this type and year."""
    current = (
        db.session.query(func.max(MocRequest.control_number_seq))
        .filter(
            MocRequest.request_type == request_type,
            MocRequest.control_number_year == year,
        )
        .scalar()
    )
    return (current or 0) + 1


def format_control_number(prefix, area, category, year, seq) -> str:
    parts = [prefix, _clean_part(area), _clean_part(category), str(year), f"{seq:04d}"]
    return "-".join(p for p in parts if p)


def generate_control_number(moc_request, now=None) -> tuple[str, int, int]:
    """
    Compute the next control number for *moc_request*.

    Returns:
        (control_number, year, seq)
    """
    now = now or datetime.now(timezone.utc)
    year = now.year
    prefix = CONTROL_NUMBER_PREFIX[moc_request.type_enum]
    seq = next_sequence(moc_request.request_type, year)
    number = format_control_number(
        prefix, moc_request.area_code, moc_request.category_code, year, seq,
    )
    return number, year, seq
