"""
GetRecords request body (CSW 2.0.2, ISO 19139 output schema).

The body is a fixed template: same inputs always give byte-identical output.
Results are sorted ascending on apiso:Modified; offset-based resumption
depends on that ordering together with a fixed window end.
"""

from __future__ import annotations

from datetime import datetime
from xml.sax.saxutils import escape

from .utils import format_iso

MODIFIED_PROPERTY = "apiso:Modified"

_GREATER_OR_EQUAL = """<ogc:PropertyIsGreaterThanOrEqualTo>
          <ogc:PropertyName>{prop}</ogc:PropertyName>
          <ogc:Literal>{value}</ogc:Literal>
        </ogc:PropertyIsGreaterThanOrEqualTo>"""

_LESS_THAN = """<ogc:PropertyIsLessThan>
          <ogc:PropertyName>{prop}</ogc:PropertyName>
          <ogc:Literal>{value}</ogc:Literal>
        </ogc:PropertyIsLessThan>"""

_TEMPLATE = """<?xml version="1.0"?>
<csw:GetRecords xmlns:csw="http://www.opengis.net/cat/csw/2.0.2" xmlns:ogc="http://www.opengis.net/ogc" \
service="CSW" version="2.0.2" resultType="results" outputSchema="http://www.isotc211.org/2005/gmd" \
maxRecords="{max_records}" startPosition="{start_position}">
  <csw:Query typeNames="csw:Record">
    <csw:ElementSetName>full</csw:ElementSetName>
    <csw:Constraint version="1.1.0">
      <ogc:Filter>
        {filter}
      </ogc:Filter>
    </csw:Constraint>
    <ogc:SortBy>
      <ogc:SortProperty>
        <ogc:PropertyName>{prop}</ogc:PropertyName>
        <ogc:SortOrder>ASC</ogc:SortOrder>
      </ogc:SortProperty>
    </ogc:SortBy>
  </csw:Query>
</csw:GetRecords>"""


def _literal(value: datetime | str) -> str:
    text = format_iso(value) if isinstance(value, datetime) else str(value).strip()
    return escape(text)


def build_date_filter(start: datetime | str, end: datetime | str | None = None) -> str:
    """modified >= start, and modified < end when an end is given."""
    lower = _GREATER_OR_EQUAL.format(prop=MODIFIED_PROPERTY, value=_literal(start))
    if end is None:
        return lower
    upper = _LESS_THAN.format(prop=MODIFIED_PROPERTY, value=_literal(end))
    return f"""<ogc:And>
        {lower}
        {upper}
        </ogc:And>"""


def build_get_records(
    start: datetime | str,
    end: datetime | str | None,
    page_size: int,
    offset: int,
) -> str:
    """
    Build the GetRecords POST body for one page of a date window.

    Args:
        start: inclusive lower bound on the modification date
        end: exclusive upper bound, or None for open-ended
        page_size: maxRecords
        offset: 1-based startPosition
    """
    if page_size < 1:
        raise ValueError(f"page_size must be >= 1 (got {page_size})")
    if offset < 1:
        raise ValueError(f"offset must be >= 1 (got {offset})")
    return _TEMPLATE.format(
        max_records=int(page_size),
        start_position=int(offset),
        filter=build_date_filter(start, end),
        prop=MODIFIED_PROPERTY,
    )
