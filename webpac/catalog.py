"""Bibliographic records and copy availability from the public catalog.

Bib records come from the ``xrecord=`` XML export, a loose rendering of
MARC: each ``VARFLD`` carries a tag in ``MARCINFO/MARCTAG`` and a list of
``MARCSUBFLD`` indicator/data pairs. Availability is scraped from the
holdings page.
"""

import logging
import re
from collections.abc import Awaitable, Callable, Iterable

from bs4 import BeautifulSoup

from webpac.config import ILSConfig
from webpac.models import Availability, BibRecord, CopyStatus
from webpac.parser import clean_text, parse_iii_date
from webpac.transport import Transport, TransportFailure

logger = logging.getLogger(__name__)

# tag -> subfield indicator -> entry index -> values
MarcFields = dict[str, dict[str, dict[int, list[str]]]]

CoverLookup = Callable[[str], Awaitable[str | None]]

SERIES_TAGS = ("490", "440", "400", "410", "730", "800", "810", "830")
ADDITIONAL_TITLE_TAGS = ("730", "740", "246", "240")
NOTE_TAGS = ("500", "505", "511", "520", "538")
SUBJECT_TAGS = (
    "600", "610", "611", "630", "650", "651",
    "653", "654", "655", "656", "657", "658",
    "690", "691", "692", "693", "694",
    "696", "697", "698", "699",
)

_UNICODE_ESCAPE = re.compile(r"\{u([0-9a-fA-F]{4})\}")
_ANNOTATION = re.compile(r"\{.*?\}")
_MEDIUM = re.compile(r"\[(.*?)\]")


def _text(element) -> str:
    return element.get_text().strip() if element is not None else ""


def parse_marc_fields(varfields: Iterable) -> MarcFields:
    """Index ``VARFLD`` elements by tag, subfield and entry position."""
    fields: MarcFields = {}
    for index, varfield in enumerate(varfields):
        marcinfo = varfield.find("MARCINFO")
        if marcinfo is None:
            continue
        tag = _text(marcinfo.find("MARCTAG"))
        for subfield in varfield.find_all("MARCSUBFLD"):
            indicator = _text(subfield.find("SUBFIELDINDICATOR"))
            data = _text(subfield.find("SUBFIELDDATA"))
            fields.setdefault(tag, {}).setdefault(indicator, {}).setdefault(index, []).append(data)
    return fields


def clean_marc_value(value: str, decode_unicode: bool = True) -> str:
    """Decode ``{uXXXX}`` escapes, drop other ``{...}`` markers, fix quotes."""
    value = value.strip()
    if decode_unicode:
        value = _UNICODE_ESCAPE.sub(lambda m: chr(int(m.group(1), 16)), value)
    value = _ANNOTATION.sub("", value)
    return value.replace("<", '"').strip()


def prepare_values(
    fields: dict[str, dict[int, list[str]]] | None,
    subfields: Iterable[str],
    delimiter: str = " ",
    decode_unicode: bool = True,
) -> list[str]:
    """Assemble one string per field entry from the requested subfields.

    Values are appended subfield by subfield, in the order requested, and
    joined with ``delimiter``. Empty values are skipped.
    """
    if not fields:
        return []

    entries: dict[int, list[str]] = {}
    for subfield in subfields:
        for index, values in fields.get(subfield, {}).items():
            for value in values:
                if not value.strip():
                    continue
                entries.setdefault(index, []).append(clean_marc_value(value, decode_unicode))

    return [delimiter.join(parts) for parts in entries.values()]


def prepare_linked(
    fields880: dict[str, dict[int, list[str]]] | None, source_tag: str, decode_unicode: bool = True
) -> list[str]:
    """Return the alternate-script ``880`` renderings of ``source_tag``.

    An 880 entry names the field it renders in its ``$6`` linkage, e.g.
    ``245-01``.
    """
    if not fields880:
        return []

    linked = []
    titles = fields880.get("a", {})
    for index, linkage in fields880.get("6", {}).items():
        if linkage and source_tag in linkage[0] and titles.get(index):
            linked.append(clean_marc_value(titles[index][0], decode_unicode))
    return linked


def _truncate_series(value: str) -> str:
    cuts = [pos for pos in (value.find(";"), value.find(":"), value.find(".")) if pos > 0]
    return value[: min(cuts)].strip() if cuts else value


def _trim_slash(value: str) -> str:
    value = value.strip()
    return value[:-1].strip() if value.endswith("/") else value


def _first(values: list[str]) -> str:
    return values[0] if values else ""


class CatalogScraper:
    """Reads bib records and availability from the public catalog pages."""

    def __init__(
        self,
        config: ILSConfig,
        transport: Transport | None = None,
        cover_lookup: CoverLookup | None = None,
    ):
        self.config = config
        self.profile = config.profile
        self.transport = transport or Transport(config)
        self.cover_lookup = cover_lookup

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        await self.transport.close()

    async def scrape_bib(
        self, bnum: str, skip_cover: bool = False, include_suppressed: bool = False
    ) -> BibRecord | None | TransportFailure:
        """Fetch and flatten one bib record.

        Returns None when the record does not exist, has no MARC data, or is
        suppressed from public view. With ``include_suppressed`` a suppressed
        record is returned flagged instead, so callers can purge it.
        """
        bnum = bnum.strip()
        page = await self.transport.execute(self.profile.xrecord_path.format(bnum=bnum), secure=False)
        if isinstance(page, TransportFailure):
            return page
        return await self.parse_xrecord(bnum, page.body, skip_cover, include_suppressed)

    async def parse_xrecord(
        self, bnum: str, xml: str, skip_cover: bool = False, include_suppressed: bool = False
    ) -> BibRecord | None:
        soup = BeautifulSoup(xml, "xml")
        if soup.find("NULLRECORD") is not None:
            return None
        varfields = soup.find_all("VARFLD")
        if not varfields or varfields[0].find("MARCINFO") is None:
            return None

        info = soup.find("RECORDINFO")
        fixed = {}
        bibliographic = soup.find("BIBLIOGRAPHIC")
        if bibliographic is not None:
            for fixfld in bibliographic.find_all("FIXFLD"):
                fixed[_text(fixfld.find("FIXLABEL"))] = _text(fixfld.find("FIXVALUE"))

        bcode3 = fixed.get("BCODE3") or "-"
        suppressed = bcode3 in self.config.suppress_codes
        if suppressed and not include_suppressed:
            logger.debug("Bib %s is suppressed (BCODE3 %r)", bnum, bcode3)
            return None

        marc = parse_marc_fields(varfields)
        decode = self.profile.decode_unicode

        def values(tag, subfields, delimiter=" "):
            return prepare_values(marc.get(tag), subfields, delimiter, decode)

        def linked(source_tag):
            return prepare_linked(marc.get("880"), source_tag, decode)

        author = _first(values("100", "abcd")) or _first(values("110", "a"))
        additional_authors = values("700", "abcd") + values("710", "a") + linked("700")

        title = _trim_slash(_first(values("245", "ab", " : ")))
        medium_match = _MEDIUM.search(_first(values("245", "h")))
        title_part = " ".join(
            part for part in (_trim_slash(_first(values("245", "n"))), _trim_slash(_first(values("245", "p")))) if part
        )
        additional_titles = [t for tag in ADDITIONAL_TITLE_TAGS for t in values(tag, "atp")]
        non_romanized_title = _first(linked("245")) or _first(linked("246"))

        series: list[str] = []
        for tag in SERIES_TAGS:
            series = [_truncate_series(s) for s in values(tag, "av")]
            if series and series[0]:
                break

        material_code = fixed.get("MAT TYPE", "")
        call_number = " ".join(values("099", "a")).strip()
        if material_code in self.config.shelving_material_codes:
            shelving = _first(values("130", "a")).split()
            if shelving:
                token = re.sub(r"\W", " ", shelving[0]).strip()
                call_number = f"{call_number} {token}".strip()

        def record_info(name):
            return _text(info.find(name)) if info is not None else ""

        revisions = record_info("REVISIONS")

        pub_dates = _first(values("260", "c")).split(",")
        publication_year = re.sub(r"[^0-9]", "", pub_dates[-1])[-4:]

        isbn = _first(values("020", "a"))
        cover_image = ""
        if not skip_cover and isbn and self.cover_lookup is not None:
            cover_image = await self.cover_lookup(isbn) or ""

        return BibRecord(
            bib_number=bnum,
            created=parse_iii_date(record_info("CREATEDATE")),
            last_updated=parse_iii_date(record_info("LASTUPDATEDATE")),
            previous_updated=parse_iii_date(record_info("PREVUPDATEDATE")),
            revisions=int(revisions) if revisions.isdigit() else 0,
            language=fixed.get("LANG", ""),
            location_code=fixed.get("LOCATION", ""),
            material_code=material_code,
            suppressed=suppressed,
            author=author,
            non_romanized_author=_first(linked("100")).strip(" =,"),
            additional_authors=additional_authors,
            title=title,
            medium=medium_match.group(1) if medium_match else "",
            title_part=title_part,
            additional_titles=additional_titles,
            non_romanized_title=non_romanized_title.strip(" =,"),
            edition=_first(values("250", "a")),
            series=series,
            call_number=call_number,
            publisher_info=_first(values("260", "abc")),
            publication_year=publication_year,
            isbn=isbn,
            upc=_first(values("024", "a")) or "000000000000",
            lccn=_first(values("010", "a")),
            description=_first(values("300", "abc")),
            notes=[n for tag in NOTE_TAGS for n in values(tag, "at", " -- ")],
            subjects=[s for tag in SUBJECT_TAGS for s in values(tag, "abcdevxyz", " -- ")],
            cover_image=cover_image,
        )

    async def item_status(self, bnum: str) -> Availability | TransportFailure:
        """Scrape copy-level availability for a bib record.

        Always fetched fresh; holds and on-order counts come from the MARC
        view on releases that moved them off the holdings page.
        """
        bnum = bnum.strip()
        holdings = await self.transport.execute(self.profile.holdings_path.format(bnum=bnum), secure=False)
        if isinstance(holdings, TransportFailure):
            return holdings

        counts = holdings
        if self.profile.hold_count_path:
            counts = await self.transport.execute(self.profile.hold_count_path.format(bnum=bnum), secure=False)
            if isinstance(counts, TransportFailure):
                return counts

        return self.parse_availability(holdings.body, counts.body)

    def parse_availability(self, holdings_html: str, counts_html: str | None = None) -> Availability:
        counts_html = holdings_html if counts_html is None else counts_html
        availability = Availability()

        hold_match = self.profile.hold_count.search(counts_html)
        if hold_match:
            availability.holds = int(hold_match.group("count"))

        for match in self.profile.order_entry.finditer(counts_html):
            order = clean_text(match.group("order"))
            copies = self.profile.order_copies.match(order)
            digits = re.sub(r"[^0-9]", "", copies.group("count")) if copies else ""
            availability.on_order += int(digits) if digits else 0
            availability.orders.append(order)

        location_lookup = {name: code for code, name in self.config.location_codes.items()}
        for row in self.profile.holdings_row.finditer(holdings_html):
            cells = [clean_text(cell) for cell in self.profile.holdings_cell.findall(row.group("row"))]
            cells += [""] * (3 - len(cells))
            location, call_number, status = cells[:3]
            location_code = location_lookup.get(location)
            age, branch = self.config.classify_location(location_code)

            due_date = None
            available = status in self.config.available_tokens
            if not available and re.search(r"DUE", status, re.I):
                tokens = status.split()
                if len(tokens) > 1:
                    due_date = parse_iii_date(tokens[1], century=2000)

            availability.copies.append(
                CopyStatus(
                    location=location,
                    location_code=location_code,
                    call_number=call_number,
                    status=status,
                    available=available,
                    due_date=due_date,
                    age=age,
                    branch=branch,
                )
            )

        availability.total = len(availability.copies)
        availability.available = sum(1 for copy in availability.copies if copy.available)
        return availability
