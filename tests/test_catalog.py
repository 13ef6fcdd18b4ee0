"""Tests for bib record flattening and holdings availability."""

from datetime import date

import pytest

from webpac.catalog import CatalogScraper, clean_marc_value, parse_marc_fields, prepare_linked, prepare_values
from webpac.config import ILSConfig
from webpac.transport import TransportFailure


def varfield(tag, *subfields):
    subs = "".join(
        f"<MARCSUBFLD><SUBFIELDINDICATOR>{code}</SUBFIELDINDICATOR>"
        f"<SUBFIELDDATA>{data}</SUBFIELDDATA></MARCSUBFLD>"
        for code, data in subfields
    )
    return f"<VARFLD><HEADER><TAG>x</TAG></HEADER><MARCINFO><MARCTAG>{tag}</MARCTAG></MARCINFO>{subs}</VARFLD>"


MARC_FIELDS = "".join(
    [
        varfield("100", ("a", "Melville, Herman,"), ("d", "1819-1891.")),
        varfield(
            "245",
            ("a", "Moby Dick"),
            ("h", "[sound recording]"),
            ("b", "or, The whale /"),
            ("n", "Part 1."),
            ("p", "The voyage /"),
        ),
        varfield("440", ("a", "Other series")),
        varfield("490", ("a", "Penguin classics ; 12")),
        varfield("020", ("a", "9780142437247")),
        varfield("260", ("a", "New York :"), ("b", "Harper,"), ("c", "1851.")),
        varfield("650", ("a", "Whaling"), ("v", "Fiction.")),
        varfield("099", ("a", "FIC MEL")),
        varfield("130", ("a", "Moby dick.")),
        varfield("500", ("a", "Opens with &lt;Call me Ishmael&lt;")),
        varfield("700", ("a", "Kent, Rockwell,"), ("e", "illustrator.")),
        varfield("880", ("6", "245-01"), ("a", "{u767D}{u9BE8} =")),
    ]
)


def xrecord(bcode3="-", mat_type="a"):
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<IIIRECORD>
<RECORDINFO>
<RECORDKEY>b1000001</RECORDKEY>
<CREATEDATE>03-15-05</CREATEDATE>
<LASTUPDATEDATE>01-02-20</LASTUPDATEDATE>
<PREVUPDATEDATE>12-30-19</PREVUPDATEDATE>
<REVISIONS>7</REVISIONS>
</RECORDINFO>
<TYPEINFO><BIBLIOGRAPHIC>
<FIXFLD><FIXNUMBER>24</FIXNUMBER><FIXLABEL>LANG</FIXLABEL><FIXVALUE>eng</FIXVALUE></FIXFLD>
<FIXFLD><FIXNUMBER>26</FIXNUMBER><FIXLABEL>LOCATION</FIXLABEL><FIXVALUE>ma</FIXVALUE></FIXFLD>
<FIXFLD><FIXNUMBER>30</FIXNUMBER><FIXLABEL>MAT TYPE</FIXLABEL><FIXVALUE>{mat_type}</FIXVALUE></FIXFLD>
<FIXFLD><FIXNUMBER>31</FIXNUMBER><FIXLABEL>BCODE3</FIXLABEL><FIXVALUE>{bcode3}</FIXVALUE></FIXFLD>
{MARC_FIELDS}
</BIBLIOGRAPHIC></TYPEINFO>
</IIIRECORD>
"""


@pytest.fixture
def scraper(config, catalog):
    return CatalogScraper(config, transport=catalog.transport(config))


class TestBibRecords:
    """Tests for flattening the xrecord export."""

    @pytest.mark.asyncio
    async def test_scrape_bib(self, scraper, catalog):
        catalog.route("xrecord=b1000001", xrecord())

        record = await scraper.scrape_bib(" 1000001 ")

        assert catalog.requests[0].url.scheme == "http"
        assert record.bib_number == "1000001"
        assert record.created == date(2005, 3, 15)
        assert record.last_updated == date(2020, 1, 2)
        assert record.revisions == 7
        assert record.language == "eng"
        assert record.location_code == "ma"
        assert record.suppressed is False
        assert record.author == "Melville, Herman, 1819-1891."
        assert record.additional_authors == ["Kent, Rockwell,"]
        assert record.title == "Moby Dick : or, The whale"
        assert record.medium == "sound recording"
        assert record.title_part == "Part 1. The voyage"
        assert record.series == ["Penguin classics"]
        assert record.isbn == "9780142437247"
        assert record.upc == "000000000000"
        assert record.publisher_info == "New York : Harper, 1851."
        assert record.publication_year == "1851"
        assert record.subjects == ["Whaling -- Fiction."]
        assert record.call_number == "FIC MEL Moby"
        assert record.notes == ['Opens with "Call me Ishmael"']
        await scraper.close()

    @pytest.mark.asyncio
    async def test_non_romanized_title(self, tmp_path, catalog):
        config = ILSConfig(host="catalog.example.org", markup_version="2009", cookie_dir=tmp_path)
        scraper = CatalogScraper(config, transport=catalog.transport(config))

        record = await scraper.parse_xrecord("1000001", xrecord())

        assert record.non_romanized_title == chr(0x767D) + chr(0x9BE8)

    @pytest.mark.asyncio
    async def test_unicode_escapes_dropped_before_2009(self, scraper):
        record = await scraper.parse_xrecord("1000001", xrecord())

        assert record.non_romanized_title == ""

    @pytest.mark.asyncio
    async def test_call_number_without_shelving_title(self, scraper):
        record = await scraper.parse_xrecord("1000001", xrecord(mat_type="g"))

        assert record.call_number == "FIC MEL"

    @pytest.mark.asyncio
    async def test_suppressed_record(self, scraper):
        assert await scraper.parse_xrecord("1000001", xrecord(bcode3="n")) is None

        record = await scraper.parse_xrecord("1000001", xrecord(bcode3="n"), include_suppressed=True)

        assert record.suppressed is True
        assert record.title == "Moby Dick : or, The whale"

    @pytest.mark.asyncio
    async def test_blank_bcode3_reads_as_dash(self, tmp_path, catalog):
        config = ILSConfig(host="catalog.example.org", suppress_codes="n,-", cookie_dir=tmp_path)
        scraper = CatalogScraper(config, transport=catalog.transport(config))

        assert await scraper.parse_xrecord("1000001", xrecord(bcode3="")) is None

    @pytest.mark.asyncio
    async def test_missing_record(self, scraper, catalog):
        catalog.route("xrecord", "<IIIRECORD><NULLRECORD><ERRNUM>1</ERRNUM></NULLRECORD></IIIRECORD>")

        assert await scraper.scrape_bib("9999999") is None

    @pytest.mark.asyncio
    async def test_record_without_marc(self, scraper):
        xml = "<IIIRECORD><VARFLD><HEADER><TAG>x</TAG></HEADER></VARFLD></IIIRECORD>"

        assert await scraper.parse_xrecord("1000001", xml) is None

    @pytest.mark.asyncio
    async def test_cover_lookup(self, config, catalog):
        seen = []

        async def covers(isbn):
            seen.append(isbn)
            return "https://covers.example.org/9780142437247.jpg"

        scraper = CatalogScraper(config, transport=catalog.transport(config), cover_lookup=covers)

        record = await scraper.parse_xrecord("1000001", xrecord())
        skipped = await scraper.parse_xrecord("1000001", xrecord(), skip_cover=True)

        assert record.cover_image.endswith("9780142437247.jpg")
        assert skipped.cover_image == ""
        assert seen == ["9780142437247"]

    @pytest.mark.asyncio
    async def test_unreachable_catalog(self, scraper, catalog):
        catalog.route("xrecord", "")

        assert isinstance(await scraper.scrape_bib("1000001"), TransportFailure)


HOLDINGS_HTML = """
<table class="bibItems">
<tr class="bibItemsHeader"><th>LOCATION</th><th>CALL #</th><th>STATUS</th></tr>
<tr class="bibItemsEntry"><td width="38%">&nbsp;<a href="/loc">Main Library Adult</a></td>
<td>&nbsp;FIC MEL</td><td>&nbsp;AVAILABLE </td></tr>
<tr class="bibItemsEntry"><td width="38%">&nbsp;Juvenile Room</td>
<td>&nbsp;J FIC MEL</td><td>&nbsp;DUE 05-20-24 </td></tr>
<tr class="bibItemsEntry"><td width="38%">&nbsp;Bookmobile</td>
<td>&nbsp;FIC MEL</td><td>&nbsp;BILLED </td></tr>
</table>
<p>3 holds on first copy returned of 3 copies</p>
<table><tr class="bibOrderEntry"><td colspan="3">2 copies being processed for Main Library.</td></tr></table>
"""


class TestAvailability:
    """Tests for the holdings page."""

    @pytest.fixture
    def scraper(self, tmp_path, catalog):
        config = ILSConfig(
            host="catalog.example.org",
            cookie_dir=tmp_path,
            location_codes={"ma": "Main Library Adult", "mj": "Juvenile Room"},
            age_rules={"juvenile": "/^.j/", "adult": "ma,mj"},
            branch_rules={"main": "/^m/i"},
            default_branch="other",
        )
        return CatalogScraper(config, transport=catalog.transport(config))

    def test_parse_availability(self, scraper):
        availability = scraper.parse_availability(HOLDINGS_HTML)

        assert availability.total == 3
        assert availability.available == 1
        assert availability.holds == 3
        assert availability.on_order == 2
        assert availability.orders == ["2 copies being processed for Main Library."]

        adult, juvenile, bookmobile = availability.copies
        assert adult.location == "Main Library Adult"
        assert adult.location_code == "ma"
        assert adult.call_number == "FIC MEL"
        assert adult.available is True
        assert (adult.age, adult.branch) == ("adult", "main")

        assert juvenile.status == "DUE 05-20-24"
        assert juvenile.due_date == date(2024, 5, 20)
        assert (juvenile.age, juvenile.branch) == ("juvenile", "main")

        assert bookmobile.location_code is None
        assert (bookmobile.age, bookmobile.branch) == (None, "other")

    @pytest.mark.asyncio
    async def test_item_status_reads_counts_page(self, tmp_path, catalog):
        config = ILSConfig(host="catalog.example.org", markup_version="2009", cookie_dir=tmp_path)
        scraper = CatalogScraper(config, transport=catalog.transport(config))
        catalog.route("holdings~1000001", HOLDINGS_HTML.split("<p>")[0])
        catalog.route("marc~1000001", "<p>5 holds on this title</p>")

        availability = await scraper.item_status("1000001")

        assert [r.url.scheme for r in catalog.requests] == ["http", "http"]
        assert availability.total == 3
        assert availability.holds == 5
        assert availability.on_order == 0

    def test_empty_holdings(self, scraper):
        availability = scraper.parse_availability("<html>No items</html>")

        assert availability.total == 0
        assert availability.copies == []


class TestMarcHelpers:
    """Tests for the MARC field helpers."""

    def test_prepare_values_orders_by_requested_subfield(self):
        fields = {"a": {0: ["Title"], 3: ["Second"]}, "b": {0: ["subtitle /"]}}

        assert prepare_values(fields, "ba") == ["subtitle / Title", "Second"]
        assert prepare_values(fields, "ab", " : ") == ["Title : subtitle /", "Second"]
        assert prepare_values(None, "a") == []

    def test_prepare_values_skips_blanks(self):
        assert prepare_values({"a": {0: ["  "], 1: ["Kept"]}}, "a") == ["Kept"]

    def test_prepare_linked(self):
        fields880 = {"6": {0: ["100-01"], 1: ["245-02"]}, "a": {0: ["Author"], 1: ["{u767D}"]}}

        assert prepare_linked(fields880, "245") == [chr(0x767D)]
        assert prepare_linked(fields880, "245", decode_unicode=False) == [""]
        assert prepare_linked(fields880, "700") == []
        assert prepare_linked(None, "245") == []

    def test_clean_marc_value(self):
        assert clean_marc_value(" {u00E9}t{diacritic}e ") == "éte"
        assert clean_marc_value("{u00E9}", decode_unicode=False) == ""
        assert clean_marc_value("<quoted<") == '"quoted"'

    def test_parse_marc_fields_skips_non_marc(self):
        from bs4 import BeautifulSoup

        soup = BeautifulSoup(
            "<IIIRECORD>"
            "<VARFLD><HEADER><TAG>x</TAG></HEADER></VARFLD>"
            + varfield("245", ("a", "Title"))
            + "</IIIRECORD>",
            "xml",
        )

        fields = parse_marc_fields(soup.find_all("VARFLD"))

        assert fields == {"245": {"a": {1: ["Title"]}}}
