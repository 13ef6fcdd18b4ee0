"""Markup patterns and endpoint paths for each supported WebPAC release.

WebPAC has no API, so every workflow is tied to the markup skeleton of one
release. The patterns below are grouped per release and selected by
``ILSConfig.markup_version``; a layout change means adding a profile here,
not touching the workflows.
"""

import re
from dataclasses import dataclass, replace
from enum import Enum


class PaymentProtocol(str, Enum):
    """How the second phase of a fine payment is confirmed."""

    CHECKSUM = "checksum"
    SESSION_KEY = "session_key"


def _rx(pattern: str, flags: int = re.S) -> re.Pattern:
    return re.compile(pattern, flags)


@dataclass(frozen=True)
class PaymentFlow:
    """Endpoints, form field names and patterns for one payment protocol."""

    fines_path: str
    fine_row: re.Pattern
    phase1_path: str
    phase2_path: str
    # PaymentDetails attribute -> form field name
    fields: dict[str, str]
    error: re.Pattern
    session_key: re.Pattern | None = None
    checksum: re.Pattern | None = None
    approved: tuple[re.Pattern, ...] = (
        _rx(r"Your payment has been approved"),
        _rx(r"Your payment has been accepted"),
    )


PAYMENT_FLOWS = {
    PaymentProtocol.CHECKSUM: PaymentFlow(
        fines_path="patroninfo/{pnum}/overdues?pay=1",
        fine_row=_rx(
            r'type="checkbox" name="(?P<handle>charge.+?)" checked>(?P<description>.+?)</td>'
            r'.+?right">\$(?P<amount>.+?)<'
        ),
        phase1_path=(
            "payconfirm/{pnum}/%2Fpatroninfo%2F{pnum}%2Foverdues%3Fpay%3D1"
            "/%2Fpatroninfo%2F{pnum}%2Foverdues"
        ),
        phase2_path="patroninfo/{pnum}/overdues?pay=1",
        fields={
            "total": "amount",
            "name": "ccname",
            "address1": "address1",
            "city": "city",
            "state": "state",
            "zip": "zip",
            "email": "emailaddr",
            "card_number": "ccnum",
            "exp_month": "ccexpmonth",
            "exp_year": "ccexpyear",
            "cvv": "cc_cvv2",
        },
        error=_rx(r'errormessage">(?P<error>.+?)<.+?class="msg">(?P<reason>.+?)<'),
        checksum=_rx(r'name="cksum" value="(?P<cksum>.*?)">', 0),
    ),
    PaymentProtocol.SESSION_KEY: PaymentFlow(
        fines_path="webapp/iii/ecom/pay.do?scope=3&ptype={ptype}&tty=300",
        fine_row=_rx(
            r'type="checkbox" name="selectedFees" value="(?P<handle>.+?)".*?>'
            r"(?P<description>.+?)\$(?P<amount>.+?)<"
        ),
        phase1_path="webapp/iii/ecom/validatePay.do",
        phase2_path="webapp/iii/ecom/submitPay.do",
        fields={
            "total": "amount",
            "name": "name",
            "address1": "address1",
            "city": "city",
            "state": "state",
            "zip": "zip",
            "email": "email",
            "card_number": "ccnum",
            "exp_month": "ccexp_month",
            "exp_year": "ccexp_year",
            "cvv": "cvv",
        },
        error=_rx(r'key="creditForm\.error"/-->(?P<reason>.+?)<.+?error">(?P<error>.+?)<'),
        session_key=_rx(r'name="key" value="(?P<key>.+?)"'),
    ),
}


@dataclass(frozen=True)
class MarkupProfile:
    """Patterns and paths for one WebPAC release."""

    version: str
    payment_protocol: PaymentProtocol

    # Patron pages
    login_path: str = "patroninfo/"
    logout_path: str = "logout/"
    items_path: str = "patroninfo/{pnum}/items"
    sorted_items_path: str = "patroninfo/{pnum}/sorteditems"
    renew_path: str = "patroninfo/{pnum}/sorteditems"
    holds_path: str = "patroninfo/{pnum}/holds"
    hold_request_path: str = "search~S3/.b{bnum}/.b{bnum}/1,1,1,B/request~b{bnum}"
    record_path: str = "record=i{inum}"

    # Public catalog pages
    xrecord_path: str = "xrecord=b{bnum}"
    holdings_path: str = "search/.b{bnum}/.b{bnum}/1,1,1,B/holdings~{bnum}&FF=&1,0,"
    hold_count_path: str | None = None
    decode_unicode: bool = False

    loan_row: re.Pattern = _rx(
        r'<input type="checkbox" name="(?P<handle>[^"]+)" value="(?P<item>[^"]+)" />'
        r'.+?patFuncTitle">(?P<title>.+?)</td>'
        r'.+?patFuncBarcode">(?P<barcode>.*?)</td>'
        r'.+?patFuncStatus">\s*DUE (?P<due>\S+)(?P<status>.*?)</td>'
        r'.+?patFuncCallNo">(?P<call_number>.*?)</td>'
    )
    title_link: re.Pattern = _rx(r'href.*?">(?P<title>.+?)</a>')
    renew_count: re.Pattern = _rx(r"Renewed\s*(?P<count>\d+)\s*time", re.S | re.I)

    hold_row: re.Pattern = _rx(
        r'patFuncMark[^>]*>\s*<input type="checkbox" name="(?P<handle>[^"]+)"[^>]*>'
        r'.+?patFuncTitle">(?P<title>.+?)</td>'
        r'.+?patFuncStatus">(?P<status>.*?)</td>'
        r'.+?patFuncPickup">(?P<pickup>.*?)</td>'
        r'.+?patFuncCancel">(?P<cancel>.*?)</td>'
    )
    hold_title_link: re.Pattern = _rx(
        r'(?:item&|record=b)(?P<bib>[^"~&]+)[^"]*">(?P<title>.+?)</a>'
    )
    hold_freeze: re.Pattern = _rx(r'patFuncFreeze"[^>]*>(?P<freeze>.*?)</td>')
    hold_status_kept: re.Pattern = _rx(r"of|ready|received", re.I)

    hold_success: re.Pattern = _rx(r"Your request for(.*?)was successful", re.S | re.I)
    hold_error: re.Pattern = _rx(r'<font color="red" size="(.+?)">(?P<error>.+?)</font>', re.S | re.I)
    copy_choice_marker: re.Pattern = _rx(r"Choose one item from the list below", re.S | re.I)
    copy_row: re.Pattern = _rx(
        r'<tr\s+class="bibItemsEntry">(?P<radio>.+?)</td>'
        r".+?<!-- field 1 -->&nbsp;\s*(?P<location>.+?)</td>"
        r".+?<!-- field C -->&nbsp;(?P<call_number>.+?)&nbsp;\s*<!-- field v -->(?P<volume>.*?)&nbsp;"
        r".+?field % -->&nbsp;(?P<status>.+?)<",
        re.S | re.I,
    )
    radio_value: re.Pattern = _rx(r'value="(?P<value>.+?)"', re.S | re.I)
    location_form: re.Pattern = _rx(r"select name=loc(?P<options>.*?)</form>", re.S | re.I)
    location_option: re.Pattern = _rx(
        r'<option (?:.*?)value="(?P<code>.*?)"(?:.*?)>(?P<name>.*?)</option', re.S | re.I
    )

    renew_item_row: str = r'<input type="checkbox" name="{handle}" value="{item}" ?/>(.*?)DUE(?P<due>.*?)<(?P<extra>.+?)td'
    renew_all_row: re.Pattern = _rx(
        r'<input type="checkbox" name="(?P<handle>[^"]*)" value="i(?P<item>[^"]*)" ?/>'
        r"(.*?)DUE(?P<due>.*?)<(?P<extra>.+?)td"
    )
    renew_error: re.Pattern = _rx(r'color="red">(?P<error>.*?)<', re.I)

    record_bib: re.Pattern = _rx(r'">B(?P<bib>[^<]*?)</')

    holdings_row: re.Pattern = _rx(r"<tr[^>]*bibItemsEntry[^>]*>(?P<row>.+?)</tr>")
    holdings_cell: re.Pattern = _rx(r"<td.*?</td>")
    hold_count: re.Pattern = _rx(r"(?P<count>\d+)\s+holds?\s+on")
    order_entry: re.Pattern = _rx(r"bibOrderEntry(.*?)td(.*?)>(?P<order>.*?)<")
    order_copies: re.Pattern = _rx(r"^(?P<count>.*?)cop")


_BASE_2006 = MarkupProfile(version="2006", payment_protocol=PaymentProtocol.CHECKSUM)

PROFILES = {
    "2006": _BASE_2006,
    "2007": replace(
        _BASE_2006,
        version="2007",
        payment_protocol=PaymentProtocol.SESSION_KEY,
        items_path="patroninfo~S3/{pnum}/items",
        sorted_items_path="patroninfo~S3/{pnum}/sorteditems",
    ),
    "2009": replace(
        _BASE_2006,
        version="2009",
        payment_protocol=PaymentProtocol.SESSION_KEY,
        items_path="patroninfo~S3/{pnum}/items",
        sorted_items_path="patroninfo~S3/{pnum}/sorteditems",
        holdings_path="search~S24/.b{bnum}/.b{bnum}/1,1,1,B/holdings~{bnum}&FF=&1,0,",
        hold_count_path="search~S24/.b{bnum}/.b{bnum}/1,1,1,B/marc~{bnum}&FF=&1,0,",
        hold_count=_rx(r"(?P<count>\d+) hold"),
        decode_unicode=True,
    ),
}


def get_profile(version: str) -> MarkupProfile:
    """Return the profile for a WebPAC release, e.g. ``"2007"``."""
    try:
        return PROFILES[str(version)]
    except KeyError:
        raise ValueError(
            f"Unsupported markup version {version!r}; expected one of {sorted(PROFILES)}"
        ) from None
