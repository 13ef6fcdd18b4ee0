"""HTML extraction for WebPAC patron pages.

Each function takes a page body and the ``MarkupProfile`` of the catalog's
release and returns typed records. A pattern that finds nothing yields an
empty list or a default field, never an exception.
"""

import re
import string
from datetime import date

from bs4 import BeautifulSoup

from webpac.models import (
    CopyChoice,
    Fine,
    FineList,
    Hold,
    HoldOutcome,
    HoldPlacement,
    Loan,
    PaymentResult,
    PickupLocation,
    RenewResult,
)
from webpac.profiles import PaymentFlow, MarkupProfile

WAITING_STATUS = "Waiting for your copy"

_III_DATE = re.compile(r"^(\d{1,2})-(\d{1,2})-(\d{2}|\d{4})$")


def clean_text(fragment: str | None) -> str:
    """Strip tags, decode entities and collapse whitespace."""
    if not fragment:
        return ""
    if "<" in fragment or "&" in fragment:
        fragment = BeautifulSoup(fragment, "lxml").get_text()
    return " ".join(fragment.replace("\xa0", " ").split())


def parse_iii_date(date_str: str | None, century: int | None = None) -> date | None:
    """Parse the catalog's ``MM-DD-YY`` dates.

    With ``century`` the year is ``century + YY``. Without it the year is
    ``2000 + YY`` unless that year has not arrived yet, in which case it is
    ``1900 + YY``. Four digit years are used as given.
    """
    if not date_str:
        return None

    match = _III_DATE.match(date_str.strip())
    if not match:
        return None

    month, day, year_str = match.groups()
    year = int(year_str)
    if len(year_str) == 2:
        if century is not None:
            year += century
        elif 2000 + year > date.today().year:
            year += 1900
        else:
            year += 2000

    try:
        return date(year, int(month), int(day))
    except ValueError:
        return None


def fix_date(date_str: str | None) -> str | None:
    """Rewrite an ``MM-DD-YY`` date as ``YYYY-MM-DD``."""
    parsed = parse_iii_date(date_str)
    return parsed.isoformat() if parsed else None


def _amount(value: str) -> float:
    try:
        return round(float(clean_text(value).replace(",", "")), 2)
    except ValueError:
        return 0.0


def parse_loans(html: str, profile: MarkupProfile) -> list[Loan]:
    """Parse the checked out items page."""
    loans = []

    for match in profile.loan_row.finditer(html):
        title_cell = match.group("title")
        link = profile.title_link.search(title_cell)
        if link:
            title = clean_text(link.group("title"))
        else:
            title = clean_text(title_cell)

        renewals = 0
        renewed = profile.renew_count.search(match.group("status"))
        if renewed:
            renewals = int(renewed.group("count"))

        item = match.group("item").strip()
        loans.append(
            Loan(
                handle=match.group("handle").strip(),
                item_number=item[1:] if item.startswith("i") else item,
                title=title,
                # Interlibrary loans have no catalog record to link to
                ill=link is None,
                renewals=renewals,
                due_date=parse_iii_date(match.group("due"), century=2000),
                call_number=clean_text(match.group("call_number")) or None,
            )
        )

    return loans


def parse_holds(html: str, profile: MarkupProfile) -> list[Hold]:
    """Parse the holds page."""
    holds = []
    matches = list(profile.hold_row.finditer(html))

    for index, match in enumerate(matches):
        handle = match.group("handle").strip()
        title_cell = match.group("title").strip()

        bib_number = None
        ill = "@" in handle
        link = None if ill else profile.hold_title_link.search(title_cell)
        if link:
            bib_number = link.group("bib").strip()
            title = clean_text(link.group("title"))
        else:
            title = clean_text(title_cell)

        status = normalize_hold_status(clean_text(match.group("status")), profile)

        # Freeze checkboxes follow the cancel column, before the next row
        row_end = matches[index + 1].start() if index + 1 < len(matches) else len(html)
        freeze = profile.hold_freeze.search(html, match.end(), row_end)
        frozen = "checked" in freeze.group("freeze").lower() if freeze else None

        holds.append(
            Hold(
                handle=handle,
                bib_number=bib_number,
                title=title,
                ill=ill,
                status=status,
                pickup_location=clean_text(match.group("pickup")) or None,
                cancel_date=clean_text(match.group("cancel")) or None,
                frozen=frozen,
            )
        )

    return holds


def normalize_hold_status(status: str, profile: MarkupProfile) -> str:
    """Keep queue positions and pickup notices, collapse everything else."""
    if profile.hold_status_kept.search(status):
        return status
    return WAITING_STATUS


def classify_hold_response(html: str, profile: MarkupProfile) -> HoldPlacement:
    """Work out what a hold request did from the page that came back.

    The catalog never signals the outcome other than in its prose, so this is
    the only place that reads it.
    """
    error = None
    error_match = profile.hold_error.search(html)
    if error_match:
        error = clean_text(error_match.group("error")) or None

    if profile.hold_success.search(html):
        return HoldPlacement(outcome=HoldOutcome.PLACED)

    if profile.copy_choice_marker.search(html):
        copies = []
        for row in profile.copy_row.finditer(html):
            radio = profile.radio_value.search(row.group("radio"))
            call_number = " ".join(
                part
                for part in (clean_text(row.group("call_number")), clean_text(row.group("volume")))
                if part
            )
            copies.append(
                CopyChoice(
                    handle=radio.group("value").strip() if radio else "",
                    location=clean_text(row.group("location")),
                    call_number=call_number,
                    status=clean_text(row.group("status")),
                )
            )
        return HoldPlacement(outcome=HoldOutcome.CHOOSE_COPY, error=error, copies=copies)

    form = profile.location_form.search(html)
    if form:
        locations = [
            PickupLocation(code=option.group("code").strip(), name=clean_text(option.group("name")))
            for option in profile.location_option.finditer(form.group("options"))
            if re.search(r"\w", option.group("code"))
        ]
        if locations:
            return HoldPlacement(
                outcome=HoldOutcome.CHOOSE_LOCATION, error=error, pickup_locations=locations
            )

    return HoldPlacement(outcome=HoldOutcome.FAILED, error=error)


def _renewal(handle: str, item: str, due: str, extra: str, profile: MarkupProfile) -> RenewResult:
    renewals = 0
    renewed = profile.renew_count.search(extra)
    if renewed:
        renewals = int(renewed.group("count"))

    error = None
    refused = profile.renew_error.search(extra)
    if refused:
        error = string.capwords(clean_text(refused.group("error")).lower()) or None

    return RenewResult(
        handle=handle,
        item_number=item,
        renewals=renewals,
        new_due_date=parse_iii_date(clean_text(due), century=2000),
        error=error,
    )


def parse_renewals(
    html: str, profile: MarkupProfile, items: dict[str, str] | None = None
) -> list[RenewResult]:
    """Parse the items page returned by a renewal request.

    ``items`` maps handles to ``i``-prefixed item numbers for a selective
    renewal; ``None`` reads every row, as after a renew-all.
    """
    results = []

    if items is None:
        for match in profile.renew_all_row.finditer(html):
            results.append(
                _renewal(
                    match.group("handle").strip(),
                    match.group("item").strip(),
                    match.group("due"),
                    match.group("extra"),
                    profile,
                )
            )
        return results

    for handle, item in items.items():
        pattern = profile.renew_item_row.format(handle=re.escape(handle), item=re.escape(item))
        match = re.search(pattern, html, re.S)
        if match:
            results.append(_renewal(handle, item[1:], match.group("due"), match.group("extra"), profile))
        else:
            results.append(RenewResult(handle=handle, item_number=item[1:]))

    return results


def parse_fines(html: str, flow: PaymentFlow) -> FineList:
    """Parse the fines payment page."""
    session_key = None
    if flow.session_key is not None:
        key_match = flow.session_key.search(html)
        if key_match:
            session_key = key_match.group("key").strip()

    fines = [
        Fine(
            handle=match.group("handle").strip(),
            description=clean_text(match.group("description")),
            amount=_amount(match.group("amount")),
        )
        for match in flow.fine_row.finditer(html)
    ]
    return FineList(session_key=session_key, fines=fines)


def parse_checksum(html: str, flow: PaymentFlow) -> str | None:
    """Find the confirmation checksum on the first payment page."""
    if flow.checksum is None:
        return None
    match = flow.checksum.search(html)
    return match.group("cksum").strip() if match else None


def parse_payment_result(html: str, flow: PaymentFlow) -> PaymentResult:
    """Decide whether a payment went through."""
    if any(pattern.search(html) for pattern in flow.approved):
        return PaymentResult(approved=True)

    match = flow.error.search(html)
    if not match:
        return PaymentResult(approved=False)
    return PaymentResult(
        approved=False,
        error=clean_text(match.group("error")) or None,
        reason=clean_text(match.group("reason")) or None,
    )


def parse_bib_number(html: str, profile: MarkupProfile) -> str | None:
    """Extract the bib number from a record page, without its check digit."""
    match = profile.record_bib.search(html)
    if not match:
        return None
    bib = match.group("bib").strip()
    return bib[:-1] or None
