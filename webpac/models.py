"""Pydantic models for WebPAC patron and catalog data."""

import re
from collections.abc import Mapping
from datetime import date as Date
from enum import Enum

from pydantic import BaseModel, ConfigDict


class PatronAttributes(BaseModel):
    """Snapshot of a patron record, as returned by the Patron API."""

    model_config = ConfigDict(frozen=True)

    record_number: str
    barcode: str | None = None
    name: str = ""
    patron_type: str | None = None
    checkouts: int = 0
    home_library: str | None = None
    balance: float = 0.0
    expires: Date | None = None
    address: str | None = None
    telephone: str | None = None
    telephone2: str | None = None
    email: str | None = None

    @classmethod
    def from_patron_api(cls, data: Mapping[str, str]) -> "PatronAttributes":
        """Build the snapshot from a Patron API dump keyed by its field names."""
        from webpac.parser import parse_iii_date

        def field(key):
            value = data.get(key)
            return value.strip() if value else None

        balance = (field("MONEYOWED") or "0").replace("$", "").replace(",", "")
        try:
            owed = round(float(balance), 2)
        except ValueError:
            owed = 0.0
        checkouts = re.match(r"\d+", field("CURCHKOUT") or "")

        address = field("ADDRESS")
        return cls(
            record_number=field("RECORDNUM") or "",
            barcode=field("PBARCODE"),
            name=field("PATRNNAME") or "",
            patron_type=field("P TYPE") or field("PTYPE"),
            checkouts=int(checkouts.group()) if checkouts else 0,
            home_library=field("HOMELIBR"),
            balance=owed,
            expires=parse_iii_date(field("EXPDATE"), century=2000),
            address=address.replace("$", "\n") if address else None,
            telephone=field("TELEPHONE"),
            telephone2=field("TELEPHONE2"),
            email=field("EMAILADDR"),
        )


class Loan(BaseModel):
    """A checked out item."""

    handle: str
    item_number: str
    bib_number: str | None = None
    title: str
    ill: bool = False
    renewals: int = 0
    due_date: Date | None = None
    call_number: str | None = None


class Hold(BaseModel):
    """A hold on a title or an interlibrary loan request."""

    handle: str
    bib_number: str | None = None
    title: str
    ill: bool = False
    status: str = "Waiting for your copy"
    pickup_location: str | None = None
    cancel_date: str | None = None
    frozen: bool | None = None


class HoldOutcome(str, Enum):
    PLACED = "placed"
    FAILED = "failed"
    CHOOSE_COPY = "choose_copy"
    CHOOSE_LOCATION = "choose_location"


class CopyChoice(BaseModel):
    """One physical copy offered when the catalog asks which item to hold."""

    handle: str
    location: str
    call_number: str
    status: str


class PickupLocation(BaseModel):
    code: str
    name: str


class HoldPlacement(BaseModel):
    """Result of placing a hold.

    A placement either succeeds, fails with a reason, or needs a follow-up
    request naming a copy (``copies``) or a pickup location
    (``pickup_locations``).
    """

    outcome: HoldOutcome
    error: str | None = None
    copies: list[CopyChoice] | None = None
    pickup_locations: list[PickupLocation] | None = None

    @property
    def success(self) -> bool:
        return self.outcome == HoldOutcome.PLACED


class RenewResult(BaseModel):
    """Result of renewing one item."""

    handle: str
    item_number: str
    renewals: int = 0
    new_due_date: Date | None = None
    error: str | None = None


class Fine(BaseModel):
    """A fine or fee on the account."""

    handle: str
    description: str
    amount: float


class FineList(BaseModel):
    """Fines plus the key the catalog expects back when paying them."""

    session_key: str | None = None
    fines: list[Fine] = []

    @property
    def total(self) -> float:
        return round(sum(fine.amount for fine in self.fines), 2)


class PaymentDetails(BaseModel):
    """Billing and card details for paying a set of fines."""

    fine_handles: list[str]
    total: float
    name: str
    address1: str
    city: str
    state: str
    zip: str
    email: str
    card_number: str
    exp_month: str
    exp_year: str
    cvv: str


class PaymentResult(BaseModel):
    approved: bool
    error: str | None = None
    reason: str | None = None


class BibRecord(BaseModel):
    """Bibliographic metadata for one title, flattened from its MARC fields."""

    model_config = ConfigDict(frozen=True)

    bib_number: str
    created: Date | None = None
    last_updated: Date | None = None
    previous_updated: Date | None = None
    revisions: int = 0
    language: str = ""
    location_code: str = ""
    material_code: str = ""
    suppressed: bool = False
    author: str = ""
    non_romanized_author: str = ""
    additional_authors: list[str] = []
    title: str = ""
    medium: str = ""
    title_part: str = ""
    additional_titles: list[str] = []
    non_romanized_title: str = ""
    edition: str = ""
    series: list[str] = []
    call_number: str = ""
    publisher_info: str = ""
    publication_year: str = ""
    isbn: str = ""
    upc: str = "000000000000"
    lccn: str = ""
    description: str = ""
    notes: list[str] = []
    subjects: list[str] = []
    cover_image: str = ""


class CopyStatus(BaseModel):
    """Status of one physical copy on the holdings page."""

    location: str
    location_code: str | None = None
    call_number: str
    status: str
    available: bool = False
    due_date: Date | None = None
    age: str | None = None
    branch: str | None = None


class Availability(BaseModel):
    """Availability summary for a bib record."""

    total: int = 0
    available: int = 0
    holds: int = 0
    on_order: int = 0
    orders: list[str] = []
    copies: list[CopyStatus] = []
