"""WebPAC patron client - handles authentication and account workflows."""

import asyncio
import logging
import os
from collections.abc import Awaitable, Callable, Iterable, Mapping
from datetime import date
from enum import Enum

from dotenv import load_dotenv

from webpac.config import ILSConfig
from webpac.exceptions import SessionContractError
from webpac.models import (
    FineList,
    Hold,
    HoldPlacement,
    Loan,
    PatronAttributes,
    PaymentDetails,
    PaymentResult,
    RenewResult,
)
from webpac.parser import (
    classify_hold_response,
    parse_bib_number,
    parse_checksum,
    parse_fines,
    parse_holds,
    parse_loans,
    parse_payment_result,
    parse_renewals,
)
from webpac.profiles import PAYMENT_FLOWS, PaymentProtocol
from webpac.transport import Page, Transport, TransportFailure

logger = logging.getLogger(__name__)

# Stand-in PIN for catalogs that do not check one
UNUSED_PIN = "unused"

PatronLookup = Callable[[str], Awaitable[PatronAttributes | Mapping[str, str] | None]]


class SessionState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


class WebpacClient:
    """One patron's conversation with a WebPAC catalog.

    A client owns its transport and cookie jar and must not be shared
    between concurrent tasks. Use it as an async context manager so the
    session is logged out and cleaned up on every exit path.
    """

    def __init__(
        self,
        config: ILSConfig,
        card_number: str,
        pin: str | None = None,
        *,
        patron: PatronAttributes | None = None,
        transport: Transport | None = None,
    ):
        self.config = config
        self.profile = config.profile
        self.card_number = card_number
        self.pin = pin if config.pin_required else UNUSED_PIN
        self.patron = patron
        self.transport = transport or Transport(config, session_id=card_number)
        self.state = SessionState.UNAUTHENTICATED
        self._closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @property
    def pnum(self) -> str:
        """Patron record number used in account page paths."""
        if self.patron is None:
            raise SessionContractError("Patron attributes have not been loaded")
        return self.patron.record_number

    def _require_session(self):
        if self.state != SessionState.AUTHENTICATED:
            raise SessionContractError(f"Session is {self.state.value}, log in first")

    async def _race_delay(self):
        # The catalog holds a lock on a record briefly after each change
        if self.config.race_delay:
            await asyncio.sleep(self.config.race_delay)

    async def load_patron(self, lookup: PatronLookup) -> bool:
        """Fetch the patron snapshot for this card from ``lookup``.

        Returns False when the lookup finds no patron.
        """
        data = await lookup(self.card_number)
        if not data:
            return False
        self.patron = data if isinstance(data, PatronAttributes) else PatronAttributes.from_patron_api(data)
        return True

    async def login(self) -> bool | TransportFailure:
        """Log in to the patron interface.

        The catalog answers a bad login with an ordinary page, so any
        response counts as success. A wrong PIN only shows up later, as
        empty account pages.
        """
        if self.patron is None:
            raise SessionContractError("Patron attributes must be loaded before login")
        if not self.pin:
            raise SessionContractError("A PIN must be set before login")

        self.state = SessionState.AUTHENTICATING
        result = await self.transport.execute(
            self.profile.login_path,
            {"name": self.patron.name, "code": self.card_number, "pin": self.pin},
        )
        if isinstance(result, TransportFailure):
            logger.warning("Login failed: %s is %s", result.target, result.reason)
            self.state = SessionState.FAILED
            return result

        logger.info("Logged in patron record %s", self.patron.record_number)
        self.state = SessionState.AUTHENTICATED
        return True

    async def logout(self):
        """Log out. Failures are logged and otherwise ignored."""
        result = await self.transport.execute(self.profile.logout_path, {}, retry=False)
        if isinstance(result, TransportFailure):
            logger.warning("Logout from %s failed", result.target)
        else:
            logger.info("Logged out")
        self.state = SessionState.UNAUTHENTICATED

    async def close(self):
        """Log out if needed and release the transport. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        try:
            if self.state == SessionState.AUTHENTICATED:
                await self.logout()
        finally:
            await self.transport.close()

    async def list_loans(
        self, sort_by_due: bool = True, resolve_bibs: bool = True
    ) -> list[Loan] | TransportFailure:
        """Get the checked out items, sorted by due date on the server."""
        self._require_session()
        path = self.profile.sorted_items_path if sort_by_due else self.profile.items_path
        page = await self.transport.execute(path.format(pnum=self.pnum))
        if isinstance(page, TransportFailure):
            return page

        loans = parse_loans(page.body, self.profile)
        if resolve_bibs:
            for loan in loans:
                if loan.ill:
                    continue
                bib = await self.item_to_bib(loan.item_number)
                if isinstance(bib, TransportFailure):
                    return bib
                loan.bib_number = bib
        return loans

    async def list_holds(self) -> list[Hold] | TransportFailure:
        """Get the patron's holds."""
        self._require_session()
        page = await self.transport.execute(self.profile.holds_path.format(pnum=self.pnum))
        if isinstance(page, TransportFailure):
            return page
        return parse_holds(page.body, self.profile)

    async def place_hold(
        self,
        bib_number: str,
        item_handle: str | None = None,
        pickup_location: str | None = None,
    ) -> HoldPlacement | TransportFailure:
        """Request a hold on a title.

        When the catalog asks which copy or which pickup location to use,
        the placement lists the choices; call again with ``item_handle`` or
        ``pickup_location`` set.
        """
        self._require_session()
        today = date.today()
        form = {
            "name": self.patron.name,
            "code": self.card_number,
            "pin": self.pin,
            "neededby_Month": today.strftime("%m"),
            "neededby_Day": today.strftime("%d"),
            "neededby_Year": str(today.year + 1),
        }
        if item_handle:
            form["submit"] = "SUBMIT"
            form["radio"] = item_handle
        if pickup_location:
            form["loc"] = pickup_location

        await self._race_delay()
        page = await self.transport.execute(self.profile.hold_request_path.format(bnum=bib_number), form)
        if isinstance(page, TransportFailure):
            return page

        placement = classify_hold_response(page.body, self.profile)
        logger.info("Hold on b%s: %s", bib_number, placement.outcome.value)
        return placement

    async def cancel_holds(self, handles: Iterable[str]) -> Page | TransportFailure:
        """Cancel the holds with the given handles in one request."""
        return await self.update_holds(cancel=handles)

    async def update_holds(
        self,
        cancel: Iterable[str] = (),
        freeze: Mapping[str, bool] | None = None,
        pickup: Mapping[str, str] | None = None,
    ) -> Page | TransportFailure:
        """Cancel, freeze and relocate holds in one combined request.

        ``freeze`` and ``pickup`` are keyed by hold handle. Holds mapped to
        False in ``freeze`` are sent without the freeze flag, which thaws
        them.
        """
        self._require_session()
        params = {"updateholdssome": "TRUE"}
        for handle in cancel:
            params[handle] = "1"
        for handle, frozen in (freeze or {}).items():
            if frozen:
                params[f"freeze{_hold_suffix(handle)}"] = "on"
        for handle, code in (pickup or {}).items():
            params[f"loc{_hold_suffix(handle)}"] = code

        await self._race_delay()
        return await self.transport.execute(
            self.profile.holds_path.format(pnum=self.pnum), params=params
        )

    async def renew_items(
        self, items: Mapping[str, str] | None = None
    ) -> list[RenewResult] | TransportFailure:
        """Renew checked out items.

        ``items`` maps loan handles to item numbers; ``None`` renews
        everything.
        """
        self._require_session()
        path = self.profile.renew_path.format(pnum=self.pnum)
        params = None
        selected = None
        if items is None:
            path += "?renewall"
        else:
            selected = {handle: _item_ref(item) for handle, item in items.items()}
            params = {"renewsome": "TRUE", **selected}

        await self._race_delay()
        page = await self.transport.execute(path, params=params)
        if isinstance(page, TransportFailure):
            return page
        return parse_renewals(page.body, self.profile, selected)

    async def get_fines(self) -> FineList | TransportFailure:
        """Get outstanding fines and the key needed to pay them."""
        self._require_session()
        flow = PAYMENT_FLOWS[self.config.payment_protocol]
        path = flow.fines_path.format(pnum=self.pnum, ptype=self.patron.patron_type or "")
        page = await self.transport.execute(path)
        if isinstance(page, TransportFailure):
            return page
        return parse_fines(page.body, flow)

    async def pay_fines(self, details: PaymentDetails) -> PaymentResult | TransportFailure:
        """Pay the selected fines by card, in two phases.

        Phase one submits the billing details for validation; phase two
        confirms them, either with a checksum read from the phase one page
        or with the session key from the fines page.
        """
        self._require_session()
        protocol = self.config.payment_protocol
        flow = PAYMENT_FLOWS[protocol]
        fields = {form_name: str(getattr(details, attr)) for attr, form_name in flow.fields.items()}
        fields[flow.fields["total"]] = f"${details.total:,.2f}"

        if protocol == PaymentProtocol.CHECKSUM:
            selected = {handle: "on" for handle in details.fine_handles}
            validated = await self.transport.execute(
                flow.phase1_path.format(pnum=self.pnum),
                {"entered": "Y", **fields, **selected},
            )
            if isinstance(validated, TransportFailure):
                return validated
            confirm = {
                "cksum": parse_checksum(validated.body, flow) or "",
                "entered": "Y",
                "confirmed": "Y",
                **fields,
                **selected,
            }
        else:
            fines = await self.get_fines()
            if isinstance(fines, TransportFailure):
                return fines
            key = fines.session_key or ""
            validated = await self.transport.execute(
                flow.phase1_path,
                {
                    "action": "confirmInfo",
                    "key": key,
                    "parsedMoneyfmt": ",.2",
                    "currencySymbol": "$",
                    "serviceCharge": "0",
                    "selectedFees": list(details.fine_handles),
                    **fields,
                },
            )
            if isinstance(validated, TransportFailure):
                return validated
            confirm = {"action": "submitData", "key": key}

        paid = await self.transport.execute(flow.phase2_path.format(pnum=self.pnum), confirm)
        if isinstance(paid, TransportFailure):
            return paid

        if self.config.settle_delay:
            await asyncio.sleep(self.config.settle_delay)

        result = parse_payment_result(paid.body, flow)
        logger.info("Payment of %.2f %s", details.total, "approved" if result.approved else "declined")
        return result

    async def item_to_bib(self, item_number: str) -> str | None | TransportFailure:
        """Resolve an item number to its bib number."""
        if item_number.startswith("i"):
            item_number = item_number[1:]
        page = await self.transport.execute(self.profile.record_path.format(inum=item_number))
        if isinstance(page, TransportFailure):
            return page
        return parse_bib_number(page.body, self.profile)


def _item_ref(item_number: str) -> str:
    return item_number if item_number.startswith("i") else f"i{item_number}"


def _hold_suffix(handle: str) -> str:
    return handle[len("cancel"):] if handle.startswith("cancel") else handle


async def create_client(
    config: ILSConfig | None = None,
    card_number: str | None = None,
    pin: str | None = None,
    patron: PatronAttributes | None = None,
) -> WebpacClient:
    """Create and log in a client, reading credentials from env if not provided."""
    load_dotenv()

    config = config or ILSConfig.from_env()
    card_number = card_number or os.getenv("WEBPAC_CARDNUM")
    pin = pin or os.getenv("WEBPAC_PIN")

    if not card_number:
        raise ValueError("WEBPAC_CARDNUM must be set")
    if config.pin_required and not pin:
        raise ValueError("WEBPAC_PIN must be set")

    if patron is None:
        record = os.getenv("WEBPAC_PATRON_RECORD")
        if not record:
            raise ValueError("WEBPAC_PATRON_RECORD must be set")
        patron = PatronAttributes(
            record_number=record,
            barcode=card_number,
            name=os.getenv("WEBPAC_PATRON_NAME", ""),
            patron_type=os.getenv("WEBPAC_PATRON_TYPE"),
        )

    client = WebpacClient(config, card_number, pin, patron=patron)
    result = await client.login()
    if isinstance(result, TransportFailure):
        await client.close()
        raise ConnectionError(f"Catalog unreachable: {result.target}")
    return client
