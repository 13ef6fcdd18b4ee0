"""WebPAC - scraping engine for III Millennium WebPAC catalogs."""

from webpac.catalog import CatalogScraper
from webpac.client import SessionState, WebpacClient
from webpac.config import ILSConfig
from webpac.exceptions import SessionContractError
from webpac.models import Availability, BibRecord, Fine, Hold, HoldPlacement, Loan, RenewResult
from webpac.transport import Page, Transport, TransportFailure

__all__ = [
    "CatalogScraper",
    "SessionState",
    "WebpacClient",
    "ILSConfig",
    "SessionContractError",
    "Availability",
    "BibRecord",
    "Fine",
    "Hold",
    "HoldPlacement",
    "Loan",
    "RenewResult",
    "Page",
    "Transport",
    "TransportFailure",
]
__version__ = "0.1.0"
