"""Exceptions raised by the WebPAC engine."""


class SessionContractError(Exception):
    """A session was used before its preconditions were met.

    Raised for programming errors such as logging in without patron
    attributes or a PIN, or running a patron workflow before login.
    Recoverable outcomes (unreachable catalog, rejected requests) are
    returned as values instead.
    """
