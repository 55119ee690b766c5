from __future__ import annotations


class CookieError(ValueError):
    """Base class for cookie/state validation failures. Always terminal for the request."""


class FormatError(CookieError):
    """Malformed cookie or state structure."""


class DecodeError(CookieError):
    """Cookie signature is not valid base64."""


class UnknownIdentityError(CookieError):
    """Identity id is not (or no longer) in the identity cache."""


class SignatureError(CookieError):
    """MAC mismatch. Treated the same as tampering."""


class ExpiredError(CookieError):
    """Cookie expiry is in the past."""


class CSRFError(CookieError):
    """CSRF cookie missing, malformed or not matching the OAuth state."""
