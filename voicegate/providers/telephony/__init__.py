"""Telephony call-control providers."""


class TelephonyError(RuntimeError):
    """A live call could not be controlled (credentials, REST failure)."""
