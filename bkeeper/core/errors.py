"""Error kinds raised by the B.Keeper core.

Every failure carries a ``kind`` string so callers (the CLI, or any other
front end) can pick a distinct user-facing message without matching on
exception text.
"""


class BKeeperError(Exception):
    """Base class for all core errors."""

    kind = "error"
    user_message = "Något gick fel."

    def __init__(self, message: str = ""):
        super().__init__(message or self.user_message)
        self.message = message or self.user_message


class RecordValidationError(BKeeperError):
    """Missing or contradictory input; nothing was written."""

    kind = "validation"
    user_message = "Ogiltiga uppgifter."


class StorageFailure(BKeeperError):
    """The device-local store could not be read or written."""

    kind = "storage_failure"
    user_message = "Kunde inte spara eller läsa data. Försök igen."


class AuthorizationDenied(BKeeperError):
    """A remote write was rejected by the apiary role policy."""

    kind = "authorization_denied"
    user_message = "Du saknar behörighet för den här åtgärden."


class NetworkFailure(BKeeperError):
    """The remote backend could not be reached."""

    kind = "network_failure"
    user_message = "Kunde inte nå servern."


class NotFound(BKeeperError):
    """A referenced record does not exist."""

    kind = "not_found"
    user_message = "Hittades inte."


class CodeNotFound(NotFound):
    """No active sharing or invite code matches."""

    user_message = "Koden finns inte eller är inte längre aktiv."


class CodeExpired(BKeeperError):
    kind = "expired"
    user_message = "Koden har gått ut."


class CodeExhausted(BKeeperError):
    kind = "exhausted"
    user_message = "Koden har redan använts maximalt antal gånger."


class AlreadyMember(BKeeperError):
    kind = "already_member"
    user_message = "Du har redan tillgång."
