"""Vault error taxonomy.

Each error has a stable ``code`` that the HTTP layer returns verbatim. None of
them ever carries passcode material.
"""

from __future__ import annotations


class VaultError(Exception):
    code = "vault_error"


class NotFound(VaultError):
    code = "not_found"


class KeywordAlreadyExists(VaultError):
    code = "keyword_already_exists"


class InvalidGuessFormat(VaultError):
    code = "invalid_guess_format"


class InvalidPasscode(VaultError):
    code = "invalid_passcode"


class LimitExceeded(VaultError):
    code = "limit_exceeded"


class NotOwner(VaultError):
    code = "not_owner"


class OwnerCannotChallenge(VaultError):
    code = "owner_cannot_challenge"


class LengthNotIncreasing(VaultError):
    code = "length_not_increasing"


class InvalidLength(VaultError):
    code = "invalid_length"


class EntitlementMissing(VaultError):
    code = "entitlement_missing"


class EntryUnavailable(VaultError):
    """The entry is hidden in its post-theft grace period and cannot be read or guessed."""

    code = "hidden"


class TransferConflict(EntryUnavailable):
    """A correct guess that lost the race: another challenger stole the entry first.

    Detected by comparing the guess with the entry as read just before taking the
    lock. A loser whose read already saw the hidden entry gets plain
    ``EntryUnavailable``.
    """

    code = "transfer_conflict"


class StoreUnavailable(VaultError):
    code = "store_unavailable"


class InvalidIdentity(VaultError):
    code = "invalid_identity"
