"""
Passcode-length tiers and the upgrade gate.

Three digits are free; each longer passcode is a purchasable product. A
purchase is recorded by the purchase-verification collaborator as an
entitlement ``(identity, length)``; applying it to an entry is a separate,
explicit upgrade. Entitlements are non-consumable: an identity that owns the
6-digit tier may apply it to every entry it owns.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from aikotoba.vault.errors import EntitlementMissing, InvalidLength, LengthNotIncreasing, NotOwner
from aikotoba.vault.identity import Identity
from aikotoba.vault.models import FREE_PASSCODE_LENGTH, MAX_PASSCODE_LENGTH, MIN_PASSCODE_LENGTH, VaultEntry


@dataclass(frozen=True)
class PasscodeTier:
    length: int
    product_id: str

    @property
    def combinations(self) -> int:
        return 10**self.length

    @property
    def is_free(self) -> bool:
        return not self.product_id


TIERS: tuple[PasscodeTier, ...] = tuple(
    PasscodeTier(n, "" if n == FREE_PASSCODE_LENGTH else f"com.aikotoba.passcode.{n}digit")
    for n in range(MIN_PASSCODE_LENGTH, MAX_PASSCODE_LENGTH + 1)
)


def tier_for(length: int) -> PasscodeTier:
    for tier in TIERS:
        if tier.length == length:
            return tier
    raise InvalidLength(f"passcode length must be between {MIN_PASSCODE_LENGTH} and {MAX_PASSCODE_LENGTH}")


def available_upgrades(current_length: int) -> list[PasscodeTier]:
    return [t for t in TIERS if t.length > current_length]


class EntitlementProvider(Protocol):
    def has_entitlement(self, owner: Identity, length: int) -> bool: ...


class StaticEntitlements:
    """In-memory grants, for local runs and tests."""

    def __init__(self, grants: set[tuple[Identity, int]] | None = None) -> None:
        self.grants: set[tuple[Identity, int]] = set(grants or ())

    def grant(self, owner: Identity, length: int) -> None:
        self.grants.add((owner, length))

    def has_entitlement(self, owner: Identity, length: int) -> bool:
        return (owner, length) in self.grants


class TierGate:
    def __init__(self, entitlements: EntitlementProvider) -> None:
        self.entitlements = entitlements

    def check(self, entry: VaultEntry, owner: Identity, target_length: int) -> PasscodeTier:
        """Validate an upgrade of ``entry`` to ``target_length`` by ``owner``."""
        if not entry.owned_by(owner):
            raise NotOwner(entry.id)
        tier = tier_for(target_length)
        if target_length <= entry.passcode_length:
            raise LengthNotIncreasing(
                f"target length {target_length} must exceed current length {entry.passcode_length}"
            )
        if not self.entitlements.has_entitlement(owner, target_length):
            raise EntitlementMissing(tier.product_id)
        return tier
