"""
Identities that can own or challenge a vault entry.

An identity is either an anonymous device token or an authenticated account
id. Both are plain value objects: two identities are the same owner only if
they are the same kind *and* carry the same value.

Storage and wire encoding is ``"device:<token>"`` / ``"account:<id>"``.
"""

from __future__ import annotations

from dataclasses import dataclass

from aikotoba.vault.errors import InvalidIdentity


@dataclass(frozen=True)
class Device:
    token: str

    def __post_init__(self) -> None:
        if not self.token:
            raise InvalidIdentity("device token must not be empty")


@dataclass(frozen=True)
class Account:
    account_id: str

    def __post_init__(self) -> None:
        if not self.account_id:
            raise InvalidIdentity("account id must not be empty")


Identity = Device | Account


def format_identity(identity: Identity) -> str:
    if isinstance(identity, Device):
        return f"device:{identity.token}"
    if isinstance(identity, Account):
        return f"account:{identity.account_id}"
    raise InvalidIdentity(f"not an identity: {identity!r}")


def parse_identity(text: str) -> Identity:
    kind, sep, value = text.partition(":")
    if not sep:
        raise InvalidIdentity("identity must look like 'device:<token>' or 'account:<id>'")
    if kind == "device":
        return Device(value)
    if kind == "account":
        return Account(value)
    raise InvalidIdentity(f"unknown identity kind: {kind}")
