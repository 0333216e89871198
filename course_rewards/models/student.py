from __future__ import annotations

import re
from dataclasses import dataclass
from uuid import UUID, uuid4

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
ZERO_ADDRESS = "0x" + "0" * 40


def is_valid_address(address: str | None) -> bool:
    """Shape check only; the contract rejects the zero address too."""
    if not address or not _ADDRESS_RE.match(address):
        return False
    return address.lower() != ZERO_ADDRESS


@dataclass(frozen=True, slots=True)
class Student:
    id: UUID
    name: str
    wallet_address: str | None = None

    @staticmethod
    def new(*, name: str, wallet_address: str | None = None) -> Student:
        return Student(id=uuid4(), name=name, wallet_address=wallet_address)

    @property
    def has_wallet(self) -> bool:
        return is_valid_address(self.wallet_address)
