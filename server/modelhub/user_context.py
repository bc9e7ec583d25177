"""ModelHub - User Context

Immutable identity that travels through the request lifecycle.
Resolved once per request by the API dependency chain and never mutated.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class Principal:
    """The authenticated caller of an operation."""
    username: str
    is_superuser: bool = False    # global admin: passes every access check

    def as_dict(self) -> dict:
        return {"username": self.username, "admin": self.is_superuser}


def system_principal(username: str = "system") -> Principal:
    """Superuser principal for operator scripts and startup tasks."""
    return Principal(username=username, is_superuser=True)
