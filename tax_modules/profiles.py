"""
Client profile provider.

Regime eligibility flags and compliance history are owned by the client
management system; the tax modules only read them.  ``ClientProfileProvider``
is that read contract, with an in-memory implementation for tests and
single-process use.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from tax_kernel.exceptions import ClientProfileNotFoundError
from tax_kernel.logging_config import get_logger

logger = get_logger("modules.profiles")


@dataclass(frozen=True)
class ClientTaxProfile:
    """Eligibility flags and compliance history for one client."""

    client_id: UUID
    is_small_taxpayer: bool = False
    is_estonian_cit: bool = False
    is_active_vat_payer: bool = True
    white_list_verified_on: date | None = None
    late_filing_dates: tuple[date, ...] = ()
    unpaid_dues: Decimal = Decimal("0")
    vat_id: str | None = None
    notes: tuple[str, ...] = ()


class ClientProfileProvider(ABC):
    @abstractmethod
    def get_profile(self, client_id: UUID) -> ClientTaxProfile:
        """Raises ClientProfileNotFoundError when the client is unknown."""


class InMemoryClientProfileProvider(ClientProfileProvider):
    def __init__(self, profiles: list[ClientTaxProfile] | None = None):
        self._lock = threading.Lock()
        self._profiles: dict[UUID, ClientTaxProfile] = {
            p.client_id: p for p in (profiles or [])
        }

    def put(self, profile: ClientTaxProfile) -> None:
        with self._lock:
            self._profiles[profile.client_id] = profile
        logger.debug("client_profile_stored", extra={"client_id": str(profile.client_id)})

    def get_profile(self, client_id: UUID) -> ClientTaxProfile:
        with self._lock:
            profile = self._profiles.get(client_id)
        if profile is None:
            logger.warning("client_profile_not_found", extra={"client_id": str(client_id)})
            raise ClientProfileNotFoundError(client_id)
        return profile
