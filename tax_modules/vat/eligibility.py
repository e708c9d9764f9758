"""
Refund eligibility and counterparty checks.

Accelerated (25-day) refunds require a clean compliance history: no late
filings within the lookback window, no unpaid tax dues, and active VAT
payer status verified on the white list.  The facts come from the client
profile provider; this module only evaluates them.
"""

from __future__ import annotations

import re
from datetime import date
from decimal import Decimal

from tax_config.schema import TaxEngineConfig
from tax_kernel.exceptions import InvalidInputError
from tax_kernel.logging_config import get_logger
from tax_modules.profiles import ClientTaxProfile

logger = get_logger("modules.vat.eligibility")

_VAT_ID_PATTERN = re.compile(r"^([A-Z]{2})[0-9A-Z+*]{2,12}$")


def _months_back(on_date: date, months: int) -> date:
    index = on_date.year * 12 + (on_date.month - 1) - months
    year, month = divmod(index, 12)
    # Clamp the day for shorter months.
    day = min(on_date.day, 28)
    return date(year, month + 1, day)


def accelerated_refund_ineligibility(
    profile: ClientTaxProfile,
    as_of: date,
    config: TaxEngineConfig | None = None,
) -> tuple[str, ...]:
    """
    Reasons the client cannot take an accelerated refund; empty when eligible.
    """
    config = config or TaxEngineConfig()
    reasons: list[str] = []
    window_start = _months_back(as_of, config.late_filing_lookback_months)
    late = [d for d in profile.late_filing_dates if window_start <= d <= as_of]
    if late:
        reasons.append(
            f"{len(late)} late filing(s) in the last {config.late_filing_lookback_months} months"
        )
    if profile.unpaid_dues > Decimal("0"):
        reasons.append(f"Unpaid tax dues of {profile.unpaid_dues} PLN")
    if not profile.is_active_vat_payer:
        reasons.append("Client is not an active VAT payer")
    elif profile.white_list_verified_on is None:
        reasons.append("Active VAT payer status not verified on the white list")

    logger.debug("accelerated_refund_eligibility_checked", extra={
        "client_id": str(profile.client_id),
        "eligible": not reasons,
        "reason_count": len(reasons),
    })
    return tuple(reasons)


def validate_vies_vat_id(vat_id: str | None, config: TaxEngineConfig | None = None) -> str:
    """
    Normalise an EU VAT number and check its format.

    The two-letter prefix must be an EU member state code.

    Raises:
        InvalidInputError: missing, malformed, or non-EU prefix.
    """
    config = config or TaxEngineConfig()
    if not vat_id:
        raise InvalidInputError(
            "Buyer VAT number is required for an intra-EU supply", field="counterparty_vat_id"
        )
    normalized = vat_id.replace(" ", "").replace("-", "").upper()
    match = _VAT_ID_PATTERN.match(normalized)
    if match is None:
        logger.warning("vies_vat_id_malformed", extra={"vat_id": vat_id})
        raise InvalidInputError(f"Malformed EU VAT number: {vat_id}", field="counterparty_vat_id")
    prefix = match.group(1)
    # Greece uses EL in VIES.
    if prefix == "EL":
        prefix = "GR"
    if prefix not in config.eu_member_states:
        logger.warning("vies_vat_id_non_eu", extra={"vat_id": vat_id, "prefix": prefix})
        raise InvalidInputError(
            f"VAT number prefix {match.group(1)} is not an EU member state",
            field="counterparty_vat_id",
        )
    return normalized
