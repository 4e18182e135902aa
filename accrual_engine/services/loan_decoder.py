"""
Persistence boundary for loan rows.

Due dates, the plan snapshot and the late fee schedule are stored as loose
JSON. Everything here turns a raw row into a typed ``LoanAccrualState`` or
raises ``LoanDataError``; nothing silently falls back to a default for a
malformed value.
"""

import json
from datetime import date, datetime, tzinfo
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional, Tuple

from pydantic import ValidationError

from accrual_engine.core.exceptions import LoanDataError
from accrual_engine.schemas.accrual_schema import (
    BoundedTier,
    FeeKindEnum,
    LateFeeTier,
    LoanAccrualState,
    LoanStatusEnum,
    OneTimeTier,
    UnboundedTier,
)
from accrual_engine.services.accrual_calculator import to_calendar_date

_FEE_KIND_ALIASES = {
    "percent": FeeKindEnum.percent,
    "percentage": FeeKindEnum.percent,
    "fixed": FeeKindEnum.fixed,
    "flat": FeeKindEnum.fixed,
}


def _first_present(raw: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in raw:
            return raw[key]
    return None


def _loads_if_string(loan_id: Any, field: str, raw: Any) -> Any:
    if not isinstance(raw, str):
        return raw
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise LoanDataError(loan_id, f"{field} is not valid JSON: {e}", raw) from e


def _parse_date(loan_id: Any, value: Any, tz: Optional[tzinfo]) -> date:
    if isinstance(value, (date, datetime)):
        return to_calendar_date(value, tz)
    if isinstance(value, str):
        text = value.strip()
        try:
            if len(text) > 10:
                return to_calendar_date(datetime.fromisoformat(text.replace("Z", "+00:00")), tz)
            return date.fromisoformat(text)
        except ValueError as e:
            raise LoanDataError(loan_id, f"unparsable due date {value!r}", value) from e
    raise LoanDataError(loan_id, f"unsupported due date value {value!r}", value)


def decode_due_dates(loan_id: Any, raw: Any, tz: Optional[tzinfo] = None) -> Tuple[date, ...]:
    """Accepts a date, an ISO string, a JSON array (or its string form) of either."""
    if raw is None or raw == "" or raw == []:
        return ()

    parsed = raw
    if isinstance(raw, str):
        text = raw.strip()
        if text.startswith("[") or text.startswith('"'):
            parsed = _loads_if_string(loan_id, "processed_due_date", text)
        else:
            parsed = text

    if not isinstance(parsed, (list, tuple)):
        parsed = [parsed]

    return tuple(sorted(_parse_date(loan_id, value, tz) for value in parsed))


def decode_plan_snapshot(loan_id: Any, raw: Any) -> Dict[str, Any]:
    if raw is None or raw == "":
        return {}
    parsed = _loads_if_string(loan_id, "plan_snapshot", raw)
    if not isinstance(parsed, dict):
        raise LoanDataError(loan_id, "plan_snapshot is not a JSON object", raw)
    return parsed


def decode_decimal(loan_id: Any, field: str, raw: Any, default: Optional[Decimal] = None) -> Decimal:
    if raw is None or raw == "":
        if default is None:
            raise LoanDataError(loan_id, f"{field} is missing", raw)
        return default
    if isinstance(raw, bool):
        raise LoanDataError(loan_id, f"{field} is not a number: {raw!r}", raw)
    try:
        value = Decimal(str(raw))
    except InvalidOperation as e:
        raise LoanDataError(loan_id, f"{field} is not a number: {raw!r}", raw) from e
    if not value.is_finite():
        raise LoanDataError(loan_id, f"{field} is not finite: {raw!r}", raw)
    return value


def decode_late_fee_tier(loan_id: Any, raw: Any) -> LateFeeTier:
    if not isinstance(raw, dict):
        raise LoanDataError(loan_id, f"late fee tier is not an object: {raw!r}", raw)

    start_day = _first_present(raw, "start_day", "days_overdue_start")
    end_day = _first_present(raw, "end_day", "days_overdue_end")
    kind_raw = _first_present(raw, "fee_kind", "fee_type") or "percent"
    fee_kind = _FEE_KIND_ALIASES.get(str(kind_raw).lower())
    if fee_kind is None:
        raise LoanDataError(loan_id, f"unknown late fee kind {kind_raw!r}", raw)

    fields = {
        "start_day": start_day,
        "fee_value": _first_present(raw, "fee_value", "fee_percent"),
        "fee_kind": fee_kind,
        "gst_percent": raw.get("gst_percent"),
    }

    try:
        if end_day is None:
            return UnboundedTier(**fields)
        if start_day is not None and int(end_day) == int(start_day):
            return OneTimeTier(**fields)
        tier = BoundedTier(end_day=end_day, **fields)
    except (ValidationError, TypeError, ValueError) as e:
        raise LoanDataError(loan_id, f"invalid late fee tier: {e}", raw) from e

    if tier.end_day < tier.start_day:
        raise LoanDataError(loan_id, f"late fee tier ends (day {tier.end_day}) before it starts (day {tier.start_day})", raw)
    return tier


def decode_late_fee_tiers(loan_id: Any, raw: Any) -> Tuple[LateFeeTier, ...]:
    if raw is None or raw == "":
        return ()
    parsed = _loads_if_string(loan_id, "late_fee_tiers", raw)
    if not isinstance(parsed, list):
        raise LoanDataError(loan_id, "late_fee_tiers is not a JSON array", raw)
    tiers = [decode_late_fee_tier(loan_id, item) for item in parsed]
    return tuple(sorted(tiers, key=lambda tier: tier.start_day))


def decode_status(loan_id: Any, raw: Any) -> LoanStatusEnum:
    try:
        return LoanStatusEnum(raw)
    except ValueError as e:
        raise LoanDataError(loan_id, f"unknown status {raw!r}", raw) from e


def decode_loan(
    row: Any,
    tz: Optional[tzinfo] = None,
    default_daily_rate: Decimal = Decimal("0.001"),
) -> LoanAccrualState:
    """Build the accrual state for one stored loan row."""
    loan_id = row.loan_id

    if row.processed_at is None:
        raise LoanDataError(loan_id, "loan has not been disbursed (processed_at is empty)")

    principal = decode_decimal(loan_id, "processed_amount", row.processed_amount)
    if principal <= 0:
        raise LoanDataError(loan_id, f"non-positive principal {principal}", row.processed_amount)

    snapshot = decode_plan_snapshot(loan_id, row.plan_snapshot)
    daily_rate = decode_decimal(loan_id, "interest_percent_per_day",
                                snapshot.get("interest_percent_per_day"), default_daily_rate)
    if daily_rate < 0:
        raise LoanDataError(loan_id, f"negative daily interest rate {daily_rate}", snapshot)

    last_calculated = row.last_calculated_at
    return LoanAccrualState(
        loan_id=loan_id,
        principal=principal,
        daily_interest_rate=daily_rate,
        due_dates=decode_due_dates(loan_id, row.processed_due_date, tz),
        late_fee_tiers=decode_late_fee_tiers(loan_id, row.late_fee_tiers),
        accrued_interest=decode_decimal(loan_id, "processed_interest", row.processed_interest, Decimal("0")),
        accrued_penalty=decode_decimal(loan_id, "processed_penalty", row.processed_penalty, Decimal("0")),
        last_calculated_date=to_calendar_date(last_calculated, tz) if last_calculated is not None else None,
        processed_date=to_calendar_date(row.processed_at, tz),
        status=decode_status(loan_id, row.status),
    )
