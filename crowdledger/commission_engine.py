"""Promoter commission computation.

Counts come from the check-in ledger (distinct referred registrations with an
active check-in). Table commissions already calculated for the promoter's
bookings are added on top. Amounts are Decimals rounded to cents so repeated
runs over the same ledger state produce identical results.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Tuple

import pydantic
from pydantic import BaseModel, Field
from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from crowdledger import models
from crowdledger.checkin_service import count_attributable_checkins
from crowdledger.errors import ConfigError, NotFoundError

logger = logging.getLogger("crowdledger.commissions")

CENTS = Decimal("0.01")


class FlatPerHeadConfig(BaseModel):
    amount_per_head: Decimal = Field(..., ge=0)


class CommissionTier(BaseModel):
    threshold: int = Field(..., ge=0)
    amount: Decimal = Field(..., ge=0)


class TieredThresholdsConfig(BaseModel):
    tiers: List[CommissionTier] = Field(..., min_length=1)


@dataclass
class CommissionResult:
    promoter_id: int
    promoter_name: Optional[str]
    commission_type: models.CommissionType
    checkins_count: int
    checkin_commission_amount: Decimal
    tables_count: int
    table_commission_amount: Decimal
    commission_amount: Decimal


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def validate_commission_config(commission_type, config: Dict[str, Any]) -> Dict[str, Any]:
    """Validate a config at save time and return its stored (JSON-safe) form.

    Tiers must be strictly ascending by threshold; anything else is a
    ConfigError rather than a guess at what was meant.
    """
    try:
        commission_type = models.CommissionType(commission_type)
    except ValueError:
        raise ConfigError(f"Unknown commission type: {commission_type}")
    try:
        if commission_type == models.CommissionType.flat_per_head:
            parsed = FlatPerHeadConfig(**(config or {}))
            return {"amount_per_head": str(to_money(parsed.amount_per_head))}

        parsed = TieredThresholdsConfig(**(config or {}))
    except pydantic.ValidationError as e:
        raise ConfigError(
            f"Invalid {commission_type.value} commission config",
            extra={"errors": [err["msg"] for err in e.errors()]},
        )

    previous = None
    for tier in parsed.tiers:
        if previous is not None and tier.threshold <= previous:
            raise ConfigError(
                "Commission tiers must have strictly ascending thresholds",
                extra={"thresholds": [t.threshold for t in parsed.tiers]},
            )
        previous = tier.threshold
    return {
        "tiers": [
            {"threshold": tier.threshold, "amount": str(to_money(tier.amount))}
            for tier in parsed.tiers
        ]
    }


def validate_table_rate(rate) -> Optional[Decimal]:
    if rate is None:
        return None
    rate = Decimal(str(rate))
    if rate < 0 or rate > 100:
        raise ConfigError("Table commission rate must be a percentage between 0 and 100")
    return rate.quantize(CENTS, rounding=ROUND_HALF_UP)


def percent_of(amount, rate) -> Decimal:
    return to_money(Decimal(str(amount)) * Decimal(str(rate)) / Decimal("100"))


def flat_per_head_commission(checkins_count: int, config: Dict[str, Any]) -> Decimal:
    return to_money(Decimal(checkins_count) * Decimal(str(config.get("amount_per_head", "0"))))


def tiered_commission(checkins_count: int, config: Dict[str, Any]) -> Decimal:
    # Highest qualifying tier wins: not cumulative, not first match.
    amount = Decimal("0")
    for tier in config.get("tiers", []):
        if checkins_count >= int(tier["threshold"]):
            amount = Decimal(str(tier["amount"]))
    return to_money(amount)


def commission_for(commission_type, config: Dict[str, Any], checkins_count: int) -> Decimal:
    commission_type = models.CommissionType(commission_type)
    if commission_type == models.CommissionType.flat_per_head:
        return flat_per_head_commission(checkins_count, config)
    return tiered_commission(checkins_count, config)


def table_commissions_by_promoter(db: Session, event_id: int) -> Dict[int, Tuple[Decimal, int]]:
    """promoter_id -> (summed promoter table commission, number of bookings)."""
    rows = db.query(
        models.TableBookingCommission.promoter_id,
        func.coalesce(func.sum(models.TableBookingCommission.promoter_commission_amount), 0),
        func.count(models.TableBookingCommission.id),
    ).filter(
        models.TableBookingCommission.event_id == event_id,
        models.TableBookingCommission.promoter_id.isnot(None),
    ).group_by(models.TableBookingCommission.promoter_id).all()
    return {promoter_id: (to_money(amount), count) for promoter_id, amount, count in rows}


def compute_event_commissions(db: Session, event_id: int) -> List[CommissionResult]:
    """Read-only; safe to run any number of times before the event locks."""
    event = db.query(models.Event).filter(models.Event.id == event_id).first()
    if not event:
        raise NotFoundError("Event not found")

    event_promoters = db.query(models.EventPromoter).options(
        joinedload(models.EventPromoter.promoter)
    ).filter(
        models.EventPromoter.event_id == event_id
    ).order_by(models.EventPromoter.promoter_id).all()

    counts = count_attributable_checkins(db, event_id)
    tables = table_commissions_by_promoter(db, event_id)

    results = []
    for ep in event_promoters:
        checkins_count = counts.get(ep.promoter_id, 0)
        checkin_amount = commission_for(ep.commission_type, ep.commission_config or {}, checkins_count)
        table_amount, tables_count = tables.get(ep.promoter_id, (to_money(0), 0))
        results.append(CommissionResult(
            promoter_id=ep.promoter_id,
            promoter_name=ep.promoter.name if ep.promoter else None,
            commission_type=ep.commission_type,
            checkins_count=checkins_count,
            checkin_commission_amount=checkin_amount,
            tables_count=tables_count,
            table_commission_amount=table_amount,
            commission_amount=to_money(checkin_amount + table_amount),
        ))
    logger.debug(f"Computed commissions for {len(results)} promoters on event {event_id}")
    return results


def total_commission(results) -> Decimal:
    return to_money(sum((r.commission_amount for r in results), Decimal("0")))
