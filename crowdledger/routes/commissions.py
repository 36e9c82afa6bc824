import csv
import logging
from io import BytesIO, StringIO
from typing import List

import openpyxl
from fastapi import APIRouter, Depends, Query, Response
from openpyxl.styles import Alignment, Font, PatternFill
from sqlalchemy.orm import Session

from crowdledger import models, schemas
from crowdledger.auth_utils import Caller, get_current_caller, get_managed_event
from crowdledger.commission_engine import compute_event_commissions, to_money
from crowdledger.database import get_db
from crowdledger.errors import ValidationError

logger = logging.getLogger("crowdledger.routes.commissions")

router = APIRouter(prefix="/events", tags=["Commissions"])

EXPORT_HEADERS = [
    "Promoter ID", "Promoter", "Commission Type", "Check-ins", "Tables", "Table Commission", "Commission Amount",
]


def commission_lines(db: Session, event: models.Event) -> List[schemas.CommissionLineSchema]:
    """Frozen snapshot once a payout run exists, live engine results before that."""
    run = db.query(models.PayoutRun).filter(models.PayoutRun.event_id == event.id).first()
    if run:
        return [
            schemas.CommissionLineSchema(
                promoter_id=line.promoter_id,
                promoter_name=line.promoter.name if line.promoter else None,
                commission_type=line.commission_type,
                checkins_count=line.checkins_count,
                tables_count=line.tables_count,
                table_commission_amount=to_money(line.table_commission_amount),
                commission_amount=to_money(line.commission_amount),
            )
            for line in run.lines
        ]
    return [schemas.CommissionLineSchema.model_validate(result) for result in compute_event_commissions(db, event.id)]


def summarize(event: models.Event, lines: List[schemas.CommissionLineSchema]) -> schemas.CommissionSummary:
    return schemas.CommissionSummary(
        event_id=event.id,
        currency=event.currency,
        locked=event.is_locked,
        lines=lines,
        total_checkins=sum(line.checkins_count for line in lines),
        total_tables=sum(line.tables_count for line in lines),
        total_table_amount=to_money(sum((line.table_commission_amount for line in lines), 0)),
        total_amount=to_money(sum((line.commission_amount for line in lines), 0)),
    )


def export_filename(event: models.Event, ext: str) -> str:
    local_start = models.to_event_local(event, event.start_time or models.utcnow())
    return f"commissions_{event.slug}_{local_start.strftime('%Y-%m-%d')}.{ext}"


def build_csv(summary: schemas.CommissionSummary) -> bytes:
    buffer = StringIO()
    writer = csv.writer(buffer)
    writer.writerow(EXPORT_HEADERS)
    for line in summary.lines:
        writer.writerow([
            line.promoter_id,
            line.promoter_name or "",
            line.commission_type,
            line.checkins_count,
            line.tables_count,
            f"{line.table_commission_amount:.2f}",
            f"{line.commission_amount:.2f}",
        ])
    writer.writerow([
        "TOTAL", "", "", summary.total_checkins, summary.total_tables,
        f"{summary.total_table_amount:.2f}", f"{summary.total_amount:.2f}",
    ])
    return buffer.getvalue().encode("utf-8")


def build_xlsx(event: models.Event, summary: schemas.CommissionSummary) -> bytes:
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "Commissions"

    ws.append([f"Commissions - {event.name}"])
    ws.append([])
    ws.append(EXPORT_HEADERS)
    for line in summary.lines:
        ws.append([
            line.promoter_id,
            line.promoter_name or "",
            line.commission_type,
            line.checkins_count,
            line.tables_count,
            float(line.table_commission_amount),
            float(line.commission_amount),
        ])
    ws.append([
        "TOTAL", "", "", summary.total_checkins, summary.total_tables,
        float(summary.total_table_amount), float(summary.total_amount),
    ])

    header_fill = PatternFill(start_color="366092", end_color="366092", fill_type="solid")
    header_font = Font(bold=True, color="FFFFFF")
    for cell in ws[1]:
        cell.fill = header_fill
        cell.font = header_font
        cell.alignment = Alignment(horizontal="center", vertical="center")

    for cell in ws[3]:
        cell.fill = PatternFill(start_color="D9E1F2", end_color="D9E1F2", fill_type="solid")
        cell.font = Font(bold=True)

    for cell in ws[ws.max_row]:
        cell.font = Font(bold=True)

    for row in ws.iter_rows(min_row=4, min_col=6, max_col=7):
        for cell in row:
            cell.number_format = "#,##0.00"

    for column, width in zip("ABCDEFG", (12, 32, 20, 12, 10, 18, 20)):
        ws.column_dimensions[column].width = width

    output = BytesIO()
    wb.save(output)
    return output.getvalue()


@router.get("/{event_id}/commissions", response_model=schemas.CommissionSummary)
def get_commissions(
    event_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
):
    logger.debug(f"Caller {caller.id} previewing commissions for event {event_id}")
    event = get_managed_event(db, event_id, caller)
    return summarize(event, commission_lines(db, event))


@router.get("/{event_id}/commissions/export")
def export_commissions(
    event_id: int,
    format: str = Query("csv", description="csv or xlsx"),
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
):
    logger.debug(f"Caller {caller.id} exporting commissions for event {event_id} as {format}")
    event = get_managed_event(db, event_id, caller)
    summary = summarize(event, commission_lines(db, event))

    if format == "csv":
        content = build_csv(summary)
        media_type = "text/csv"
    elif format == "xlsx":
        content = build_xlsx(event, summary)
        media_type = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
    else:
        raise ValidationError("format must be csv or xlsx")

    logger.info(f"Exported commissions for event {event_id} ({len(summary.lines)} promoters, {format})")
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f"attachment; filename={export_filename(event, format)}"},
    )
