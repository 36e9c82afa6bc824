import logging
import os
import re
from decimal import Decimal
from io import BytesIO
from typing import List, Sequence

from PIL import Image, ImageDraw, ImageFont

from crowdledger import models, storage

logger = logging.getLogger("crowdledger.statements")

STATEMENTS_BUCKET = os.getenv("STATEMENTS_BUCKET", "statements")

# A4 at 100 dpi
PAGE_WIDTH = 827
PAGE_HEIGHT = 1169
MARGIN = 60
ROW_HEIGHT = 28
COLUMNS = [
    ("Promoter", 0), ("Type", 210), ("Check-ins", 350), ("Tables", 440), ("Amount", 520), ("Status", 640),
]


def get_font(font_size: int) -> ImageFont.ImageFont:
    """Statement font; falls back to Pillow's bundled font when DejaVu is not installed."""
    try:
        return ImageFont.truetype("DejaVuSans.ttf", font_size)
    except OSError:
        logger.debug("DejaVuSans.ttf not available, using default font")
        return ImageFont.load_default()


def sanitize_event_title(title: str) -> str:
    """Sanitize event title for use in filenames."""
    sanitized = re.sub(r'[^\w\s-]', '', title or "")
    sanitized = re.sub(r'[-\s]+', '_', sanitized)
    return sanitized[:50] or "event"


def format_money(amount, currency: str) -> str:
    return f"{currency or ''} {Decimal(amount):,.2f}".strip()


def _new_page() -> Image.Image:
    return Image.new("RGB", (PAGE_WIDTH, PAGE_HEIGHT), "white")


def render_statement_pages(run: models.PayoutRun, lines: Sequence[models.PayoutLine], event: models.Event) -> List[Image.Image]:
    title_font = get_font(28)
    body_font = get_font(14)
    bold_font = get_font(16)

    pages = [_new_page()]
    draw = ImageDraw.Draw(pages[0])

    generated_local = models.to_event_local(event, run.generated_at)
    start_local = models.to_event_local(event, event.start_time)
    y = MARGIN
    draw.text((MARGIN, y), "Promoter Payout Statement", fill="#111111", font=title_font)
    y += 50
    header_lines = [
        f"Event: {event.name}",
        f"Event date: {start_local.strftime('%Y-%m-%d %H:%M') if start_local else 'TBA'}",
        f"Payout run: #{run.id}",
        f"Generated: {generated_local.strftime('%Y-%m-%d %H:%M %Z') if generated_local else ''}",
    ]
    for text in header_lines:
        draw.text((MARGIN, y), text, fill="#333333", font=body_font)
        y += 22
    y += 20

    def draw_header_row(draw_obj, top):
        for label, offset in COLUMNS:
            draw_obj.text((MARGIN + offset, top), label, fill="#366092", font=bold_font)
        draw_obj.line((MARGIN, top + ROW_HEIGHT - 4, PAGE_WIDTH - MARGIN, top + ROW_HEIGHT - 4), fill="#366092")
        return top + ROW_HEIGHT

    y = draw_header_row(draw, y)
    total_checkins = 0
    total_tables = 0
    total_amount = Decimal("0")
    total_table_amount = Decimal("0")

    for line in lines:
        if y > PAGE_HEIGHT - MARGIN - 3 * ROW_HEIGHT:
            pages.append(_new_page())
            draw = ImageDraw.Draw(pages[-1])
            y = draw_header_row(draw, MARGIN)
        promoter_name = line.promoter.name if line.promoter else f"Promoter {line.promoter_id}"
        cells = [
            promoter_name[:24],
            line.commission_type.value.replace("_", " "),
            str(line.checkins_count),
            str(line.tables_count or 0),
            format_money(line.commission_amount, event.currency),
            line.payment_status.value,
        ]
        for (_, offset), cell in zip(COLUMNS, cells):
            draw.text((MARGIN + offset, y), cell, fill="#111111", font=body_font)
        y += ROW_HEIGHT
        total_checkins += line.checkins_count
        total_tables += line.tables_count or 0
        total_amount += Decimal(line.commission_amount)
        total_table_amount += Decimal(line.table_commission_amount or 0)

    draw.line((MARGIN, y, PAGE_WIDTH - MARGIN, y), fill="#999999")
    y += 8
    draw.text((MARGIN, y), "TOTAL", fill="#111111", font=bold_font)
    draw.text((MARGIN + COLUMNS[2][1], y), str(total_checkins), fill="#111111", font=bold_font)
    draw.text((MARGIN + COLUMNS[3][1], y), str(total_tables), fill="#111111", font=bold_font)
    draw.text((MARGIN + COLUMNS[4][1], y), format_money(total_amount, event.currency), fill="#111111", font=bold_font)
    if total_table_amount:
        y += ROW_HEIGHT
        draw.text(
            (MARGIN, y),
            f"Includes table commissions of {format_money(total_table_amount, event.currency)}",
            fill="#333333",
            font=body_font,
        )

    for number, page in enumerate(pages, start=1):
        ImageDraw.Draw(page).text(
            (PAGE_WIDTH - MARGIN - 80, PAGE_HEIGHT - MARGIN + 20),
            f"Page {number}/{len(pages)}",
            fill="#666666",
            font=body_font,
        )
    return pages


def statement_to_pdf_bytes(pages: List[Image.Image]) -> bytes:
    """Convert rendered pages to one PDF document."""
    pdf_buffer = BytesIO()
    pages[0].save(pdf_buffer, format='PDF', resolution=100.0, save_all=True, append_images=pages[1:])
    return pdf_buffer.getvalue()


def generate_statement(run: models.PayoutRun, lines: Sequence[models.PayoutLine], event: models.Event) -> str:
    """Render the payout statement, upload it and return its storage URL."""
    pages = render_statement_pages(run, lines, event)
    pdf_bytes = statement_to_pdf_bytes(pages)
    path = f"events/{event.id}/payout_run_{run.id}_{sanitize_event_title(event.name)}.pdf"
    url = storage.upload_to_storage(STATEMENTS_BUCKET, path, pdf_bytes, "application/pdf")
    logger.info(f"Statement for payout run {run.id} uploaded ({len(pdf_bytes)} bytes)")
    return url
