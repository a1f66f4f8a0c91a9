"""Render report data as CSV, XLSX or fixed-width text."""

from __future__ import annotations

import csv
import io
from decimal import Decimal
from pathlib import Path
from typing import Iterable, List, Sequence, Union

import openpyxl
from openpyxl.styles import Font

from . import log
from .reports import BestSellingRecord, BestSellingReport, ProfitLossRecord, ProfitLossReport


PNL_HEADER = ["Period_Start_Date", "Period_End_Date", "Scope", "Revenue", "Cost", "Profit_Loss"]
BEST_SELLING_HEADER = [
    "Period_Start_Date",
    "Period_End_Date",
    "Scope",
    "Product_ID",
    "Product_Name",
    "Quantity_Sold",
]

LINE = "=" * 72
THIN_LINE = "-" * 68

Report = Union[ProfitLossReport, BestSellingReport]


def _money(amount: Decimal) -> str:
    return f"{amount:.2f}"


def _pnl_row(record: ProfitLossRecord) -> List[object]:
    return [
        record.period_start.isoformat(),
        record.period_end.isoformat(),
        record.scope.value,
        _money(record.revenue),
        _money(record.cost),
        _money(record.profit_loss),
    ]


def _best_selling_row(record: BestSellingRecord) -> List[object]:
    return [
        record.period_start.isoformat(),
        record.period_end.isoformat(),
        record.scope.value,
        record.product_id,
        record.product_name,
        record.quantity_sold,
    ]


def _to_csv(header: Sequence[str], rows: Iterable[Sequence[object]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(header)
    writer.writerows(rows)
    return buffer.getvalue()


def export_pnl_to_csv(records: Iterable[ProfitLossRecord]) -> str:
    """Convert profit/loss records into CSV text with two-decimal money."""
    return _to_csv(PNL_HEADER, (_pnl_row(record) for record in records))


def export_best_selling_to_csv(records: Iterable[BestSellingRecord]) -> str:
    """Convert best-seller records into CSV text; names with commas are quoted."""
    return _to_csv(BEST_SELLING_HEADER, (_best_selling_row(record) for record in records))


def export_report_workbook(report: Report, destination: Path) -> Path:
    """Write the report records to a single-sheet ``.xlsx`` file.

    Money columns are stored as numbers so the sheet can be summed in Excel.

    Returns:
        Path: The resolved destination.
    """
    destination = Path(destination).expanduser().resolve()
    workbook = openpyxl.Workbook()
    sheet = workbook.active
    bold_font = Font(bold=True)

    if isinstance(report, ProfitLossReport):
        sheet.title = "ProfitLoss"
        header = PNL_HEADER
        rows = [
            [r.period_start, r.period_end, r.scope.value, float(r.revenue), float(r.cost), float(r.profit_loss)]
            for r in report.records
        ]
    else:
        sheet.title = "BestSellers"
        header = BEST_SELLING_HEADER
        rows = [_best_selling_row(record) for record in report.records]

    sheet.append(header)
    for cell in sheet[1]:
        cell.font = bold_font
    for row in rows:
        sheet.append(row)
    if report.notice:
        sheet.append([])
        sheet.append([report.notice])

    destination.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(destination)
    log.info("Exported %d report rows to '%s'", len(rows), destination)
    return destination


def write_report(report: Report, destination: Path) -> Path:
    """Write ``report`` to ``destination``, choosing XLSX or CSV by suffix.

    Raises:
        ValueError: If the suffix is neither ``.csv`` nor ``.xlsx``.
    """
    destination = Path(destination).expanduser().resolve()
    suffix = destination.suffix.lower()
    if suffix == ".xlsx":
        return export_report_workbook(report, destination)
    if suffix != ".csv":
        raise ValueError(f"Unsupported export format: {destination.suffix or '(none)'}")

    if isinstance(report, ProfitLossReport):
        content = export_pnl_to_csv(report.records)
    else:
        content = export_best_selling_to_csv(report.records)
    destination.parent.mkdir(parents=True, exist_ok=True)
    destination.write_text(content, encoding="utf-8")
    log.info("Exported %d report rows to '%s'", len(report.records), destination)
    return destination


def _notice_block(notice: str) -> List[str]:
    return [LINE, f"NOTICE: {notice}", LINE]


def render_profit_loss_text(report: ProfitLossReport) -> str:
    """Render a profit/loss report as fixed-width text for the terminal."""

    lines = [
        "PROFIT AND LOSS REPORT WITH SPAN BREAKDOWN",
        f"Time Period: {report.start_date} to {report.end_date} | Span: {report.span_days} Days",
        "",
    ]
    if report.notice:
        lines.extend(_notice_block(report.notice))
    else:
        lines.extend([LINE, "A. PERIOD BREAKDOWN", LINE])
        lines.append(f"{'Period':<30} {'Revenue':>15} {'Profit/(Loss)':>15}")
        lines.append(LINE)
        for record in report.periods:
            lines.append(f"{record.label:<30} {_money(record.revenue):>15} {_money(record.profit_loss):>15}")

    overall = report.overall
    lines.extend(["", "", LINE, "B. OVERALL SUMMARY", LINE])
    lines.append(f"{'TOTAL REVENUE (SALES):':<40} {_money(overall.revenue):>15}")
    lines.append(f"{'TOTAL COST OF GOODS SOLD (COGS):':<40} {_money(overall.cost):>15}")
    lines.append(LINE)
    label = "NET PROFIT:" if overall.profit_loss >= 0 else "NET LOSS:"
    lines.append(f"{label:<40} {_money(overall.profit_loss):>15}")
    lines.append(LINE)
    return "\n".join(lines) + "\n"


def _ranking_lines(records: Sequence[BestSellingRecord]) -> List[str]:
    if not records:
        return ["No sales recorded in this period.", ""]
    lines = [f"{'ID':<15} {'Name':<40} {'Qty Sold':>10}", THIN_LINE]
    for record in records:
        lines.append(f"{record.product_id:<15} {record.product_name:<40} {record.quantity_sold:>10}")
    lines.append("")
    return lines


def render_best_selling_text(report: BestSellingReport) -> str:
    """Render a best-seller report as fixed-width text for the terminal."""

    lines = [
        "BEST SELLING REPORT WITH SPAN BREAKDOWN",
        f"Time Period: {report.start_date} to {report.end_date} | "
        f"Span: {report.span_days} Days | Top {report.top_n}",
        "",
    ]
    if report.notice:
        lines.extend(_notice_block(report.notice))
    else:
        for period in report.periods:
            lines.extend([LINE, f"PERIOD: {period.span.label}", LINE])
            lines.extend(_ranking_lines(period.products))

    lines.extend(["", "", LINE, f"B. OVERALL TOP {report.top_n} PRODUCTS (FULL PERIOD)", LINE])
    lines.extend(_ranking_lines(report.overall))
    return "\n".join(lines)
