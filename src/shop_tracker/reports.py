"""Period-windowed profit/loss and best-seller aggregation.

Reports are read-only views over the committed sales history. A date range
is divided into consecutive spans of ``span_days`` days, the last one
truncated to the range end, and each span is aggregated independently. An
overall figure is always computed for the whole range. When the range would
produce more than :data:`~shop_tracker.constants.MAX_REPORT_SPANS` spans the
per-span section is skipped and a notice is attached instead.

Report records are plain data; text and file rendering live in
:mod:`shop_tracker.exporter`.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from . import log
from .constants import MAX_REPORT_SPANS, UNKNOWN_PRODUCT_NAME, Capability, ReportScope
from .core_logic import (
    BusinessRuleViolation,
    InvalidInput,
    OperationResult,
    RuntimeContext,
    require_capability,
)
from .data_manager import SalesTransactionRow


def span_label(period_start: date, period_end: date) -> str:
    """Render an inclusive window as ``YYYY-MM-DD`` or ``YYYY-MM-DD to YYYY-MM-DD``."""
    if period_start == period_end:
        return period_start.isoformat()
    return f"{period_start.isoformat()} to {period_end.isoformat()}"


@dataclass(frozen=True)
class ReportSpan:
    """Inclusive date window covered by one report period."""

    period_start: date
    period_end: date

    @property
    def label(self) -> str:
        return span_label(self.period_start, self.period_end)

    def contains(self, day: date) -> bool:
        return self.period_start <= day <= self.period_end


@dataclass(frozen=True)
class ProfitLossRecord:
    period_start: date
    period_end: date
    scope: ReportScope
    revenue: Decimal
    cost: Decimal

    @property
    def profit_loss(self) -> Decimal:
        return self.revenue - self.cost

    @property
    def label(self) -> str:
        return span_label(self.period_start, self.period_end)


@dataclass(frozen=True)
class BestSellingRecord:
    period_start: date
    period_end: date
    scope: ReportScope
    product_id: str
    product_name: str
    quantity_sold: int


@dataclass(frozen=True)
class BestSellingPeriod:
    """Ranked products of one span; ``products`` is empty when nothing sold."""

    span: ReportSpan
    products: Tuple[BestSellingRecord, ...]


@dataclass(frozen=True)
class ProfitLossReport:
    start_date: date
    end_date: date
    span_days: int
    periods: Tuple[ProfitLossRecord, ...]
    overall: ProfitLossRecord
    notice: Optional[str] = None

    @property
    def records(self) -> Tuple[ProfitLossRecord, ...]:
        """Per-span records followed by the overall record."""
        return self.periods + (self.overall,)


@dataclass(frozen=True)
class BestSellingReport:
    start_date: date
    end_date: date
    span_days: int
    top_n: int
    periods: Tuple[BestSellingPeriod, ...]
    overall: Tuple[BestSellingRecord, ...]
    notice: Optional[str] = None

    @property
    def records(self) -> Tuple[BestSellingRecord, ...]:
        """Every ranked row, per-span rows first, overall rows last."""
        flattened: List[BestSellingRecord] = []
        for period in self.periods:
            flattened.extend(period.products)
        flattened.extend(self.overall)
        return tuple(flattened)


def validate_range(start: date, end: date, span_days: int) -> None:
    """Reject ranges the windowing cannot represent.

    Raises:
        InvalidInput: If ``start`` is after ``end`` or ``span_days`` is not a
            positive whole number.
    """
    if start > end:
        raise InvalidInput(f"Start date {start} is after end date {end}")
    if isinstance(span_days, bool) or not isinstance(span_days, int) or span_days < 1:
        raise InvalidInput("Span must be a whole number of days, at least 1")


def total_days(start: date, end: date) -> int:
    return (end - start).days + 1


def count_spans(start: date, end: date, span_days: int) -> int:
    """Return how many spans ``[start, end]`` divides into, without iterating."""
    validate_range(start, end, span_days)
    return -(-total_days(start, end) // span_days)


def iter_spans(start: date, end: date, span_days: int) -> Iterator[ReportSpan]:
    """Yield gap-free, non-overlapping spans covering ``[start, end]``.

    Each span is ``span_days`` long except the final one, which is truncated
    to ``end``.
    """
    validate_range(start, end, span_days)
    current = start
    while True:
        # Clamp before adding so neither step can pass date.max.
        if (end - current).days < span_days:
            span_end = end
        else:
            span_end = current + timedelta(days=span_days - 1)
        yield ReportSpan(current, span_end)
        if span_end == end:
            break
        current = span_end + timedelta(days=1)


def sales_in_range(sales: Iterable[SalesTransactionRow], start: date, end: date) -> List[SalesTransactionRow]:
    """Return sales dated within ``[start, end]``; undated sales are excluded."""
    return [sale for sale in sales if sale.sale_date is not None and start <= sale.sale_date <= end]


def _bucket_by_span(
    sales: Sequence[SalesTransactionRow],
    start: date,
    span_days: int,
) -> Dict[int, List[SalesTransactionRow]]:
    buckets: Dict[int, List[SalesTransactionRow]] = {}
    for sale in sales:
        index = (sale.sale_date - start).days // span_days
        buckets.setdefault(index, []).append(sale)
    return buckets


def _breakdown_notice(start: date, end: date, span_days: int, spans: int) -> str:
    return (
        f"The date range ({total_days(start, end)} days) with the chosen span ({span_days} days) "
        f"results in {spans} periods, more than the {MAX_REPORT_SPANS} allowed. "
        "The period breakdown is skipped; choose a larger span or a shorter date range."
    )


def summarize_profit_loss(
    sales: Iterable[SalesTransactionRow],
    span: ReportSpan,
    scope: ReportScope,
) -> ProfitLossRecord:
    """Sum revenue and cost of ``sales`` into one record for ``span``."""
    revenue = Decimal("0")
    cost = Decimal("0")
    for sale in sales:
        revenue += sale.total_revenue
        cost += sale.total_cost
    return ProfitLossRecord(span.period_start, span.period_end, scope, revenue, cost)


def rank_products(
    sales: Iterable[SalesTransactionRow],
    span: ReportSpan,
    scope: ReportScope,
    top_n: int,
    names: Mapping[str, str],
) -> Tuple[BestSellingRecord, ...]:
    """Rank products by quantity sold within ``sales``.

    Quantities are grouped by case-folded product id and reported under the
    first spelling seen. Ties on quantity are broken by product id ascending
    so the ranking is stable.

    Args:
        sales: Sales already restricted to ``span``.
        span (ReportSpan): Window the records are labelled with.
        scope (ReportScope): Scope stamped onto every record.
        top_n (int): Maximum number of records returned.
        names (Mapping[str, str]): Case-folded product id to current name.
            Ids missing from the mapping are labelled ``UNKNOWN PRODUCT``.

    Returns:
        tuple[BestSellingRecord, ...]: At most ``top_n`` records.
    """
    quantities: Dict[str, int] = {}
    spellings: Dict[str, str] = {}
    for sale in sales:
        for line in sale.lines:
            key = line.product_id.casefold()
            spellings.setdefault(key, line.product_id)
            quantities[key] = quantities.get(key, 0) + line.quantity

    totals = [(spellings[key], quantity) for key, quantity in quantities.items()]
    ranked = sorted(totals, key=lambda item: (-item[1], item[0]))[:top_n]
    return tuple(
        BestSellingRecord(
            period_start=span.period_start,
            period_end=span.period_end,
            scope=scope,
            product_id=product_id,
            product_name=names.get(product_id.casefold(), UNKNOWN_PRODUCT_NAME),
            quantity_sold=quantity,
        )
        for product_id, quantity in ranked
    )


def _build_profit_loss(context: RuntimeContext, start: date, end: date, span_days: int) -> ProfitLossReport:
    validate_range(start, end, span_days)
    in_range = sales_in_range(context.store.sales, start, end)
    spans = count_spans(start, end, span_days)

    periods: Tuple[ProfitLossRecord, ...] = ()
    notice = None
    if spans > MAX_REPORT_SPANS:
        notice = _breakdown_notice(start, end, span_days, spans)
        log.warning("Skipping profit/loss breakdown: %d spans requested", spans)
    else:
        buckets = _bucket_by_span(in_range, start, span_days)
        periods = tuple(
            summarize_profit_loss(buckets.get(index, ()), span, ReportScope.PERIOD)
            for index, span in enumerate(iter_spans(start, end, span_days))
        )

    overall = summarize_profit_loss(in_range, ReportSpan(start, end), ReportScope.OVERALL)
    log.debug("Profit/loss over %s..%s used %d sales", start, end, len(in_range))
    return ProfitLossReport(start, end, span_days, periods, overall, notice)


def _build_best_selling(
    context: RuntimeContext,
    start: date,
    end: date,
    span_days: int,
    top_n: int,
) -> BestSellingReport:
    validate_range(start, end, span_days)
    if isinstance(top_n, bool) or not isinstance(top_n, int) or top_n < 1:
        raise InvalidInput("Top N must be a whole number, at least 1")

    in_range = sales_in_range(context.store.sales, start, end)
    names = {key: product.name for key, product in context.store.products.items()}
    spans = count_spans(start, end, span_days)

    periods: Tuple[BestSellingPeriod, ...] = ()
    notice = None
    if spans > MAX_REPORT_SPANS:
        notice = _breakdown_notice(start, end, span_days, spans)
        log.warning("Skipping best-seller breakdown: %d spans requested", spans)
    else:
        buckets = _bucket_by_span(in_range, start, span_days)
        periods = tuple(
            BestSellingPeriod(
                span,
                rank_products(buckets.get(index, ()), span, ReportScope.PERIOD, top_n, names),
            )
            for index, span in enumerate(iter_spans(start, end, span_days))
        )

    overall = rank_products(in_range, ReportSpan(start, end), ReportScope.OVERALL, top_n, names)
    return BestSellingReport(start, end, span_days, top_n, periods, overall, notice)


def generate_profit_loss_report(
    context: RuntimeContext,
    actor: Any,
    start: date,
    end: date,
    span_days: int,
) -> OperationResult[ProfitLossReport]:
    """Build the profit/loss report for ``[start, end]``.

    Args:
        context (RuntimeContext): Runtime context with the committed sales.
        actor: Caller whose role must grant ``VIEW_REPORTS``.
        start (date): First day of the range, inclusive.
        end (date): Last day of the range, inclusive.
        span_days (int): Length of each breakdown period in days.

    Returns:
        OperationResult[ProfitLossReport]: The report, or ``AccessDenied`` /
            ``InvalidInput`` with no value.
    """
    try:
        require_capability(actor, Capability.VIEW_REPORTS)
        report = _build_profit_loss(context, start, end, span_days)
    except BusinessRuleViolation as exc:
        log.warning("Profit/loss report rejected: %s", exc)
        return OperationResult(error=exc)

    log.info(
        "Generated profit/loss report %s..%s (span=%d, periods=%d)",
        start,
        end,
        span_days,
        len(report.periods),
    )
    return OperationResult(value=report)


def generate_best_selling_report(
    context: RuntimeContext,
    actor: Any,
    start: date,
    end: date,
    span_days: int,
    top_n: int,
) -> OperationResult[BestSellingReport]:
    """Build the top-``top_n`` best-seller report for ``[start, end]``.

    Returns:
        OperationResult[BestSellingReport]: The report, or ``AccessDenied`` /
            ``InvalidInput`` with no value.
    """
    try:
        require_capability(actor, Capability.VIEW_REPORTS)
        report = _build_best_selling(context, start, end, span_days, top_n)
    except BusinessRuleViolation as exc:
        log.warning("Best-seller report rejected: %s", exc)
        return OperationResult(error=exc)

    log.info(
        "Generated best-seller report %s..%s (span=%d, top=%d, periods=%d)",
        start,
        end,
        span_days,
        top_n,
        len(report.periods),
    )
    return OperationResult(value=report)
