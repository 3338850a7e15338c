# =============================================================================
# filtering.py — Search, field filters, sorting, pagination and debounce
#
# filter_records() runs two stages over a collection:
#
#   1. TEXT SEARCH: only once the trimmed term reaches `search_min_chars`.
#      Case-insensitive substring match against the caller's declared fields;
#      one matching field is enough.
#   2. FIELD FILTERS: every active filter must pass. A filter whose value is
#      None, "" or "all" is ignored. Key suffixes carry range semantics:
#         revenueMin / revenueMax    numeric ≥ / ≤ on `revenue`
#         deadlineFrom / deadlineTo  date ≥ / ≤ on `deadline`
#      Any other key is an exact match on the field of the same name.
#
# Records may be pydantic models or plain dicts. Field names may be given in
# camelCase (the JSON names) or snake_case (the Python attributes).
#
# SearchDebouncer and FilterView cover the interactive side: keystrokes are
# debounced, and only the settled term reaches filter_records().
# =============================================================================

import asyncio
import json
import logging
import math
import threading
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from pydantic import BaseModel
from pydantic.alias_generators import to_camel, to_snake

from aggregates import as_utc
from config import settings
from models import FilterStats, Page, SortDirection, ValueRange

logger = logging.getLogger(__name__)

SKIPPED_FILTER_VALUES = ("", "all")

# (camelCase suffix, snake_case suffix)
MIN_SUFFIXES = ("Min", "_min")
MAX_SUFFIXES = ("Max", "_max")
FROM_SUFFIXES = ("From", "_from")
TO_SUFFIXES = ("To", "_to")

# Fields each list view searches, per collection.
SEARCH_FIELDS: Dict[str, Tuple[str, ...]] = {
    "entities": ("company_name", "sector", "region"),
    "contacts": ("name", "email", "role"),
    "missions": ("title", "description"),
    "opportunities": ("title", "description"),
    "interactions": ("subject", "description", "outcome"),
}


# ─── Field access ─────────────────────────────────────────────────────────────

def field_value(record: Any, name: str) -> Any:
    """Read `name` from a model or dict, trying it as given, snake and camel."""
    candidates = (name, to_snake(name), to_camel(name))
    if isinstance(record, Mapping):
        for key in candidates:
            if key in record:
                return record[key]
        return None
    for key in candidates:
        if hasattr(record, key):
            return getattr(record, key)
    return None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _as_temporal(value: Any) -> Optional[date]:
    """Accept date/datetime objects and ISO-8601 strings; anything else is None."""
    if isinstance(value, (datetime, date)):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            if len(text) > 10:
                return datetime.fromisoformat(text)
            return date.fromisoformat(text)
        except ValueError:
            return None
    return None


def _compare_key(left: date, right: date) -> Tuple[Any, Any]:
    # Two datetimes compare as instants; otherwise compare calendar days.
    if isinstance(left, datetime) and isinstance(right, datetime):
        return as_utc(left), as_utc(right)
    left_day = left.date() if isinstance(left, datetime) else left
    right_day = right.date() if isinstance(right, datetime) else right
    return left_day, right_day


def _strip_suffix(key: str, suffixes: Sequence[str]) -> Optional[str]:
    for suffix in suffixes:
        if key.endswith(suffix) and len(key) > len(suffix):
            return key[: -len(suffix)]
    return None


# ─── Stage 1: text search ─────────────────────────────────────────────────────

def matches_search(record: Any, term: str, fields: Iterable[str]) -> bool:
    """True if any declared field contains `term` (already lower-cased)."""
    for name in fields:
        value = field_value(record, name)
        if isinstance(value, str):
            if term in value.lower():
                return True
        elif _is_number(value):
            if term in str(value):
                return True
    return False


def search_is_active(search_term: Optional[str], min_chars: Optional[int] = None) -> bool:
    min_chars = settings.search_min_chars if min_chars is None else min_chars
    term = (search_term or "").strip()
    return bool(term) and len(term) >= min_chars


# ─── Stage 2: field filters ───────────────────────────────────────────────────

def filter_is_active(value: Any) -> bool:
    if value is None:
        return False
    return not (isinstance(value, str) and value in SKIPPED_FILTER_VALUES)


def build_predicate(key: str, value: Any) -> Callable[[Any], bool]:
    """Turn one filter entry into a record predicate."""
    if _is_number(value):
        stem = _strip_suffix(key, MIN_SUFFIXES)
        if stem is not None:
            def at_least(record: Any) -> bool:
                current = field_value(record, stem)
                return _is_number(current) and current >= value
            return at_least

        stem = _strip_suffix(key, MAX_SUFFIXES)
        if stem is not None:
            def at_most(record: Any) -> bool:
                current = field_value(record, stem)
                return _is_number(current) and current <= value
            return at_most

    bound = _as_temporal(value)
    if bound is not None:
        stem = _strip_suffix(key, FROM_SUFFIXES)
        if stem is not None:
            def after(record: Any) -> bool:
                current = _as_temporal(field_value(record, stem))
                if current is None:
                    return False
                left, right = _compare_key(current, bound)
                return left >= right
            return after

        stem = _strip_suffix(key, TO_SUFFIXES)
        if stem is not None:
            def before(record: Any) -> bool:
                current = _as_temporal(field_value(record, stem))
                if current is None:
                    return False
                left, right = _compare_key(current, bound)
                return left <= right
            return before

    return lambda r: field_value(r, key) == value


def filter_records(
    records: Iterable[Any],
    search_term: Optional[str] = "",
    filters: Optional[Mapping[str, Any]] = None,
    search_fields: Iterable[str] = (),
    min_chars: Optional[int] = None,
) -> List[Any]:
    """Apply text search then field filters. The input is never modified."""
    result = list(records)

    if search_is_active(search_term, min_chars):
        term = search_term.strip().lower()
        fields = tuple(search_fields)
        result = [r for r in result if matches_search(r, term, fields)]

    for key, value in (filters or {}).items():
        if not filter_is_active(value):
            continue
        predicate = build_predicate(key, value)
        result = [r for r in result if predicate(r)]

    return result


def compute_filter_stats(
    total_items: int,
    filtered_items: int,
    search_term: Optional[str] = "",
    filters: Optional[Mapping[str, Any]] = None,
    default_filters: Optional[Mapping[str, Any]] = None,
) -> FilterStats:
    filters = filters or {}
    default_filters = default_filters or {}
    is_filtered = bool((search_term or "").strip()) or any(
        filters[key] != default_filters.get(key) for key in filters
    )
    return FilterStats(
        total_items=total_items,
        filtered_items=filtered_items,
        is_filtered=is_filtered,
        filter_ratio=filtered_items / total_items if total_items > 0 else 0.0,
    )


# ─── Filter-widget helpers ────────────────────────────────────────────────────

def unique_values(records: Iterable[Any], field: str) -> List[Any]:
    """Distinct truthy values of `field`, in first-seen order."""
    seen: List[Any] = []
    for record in records:
        value = field_value(record, field)
        if value and value not in seen:
            seen.append(value)
    return seen


def value_range(records: Iterable[Any], field: str) -> Optional[ValueRange]:
    numbers = [v for v in (field_value(r, field) for r in records) if _is_number(v)]
    if not numbers:
        return None
    return ValueRange(min=min(numbers), max=max(numbers))


# ─── Sorting & pagination ─────────────────────────────────────────────────────

def _sort_key(value: Any) -> Tuple[int, Any]:
    if _is_number(value) or isinstance(value, bool):
        return 0, float(value)
    if isinstance(value, datetime):
        return 1, as_utc(value).timestamp()
    if isinstance(value, date):
        return 1, datetime(value.year, value.month, value.day, tzinfo=timezone.utc).timestamp()
    if isinstance(value, str):
        return 2, value.lower()
    if isinstance(value, BaseModel):
        return 3, value.model_dump_json()
    return 3, json.dumps(value, sort_keys=True, default=str)


def sort_records(records: Iterable[Any], field: str, direction: str = SortDirection.ASC.value) -> List[Any]:
    """
    Stable sort on one field. Records missing the field always go last.

    Numbers sort before dates, dates before text, and nested values (an
    address, a dict) sort by their JSON form.
    """
    present, missing = [], []
    for record in records:
        (missing if field_value(record, field) is None else present).append(record)

    descending = direction == SortDirection.DESC.value
    return sorted(present, key=lambda r: _sort_key(field_value(r, field)), reverse=descending) + missing


def paginate(records: Sequence[Any], page: int = 0, size: Optional[int] = None) -> Page:
    """Zero-based page of `records`. Size is clamped to [1, max_page_size]."""
    size = settings.default_page_size if size is None else size
    size = max(1, min(size, settings.max_page_size))
    page = max(0, page)
    total = len(records)
    start = page * size
    return Page(
        content=list(records[start:start + size]),
        page=page,
        size=size,
        total_elements=total,
        total_pages=math.ceil(total / size) if total else 0,
    )


# ─── Debounced search ─────────────────────────────────────────────────────────

class ThreadTimerScheduler:
    """`call_later()` on top of `threading.Timer`, for callers without an event loop."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> threading.Timer:
        timer = threading.Timer(delay, callback)
        timer.daemon = True
        timer.start()
        return timer


def default_scheduler() -> Any:
    """The running asyncio loop when there is one, else a thread timer."""
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return ThreadTimerScheduler()


class SearchDebouncer:
    """
    Delays search-term changes until typing pauses.

    Each `on_input()` cancels the pending timer and starts a new one; when a
    timer fires, the term becomes the debounced value and every listener
    registered with `on_debounced_change()` is called with it.

    `scheduler` needs one method, `call_later(delay_seconds, callback)`,
    returning a handle with `cancel()`. asyncio event loops fit that
    interface. When none is given, `on_input()` uses the running loop if
    called from inside one, otherwise a `threading.Timer`; in that case
    listeners run on the timer thread.
    """

    def __init__(self, delay_ms: Optional[int] = None, scheduler: Any = None):
        self.delay_ms = settings.search_debounce_ms if delay_ms is None else delay_ms
        self._scheduler = scheduler
        self._listeners: List[Callable[[str], None]] = []
        self._handle: Any = None
        self._pending_term: Optional[str] = None
        self.raw_term = ""
        self.value = ""

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def on_debounced_change(self, callback: Callable[[str], None]) -> None:
        self._listeners.append(callback)

    def on_input(self, term: str) -> None:
        self.raw_term = term
        self.cancel()
        self._pending_term = term
        scheduler = self._scheduler or default_scheduler()
        self._handle = scheduler.call_later(self.delay_ms / 1000, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._pending_term = None

    def flush(self) -> None:
        """Apply the pending term now instead of waiting for the timer."""
        if self._handle is not None:
            self._handle.cancel()
            self._fire()

    def reset(self) -> None:
        self.cancel()
        self.raw_term = ""
        self.value = ""

    def _fire(self) -> None:
        term = self._pending_term or ""
        self._handle = None
        self._pending_term = None
        self.value = term
        logger.debug("Search term settled: %r", term)
        for listener in list(self._listeners):
            listener(term)


class FilterView:
    """
    Search + filter state for one list screen.

    Holds the declared search fields, the active filters and a debouncer.
    `results` always reflects the debounced term, never the raw keystrokes.
    """

    def __init__(
        self,
        records: Iterable[Any],
        search_fields: Iterable[str],
        default_filters: Optional[Mapping[str, Any]] = None,
        debouncer: Optional[SearchDebouncer] = None,
    ):
        self.records = list(records)
        self.search_fields = tuple(search_fields)
        self.default_filters: Dict[str, Any] = dict(default_filters or {})
        self.filters: Dict[str, Any] = dict(self.default_filters)
        self.debouncer = debouncer or SearchDebouncer()

    def set_records(self, records: Iterable[Any]) -> None:
        self.records = list(records)

    def update_search_term(self, term: str) -> None:
        self.debouncer.on_input(term)

    @property
    def search_term(self) -> str:
        return self.debouncer.raw_term

    @property
    def debounced_search_term(self) -> str:
        return self.debouncer.value

    def update_filter(self, key: str, value: Any) -> None:
        self.filters[key] = value

    def update_filters(self, changes: Mapping[str, Any]) -> None:
        self.filters.update(changes)

    def clear_filter(self, key: str) -> None:
        self.filters.pop(key, None)

    def reset_filters(self) -> None:
        self.filters = dict(self.default_filters)

    def clear_all(self) -> None:
        self.reset_filters()
        self.debouncer.reset()

    @property
    def results(self) -> List[Any]:
        return filter_records(
            self.records,
            self.debounced_search_term,
            self.filters,
            self.search_fields,
        )

    @property
    def stats(self) -> FilterStats:
        return compute_filter_stats(
            len(self.records),
            len(self.results),
            self.debounced_search_term,
            self.filters,
            self.default_filters,
        )
