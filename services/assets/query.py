from collections import Counter
from dataclasses import dataclass, field, replace

from services.assets.records import RMA_STATUSES, AssetStatus


ALL_STATUSES = "All"
DEFAULT_PAGE_SIZE = 25
SEARCH_FIELDS = ("model", "serial_number", "site", "country", "comments")


def _status_matches(record, status_filter):
    if not status_filter or status_filter == ALL_STATUSES:
        return True
    wanted = AssetStatus.coerce(status_filter)
    if wanted is None:
        return False
    return record.status == wanted


def filter_records(records, search_term="", status_filter=ALL_STATUSES):
    term = (search_term or "").strip().lower()
    out = []
    for record in records:
        if not _status_matches(record, status_filter):
            continue
        if term and not any(term in (getattr(record, f) or "").lower() for f in SEARCH_FIELDS):
            continue
        out.append(record)
    return out


@dataclass(frozen=True)
class Page:
    items: list
    page: int
    page_size: int
    total: int

    @property
    def pages(self):
        return max(1, (self.total + self.page_size - 1) // self.page_size)

    def to_dict(self):
        return {
            "items": [r.to_dict() for r in self.items],
            "page": self.page,
            "per_page": self.page_size,
            "total": self.total,
            "pages": self.pages,
        }


def paginate(records, page_size=DEFAULT_PAGE_SIZE, page=1):
    """Offset/limit slice. page_size is floored at 1, page at 1."""
    records = list(records)
    size = max(1, int(page_size or DEFAULT_PAGE_SIZE))
    number = max(1, int(page or 1))
    start = (number - 1) * size
    return Page(items=records[start : start + size], page=number, page_size=size, total=len(records))


@dataclass(frozen=True)
class ListView:
    """
    Search / filter / paging state of the asset list. Changing the search
    term, the status filter or the page size sends the view back to page 1.
    """

    search_term: str = ""
    status_filter: str = ALL_STATUSES
    page_size: int = DEFAULT_PAGE_SIZE
    page: int = 1

    def with_search(self, term):
        if term == self.search_term:
            return self
        return replace(self, search_term=term, page=1)

    def with_status(self, status_filter):
        if status_filter == self.status_filter:
            return self
        return replace(self, status_filter=status_filter, page=1)

    def with_page_size(self, page_size):
        if page_size == self.page_size:
            return self
        return replace(self, page_size=page_size, page=1)

    def with_page(self, page):
        return replace(self, page=max(1, int(page)))

    def apply(self, records):
        return paginate(
            filter_records(records, self.search_term, self.status_filter),
            page_size=self.page_size,
            page=self.page,
        )


def _ranked(counter):
    # sorted() is stable and Counter keeps first-seen order, so equal counts
    # stay in the order their key first appeared
    return dict(sorted(counter.items(), key=lambda kv: -kv[1]))


@dataclass
class Aggregates:
    total: int = 0
    by_status: dict = field(default_factory=dict)
    by_site: dict = field(default_factory=dict)
    by_country: dict = field(default_factory=dict)
    by_model_status: dict = field(default_factory=dict)

    def to_dict(self):
        return {
            "total": self.total,
            "by_status": dict(self.by_status),
            "by_site": dict(self.by_site),
            "by_country": dict(self.by_country),
            "by_model_status": {m: dict(s) for m, s in self.by_model_status.items()},
        }


def aggregate(records):
    """
    Dashboard counts. Every mapping is ordered most-frequent first; ties
    keep first-occurrence order. Models are ranked by their total count.
    Records with no country are not counted in by_country.

    by_status lists every AssetStatus: statuses nobody holds follow the
    counted ones at 0, in declaration order.
    """
    by_status = Counter()
    by_site = Counter()
    by_country = Counter()
    by_model = {}
    model_totals = Counter()
    total = 0

    for record in records:
        total += 1
        by_status[record.status.value] += 1
        by_site[record.site] += 1
        if record.country:
            by_country[record.country] += 1
        by_model.setdefault(record.model, Counter())[record.status.value] += 1
        model_totals[record.model] += 1

    status_counts = _ranked(by_status)
    for status in AssetStatus:
        status_counts.setdefault(status.value, 0)

    return Aggregates(
        total=total,
        by_status=status_counts,
        by_site=_ranked(by_site),
        by_country=_ranked(by_country),
        by_model_status={model: _ranked(by_model[model]) for model in _ranked(model_totals)},
    )


def failure_hotspots(aggregates, min_rma=2):
    """Models with at least `min_rma` assets in an RMA status, worst first."""
    rma_values = {s.value for s in RMA_STATUSES}
    out = []
    for model, statuses in aggregates.by_model_status.items():
        rma = sum(n for status, n in statuses.items() if status in rma_values)
        if rma < min_rma:
            continue
        total = sum(statuses.values())
        out.append(
            {
                "model": model,
                "rma_count": rma,
                "total": total,
                "rma_ratio": round(rma / total, 3) if total else 0.0,
            }
        )
    out.sort(key=lambda x: (-x["rma_count"], -x["rma_ratio"]))
    return out
