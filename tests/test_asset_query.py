from services.assets import query
from services.assets.records import AssetRecord, AssetStatus


def _rec(asset_id, model="R640", site="LON1", country="UK", status=AssetStatus.NORMAL, comments=""):
    return AssetRecord(
        asset_id=asset_id,
        model=model,
        serial_number=f"SN-{asset_id}",
        site=site,
        country=country,
        comments=comments,
        status=status,
    )


RECORDS = [
    _rec("1", model="R640", site="LON1", country="UK"),
    _rec("2", model="R740", site="FRA1", country="Germany", status=AssetStatus.RMA_REQUESTED),
    _rec("3", model="R740", site="FRA1", country="Germany", status=AssetStatus.RMA_SHIPPED),
    _rec("4", model="R640", site="PAR1", country="", comments="Loaner unit"),
    _rec("5", model="X1", site="LON1", country="UK", status=AssetStatus.RMA_REQUESTED),
]


def test_filter_by_search_term_is_case_insensitive_across_fields():
    assert [r.asset_id for r in query.filter_records(RECORDS, "loaner")] == ["4"]
    assert [r.asset_id for r in query.filter_records(RECORDS, "germany")] == ["2", "3"]
    assert [r.asset_id for r in query.filter_records(RECORDS, "sn-5")] == ["5"]


def test_filter_by_status_and_search_combined():
    out = query.filter_records(RECORDS, "", "RMA Requested")
    assert [r.asset_id for r in out] == ["2", "5"]
    out = query.filter_records(RECORDS, "lon", "RMA Requested")
    assert [r.asset_id for r in out] == ["5"]
    assert query.filter_records(RECORDS, "", "not-a-status") == []


def test_filtered_records_all_satisfy_predicate():
    for term in ("r7", "uk", "fra", ""):
        for status in ("All", "Normal", "RMA Shipped"):
            for r in query.filter_records(RECORDS, term, status):
                assert status == "All" or r.status.value == status
                assert any(term in (getattr(r, f) or "").lower() for f in query.SEARCH_FIELDS)


def test_paginate_slices_and_counts_pages():
    page = query.paginate(RECORDS, page_size=2, page=3)
    assert [r.asset_id for r in page.items] == ["5"]
    assert page.total == 5
    assert page.pages == 3
    assert query.paginate([], page_size=10).pages == 1


def test_paginate_out_of_range_page_is_empty():
    page = query.paginate(RECORDS, page_size=2, page=9)
    assert page.items == []
    assert page.page == 9


def test_list_view_resets_page_on_filter_change():
    view = query.ListView(page_size=2).with_page(3)
    assert view.page == 3
    assert view.with_search("r7").page == 1
    assert view.with_status("Normal").page == 1
    assert view.with_page_size(10).page == 1
    # unchanged values keep the page
    assert view.with_search("").page == 3


def test_list_view_apply():
    view = query.ListView().with_status("RMA Requested").with_page_size(1).with_page(2)
    page = view.apply(RECORDS)
    assert [r.asset_id for r in page.items] == ["5"]
    assert page.to_dict()["per_page"] == 1


def test_aggregate_ranks_and_breaks_ties_by_first_seen():
    stats = query.aggregate(RECORDS)

    assert stats.total == 5
    assert list(stats.by_status.items()) == [
        ("Normal", 2),
        ("RMA Requested", 2),
        ("RMA Shipped", 1),
        ("RMA Eligible", 0),
        ("RMA Not Eligible", 0),
        ("Deprecated", 0),
        ("Unknown", 0),
    ]
    assert list(stats.by_site) == ["LON1", "FRA1", "PAR1"]
    assert stats.by_country == {"UK": 2, "Germany": 2}
    assert list(stats.by_model_status) == ["R640", "R740", "X1"]
    assert stats.by_model_status["R740"] == {"RMA Requested": 1, "RMA Shipped": 1}


def test_aggregate_counts_sum_to_total():
    stats = query.aggregate(RECORDS)
    assert sum(stats.by_status.values()) == stats.total
    assert sum(stats.by_site.values()) == stats.total
    assert sum(sum(s.values()) for s in stats.by_model_status.values()) == stats.total


def test_aggregate_empty():
    stats = query.aggregate([])
    assert stats.to_dict() == {
        "total": 0,
        "by_status": {s.value: 0 for s in AssetStatus},
        "by_site": {},
        "by_country": {},
        "by_model_status": {},
    }


def test_failure_hotspots():
    stats = query.aggregate(RECORDS)
    assert query.failure_hotspots(stats) == [
        {"model": "R740", "rma_count": 2, "total": 2, "rma_ratio": 1.0}
    ]
    assert [h["model"] for h in query.failure_hotspots(stats, min_rma=1)] == ["R740", "X1"]
