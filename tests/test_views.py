"""Tests for the portal and console view assembly."""
from __future__ import annotations

import json
from datetime import datetime

import pytest

from engagement_ledger.config import LedgerConfig
from engagement_ledger.errors import NotFoundError
from engagement_ledger.models import ActivityLogEntry, Client, Complexity, PipelineStage
from engagement_ledger.workflows import views as views_module
from engagement_ledger.workflows.pipeline import StatusCategory
from engagement_ledger.workflows.views import (
    ClientFilters,
    ClientListState,
    SortDirection,
    SortField,
    SortSpec,
    ViewAssembler,
    filter_clients,
    paginate,
    sort_clients,
)

from conftest import NOW


def fail_table(store, monkeypatch, failing):
    """Make ``store.select`` raise for one table."""
    original = store.select

    def flaky(table, *args, **kwargs):
        if table == failing:
            raise ConnectionError(f"{table} unavailable")
        return original(table, *args, **kwargs)

    monkeypatch.setattr(store, "select", flaky)


@pytest.fixture
def roster():
    return [
        Client(id="c1", full_name="Ann Baker", email="ann@example.com", countries=["UK"],
               complexity=Complexity.SIMPLE, pipeline_stage=PipelineStage.QUOTE_REQUEST,
               created_at=datetime(2026, 1, 1)),
        Client(id="c2", full_name="Ben Cole", email="ben@corp.io", countries=["France", "UK"],
               complexity=Complexity.COMPLEX, pipeline_stage=PipelineStage.PROCESSING,
               overall_status="pending review", created_at=datetime(2026, 3, 1)),
        Client(id="c3", full_name="Cara Dunn", email="cara@example.com", countries=["Spain"],
               complexity=Complexity.SIMPLE, created_at=datetime(2026, 2, 1)),
    ]


class TestFilterClients:
    def test_no_filters_keeps_everything(self, roster):
        assert filter_clients(roster, ClientFilters()) == roster

    def test_search_name_or_email(self, roster):
        assert [c.id for c in filter_clients(roster, ClientFilters(search="CORP"))] == ["c2"]
        assert [c.id for c in filter_clients(roster, ClientFilters(search="dunn"))] == ["c3"]

    def test_status_matches_stage_or_overall(self, roster):
        assert [c.id for c in filter_clients(roster, ClientFilters(status="processing"))] == ["c2"]
        assert [c.id for c in filter_clients(roster, ClientFilters(status="Pending Review"))] == ["c2"]
        assert [c.id for c in filter_clients(roster, ClientFilters(status="active"))] == ["c1", "c3"]

    def test_country_checks_every_listed_country(self, roster):
        assert [c.id for c in filter_clients(roster, ClientFilters(country="uk"))] == ["c1", "c2"]

    def test_expert_by_name(self, roster):
        names = {"c1": ["Alice Smith"], "c2": ["Bruno Martin", "Alice Smith"]}
        result = filter_clients(roster, ClientFilters(expert="alice smith"), names)
        assert [c.id for c in result] == ["c1", "c2"]

    def test_filters_combine(self, roster):
        filters = ClientFilters(country="UK", complexity="simple")
        assert [c.id for c in filter_clients(roster, filters)] == ["c1"]

    def test_idempotent(self, roster):
        filters = ClientFilters(search="a", country="UK")
        once = filter_clients(roster, filters)
        assert filter_clients(once, filters) == once

    def test_is_empty(self):
        assert ClientFilters().is_empty
        assert not ClientFilters(country="UK").is_empty


class TestSortAndPaginate:
    def test_sort_by_name(self, roster):
        ordered = sort_clients(roster, SortSpec(SortField.NAME, SortDirection.DESC))
        assert [c.id for c in ordered] == ["c3", "c2", "c1"]

    def test_sort_by_created(self, roster):
        ordered = sort_clients(roster, SortSpec(SortField.CREATED_AT, SortDirection.ASC))
        assert [c.id for c in ordered] == ["c1", "c3", "c2"]

    def test_sort_by_revenue_uses_lookup(self, roster):
        ordered = sort_clients(
            roster, SortSpec(SortField.REVENUE, SortDirection.DESC), {"c3": 500.0, "c1": 20.0},
        )
        assert [c.id for c in ordered] == ["c3", "c1", "c2"]

    def test_toggle(self):
        spec = SortSpec(SortField.NAME, SortDirection.ASC)
        assert spec.toggled(SortField.NAME).direction == SortDirection.DESC
        assert spec.toggled(SortField.NAME).toggled(SortField.NAME) == spec
        assert spec.toggled(SortField.REVENUE) == SortSpec(SortField.REVENUE, SortDirection.ASC)

    def test_paginate(self):
        page = paginate(list(range(60)), page=3, page_size=25)
        assert page.items == list(range(50, 60))
        assert page.total_pages == 3
        assert (page.first_index, page.last_index) == (51, 60)

    def test_paginate_clamps(self):
        assert paginate(list(range(10)), page=7, page_size=25).page == 1
        assert paginate(list(range(30)), page=0, page_size=25).page == 1

    def test_empty_page(self):
        page = paginate([], page=1, page_size=25)
        assert page.total_pages == 1
        assert page.first_index == 0
        assert page.last_index == 0


class TestClientListState:
    def test_filter_change_resets_page(self):
        state = ClientListState()
        state.go_to(3, total_items=100)
        state.update_filters(country="UK")
        assert state.page == 1
        assert state.filters.country == "UK"

    def test_same_filters_keep_page(self):
        state = ClientListState(filters=ClientFilters(country="UK"))
        state.go_to(2, total_items=100)
        state.set_filters(ClientFilters(country="UK"))
        assert state.page == 2

    def test_sort_keeps_page(self):
        state = ClientListState()
        state.go_to(2, total_items=100)
        state.sort_by(SortField.NAME)
        assert state.page == 2
        assert state.sort == SortSpec(SortField.NAME, SortDirection.ASC)

    def test_navigation_bounds(self):
        state = ClientListState(page_size=25)
        state.previous_page()
        assert state.page == 1
        state.next_page(total_items=30)
        state.next_page(total_items=30)
        assert state.page == 2

    def test_reset(self):
        state = ClientListState(filters=ClientFilters(search="x"))
        state.go_to(2, total_items=100)
        state.reset_filters()
        assert state.filters.is_empty
        assert state.page == 1


class TestExpertClientList:
    def test_rows_for_viewer(self, views, seeded):
        result = views.expert_client_list("exp-alice")
        assert [r.client.id for r in result.rows] == ["cli-carol", "cli-dan"]

        carol = result.rows[0]
        assert carol.progress == 60
        assert carol.earnings == 1000.0
        assert carol.jurisdictions == ["UK"]
        assert [(e.display_name, e.jurisdiction) for e in carol.experts] == [
            ("You", "UK"), ("Bruno Martin", "France"),
        ]
        assert carol.category == StatusCategory.ACTIVE

        dan = result.rows[1]
        assert dan.progress == 0
        assert dan.earnings == 0.0
        assert dan.category == StatusCategory.PENDING_REVIEW

        assert result.failures == []
        assert result.violations == []

    def test_progress_is_per_expert(self, views, seeded):
        result = views.expert_client_list("exp-bruno")
        assert [r.client.id for r in result.rows] == ["cli-carol"]
        assert result.rows[0].progress == 0
        assert result.rows[0].earnings == 250.0

    def test_by_category(self, views, seeded):
        result = views.expert_client_list("exp-alice")
        assert [r.client.id for r in result.by_category(StatusCategory.PENDING_REVIEW)] == ["cli-dan"]

    def test_expert_without_clients(self, views, seeded):
        result = views.expert_client_list("exp-chen")
        assert result.rows == []

    def test_inactive_assignment_hidden(self, views, store, seeded):
        seeded.dan_uk.deactivate()
        store.update("assignments", seeded.dan_uk)
        assert [r.client.id for r in views.expert_client_list("exp-alice").rows] == ["cli-carol"]
        rows = views.expert_client_list("exp-alice", include_inactive=True).rows
        assert [r.client.id for r in rows] == ["cli-carol", "cli-dan"]

    def test_task_fetch_failure_degrades(self, views, store, seeded, monkeypatch):
        fail_table(store, monkeypatch, "tasks")
        result = views.expert_client_list("exp-alice")
        assert len(result.rows) == 2
        assert result.rows[0].progress == 0
        assert [f.aggregate for f in result.failures] == ["tasks"]
        assert result.violations == []

    def test_drift_surfaces_as_violation(self, views, store, seeded):
        seeded.carol_uk.earnings = 900.0
        store.update("assignments", seeded.carol_uk)
        result = views.expert_client_list("exp-alice")
        assert [v.kind for v in result.violations] == ["earnings_drift"]
        # The row still shows the stored figure.
        assert result.rows[0].earnings == 900.0


class TestExpertDashboard:
    def test_dashboard(self, views, seeded):
        dash = views.expert_dashboard("exp-alice", now=NOW)
        assert dash.stats.active_clients == 2
        assert dash.stats.quarter_earnings.amount == 1000.0
        assert [u.id for u in dash.urgent] == ["TASK-A3", "TASK-A4"]
        assert all(u.client_name == "Carol Jones" for u in dash.urgent)
        assert len(dash.monthly) == 6
        assert [b.amount for b in dash.monthly[-2:]] == [600.0, 400.0]
        assert dash.month_to_date.amount == 400.0
        assert dash.pending.amount == 300.0
        assert dash.failures == []


class TestAdminClientList:
    def test_default_sort_newest_first(self, views, seeded):
        result = views.admin_client_list()
        rows = result.page.items
        assert [r.client.id for r in rows] == ["cli-dan", "cli-carol"]
        assert rows[1].revenue == 1250.0
        assert rows[1].expert_names == ["Alice Smith", "Bruno Martin"]
        assert result.country_options == ["France", "UK"]
        assert result.expert_options == ["Alice Smith", "Bruno Martin"]
        assert result.violations == []

    def test_filter_by_expert_and_sort_by_revenue(self, views, seeded):
        result = views.admin_client_list(
            ClientFilters(expert="bruno martin"), SortSpec(SortField.REVENUE, SortDirection.DESC),
        )
        assert [r.client.id for r in result.page.items] == ["cli-carol"]

    def test_revenue_computed_once(self, views, seeded, monkeypatch):
        calls = []
        original = views_module.totals_by_client

        def counting(payments, *args, **kwargs):
            calls.append(1)
            return original(payments, *args, **kwargs)

        monkeypatch.setattr(views_module, "totals_by_client", counting)
        views.admin_client_list(sort=SortSpec(SortField.REVENUE, SortDirection.ASC))
        assert len(calls) == 1

    def test_paging(self, store, seeded, tmp_path):
        views = ViewAssembler(store, LedgerConfig(data_dir=tmp_path / "data", page_size=1))
        result = views.admin_client_list(page=2)
        assert result.page.total_pages == 2
        assert [r.client.id for r in result.page.items] == ["cli-carol"]

    def test_page_state_is_clamped(self, store, seeded, tmp_path):
        views = ViewAssembler(store, LedgerConfig(data_dir=tmp_path / "data", page_size=1))
        state = ClientListState(page_size=1)
        state.page = 9
        views.admin_client_page(state)
        assert state.page == 2

    def test_payment_failure_degrades(self, views, store, seeded, monkeypatch):
        fail_table(store, monkeypatch, "payments")
        result = views.admin_client_list()
        assert all(r.revenue == 0.0 for r in result.page.items)
        assert [f.aggregate for f in result.failures] == ["payments"]


class TestAdminExpertList:
    def test_rows(self, views, seeded):
        result = views.admin_expert_list()
        assert [r.expert.id for r in result.rows] == ["exp-chen", "exp-bruno", "exp-alice"]

        by_id = {r.expert.id: r for r in result.rows}
        assert by_id["exp-alice"].active_clients == 2
        assert by_id["exp-alice"].total_earned.amount == 1000.0
        assert by_id["exp-alice"].task_count == 5
        assert by_id["exp-bruno"].total_earned.amount == 250.0
        assert by_id["exp-chen"].active_clients == 0
        assert by_id["exp-chen"].total_earned.amount == 0.0

    def test_search(self, views, seeded):
        result = views.admin_expert_list(search="BRUNO@")
        assert [r.expert.id for r in result.rows] == ["exp-bruno"]


class TestExpertDetail:
    def test_detail(self, views, seeded):
        detail = views.expert_detail("exp-alice", now=NOW)
        assert [a.id for a in detail.active_assignments] == ["asg-carol-uk", "asg-dan-uk"]
        assert detail.client_names == {"cli-carol": "Carol Jones", "cli-dan": "Dan Lee"}
        assert detail.completed_tasks == 3
        assert len(detail.monthly) == 6
        assert detail.to_dict()["active_assignments"][0]["client_name"] == "Carol Jones"

    def test_unknown_expert(self, views, seeded):
        with pytest.raises(NotFoundError):
            views.expert_detail("exp-nobody", now=NOW)


class TestPlatformOverview:
    def test_overview(self, views, seeded):
        overview = views.platform_overview(now=NOW)

        assert overview.totals == {"clients": 2, "experts": 3, "active_cases": 3}
        assert overview.revenue["month_to_date"].amount == 400.0
        assert overview.revenue["quarter_to_date"].amount == 1000.0
        assert overview.revenue["all_time"].amount == 1250.0
        assert overview.pending.amount == 300.0

        assert [b.percentage for b in overview.pipeline] == [50, 0, 0, 50, 0, 0]
        assert overview.unstaged == 0
        assert overview.countries == [
            {"country": "UK", "count": 2}, {"country": "France", "count": 1},
        ]
        assert overview.revenue_by_country == [{"country": "UK", "revenue": 1250.0}]
        assert [r["name"] for r in overview.revenue_by_expert] == ["Alice Smith", "Bruno Martin"]

        assert len(overview.client_growth) == 12
        assert sum(m.count for m in overview.client_growth) == 2
        assert len(overview.revenue_series) == 12

        metrics = overview.metrics
        assert metrics["mrr"] == pytest.approx(416.67)
        assert metrics["average_fee_per_client"] == 1250.0
        assert metrics["retention_rate"] == pytest.approx(100.0)
        assert metrics["conversion_rate"] == 0.0
        assert metrics["task_completion_rate"] == pytest.approx(50.0)

        assert overview.failures == []
        assert overview.violations == []

    def test_recent_activity_newest_first(self, views, store, seeded):
        for day in (1, 3, 2):
            store.insert("activity_log", ActivityLogEntry(
                action="client_created", details=f"day {day}", created_at=datetime(2026, 5, day),
            ))
        overview = views.platform_overview(now=NOW)
        assert [a.details for a in overview.recent_activity] == ["day 3", "day 2", "day 1"]

    def test_degraded_tasks(self, views, store, seeded, monkeypatch):
        fail_table(store, monkeypatch, "tasks")
        overview = views.platform_overview(now=NOW)
        assert [f.aggregate for f in overview.failures] == ["tasks"]
        assert overview.metrics["task_completion_rate"] == 0.0
        assert overview.violations == []
        assert overview.revenue["all_time"].amount == 1250.0

    def test_serializable(self, views, seeded):
        data = views.platform_overview(now=NOW).to_dict()
        assert data["revenue"]["all_time"]["amount"] == 1250.0
        assert data["pipeline"][0]["stage"] == "Quote Request"


class TestUnrecognisedStoredValues:
    @pytest.fixture
    def corrupted(self, store, seeded):
        path = store.data_dir / "clients.json"
        rows = json.loads(path.read_text())
        for row in rows:
            if row["id"] == "cli-carol":
                row["pipeline_stage"] = "Onboarding"
                row["complexity"] = "Trivial"
        path.write_text(json.dumps(rows))
        return store

    def test_admin_list_keeps_every_client(self, views, corrupted):
        result = views.admin_client_list()
        assert [r.client.id for r in result.page.items] == ["cli-dan", "cli-carol"]
        assert result.page.items[1].client.pipeline_stage is None
        assert result.page.items[1].client.complexity == Complexity.MODERATE
        assert result.failures == []

    def test_overview_counts_client_as_unstaged(self, views, corrupted):
        overview = views.platform_overview(now=NOW)
        assert overview.totals["clients"] == 2
        assert overview.unstaged == 1
        assert [b.percentage for b in overview.pipeline] == [100, 0, 0, 0, 0, 0]
        assert overview.failures == []
