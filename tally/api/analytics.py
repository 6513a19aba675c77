"""Dashboard read endpoints over the aggregation query layer."""

from __future__ import annotations

from fastapi import APIRouter, Query

from tally.core.constants import MAX_DAYS_BACK, MAX_QUERY_LIMIT
from tally.core.services import Services


def register_routes(router: APIRouter, svc: Services, **kw):
    queries = svc.queries

    @router.get("/analytics/summary")
    def api_analytics_summary(
        days_back: int = Query(30, ge=1, le=MAX_DAYS_BACK),
    ):
        return queries.get_summary(days_back)

    @router.get("/analytics/recent")
    def api_analytics_recent(
        limit: int = Query(50, ge=1, le=MAX_QUERY_LIMIT),
    ):
        return {"data": queries.get_recent(limit)}

    @router.get("/analytics/popular-searches")
    def api_analytics_popular_searches(
        limit: int = Query(20, ge=1, le=MAX_QUERY_LIMIT),
        days_back: int = Query(30, ge=1, le=MAX_DAYS_BACK),
    ):
        return {"data": queries.get_top_terms(limit, days_back)}

    @router.get("/analytics/popular-sources")
    def api_analytics_popular_sources(
        limit: int = Query(20, ge=1, le=MAX_QUERY_LIMIT),
        days_back: int = Query(30, ge=1, le=MAX_DAYS_BACK),
    ):
        return {"data": queries.get_top_sources(limit, days_back)}

    @router.get("/analytics/no-results")
    def api_analytics_no_results(
        limit: int = Query(20, ge=1, le=MAX_QUERY_LIMIT),
    ):
        return {"data": queries.get_no_results(limit)}

    @router.get("/analytics/dashboard")
    def api_analytics_dashboard(
        days_back: int = Query(30, ge=1, le=MAX_DAYS_BACK),
        limit: int = Query(20, ge=1, le=MAX_QUERY_LIMIT),
    ):
        return queries.get_dashboard(days_back, limit)
