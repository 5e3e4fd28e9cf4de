from conftest import USER, FailingDealSource, StaticDealSource, make_deal
from spendwise.schemas.deals import DealFilters, DealMatchingRequest, DealSourceStatus
from spendwise.services.deal_matching_pipeline import (
    DealMatchingPipeline,
    apply_filters,
    budget_analysis,
    deduplicate,
)
from spendwise.services.relevance_scorer import relevance_scorer


def request(constraints, preferences, **kwargs) -> DealMatchingRequest:
    return DealMatchingRequest(
        user_id=USER, budget_constraints=constraints, user_preferences=preferences, **kwargs
    )


async def test_matching_scores_and_ranks(store, clock, constraints, preferences):
    source = StaticDealSource("s1", [make_deal("near"), make_deal("far", location="Jakarta")])
    pipeline = DealMatchingPipeline([source], store, clock=clock)

    result = await pipeline.find_matching_deals(request(constraints, preferences))

    assert result.source_status == DealSourceStatus.OK
    assert result.total_found == 2
    assert [d.id for d in result.top_recommendations] == ["near", "far"]
    assert result.budget_analysis.total_savings == 100_000
    assert result.last_updated == clock.now()
    assert result.cache_used is False


async def test_partial_source_failure(store, clock, constraints, preferences):
    pipeline = DealMatchingPipeline(
        [StaticDealSource("s1", [make_deal("a")]), FailingDealSource("broken")], store, clock=clock,
    )

    result = await pipeline.find_matching_deals(request(constraints, preferences))

    assert result.source_status == DealSourceStatus.PARTIAL
    assert result.failed_sources == ["broken"]
    assert [d.id for d in result.deals] == ["a"]


async def test_all_sources_failed_is_not_cached(store, clock, constraints, preferences):
    pipeline = DealMatchingPipeline([FailingDealSource("one"), FailingDealSource("two")], store, clock=clock)

    first = await pipeline.find_matching_deals(request(constraints, preferences))
    second = await pipeline.find_matching_deals(request(constraints, preferences))

    assert first.source_status == DealSourceStatus.FAILED
    assert first.deals == []
    assert first.failed_sources == ["one", "two"]
    assert second.cache_used is False


async def test_merge_order_ignores_completion_order(store, clock, constraints, preferences):
    slow = StaticDealSource("slow", [make_deal("shared", title="from slow")], delay=0.05)
    fast = StaticDealSource("fast", [make_deal("shared", title="from fast"), make_deal("other")])
    pipeline = DealMatchingPipeline([slow, fast], store, clock=clock)

    result = await pipeline.find_matching_deals(request(constraints, preferences))

    assert result.total_found == 2
    shared = next(d for d in result.deals if d.id == "shared")
    assert shared.title == "from slow"


async def test_results_are_cached_per_request(store, clock, constraints, preferences):
    source = StaticDealSource("s1", [make_deal()])
    pipeline = DealMatchingPipeline([source], store, clock=clock)

    await pipeline.find_matching_deals(request(constraints, preferences))
    cached = await pipeline.find_matching_deals(request(constraints, preferences))
    assert cached.cache_used is True
    assert source.calls == 1

    await pipeline.find_matching_deals(request(constraints, preferences, limit=5))
    assert source.calls == 2

    assert await pipeline.clear_user_cache(USER) == 2
    await pipeline.find_matching_deals(request(constraints, preferences))
    assert source.calls == 3


async def test_hourly_dining_budget_adds_dining_search(store, clock, constraints, preferences):
    deals = [
        make_deal("cheap", average_spend_per_hour=20_000),
        make_deal("pricey", average_spend_per_hour=90_000),
    ]
    source = StaticDealSource("s1", deals)
    hourly = constraints.model_copy(update={"dining_budget_per_hour": 50_000})
    pipeline = DealMatchingPipeline([source], store, clock=clock)

    result = await pipeline.find_matching_deals(request(hourly, preferences))

    assert source.calls == 2
    assert result.total_found == 2
    cheap = next(d for d in result.deals if d.id == "cheap")
    assert cheap.budget_alignment_score == 100


async def test_min_relevance_filters_low_scores(store, clock, constraints, preferences):
    source = StaticDealSource("s1", [make_deal("a")])
    pipeline = DealMatchingPipeline([source], store, clock=clock)

    result = await pipeline.find_matching_deals(request(constraints, preferences, min_relevance_score=99))

    assert result.total_found == 1
    assert result.deals == []
    assert result.filtered_count == 0


async def test_category_recommendations(store, clock, constraints, preferences):
    source = StaticDealSource("s1", [make_deal("meal"), make_deal("room", category="accommodation")])
    pipeline = DealMatchingPipeline([source], store, clock=clock)

    deals = await pipeline.category_recommendations(USER, "accommodation", constraints, preferences)

    assert [d.id for d in deals] == ["room"]


async def test_budget_optimized_deals_stop_at_target(store, clock, constraints, preferences):
    source = StaticDealSource("s1", [
        make_deal("small", original_price=60_000, discount_percentage=None),
        make_deal("large", original_price=100_000, discount_percentage=None),
        make_deal("medium", original_price=80_000, discount_percentage=None),
    ])
    pipeline = DealMatchingPipeline([source], store, clock=clock)

    deals = await pipeline.budget_optimized_deals(USER, constraints, preferences, target_savings=60_000)

    assert [d.id for d in deals] == ["large", "medium"]


def test_apply_filters():
    deals = [
        make_deal("a", tags=["Flash Sale"]),
        make_deal("b", category="activities", discount_percentage=10),
        make_deal("c", discounted_price=900_000, location="Malang"),
    ]
    assert [d.id for d in apply_filters(deals, DealFilters(categories=["activities"]))] == ["b"]
    assert [d.id for d in apply_filters(deals, DealFilters(min_discount=20))] == ["a", "c"]
    assert [d.id for d in apply_filters(deals, DealFilters(max_price=100_000))] == ["a", "b"]
    assert [d.id for d in apply_filters(deals, DealFilters(location="malang"))] == ["c"]
    assert [d.id for d in apply_filters(deals, DealFilters(deal_types=["flash"]))] == ["a"]
    assert apply_filters(deals, None) == deals


def test_deduplicate_keys_on_merchant_and_id():
    deals = [
        make_deal("a", title="first"),
        make_deal("a", title="second"),
        make_deal("a", merchant_id="merchant-2"),
    ]
    unique = deduplicate(deals)
    assert [(d.merchant_id, d.title) for d in unique] == [("merchant-1", "first"), ("merchant-2", "Test Deal")]


def test_budget_analysis_ranks_best_value(constraints, preferences):
    scored = relevance_scorer.score_deals(
        [
            make_deal("half", original_price=100_000, discounted_price=50_000, discount_percentage=None),
            make_deal("quarter", original_price=100_000, discounted_price=75_000, discount_percentage=None),
        ],
        constraints, preferences,
    )
    analysis = budget_analysis(scored)

    assert analysis.total_savings == 75_000
    assert analysis.average_discount == 37.5
    assert [d.id for d in analysis.best_value_deals] == ["half", "quarter"]
    assert budget_analysis([]).total_savings == 0
