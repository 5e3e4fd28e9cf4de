"""Spendwise — budget risk and deal relevance engine for travelers.

Modules:
    burn_rate_analyzer      Spending trajectory, velocity and exhaustion risk
    alert_rule_engine       Rule evaluation with per-scope cooldowns
    relevance_scorer        Weighted scoring of merchant deals
    geo_cluster_engine      Proximity clustering and deal routes
    deal_matching_pipeline  Fetch, filter, score and rank deals from all sources
    deal_notification_service  Deal notifications, quiet hours and digests
    orchestrator            Runs the pipelines per trigger, never raises

Pipeline:
    BurnRateService → AlertRuleEngine
    DealMatchingPipeline → GeoClusterEngine → DealNotificationService
    BudgetDealOrchestrator ties both together and schedules the next check
"""
