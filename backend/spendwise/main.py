"""Engine wiring: logging setup and a factory that assembles the orchestrator."""

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path

from spendwise.config import settings
from spendwise.services.alert_persistence import SqlAlchemyAlertRecorder
from spendwise.services.alert_rule_engine import AlertRuleEngine
from spendwise.services.burn_rate_analyzer import BurnRateService
from spendwise.services.cache_service import KeyValueStore, RedisCacheService
from spendwise.services.collaborators import (
    AlertRecorder,
    BudgetReader,
    DealSource,
    ExpenseReader,
    Notifier,
    PreferencesReader,
)
from spendwise.services.deal_matching_pipeline import DealMatchingPipeline
from spendwise.services.deal_notification_service import DealNotificationService
from spendwise.services.geo_cluster_engine import geo_cluster_engine
from spendwise.services.merchant_client import MerchantClient, SampleDealSource
from spendwise.services.notification_service import NotificationService
from spendwise.services.orchestrator import BudgetDealOrchestrator
from spendwise.services.relevance_scorer import relevance_scorer
from spendwise.services.scheduler import ProactiveCheckScheduler
from spendwise.utils.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

LOG_DIR = Path(__file__).resolve().parent.parent / "logs"


def configure_logging(log_dir: Path = LOG_DIR):
    log_dir.mkdir(exist_ok=True)
    level = getattr(logging, os.environ.get("LOG_LEVEL", "INFO").upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.StreamHandler(),
            RotatingFileHandler(
                log_dir / "spendwise.log",
                maxBytes=10 * 1024 * 1024,  # 10 MB
                backupCount=5,
                encoding="utf-8",
            ),
        ],
    )

    # Quiet noisy libraries
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


def default_deal_sources(clock: Clock) -> list[DealSource]:
    if settings.merchant_api_url:
        return [MerchantClient()]
    logger.info("No merchant API configured, serving the sample deal catalog")
    return [SampleDealSource(clock)]


def build_orchestrator(
    budgets: BudgetReader,
    expenses: ExpenseReader,
    preferences: PreferencesReader,
    store: KeyValueStore | None = None,
    notifier: Notifier | None = None,
    recorder: AlertRecorder | None = None,
    sources: list[DealSource] | None = None,
    scheduler: ProactiveCheckScheduler | None = None,
    clock: Clock | None = None,
) -> BudgetDealOrchestrator:
    """Assemble the engine around the host application's readers.

    Defaults: Redis cache, database-backed notifications and alert records,
    the configured merchant source and an APScheduler-backed re-check timer.
    """
    clock = clock or SystemClock()
    store = store or RedisCacheService()
    notifier = notifier or NotificationService()
    recorder = recorder or SqlAlchemyAlertRecorder()
    if scheduler is None and settings.scheduler_enabled:
        scheduler = ProactiveCheckScheduler()

    burn_rate_service = BurnRateService(budgets, expenses, store, clock)
    alert_engine = AlertRuleEngine(
        burn_rate_service, budgets, expenses, store, notifier, recorder=recorder, clock=clock,
        record_notifications=not isinstance(notifier, NotificationService),
    )
    pipeline = DealMatchingPipeline(
        sources if sources is not None else default_deal_sources(clock),
        store,
        scorer=relevance_scorer,
        clock=clock,
    )

    return BudgetDealOrchestrator(
        budgets=budgets,
        preferences=preferences,
        pipeline=pipeline,
        burn_rate_service=burn_rate_service,
        alert_engine=alert_engine,
        deal_notifications=DealNotificationService(notifier, store, clock),
        cache=store,
        geo_engine=geo_cluster_engine,
        scheduler=scheduler,
        clock=clock,
    )
