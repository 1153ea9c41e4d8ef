"""Service wiring shared by the API routes and the background scheduler."""

from dataclasses import dataclass, field

import structlog

from src.config import Settings, settings
from src.db.store import InMemoryOrderStore, OrderStore, SqlAlchemyOrderStore
from src.domains.evidence.builder import EvidencePackageBuilder
from src.domains.monitoring.config import MonitoringConfig
from src.domains.monitoring.scheduler import MonitoringScheduler
from src.domains.risk.config import RiskConfig
from src.domains.risk.gate import PreAuthGate
from src.domains.risk.runner import DetectorRunner
from src.integrations.bureau import HttpBureauClient
from src.integrations.delivery import HttpDeliveryRecordSource
from src.integrations.disputes import HttpDisputeFeed
from src.integrations.geo import HttpGeoLookup
from src.shared.alerts import AlertDispatcher
from src.shared.locks import KeyedLock, RedisKeyedLock

logger = structlog.get_logger()


@dataclass
class Services:
    store: OrderStore
    gate: PreAuthGate
    scheduler: MonitoringScheduler
    evidence: EvidencePackageBuilder
    alerts: AlertDispatcher
    # HTTP clients and lock backends to close on shutdown
    closeables: list = field(default_factory=list)

    async def close(self) -> None:
        await self.alerts.drain()
        await self.gate.drain()
        for resource in self.closeables:
            if hasattr(resource, "aclose"):
                await resource.aclose()
            elif hasattr(resource, "close"):
                await resource.close()


def build_services(app_settings: Settings, store: OrderStore | None = None) -> Services:
    """Assemble the pipeline from settings. External collaborators are optional."""
    closeables: list = []

    if store is None:
        if app_settings.store_backend == "database":
            from src.db.database import async_session_factory

            store = SqlAlchemyOrderStore(async_session_factory)
        else:
            store = InMemoryOrderStore()

    if app_settings.redis_locks_enabled:
        locks = RedisKeyedLock(app_settings.redis_url)
        closeables.append(locks)
    else:
        locks = KeyedLock()

    risk_config = RiskConfig.from_env()
    risk_config.lookup_timeout_seconds = app_settings.external_lookup_timeout_seconds

    bureau = None
    if app_settings.bureau_api_url:
        bureau = HttpBureauClient(
            app_settings.bureau_api_url,
            api_key=app_settings.bureau_api_key,
            timeout_seconds=app_settings.external_lookup_timeout_seconds,
        )
        closeables.append(bureau)

    geo = None
    if app_settings.geo_lookup_enabled:
        geo = HttpGeoLookup(
            ip_url=app_settings.geo_ip_api_url,
            bin_url=app_settings.bin_lookup_api_url,
            timeout_seconds=app_settings.external_lookup_timeout_seconds,
        )
        closeables.append(geo)

    disputes = None
    if app_settings.dispute_feed_url:
        disputes = HttpDisputeFeed(app_settings.dispute_feed_url)
        closeables.append(disputes)

    records = None
    if app_settings.delivery_records_url:
        records = HttpDeliveryRecordSource(app_settings.delivery_records_url)
        closeables.append(records)

    alerts = AlertDispatcher()
    evidence = EvidencePackageBuilder(store, records=records, locks=locks)
    gate = PreAuthGate(
        store,
        runner=DetectorRunner(config=risk_config, bureau=bureau, geo=geo),
        config=risk_config,
        alerts=alerts,
        locks=locks,
    )
    scheduler = MonitoringScheduler(
        store,
        disputes=disputes,
        evidence=evidence,
        alerts=alerts,
        config=MonitoringConfig.from_env(),
        locks=locks,
    )

    logger.info(
        "services_built",
        store_backend=app_settings.store_backend,
        bureau_configured=bureau is not None,
        geo_configured=geo is not None,
        dispute_feed_configured=disputes is not None,
    )
    return Services(
        store=store,
        gate=gate,
        scheduler=scheduler,
        evidence=evidence,
        alerts=alerts,
        closeables=closeables,
    )


_services: Services | None = None


def get_services() -> Services:
    global _services
    if _services is None:
        _services = build_services(settings)
    return _services


def set_services(services: Services | None) -> None:
    """Replace the process-wide services (tests, alternative wiring)."""
    global _services
    _services = services


def get_gate() -> PreAuthGate:
    return get_services().gate


def get_scheduler() -> MonitoringScheduler:
    return get_services().scheduler


def get_evidence_builder() -> EvidencePackageBuilder:
    return get_services().evidence


def get_store() -> OrderStore:
    return get_services().store
