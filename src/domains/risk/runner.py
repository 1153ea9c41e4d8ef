"""Runs external lookups in parallel, then every configured detector."""

import asyncio
from dataclasses import dataclass

import structlog

from src.integrations.bureau import BureauClient
from src.integrations.geo import GeoLookup
from src.shared.exceptions import DetectorUnavailable

from .config import RiskConfig, default_config
from .detectors import ALL_DETECTORS, Detector
from .models import BureauReport, CustomerHistory, OrderContext, ScanInput, Signal

logger = structlog.get_logger()


@dataclass
class DetectionRun:
    signals: list[Signal]
    configured_count: int
    scan: ScanInput


class DetectorRunner:
    """Assembles a ScanInput and evaluates detectors against it.

    Lookups (bureau report, IP country, BIN country) run concurrently, each
    bounded by ``lookup_timeout_seconds``. A failed or slow lookup leaves the
    corresponding field empty, and the detectors reading it report
    UNAVAILABLE. Bureau detectors only count toward the configured set when a
    bureau client is present.
    """

    def __init__(
        self,
        config: RiskConfig | None = None,
        bureau: BureauClient | None = None,
        geo: GeoLookup | None = None,
        detectors: list[Detector] | None = None,
    ) -> None:
        self._config = config or default_config
        self._bureau = bureau
        self._geo = geo
        self._detectors = list(detectors if detectors is not None else ALL_DETECTORS)

    @property
    def configured_detectors(self) -> list[Detector]:
        if self._bureau is None:
            return [d for d in self._detectors if not d.requires_bureau]
        return list(self._detectors)

    async def run(self, context: OrderContext, history: CustomerHistory) -> DetectionRun:
        bureau, ip_country, bin_country = await asyncio.gather(
            self._fetch_bureau(context),
            self._resolve_ip_country(context),
            self._resolve_bin_country(context),
        )
        scan = ScanInput(
            context=context,
            history=history,
            bureau=bureau,
            ip_country=ip_country,
            bin_country=bin_country,
        )

        detectors = self.configured_detectors
        signals: list[Signal] = []
        for detector in detectors:
            try:
                signals.append(detector.evaluate(scan, self._config))
            except Exception:
                logger.exception(
                    "detector_evaluation_error",
                    detector=detector.kind.value,
                    order_id=context.order_id,
                )
                signals.append(detector.unavailable(self._config, "Detector evaluation failed"))

        return DetectionRun(signals=signals, configured_count=len(detectors), scan=scan)

    async def _bounded(self, source: str, order_id: str, awaitable):
        try:
            return await asyncio.wait_for(awaitable, timeout=self._config.lookup_timeout_seconds)
        except TimeoutError:
            logger.warning("external_lookup_timeout", source=source, order_id=order_id)
        except DetectorUnavailable as exc:
            logger.warning(
                "external_lookup_unavailable", source=exc.source, order_id=order_id, reason=exc.reason
            )
        except Exception:
            logger.exception("external_lookup_error", source=source, order_id=order_id)
        return None

    async def _fetch_bureau(self, context: OrderContext) -> BureauReport | None:
        if self._bureau is None:
            return None
        return await self._bounded("bureau", context.order_id, self._bureau.fetch_report(context))

    async def _resolve_ip_country(self, context: OrderContext) -> str | None:
        if context.ip_country:
            return context.ip_country.upper()
        if self._geo is None or not context.ip_address:
            return None
        return await self._bounded(
            "geoip", context.order_id, self._geo.country_for_ip(context.ip_address)
        )

    async def _resolve_bin_country(self, context: OrderContext) -> str | None:
        if context.bin_country:
            return context.bin_country.upper()
        if self._geo is None or not context.card_bin:
            return None
        return await self._bounded(
            "bin_lookup", context.order_id, self._geo.country_for_bin(context.card_bin)
        )
