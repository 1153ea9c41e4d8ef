"""Compute customer history features from the order store."""

from datetime import UTC, datetime, timedelta

import structlog

from src.db.store import OrderStore

from .models import CustomerHistory, OrderContext

logger = structlog.get_logger()


class HistoryComputer:
    """Queries prior pre-auth orders to build CustomerHistory for a scan."""

    async def compute(
        self,
        store: OrderStore,
        context: OrderContext,
        now: datetime | None = None,
    ) -> CustomerHistory:
        now = now or datetime.now(UTC)
        five_minutes_ago = now - timedelta(minutes=5)
        one_hour_ago = now - timedelta(hours=1)

        email = context.customer_email or ""
        orders_5m = await store.count_orders_by_email(email, five_minutes_ago)
        orders_1h = await store.count_orders_by_email(email, one_hour_ago)
        prior_count, average = await store.order_stats_for_email(email)

        device_1h = 0
        device_emails = 0
        if context.device_fingerprint:
            device_1h = await store.count_orders_by_device(context.device_fingerprint, one_hour_ago)
            device_emails = await store.distinct_emails_for_device(context.device_fingerprint)

        history = CustomerHistory(
            orders_by_email_5m=orders_5m,
            orders_by_email_1h=orders_1h,
            orders_by_device_1h=device_1h,
            distinct_emails_on_device=device_emails,
            prior_order_count=prior_count,
            average_order_value=round(average, 2),
        )

        logger.debug(
            "customer_history_computed",
            order_id=context.order_id,
            orders_1h=orders_1h,
            prior_orders=prior_count,
            device_emails=device_emails,
        )
        return history
