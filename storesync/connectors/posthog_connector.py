"""
PostHog analytics connector.

Runs a fixed set of HogQL queries for one calendar day and folds the result
tables into a single record keyed by DailyAnalyticsRow field names.
"""
from datetime import date
from typing import Any, List, Optional

from storesync.config import get_settings
from storesync.connectors.base_connector import BaseConnector, Page
from storesync.exceptions import ConfigError, UpstreamError
from storesync.services.normalizers import to_float, to_int
from storesync.services.settings_gateway import SyncCredential
from storesync.utils.helpers import sanitize_error

settings = get_settings()

TRAFFIC_QUERY = """
    SELECT
      count(DISTINCT person_id) as unique_visitors,
      count(DISTINCT properties.$session_id) as total_sessions,
      countIf(event = '$pageview') as pageviews
    FROM events
    WHERE toDate(timestamp) = '{day}'
"""

SESSION_QUERY = """
    SELECT
      avg(session_duration) as avg_duration,
      countIf(pageview_count = 1) * 100.0 / nullIf(count(), 0) as bounce_rate
    FROM (
      SELECT
        properties.$session_id as session_id,
        dateDiff('second', min(timestamp), max(timestamp)) as session_duration,
        countIf(event = '$pageview') as pageview_count
      FROM events
      WHERE toDate(timestamp) = '{day}'
        AND properties.$session_id IS NOT NULL
      GROUP BY properties.$session_id
    )
"""

DEVICE_QUERY = """
    SELECT
      properties.$device_type as device_type,
      count(DISTINCT properties.$session_id) as sessions
    FROM events
    WHERE toDate(timestamp) = '{day}'
      AND properties.$device_type IS NOT NULL
    GROUP BY properties.$device_type
"""

COUNTRY_QUERY = """
    SELECT
      properties.$geoip_country_name as country,
      count(DISTINCT person_id) as visitors
    FROM events
    WHERE toDate(timestamp) = '{day}'
      AND properties.$geoip_country_name IS NOT NULL
    GROUP BY properties.$geoip_country_name
    ORDER BY visitors DESC
    LIMIT 1
"""

CHANNEL_QUERY = """
    SELECT
      multiIf(
        properties.$referring_domain IS NULL OR properties.$referring_domain = '' OR properties.$referring_domain = '$direct', 'direct',
        properties.$referring_domain ILIKE '%google%' OR properties.$referring_domain ILIKE '%bing%' OR properties.$referring_domain ILIKE '%duckduckgo%', 'organic',
        properties.$referring_domain ILIKE '%facebook%' OR properties.$referring_domain ILIKE '%instagram%' OR properties.$referring_domain ILIKE '%tiktok%' OR properties.$referring_domain ILIKE '%pinterest%', 'social',
        properties.gclid IS NOT NULL OR properties.fbclid IS NOT NULL OR properties.ttclid IS NOT NULL, 'paid',
        'other'
      ) as channel,
      count(DISTINCT properties.$session_id) as sessions
    FROM events
    WHERE toDate(timestamp) = '{day}'
      AND event = '$pageview'
    GROUP BY channel
"""

FUNNEL_QUERY = """
    SELECT
      countIf(event = 'product_viewed' OR event = 'Product Viewed' OR (event = '$pageview' AND properties.$pathname ILIKE '%/products/%')) as product_views,
      countIf(event = 'add_to_cart' OR event = 'Add to Cart' OR event = 'Added to Cart') as add_to_cart,
      countIf(event = 'checkout_started' OR event = 'Checkout Started' OR event = 'begin_checkout' OR (event = '$pageview' AND properties.$pathname ILIKE '%/checkout%')) as checkout_started,
      countIf(event = 'purchase' OR event = 'Purchase' OR event = 'Order Completed' OR (event = '$pageview' AND properties.$pathname ILIKE '%/thank%')) as purchases
    FROM events
    WHERE toDate(timestamp) = '{day}'
"""

CHANNELS = ("direct", "organic", "paid", "social")


class PostHogConnector(BaseConnector):
    """Connector for PostHog product analytics"""

    provider = "posthog"

    def __init__(self, credential: SyncCredential):
        super().__init__("PostHog", credential)
        self.project_id = credential.extra.get("project_id")
        if not credential.token or not self.project_id:
            raise ConfigError(f"PostHog not configured for org {credential.org_id}")
        host = (credential.host or settings.posthog_host).replace("https://", "").rstrip("/")
        self.query_url = f"https://{host}/api/projects/{self.project_id}/query"
        self.headers = {
            "Authorization": f"Bearer {credential.token}",
            "Content-Type": "application/json",
        }

    async def query(self, hogql: str) -> List[list]:
        response = await self.request(
            "POST",
            self.query_url,
            headers=self.headers,
            json={"query": {"kind": "HogQLQuery", "query": hogql}},
        )
        payload = response.json() or {}
        if payload.get("error"):
            raise UpstreamError(
                f"PostHog query error: {sanitize_error(payload['error'], 300)}",
                status_code=response.status,
                body=response.text(),
            )
        return payload.get("results") or []

    async def fetch_page(self, unit: date, cursor: Optional[Any] = None) -> Page:
        day = unit.isoformat()
        record = {"date": day}

        traffic = _first_row(await self.query(TRAFFIC_QUERY.format(day=day)), 3)
        record["unique_visitors"] = to_int(traffic[0])
        record["total_sessions"] = to_int(traffic[1])
        record["pageviews"] = to_int(traffic[2])

        sessions = _first_row(await self.query(SESSION_QUERY.format(day=day)), 2)
        record["avg_session_duration"] = to_float(sessions[0])
        record["bounce_rate"] = to_float(sessions[1])

        record["mobile_sessions"] = 0
        record["desktop_sessions"] = 0
        for device_type, count in await self.query(DEVICE_QUERY.format(day=day)):
            kind = str(device_type).lower()
            if kind in ("mobile", "tablet"):
                record["mobile_sessions"] += to_int(count)
            elif kind == "desktop":
                record["desktop_sessions"] = to_int(count)

        countries = await self.query(COUNTRY_QUERY.format(day=day))
        record["top_country"] = str(countries[0][0]) if countries and countries[0] else "Unknown"

        for channel in CHANNELS:
            record[f"{channel}_sessions"] = 0
        for channel, count in await self.query(CHANNEL_QUERY.format(day=day)):
            if channel in CHANNELS:
                record[f"{channel}_sessions"] = to_int(count)

        funnel = _first_row(await self.query(FUNNEL_QUERY.format(day=day)), 4)
        record["product_views"] = to_int(funnel[0])
        record["add_to_cart"] = to_int(funnel[1])
        record["checkout_started"] = to_int(funnel[2])
        record["purchases"] = to_int(funnel[3])

        return Page(records=[record])


def _first_row(results: List[list], width: int) -> list:
    row = list(results[0]) if results else []
    return row + [0] * (width - len(row))
