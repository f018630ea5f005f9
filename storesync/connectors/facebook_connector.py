"""
Facebook Marketing API connector.

Pulls ad-level daily insights from the Graph API and follows `paging.next`
until the account's rows for the day are exhausted.
"""
import json
from datetime import date
from typing import Optional

from storesync.config import get_settings
from storesync.connectors.base_connector import BaseConnector, HttpResponse, Page
from storesync.exceptions import AuthError, ConfigError, UpstreamError
from storesync.services.settings_gateway import SyncCredential
from storesync.utils.helpers import sanitize_error

settings = get_settings()

INSIGHT_FIELDS = [
    "campaign_id",
    "campaign_name",
    "adset_name",
    "ad_name",
    "spend",
    "impressions",
    "reach",
    "frequency",
    "clicks",
    "cpc",
    "cpm",
    "ctr",
    "actions",
    "action_values",
    "cost_per_action_type",
]

# Graph API error code for expired/invalid access tokens
OAUTH_ERROR_CODE = 190


class FacebookConnector(BaseConnector):
    """Connector for Facebook ad insights"""

    provider = "facebook"

    def __init__(self, credential: SyncCredential):
        super().__init__("Facebook", credential)
        self.access_token = credential.token
        self.ad_account_id = credential.extra.get("ad_account_id") or credential.host
        if not self.access_token or not self.ad_account_id:
            raise ConfigError(f"Facebook not configured for org {credential.org_id}")
        if not str(self.ad_account_id).startswith("act_"):
            self.ad_account_id = f"act_{self.ad_account_id}"
        self.base_url = f"{settings.facebook_graph_url.rstrip('/')}/{settings.facebook_graph_version}"

    def _raise_for_response(self, response: HttpResponse) -> None:
        error = _graph_error(response)
        if error and (error.get("code") == OAUTH_ERROR_CODE or error.get("type") == "OAuthException"):
            raise AuthError("Facebook access token invalid or expired", details=sanitize_error(error.get("message"), 300))
        super()._raise_for_response(response)

    async def fetch_page(self, unit: date, cursor: Optional[str] = None) -> Page:
        if cursor:
            # paging.next already carries every query parameter
            response = await self.request("GET", cursor)
        else:
            day = unit.isoformat()
            response = await self.request(
                "GET",
                f"{self.base_url}/{self.ad_account_id}/insights",
                params={
                    "fields": ",".join(INSIGHT_FIELDS),
                    "time_range": json.dumps({"since": day, "until": day}),
                    "level": "ad",
                    "limit": "500",
                    "access_token": self.access_token,
                },
            )

        payload = response.json() or {}
        if payload.get("error"):
            raise UpstreamError(
                f"Facebook API error: {sanitize_error(payload['error'].get('message'), 300)}",
                status_code=response.status,
                body=response.text(),
            )

        next_url = (payload.get("paging") or {}).get("next")
        return Page(records=payload.get("data") or [], has_next=bool(next_url), next_cursor=next_url)


def _graph_error(response: HttpResponse) -> Optional[dict]:
    try:
        payload = response.json()
    except ValueError:
        return None
    if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
        return payload["error"]
    return None
