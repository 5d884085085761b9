"""Slack messaging provider."""

from typing import Any, Optional

from prnotify.models.pull_request import Channel, DeliveryResult, Message
from prnotify.models.token import TokenResponse
from prnotify.notifications.formatter import MessageStyle
from prnotify.providers.base import BaseMessagingProvider
from prnotify.providers.errors import ProviderError, RateLimitError, TokenExpiredError

SLACK_API_BASE = "https://slack.com/api"

TOKEN_ERRORS = {"invalid_auth", "not_authed", "token_revoked", "token_expired", "account_inactive"}
RATE_LIMIT_ERRORS = {"ratelimited", "rate_limited"}
BROADCAST_MENTIONS = {"here", "channel", "everyone"}


def _escape(text: str) -> str:
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


class SlackStyle(MessageStyle):
    """Slack mrkdwn."""

    soft_cap = 3000
    max_length = 4000

    def bold(self, text: str) -> str:
        return f"*{text}*"

    def link(self, text: str, url: str) -> str:
        return f"<{url}|{_escape(text).replace('|', '¦')}>"

    def mention(self, handle: str) -> str:
        handle = handle.lstrip("@")
        if handle in BROADCAST_MENTIONS:
            return f"<!{handle}>"
        if handle[:1] in ("U", "W") and handle.isupper() and handle.isalnum():
            return f"<@{handle}>"
        if handle[:1] == "S" and handle.isupper() and handle.isalnum():
            return f"<!subteam^{handle}>"
        return f"@{handle}"


class SlackProvider(BaseMessagingProvider):
    """Slack Web API and incoming webhooks."""

    provider_type = "slack"
    api_base = SLACK_API_BASE
    authorize_url = "https://slack.com/oauth/v2/authorize"
    token_url = f"{SLACK_API_BASE}/oauth.v2.access"
    scopes = ["chat:write", "channels:read", "groups:read"]
    scope_separator = ","
    style = SlackStyle()

    def _check_ok(self, payload: dict) -> dict:
        """Slack reports most failures as HTTP 200 with ``ok: false``."""
        if payload.get("ok"):
            return payload
        error = payload.get("error", "unknown_error")
        if error in TOKEN_ERRORS:
            raise TokenExpiredError(f"Slack token rejected: {error}", provider=self.provider_type)
        if error in RATE_LIMIT_ERRORS:
            raise RateLimitError(f"Slack rate limit: {error}", provider=self.provider_type)
        raise ProviderError(
            f"Slack API error: {error}", provider=self.provider_type, status_code=400
        )

    def _parse_token_response(self, payload: dict) -> TokenResponse:
        self._check_ok(payload)
        return TokenResponse.model_validate(payload)

    async def _call(self, method: str, token: str, params: Optional[dict] = None) -> dict:
        payload = await self._get_json(f"/{method}", token, params=params)
        return self._check_ok(payload)

    async def get_channels(self, token: str) -> list[Channel]:
        """Public channels plus private channels the bot is a member of."""
        channels: list[Channel] = []
        cursor: Optional[str] = None
        while True:
            params: dict[str, Any] = {
                "types": "public_channel,private_channel",
                "exclude_archived": "true",
                "limit": 200,
            }
            if cursor:
                params["cursor"] = cursor
            payload = await self._call("conversations.list", token, params)

            for channel in payload.get("channels", []):
                if channel.get("is_archived"):
                    continue
                is_private = bool(channel.get("is_private"))
                if is_private and not channel.get("is_member"):
                    continue
                channels.append(
                    Channel(id=channel["id"], name=channel["name"], is_private=is_private)
                )

            cursor = (payload.get("response_metadata") or {}).get("next_cursor")
            if not cursor:
                break

        return sorted(channels, key=lambda channel: channel.name)

    async def _deliver(self, credential: str, channel_id: str, message: Message) -> DeliveryResult:
        if self.is_webhook(credential):
            await self._request("POST", credential, json={"text": message.text})
            return DeliveryResult(channel_id=channel_id)

        response = await self._request(
            "POST",
            "/chat.postMessage",
            token=credential,
            json={
                "channel": channel_id,
                "text": message.text,
                "mrkdwn": True,
                "unfurl_links": False,
            },
        )
        payload = self._check_ok(response.json())
        return DeliveryResult(
            channel_id=payload.get("channel", channel_id), message_id=payload.get("ts")
        )
