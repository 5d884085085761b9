"""Microsoft Teams messaging provider.

Messages go either to an incoming webhook URL or through Microsoft Graph.
Graph needs the team as well as the channel, so channel ids handed out by
get_channels have the form ``<team id>/<channel id>``.
"""

from html import escape
from typing import Any, Optional

from prnotify.core.config import settings
from prnotify.models.pull_request import Channel, DeliveryResult, Message
from prnotify.models.token import TokenResponse
from prnotify.notifications.formatter import MessageStyle
from prnotify.providers.base import BaseMessagingProvider
from prnotify.providers.errors import ProviderError

GRAPH_API_BASE = "https://graph.microsoft.com/v1.0"
LOGIN_BASE = "https://login.microsoftonline.com"


class TeamsStyle(MessageStyle):
    """HTML subset rendered by Teams for both webhook and Graph messages."""

    soft_cap = 4000
    max_length = 20000

    def bold(self, text: str) -> str:
        return f"<b>{escape(text)}</b>"

    def link(self, text: str, url: str) -> str:
        return f'<a href="{escape(url, quote=True)}">{escape(text)}</a>'

    def mention(self, handle: str) -> str:
        return f"<b>@{escape(handle.lstrip('@'))}</b>"


def to_html(text: str) -> str:
    return text.replace("\n", "<br>")


def split_channel_id(channel_id: str) -> tuple[str, str]:
    team_id, sep, channel = channel_id.partition("/")
    if not sep or not team_id or not channel:
        raise ProviderError(
            f"Teams channel id must look like '<team id>/<channel id>', got {channel_id!r}",
            provider="teams",
            status_code=400,
        )
    return team_id, channel


class TeamsProvider(BaseMessagingProvider):
    """Teams via Microsoft Graph or incoming webhooks."""

    provider_type = "teams"
    api_base = GRAPH_API_BASE
    scopes = [
        "offline_access",
        "ChannelMessage.Send",
        "Channel.ReadBasic.All",
        "Team.ReadBasic.All",
    ]
    style = TeamsStyle()

    def __init__(self, *args: Any, tenant_id: Optional[str] = None, **kwargs: Any):
        super().__init__(*args, **kwargs)
        tenant = tenant_id or settings.teams_tenant_id
        self.authorize_url = f"{LOGIN_BASE}/{tenant}/oauth2/v2.0/authorize"
        self.token_url = f"{LOGIN_BASE}/{tenant}/oauth2/v2.0/token"

    def _extra_auth_params(self) -> dict[str, str]:
        return {"response_mode": "query"}

    async def refresh_token(self, refresh_token: str) -> TokenResponse:
        # The Microsoft identity platform wants the scopes repeated on refresh
        return await self._token_request(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "scope": " ".join(self.scopes),
            }
        )

    async def get_channels(self, token: str) -> list[Channel]:
        teams = (await self._get_json("/me/joinedTeams", token)).get("value", [])
        channels: list[Channel] = []
        for team in teams:
            payload = await self._get_json(f"/teams/{team['id']}/channels", token)
            for channel in payload.get("value", []):
                channels.append(
                    Channel(
                        id=f"{team['id']}/{channel['id']}",
                        name=f"{team['displayName']} / {channel['displayName']}",
                        is_private=channel.get("membershipType") == "private",
                    )
                )
        return channels

    async def _deliver(self, credential: str, channel_id: str, message: Message) -> DeliveryResult:
        html = to_html(message.text)
        if self.is_webhook(credential):
            await self._request("POST", credential, json={"text": html})
            return DeliveryResult(channel_id=channel_id)

        team_id, channel = split_channel_id(channel_id)
        response = await self._request(
            "POST",
            f"/teams/{team_id}/channels/{channel}/messages",
            token=credential,
            json={"body": {"contentType": "html", "content": html}},
        )
        return DeliveryResult(channel_id=channel_id, message_id=response.json().get("id"))
