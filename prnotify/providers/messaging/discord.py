"""Discord messaging provider."""

from typing import Any, Optional

from prnotify.core.config import settings
from prnotify.core.logging import get_logger
from prnotify.models.pull_request import Channel, DeliveryResult, Message
from prnotify.notifications.formatter import MessageStyle
from prnotify.providers.base import BaseMessagingProvider
from prnotify.providers.errors import ProviderError, TokenExpiredError

logger = get_logger(__name__)

DISCORD_API_BASE = "https://discord.com/api/v10"
GUILD_TEXT = 0
# View Channel + Send Messages
BOT_PERMISSIONS = str(0x400 | 0x800)
MANAGE_WEBHOOKS = 0x20000000
ADMINISTRATOR = 0x8


class DiscordStyle(MessageStyle):
    """Discord markdown. Messages are capped at 2000 characters."""

    soft_cap = 1500
    max_length = 2000

    def link(self, text: str, url: str) -> str:
        escaped = text.replace("]", "\\]")
        # Angle brackets suppress the link preview embed
        return f"[{escaped}](<{url}>)"

    def mention(self, handle: str) -> str:
        handle = handle.lstrip("@")
        if handle in ("here", "everyone"):
            return f"@{handle}"
        if handle.isdigit():
            return f"<@{handle}>"
        if handle.startswith("&") and handle[1:].isdigit():
            return f"<@{handle}>"
        return f"@{handle}"


class DiscordProvider(BaseMessagingProvider):
    """Discord bot API and channel webhooks."""

    provider_type = "discord"
    api_base = DISCORD_API_BASE
    authorize_url = "https://discord.com/oauth2/authorize"
    token_url = f"{DISCORD_API_BASE}/oauth2/token"
    scopes = ["bot", "guilds"]
    style = DiscordStyle()

    def __init__(self, *args: Any, bot_token: Optional[str] = None, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.bot_token = bot_token if bot_token is not None else settings.discord_bot_token

    def _extra_auth_params(self) -> dict[str, str]:
        return {"permissions": BOT_PERMISSIONS}

    def _bot_headers(self) -> dict[str, str]:
        if not self.bot_token:
            raise ProviderError(
                "DISCORD_BOT_TOKEN is required to use Discord without a webhook",
                provider=self.provider_type,
            )
        return {"Authorization": f"Bot {self.bot_token}"}

    async def get_channels(self, token: str) -> list[Channel]:
        """Text channels of the user's manageable guilds that the bot can see."""
        guilds = await self._get_json("/users/@me/guilds", token)
        channels: list[Channel] = []
        for guild in guilds:
            permissions = int(guild.get("permissions", 0))
            if not permissions & (MANAGE_WEBHOOKS | ADMINISTRATOR):
                continue
            try:
                guild_channels = await self._get_json(
                    f"/guilds/{guild['id']}/channels", headers=self._bot_headers()
                )
            except TokenExpiredError:
                raise
            except ProviderError as e:
                # Bot not installed in this guild
                logger.info("Skipping guild", guild_id=guild["id"], error=str(e))
                continue

            text_channels = sorted(
                (channel for channel in guild_channels if channel.get("type") == GUILD_TEXT),
                key=lambda channel: channel.get("position", 0),
            )
            channels.extend(
                Channel(id=channel["id"], name=f"{guild['name']} / #{channel['name']}")
                for channel in text_channels
            )
        return channels

    async def _deliver(self, credential: str, channel_id: str, message: Message) -> DeliveryResult:
        if self.is_webhook(credential):
            response = await self._request(
                "POST", credential, params={"wait": "true"}, json={"content": message.text}
            )
        else:
            response = await self._request(
                "POST",
                f"/channels/{channel_id}/messages",
                headers=self._bot_headers(),
                json={
                    "content": message.text,
                    "allowed_mentions": {"parse": ["users", "everyone"]},
                },
            )
        payload = response.json() if response.content else {}
        return DeliveryResult(
            channel_id=payload.get("channel_id", channel_id), message_id=payload.get("id")
        )
