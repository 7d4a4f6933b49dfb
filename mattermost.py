from data import Config, ConfigError
import requests
import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class MattermostError(Exception):
    """Raised when a Mattermost call fails."""


class MattermostClient:
    def __init__(self, config: Config):
        if not config.mattermost_url:
            raise ConfigError("Mattermost URL not configured")
        self.base_url = config.mattermost_url.rstrip("/") + "/api/v4"
        self.session = requests.Session()
        self.session.headers.update({"Authorization": f"Bearer {config.mattermost_token}"})

    def get_channel_by_name(self, team_id: str, channel_name: str) -> Optional[Dict[str, Any]]:
        """Look a channel up by name; None when it does not exist or cannot be read."""
        try:
            resp = self.session.get(f"{self.base_url}/teams/{team_id}/channels/name/{channel_name}")
        except requests.RequestException as e:
            logger.error(f"Error fetching channel {channel_name}: {e}")
            return None
        if resp.status_code != 200:
            logger.error(f"Failed to fetch channel {channel_name}: {resp.status_code} {resp.text}")
            return None
        return resp.json()

    def create_post(self, channel_id: str, message: str) -> Dict[str, Any]:
        try:
            resp = self.session.post(
                f"{self.base_url}/posts",
                json={"channel_id": channel_id, "message": message},
            )
        except requests.RequestException as e:
            raise MattermostError(f"Error sending message: {e}") from e
        if resp.status_code >= 400:
            raise MattermostError(f"Error sending message: {resp.status_code} {resp.text}")
        post = resp.json()
        logger.info(f"Message sent: {post.get('id')}")
        return post
