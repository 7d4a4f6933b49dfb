from data import Config, ConfigError
from github import Github
import logging
import yaml
from typing import Dict

logger = logging.getLogger(__name__)


class GitHubWorkspace:
    def __init__(self, config: Config):
        if not config.github_token:
            raise ConfigError("GitHub token not configured")
        self.client = Github(config.github_token)
        self.user_map_repository = config.user_map_repository
        self.user_map_path = config.user_map_path

    def get_latest_release_tag(self, org: str, repo: str) -> str:
        release = self.client.get_repo(f"{org}/{repo}").get_latest_release()
        logger.info(f"{repo} latest version is {release.tag_name}")
        return release.tag_name

    def get_pull_body(self, org: str, repo: str, number: int) -> str:
        pull = self.client.get_repo(f"{org}/{repo}").get_pull(int(number))
        return pull.body or ""

    def update_pull_body(self, org: str, repo: str, number: int, body: str) -> None:
        pull = self.client.get_repo(f"{org}/{repo}").get_pull(int(number))
        pull.edit(body=body)
        logger.info(f"Updated description of {org}/{repo}#{number}")

    def get_user_map(self) -> Dict[str, str]:
        """GitHub login to Asana user gid, read from the shared YAML map."""
        contents = self.client.get_repo(self.user_map_repository).get_contents(self.user_map_path)
        user_map = yaml.safe_load(contents.decoded_content) or {}
        logger.info(f"Loaded {len(user_map)} entries from {self.user_map_repository}/{self.user_map_path}")
        return {str(k): str(v) for k, v in user_map.items()}
