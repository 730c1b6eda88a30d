"""
Application configuration management.
"""

from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""
    
    # Application
    log_level: str = "INFO"
    
    # Redis (job broker)
    redis_url: str = "redis://localhost:6379/0"
    queue_prefix: str = "notifier:queue:"
    dequeue_timeout_seconds: int = 5
    max_job_attempts: int = 5
    
    # Document store
    database_url: str = "mysql+aiomysql://root@localhost:3306/notifier"
    
    # GitHub
    github_api_url: str = "https://api.github.com"
    github_timeout_seconds: float = 10.0
    runnabot_github_access_tokens: str = ""
    runnabot_github_username: str = "runnabot"
    pr_bot_whitelist: str = ""
    
    # Links rendered into notifications
    web_url: str = "https://app.runnable.io"
    full_api_domain: str = "https://api.runnable.io"
    user_content_domain: str = "runnableapp.com"
    container_url_protocol: str = "http"
    
    # Feature flags
    enable_github_pr_comments: bool = False
    enable_github_deployment_statuses: bool = False
    enable_slack_messages: bool = False
    
    # Slack
    slack_api_url: str = "https://slack.com/api"
    slack_bot_username: str = "runnabot"
    slack_bot_image: str = ""
    
    # SendGrid
    sendgrid_api_url: str = "https://api.sendgrid.com/v3"
    sendgrid_key: str = ""
    sendgrid_sender_email: str = "support@runnable.com"
    sendgrid_sender_name: str = "Runnable"
    
    # Outbound chat dedup
    message_tracker_max_size: int = 50000
    message_tracker_ttl_seconds: int = 180
    
    class Config:
        env_file = ".env"
        case_sensitive = False
    
    @property
    def bot_tokens(self) -> List[str]:
        """Bot access tokens, one of which is picked per GitHub client."""
        return [t.strip() for t in self.runnabot_github_access_tokens.split(",") if t.strip()]
    
    @property
    def whitelisted_org_ids(self) -> List[int]:
        """GitHub org ids with PR bot comment cleanup enabled."""
        ids = []
        for raw in self.pr_bot_whitelist.split(","):
            raw = raw.strip()
            if raw.isdigit():
                ids.append(int(raw))
        return ids


@lru_cache
def get_settings() -> Settings:
    """Settings for the process entry point."""
    return Settings()
