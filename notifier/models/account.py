"""User, organization and notification settings data models."""

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class _Document(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class GitHubAccount(_Document):
    id: int
    username: Optional[str] = None
    access_token: Optional[str] = Field(default=None, alias="accessToken")


class Accounts(_Document):
    github: Optional[GitHubAccount] = None


class User(_Document):
    """Runnable user with linked GitHub account."""

    id: Optional[str] = Field(default=None, alias="_id")
    email: Optional[str] = None
    accounts: Accounts = Field(default_factory=Accounts)

    @property
    def github_username(self) -> Optional[str]:
        return self.accounts.github.username if self.accounts.github else None

    @property
    def github_access_token(self) -> Optional[str]:
        return self.accounts.github.access_token if self.accounts.github else None


class SlackSettings(_Document):
    api_token: Optional[str] = Field(default=None, alias="apiToken")
    enabled: bool = False
    github_username_to_slack_id_map: Dict[str, str] = Field(
        default_factory=dict, alias="githubUsernameToSlackIdMap"
    )


class NotificationSettings(_Document):
    slack: Optional[SlackSettings] = None


class OrgSettings(_Document):
    """Per-org notification settings."""

    notifications: NotificationSettings = Field(default_factory=NotificationSettings)

    @property
    def slack(self) -> Optional[SlackSettings]:
        return self.notifications.slack


class OrganizationMember(_Document):
    id: Optional[int] = None
    github_id: Optional[int] = Field(default=None, alias="githubId")


class Organization(_Document):
    """Billing organization."""

    id: int
    name: str
    is_active: bool = Field(default=True, alias="isActive")
    pr_bot_enabled: bool = Field(default=False, alias="prBotEnabled")
    creator: Optional[OrganizationMember] = None
    users: List[OrganizationMember] = Field(default_factory=list)

    @property
    def member_github_ids(self) -> List[int]:
        return [u.github_id for u in self.users if u.github_id is not None]
