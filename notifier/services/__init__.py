"""Notification services package."""

from notifier.services.comment_reconciler import CommentReconciler
from notifier.services.document_store import DocumentStore, MySQLDocumentStore
from notifier.services.github_client import GitHubClient
from notifier.services.message_renderer import GitHubBotMessage
from notifier.services.message_tracker import MessageTracker
from notifier.services.redis_client import (
    RedisClient,
    RedisConnectionError
)
from notifier.services.state_classifier import classify, instance_state

__all__ = [
    'CommentReconciler',
    'DocumentStore',
    'MySQLDocumentStore',
    'GitHubClient',
    'GitHubBotMessage',
    'MessageTracker',
    'RedisClient',
    'RedisConnectionError',
    'classify',
    'instance_state'
]
