"""Deploy notification worker: GitHub PR bot, commit statuses, Slack and email."""
