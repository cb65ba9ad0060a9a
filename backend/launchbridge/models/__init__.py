"""Database models for LaunchBridge."""

from launchbridge.models.login_attempt import LoginAttemptRecord

__all__ = ["LoginAttemptRecord"]
