"""
Prayer API Backend: Abstract Push Provider Interface
======================================================

What:  The contract every push-notification backend implements.
How:   Concrete providers inherit from PushProvider and implement send().
Who:   Called by the NotificationDispatcher; chosen once in the lifespan.

Implementations:
    - FirebasePushProvider: Firebase Cloud Messaging via firebase-admin
    - NullPushProvider: used when Firebase is not configured; delivers nothing
"""

from abc import ABC, abstractmethod
from typing import Dict, Optional


class PushProvider(ABC):
    """
    Sends one notification to one device token.

    Contract:
        - send() never raises. Every failure (bad token, provider outage,
          open circuit, missing configuration) is reported as False.
        - `available` tells callers whether deliveries can succeed at all,
          so endpoints that need a live provider can refuse up front.
    """

    @property
    @abstractmethod
    def available(self) -> bool:
        ...

    @abstractmethod
    async def send(
        self,
        token: str,
        title: str,
        body: str,
        data: Optional[Dict[str, str]] = None,
    ) -> bool:
        """
        Deliver a notification.

        Args:
            token: Device push token (FCM registration token)
            title: Notification title
            body:  Notification body text
            data:  String key/value payload delivered alongside

        Returns:
            True when the provider accepted the message, False otherwise.
        """
        ...

    def status(self) -> str:
        """Short state for the health endpoint: available or disabled."""
        return "available" if self.available else "disabled"
