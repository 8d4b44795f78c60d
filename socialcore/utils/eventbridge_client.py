"""
Broadcast collaborator: fire-and-forget feed events over Amazon EventBridge.
"""

from typing import Any, Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .config import EventBridgeConfig
from .json_utils import dumps_compact
from .logging_config import get_logger

logger = get_logger(__name__)


class NullBroadcaster:
    """Broadcaster used when no event bus is configured."""

    def publish(self, event: Dict[str, Any]) -> None:
        logger.debug(f"Broadcast disabled, dropping event {event.get('type')}")


class EventBridgeBroadcaster:
    """Publishes feed events to an EventBridge bus. Best effort, never retried."""

    def __init__(self, config: EventBridgeConfig, client: Optional[Any] = None):
        """
        Initialize EventBridge client.

        Args:
            config: EventBridgeConfig instance with connection parameters
            client: Pre-built events client (optional)
        """
        self.config = config
        self.events = client or boto3.client('events', region_name=config.region)

        logger.info(f'Initialized EventBridge broadcaster for bus: {config.bus_name}')

    def publish(self, event: Dict[str, Any]) -> None:
        """
        Publish one event. Failures are logged and swallowed.

        Args:
            event: JSON-serializable payload; its 'type' becomes the detail type
        """
        entry = {
            'Source': self.config.source,
            'DetailType': str(event.get('type', 'event')),
            'Detail': dumps_compact(event),
            'EventBusName': self.config.bus_name,
        }
        try:
            response = self.events.put_events(Entries=[entry])
            if response.get('FailedEntryCount'):
                logger.warning(f"EventBridge rejected event {entry['DetailType']}: {response.get('Entries')}")
            else:
                logger.debug(f"Broadcast event {entry['DetailType']}")
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"EventBridge publish failed for {entry['DetailType']}: {e}")


def build_broadcaster(config: EventBridgeConfig):
    """Return the configured broadcaster."""
    if not config.enabled:
        return NullBroadcaster()
    return EventBridgeBroadcaster(config)
