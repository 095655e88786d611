"""
Solace Event Bridge.

Relays monitoring events between paired devices over the Solace event mesh.
Locally originated bus events are published to
``<topic_prefix>/<device_id>/<event name>``; events from the peer arrive on the
``<topic_prefix>/>`` wildcard subscription and are republished onto the local
bus from the device's event loop.

Delivery is best-effort. The bus drops event ids it has already seen, so a
broker redelivery never reaches the escalation coordinator twice.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional

from solace.messaging.config.transport_security_strategy import TLS
from solace.messaging.messaging_service import MessagingService
from solace.messaging.receiver.message_receiver import InboundMessage, MessageHandler
from solace.messaging.resources.topic import Topic
from solace.messaging.resources.topic_subscription import TopicSubscription

from .event_bus import BusEvent, EventBus

logger = logging.getLogger(__name__)


class PeerEventHandler(MessageHandler):
    """Handles incoming peer-device event messages."""

    def __init__(self, bridge: "SolaceEventBridge"):
        self.bridge = bridge

    def on_message(self, message: InboundMessage):
        """Process an incoming peer event."""
        payload = message.get_payload_as_string()
        topic = message.get_destination_name()
        logger.debug(f"[BRIDGE] Message on {topic}")
        self.bridge.receive(payload)


class SolaceEventBridge:
    """Connects the local EventBus to the peer device through a Solace broker."""

    def __init__(
        self,
        bus: EventBus,
        settings,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.bus = bus
        self.settings = settings
        self.topic_prefix = settings.topic_prefix.rstrip("/")
        self._loop = loop
        self.messaging_service: Optional[MessagingService] = None
        self.publisher = None
        self.receiver = None
        self.running = False
        self.published_count = 0
        self.received_count = 0

    def topic_for(self, event: BusEvent) -> str:
        return f"{self.topic_prefix}/{event.source_device}/{event.name.value}"

    def start(self) -> Dict[str, Any]:
        """
        Connect to the broker, start the publisher and the peer subscription.

        Returns:
            Dict with initialization status and metadata
        """
        broker_url = self.settings.solace_broker_url
        subscription_pattern = f"{self.topic_prefix}/>"

        logger.info(f"[BRIDGE] Connecting to: {broker_url}")

        if self._loop is None:
            try:
                self._loop = asyncio.get_running_loop()
            except RuntimeError:
                self._loop = None

        try:
            broker_props = {
                "solace.messaging.transport.host": broker_url,
                "solace.messaging.service.vpn-name": self.settings.solace_broker_vpn,
                "solace.messaging.authentication.scheme.basic.username": self.settings.solace_broker_username,
                "solace.messaging.authentication.scheme.basic.password": self.settings.solace_broker_password,
            }

            builder = MessagingService.builder().from_properties(broker_props)

            # For Solace Cloud (wss://), configure TLS
            if broker_url.startswith("wss://"):
                tls_strategy = TLS.create().without_certificate_validation()
                builder = builder.with_transport_security_strategy(tls_strategy)
                logger.info("[BRIDGE] TLS enabled (development mode)")

            self.messaging_service = builder.build()
            self.messaging_service.connect()

            self.publisher = (
                self.messaging_service.create_direct_message_publisher_builder()
                .on_back_pressure_reject(buffer_capacity=100)
                .build()
            )
            self.publisher.start()

            self.receiver = (
                self.messaging_service.create_direct_message_receiver_builder()
                .with_subscriptions([TopicSubscription.of(subscription_pattern)])
                .build()
            )
            self.receiver.start()
            self.receiver.receive_async(PeerEventHandler(self))

            self.bus.subscribe(None, self.forward)
            self.running = True

            logger.info(f"[BRIDGE] Relaying events, subscribed to: {subscription_pattern}")
            return {
                "status": "initialized",
                "broker_url": broker_url,
                "subscription": subscription_pattern,
            }

        except Exception as e:
            logger.error(f"[BRIDGE] Failed to initialize event bridge: {e}")
            self.stop()
            return {
                "status": "error",
                "error": str(e),
            }

    def stop(self) -> None:
        """Disconnect from the broker."""
        self.bus.unsubscribe(None, self.forward)
        self.running = False

        try:
            if self.receiver:
                self.receiver.terminate()
            if self.publisher:
                self.publisher.terminate()
            if self.messaging_service:
                self.messaging_service.disconnect()
                logger.info("[BRIDGE] Disconnected from Solace broker")
        except Exception as e:
            logger.error(f"[BRIDGE] Error during shutdown: {e}")
        finally:
            self.receiver = None
            self.publisher = None
            self.messaging_service = None

    def forward(self, event: BusEvent) -> None:
        """Bus handler: publish locally originated events to the peer."""
        if event.source_device != self.bus.device_id or self.publisher is None:
            return

        topic = self.topic_for(event)
        try:
            self.publisher.publish(
                destination=Topic.of(topic),
                message=json.dumps(event.to_dict()),
            )
            self.published_count += 1
            logger.debug(f"[BRIDGE] Published {event.name.value} to {topic}")
        except Exception as e:
            logger.error(f"[BRIDGE] Failed to publish {event.name.value}: {e}")

    def receive(self, payload: str) -> Optional[BusEvent]:
        """
        Decode a peer message and hand it to the local bus.

        Called on the broker's thread; the publish itself is scheduled onto
        the device's event loop when one is known.

        Returns:
            The decoded event, or None if it was dropped
        """
        try:
            event = BusEvent.from_dict(json.loads(payload))
        except (json.JSONDecodeError, KeyError, ValueError, TypeError) as e:
            logger.error(f"[BRIDGE] Failed to parse peer event: {e}")
            return None

        if event.source_device == self.bus.device_id:
            return None

        self.received_count += 1
        if self._loop is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self.bus.publish, event)
        else:
            self.bus.publish(event)
        return event

    def get_status(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "topic_prefix": self.topic_prefix,
            "published": self.published_count,
            "received": self.received_count,
        }
