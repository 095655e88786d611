#!/usr/bin/env python3
"""
Wearable Vital-Sign Simulator for LifeSignal.

Plays the companion wearable: generates heart rate, blood oxygen and fall
readings and sends them either to the monitor API (``--transport http``) or,
as peer-device events, to the Solace broker the monitor's bridge listens on
(``--transport solace``).

Usage:
    python scripts/wearable_simulator.py --scenario tachycardia
    python scripts/wearable_simulator.py --scenario recovery --interval 2
    python scripts/wearable_simulator.py --scenario fall --transport solace
    python scripts/wearable_simulator.py --once --kind heart_rate --value 130
"""

import os
import sys
import json
import time
import uuid
import random
import argparse
from datetime import datetime, timezone
from dotenv import load_dotenv

import httpx
from solace.messaging.messaging_service import MessagingService
from solace.messaging.resources.topic import Topic
from solace.messaging.publisher.direct_message_publisher import PublishFailureListener
from solace.messaging.config.transport_security_strategy import TLS


# Load environment variables
load_dotenv()

DEFAULT_API_URL = os.getenv("LIFESIGNAL_API_URL", "http://localhost:8082")
DEFAULT_TOPIC_PREFIX = os.getenv("LIFESIGNAL_TOPIC_PREFIX", "lifesignal/events")
DEFAULT_DEVICE_ID = os.getenv("SIMULATOR_DEVICE_ID", "watch")

# Vital-sign specifications
VITAL_SPECS = {
    "heart_rate": {
        "unit": "bpm",
        "resting_range": (55, 75),
        "normal_range": (60, 100),
        "high_range": (125, 160),
        "low_range": (30, 38),
    },
    "blood_oxygen": {
        "unit": "%",
        "normal_range": (96.0, 99.5),
        "low_range": (85.0, 93.0),
    },
}

# Home location used for fall events
DEFAULT_LOCATION = {"latitude": 37.7749, "longitude": -122.4194}

# Scenario steps: (kind, context)
SCENARIOS = {
    "resting": [("heart_rate", "resting"), ("blood_oxygen", "normal")] * 3,
    "tachycardia": [("heart_rate", "resting")] + [("heart_rate", "high")] * 5,
    "bradycardia": [("heart_rate", "resting")] + [("heart_rate", "low")] * 5,
    "recovery": [("heart_rate", "high"), ("heart_rate", "high"), ("heart_rate", "normal")],
    "hypoxia": [("blood_oxygen", "normal")] + [("blood_oxygen", "low")] * 5,
    "fall": [("heart_rate", "resting"), ("fall", "detected")],
}


class EventPublishFailureListener(PublishFailureListener):
    """Handler for publish failures."""

    def on_failed_publish(self, failed_publish_event):
        print(f"[ERROR] Failed to publish: {failed_publish_event}")


def create_messaging_service():
    """Create and connect to Solace broker messaging service."""
    broker_url = os.getenv("LIFESIGNAL_SOLACE_BROKER_URL", "ws://localhost:8008")
    vpn_name = os.getenv("LIFESIGNAL_SOLACE_BROKER_VPN", "default")
    username = os.getenv("LIFESIGNAL_SOLACE_BROKER_USERNAME", "default")
    password = os.getenv("LIFESIGNAL_SOLACE_BROKER_PASSWORD", "default")

    print(f"[INFO] Connecting to Solace broker: {broker_url}")
    print(f"[INFO] VPN: {vpn_name}, Username: {username}")

    broker_props = {
        "solace.messaging.transport.host": broker_url,
        "solace.messaging.service.vpn-name": vpn_name,
        "solace.messaging.authentication.scheme.basic.username": username,
        "solace.messaging.authentication.scheme.basic.password": password,
    }

    builder = MessagingService.builder().from_properties(broker_props)

    # For Solace Cloud (wss://), configure TLS
    if broker_url.startswith("wss://"):
        tls_strategy = TLS.create().without_certificate_validation()
        builder = builder.with_transport_security_strategy(tls_strategy)
        print("[INFO] TLS enabled (development mode)")

    messaging_service = builder.build()
    messaging_service.connect()
    print("[INFO] Connected to Solace broker successfully!")

    return messaging_service


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def create_reading(kind: str, value: float, location: dict = None) -> dict:
    """Create a reading in the monitor API's request format."""
    reading = {
        "kind": kind,
        "value": value,
        "timestamp": _now_iso(),
    }
    if location:
        reading["latitude"] = location["latitude"]
        reading["longitude"] = location["longitude"]
    return reading


def generate_heart_rate(context: str = "resting") -> dict:
    """Generate a heart rate reading."""
    specs = VITAL_SPECS["heart_rate"]
    range_key = f"{context}_range" if f"{context}_range" in specs else "normal_range"
    return create_reading("heart_rate", float(random.randint(*specs[range_key])))


def generate_blood_oxygen(context: str = "normal") -> dict:
    """Generate a blood oxygen reading, one decimal place."""
    specs = VITAL_SPECS["blood_oxygen"]
    range_key = f"{context}_range" if f"{context}_range" in specs else "normal_range"
    return create_reading("blood_oxygen", round(random.uniform(*specs[range_key]), 1))


def generate_fall(location: dict = None) -> dict:
    """Generate a fall reading (value 1.0 means a fall was detected)."""
    return create_reading("fall", 1.0, location or DEFAULT_LOCATION)


def generate_reading(kind: str, context: str) -> dict:
    if kind == "heart_rate":
        return generate_heart_rate(context)
    if kind == "blood_oxygen":
        return generate_blood_oxygen(context)
    return generate_fall()


def create_peer_event(reading: dict, device_id: str = DEFAULT_DEVICE_ID) -> dict:
    """
    Wrap a reading as the event a paired device publishes to the mesh.

    Heart rate and blood oxygen become anomalyDetected (the monitor
    re-evaluates the value); a fall becomes fallDetected.
    """
    if reading["kind"] == "fall":
        name = "fallDetected"
        payload = {"timestamp": reading["timestamp"]}
        if "latitude" in reading:
            payload["location"] = {
                "latitude": reading["latitude"],
                "longitude": reading["longitude"],
            }
    else:
        name = "anomalyDetected"
        payload = {
            "kind": reading["kind"],
            "value": reading["value"],
            "timestamp": reading["timestamp"],
        }

    return {
        "id": str(uuid.uuid4()),
        "name": name,
        "payload": payload,
        "source_device": device_id,
        "timestamp": _now_iso(),
    }


def topic_for(event: dict, topic_prefix: str = DEFAULT_TOPIC_PREFIX) -> str:
    return f"{topic_prefix.rstrip('/')}/{event['source_device']}/{event['name']}"


def publish_event(publisher, event: dict, topic_prefix: str = DEFAULT_TOPIC_PREFIX) -> str:
    """Publish a peer event to its device topic."""
    topic_string = topic_for(event, topic_prefix)
    message_body = json.dumps(event, indent=2)

    print(f"\n[PUBLISH] Topic: {topic_string}")
    print(f"[PAYLOAD] {message_body}")

    publisher.publish(destination=Topic.of(topic_string), message=message_body)
    return topic_string


def post_reading(client: httpx.Client, reading: dict) -> dict:
    """Send a reading to the monitor API and return its response."""
    print(f"\n[POST] /api/readings {reading['kind']}={reading['value']}")
    response = client.post("/api/readings", json=reading)
    response.raise_for_status()
    result = response.json()

    verdict = result.get("verdict")
    if verdict and verdict.get("is_abnormal"):
        state = result["escalation"].get(reading["kind"], {})
        print(f"[ABNORMAL] phase={state.get('phase')} remaining={state.get('remaining')}")
    return result


def run_scenario(send, scenario: str, interval: float) -> int:
    """
    Send each step of a scenario through ``send``.

    Returns:
        Number of readings sent
    """
    steps = SCENARIOS[scenario]
    print(f"\n[SCENARIO] {scenario}: {len(steps)} readings every {interval} seconds")

    sent = 0
    for kind, context in steps:
        send(generate_reading(kind, context))
        sent += 1
        if sent < len(steps):
            time.sleep(interval)

    print(f"\n[SCENARIO] {scenario} complete")
    return sent


def main():
    parser = argparse.ArgumentParser(
        description="Wearable Vital-Sign Simulator for LifeSignal",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Sustained high heart rate (escalates after the countdown)
  python scripts/wearable_simulator.py --scenario tachycardia --interval 5

  # High heart rate that returns to normal (countdown cancelled)
  python scripts/wearable_simulator.py --scenario recovery --interval 2

  # Fall relayed to the phone over Solace
  python scripts/wearable_simulator.py --scenario fall --transport solace

  # Single reading
  python scripts/wearable_simulator.py --once --kind blood_oxygen --value 92
        """,
    )

    parser.add_argument(
        "--scenario",
        choices=sorted(SCENARIOS.keys()),
        default="resting",
        help="Scenario to run (default: resting)",
    )
    parser.add_argument(
        "--transport",
        choices=["http", "solace"],
        default="http",
        help="Send readings to the monitor API or to the Solace broker (default: http)",
    )
    parser.add_argument(
        "--kind",
        choices=["heart_rate", "blood_oxygen", "fall"],
        help="Reading kind for a single reading (use with --once)",
    )
    parser.add_argument(
        "--value",
        type=float,
        help="Value for a single reading (use with --once)",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=5.0,
        help="Interval between readings in seconds (default: 5)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Send a single reading and exit",
    )
    parser.add_argument("--api-url", default=DEFAULT_API_URL, help="Monitor API base URL")
    parser.add_argument("--topic-prefix", default=DEFAULT_TOPIC_PREFIX, help="Topic prefix")
    parser.add_argument("--device-id", default=DEFAULT_DEVICE_ID, help="Simulated device id")

    args = parser.parse_args()

    if args.once and not args.kind:
        parser.error("--once requires --kind")
    if args.once and args.kind != "fall" and args.value is None:
        parser.error("--once requires --value")

    print("=" * 60)
    print("LifeSignal Wearable Simulator")
    print("=" * 60)

    client = None
    messaging_service = None
    publisher = None

    try:
        if args.transport == "http":
            client = httpx.Client(base_url=args.api_url, timeout=10.0)

            def send(reading):
                return post_reading(client, reading)
        else:
            messaging_service = create_messaging_service()
            publisher = (
                messaging_service.create_direct_message_publisher_builder()
                .on_back_pressure_reject(buffer_capacity=100)
                .build()
            )
            publisher.set_publish_failure_listener(EventPublishFailureListener())
            publisher.start()
            print("[INFO] Publisher started")

            def send(reading):
                event = create_peer_event(reading, args.device_id)
                return publish_event(publisher, event, args.topic_prefix)

        if args.once:
            if args.kind == "fall":
                send(generate_fall())
            else:
                send(create_reading(args.kind, args.value))
        else:
            run_scenario(send, args.scenario, args.interval)

        print("\n[INFO] Simulation complete")

    except KeyboardInterrupt:
        print("\n[INFO] Interrupted by user")
    except Exception as e:
        print(f"\n[ERROR] {e}")
        sys.exit(1)
    finally:
        if client:
            client.close()
        if publisher:
            publisher.terminate()
            print("[INFO] Publisher terminated")
        if messaging_service:
            messaging_service.disconnect()
            print("[INFO] Disconnected from Solace broker")


if __name__ == "__main__":
    main()
