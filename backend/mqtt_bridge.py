# ==============================================================================
# == backend/mqtt_bridge.py - MQTT receiver packets into the ingestion core  ==
# ==============================================================================

import asyncio
import logging
from typing import Optional

import paho.mqtt.client as mqtt

from firewatch.config import settings
from firewatch.errors import FireWatchError
from firewatch.service import FireWatchService

from processors.packet_processor import PacketEngine

logger = logging.getLogger(__name__)


def topic_receiver_mac(topic: str, pattern: str) -> Optional[str]:
    """The segment matched by '+' in the subscription pattern is the receiver MAC."""
    parts, wanted = topic.split("/"), pattern.split("/")
    if len(parts) != len(wanted):
        return None
    for part, want in zip(parts, wanted):
        if want == "+":
            return part or None
    return None


class MQTTBridge:
    def __init__(self, service: FireWatchService, topic: str = settings.MQTT_TOPIC):
        logger.info(f"🛠️ Receiver bridge for {topic}")

        self.service = service
        self.topic = topic
        self.engine = PacketEngine()

        self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
        if settings.MQTT_USER:
            self.client.username_pw_set(settings.MQTT_USER, settings.MQTT_PASSWORD)

        self.client.on_connect = self.on_connect
        self.client.on_message = self.on_message
        self.client.on_disconnect = self.on_disconnect

        self.loop = None

    def on_connect(self, client, userdata, flags, rc, properties=None):
        if rc == 0:
            logger.info(f"✅ Broker {settings.MQTT_BROKER}:{settings.MQTT_PORT} accepted connection")
            client.subscribe(self.topic)
            logger.info(f"   ✓ Subscribed: {self.topic}")
        else:
            logger.error(f"❌ MQTT Connection failed: rc={rc}")

    def on_disconnect(self, client, userdata, flags, rc, properties=None):
        if rc != 0:
            logger.warning(f"⚠️ Unexpected MQTT disconnect: rc={rc}. Reconnecting...")

    def on_message(self, client, userdata, msg):
        """Runs on the paho network thread; hands the packet to the FastAPI loop."""
        try:
            try:
                payload_str = msg.payload.decode("utf-8")
            except UnicodeDecodeError:
                logger.warning(f"⚠️ Ignored binary payload on {msg.topic}")
                return

            if self.loop and self.loop.is_running():
                asyncio.run_coroutine_threadsafe(
                    self.process_pipeline(msg.topic, payload_str),
                    self.loop
                )
        except Exception as e:
            logger.error(f"Error in on_message: {e}")

    def start(self):
        """Called from the FastAPI lifespan."""
        logger.info("🚀 Attaching receiver bridge to the running loop")

        try:
            self.loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.error("❌ No running event loop found! Bridge cannot start.")
            return

        try:
            self.client.connect(settings.MQTT_BROKER, settings.MQTT_PORT, 60)
            self.client.loop_start()
            logger.info("✅ MQTT Bridge started successfully.")
        except Exception as e:
            logger.error(f"❌ Failed to start MQTT Bridge: {e}")

    def stop(self):
        logger.info("🛑 Stopping MQTT Bridge...")
        self.client.loop_stop()
        self.client.disconnect()

    async def process_pipeline(self, topic: str, raw_payload: str):
        event = self.engine.process(raw_payload, topic_receiver_mac(topic, self.topic))
        if event is None:
            return None

        try:
            return await self.service.ingest(event)
        except FireWatchError as e:
            # Already audited by the core; the packet is not retried
            logger.warning(f"⚠️ Packet on {topic} not ingested ({type(e).__name__}): {e.message}")
        except Exception as e:
            logger.error(f"❌ Processing error on {topic}: {e}", exc_info=True)
        return None


async def run_standalone():
    """Bridge without the HTTP API, e.g. on a gateway box next to the broker."""
    from firewatch.database import dispose_engines, get_config_engine, get_data_engine, init_models
    from firewatch.service import create_service

    if settings.STORAGE_BACKEND == "sql":
        await init_models(get_config_engine(), get_data_engine())
    service = create_service()
    await service.start()

    bridge = MQTTBridge(service)
    bridge.start()
    try:
        await asyncio.Event().wait()
    finally:
        bridge.stop()
        await dispose_engines()


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - BRIDGE - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler('mqtt_bridge.log', encoding='utf-8'),
            logging.StreamHandler()
        ]
    )
    asyncio.run(run_standalone())
