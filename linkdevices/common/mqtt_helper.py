import os, json, logging
import paho.mqtt.client as mqtt
log = logging.getLogger(__name__)
class MqttClient:
    """paho client bound to one namespace; replies for this client arrive on ``response_topic()``."""
    def __init__(self, client_id: str, ns: str | None = None, host: str | None = None, port: int | None = None):
        self.client_id = client_id
        self.ns = ns or os.getenv("MQTT_NAMESPACE", "devlink")
        self.host = host or os.getenv("BROKER_HOST", "localhost")
        self.port = int(port or os.getenv("BROKER_PORT", "1883"))
        self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=client_id, clean_session=True)
        self.client.enable_logger(log)
        self.client.reconnect_delay_set(min_delay=1, max_delay=30)
    @classmethod
    def from_config(cls, cfg: dict) -> "MqttClient":
        return cls(str(cfg.get("client_id") or f"station-{os.getpid()}"),
                   ns=cfg.get("namespace"), host=cfg.get("broker_host"), port=cfg.get("broker_port"))
    def connect(self, keepalive=30):
        log.info("[mqtt] %s connecting to %s:%s", self.client_id, self.host, self.port)
        self.client.connect(self.host, self.port, keepalive=keepalive); self.client.loop_start()
    def disconnect(self):
        self.client.disconnect(); self.client.loop_stop()
    def topic(self, *parts) -> str:
        return "/".join([self.ns, *map(str, parts)])
    def request_topic(self, op: str) -> str:
        return self.topic("core", "links", op)
    def response_topic(self) -> str:
        return self.topic("dev", self.client_id, "res")
    def handlers(self, on_connect=None, on_message=None):
        if on_connect: self.client.on_connect = on_connect
        if on_message: self.client.on_message = on_message
    def publish_json(self, topic: str, payload: dict, qos=1):
        info = self.client.publish(topic, json.dumps(payload, separators=(",", ":")), qos=qos)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            log.warning("[mqtt] publish to %s returned rc=%s", topic, info.rc)
