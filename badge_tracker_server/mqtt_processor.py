from __future__ import annotations

import logging
from typing import Optional

import paho.mqtt.client as mqtt
from paho.mqtt.client import MQTTMessage

from .config_manager import ConfigManager
from .coordinator import IngestionCoordinator
from .publisher import ROLE_WEB, SubscriberClosed


logger = logging.getLogger(__name__)


class MqttPositionSink:
    """把位置推送转发到 MQTT 上行主题的订阅者"""

    def __init__(self, client: mqtt.Client, topic: str):
        self.client = client
        self.topic = topic
        self.closed = False

    def send(self, message: str) -> None:
        if self.closed:
            raise SubscriberClosed(self.topic)
        info = self.client.publish(self.topic, message)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            # 断线期间由 paho 重连，不注销
            logger.warning("MQTT发布失败 (%s): rc=%s", self.topic, info.rc)


class MQTTDataProcessor:
    def __init__(
        self,
        config_manager: ConfigManager,
        coordinator: Optional[IngestionCoordinator] = None,
        client: Optional[mqtt.Client] = None,
    ):
        self.config_manager = config_manager
        self.coordinator = coordinator or IngestionCoordinator.from_config(config_manager)
        self.client = client or mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
        self.client.on_connect = self.on_connect
        self.client.on_message = self.on_message

        mqtt_config = self.config_manager.get_mqtt_config()
        self.sink = MqttPositionSink(self.client, mqtt_config["uplink_topic"])

    # ---------- MQTT ----------
    def start_mqtt_client(self):
        try:
            mqtt_config = self.config_manager.get_mqtt_config()
            self.client.connect(mqtt_config["ip"], int(mqtt_config["port"]), 60)
            logger.info("连接到MQTT服务器 %s:%s", mqtt_config["ip"], mqtt_config["port"])
            self.client.loop_forever()
        except OSError as e:
            logger.error("MQTT连接错误: %s", e)

    def stop_mqtt_client(self):
        self.sink.closed = True
        self.coordinator.publisher.unregister(self.sink)
        try:
            self.client.disconnect()
            self.client.loop_stop()
            logger.info("MQTT连接已断开")
        except OSError as e:
            logger.error("断开MQTT连接时出错: %s", e)

    # ---------- MQTT handlers ----------
    def on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code == 0:
            logger.info("成功连接到MQTT服务器")
            topic = self.config_manager.get_mqtt_config().get("downlink_topic", "/device/anchor/+/rssi")
            client.subscribe(topic)
            logger.info("已订阅主题: %s", topic)
            # 每次(重新)连接都推送一次完整快照
            self.sink.closed = False
            self.coordinator.register(self.sink, ROLE_WEB)
        else:
            logger.error("连接失败，返回码: %s", reason_code)

    def on_message(self, client, userdata, msg: MQTTMessage):
        try:
            self.coordinator.handle_message(msg.payload)
        except Exception as e:
            # 网络回调线程不能因单条消息退出
            logger.exception("处理消息时出错 (%s): %s", msg.topic, e)
