import time
import threading
from paho.mqtt import client
from model import ActivationRequest
from events import EventType

class Mqtt:
  def __init__(self, irrigate):
    self.logger = irrigate.logger
    self.cfg = irrigate.cfg
    self.irrigate = irrigate
    self.mqttClient = None
    self.mqttStarted = False
    self._lastFlowRate = None

    bus = irrigate.bus
    bus.subscribe(EventType.ZONE_ACTIVE, self.onZoneActive)
    bus.subscribe(EventType.ZONE_INACTIVE, self.onZoneInactive)
    bus.subscribe(EventType.ZONE_REMAINING, self.onZoneRemaining)
    bus.subscribe(EventType.ZONE_REVERTED, self.onZoneReverted)
    bus.subscribe(EventType.ZONE_CONFIG, self.onZoneConfig)
    bus.subscribe(EventType.VALVE_OPENED, self.onValve)
    bus.subscribe(EventType.VALVE_CLOSED, self.onValve)
    bus.subscribe(EventType.TANK_LEVEL, self.onTankLevel)
    bus.subscribe(EventType.WATER_LEVEL, self.onWaterLevel)
    bus.subscribe(EventType.FLOW, self.onFlow)
    bus.subscribe(EventType.LEAK_DETECTED, self.onLeak)
    bus.subscribe(EventType.LEAK_CLEARED, self.onLeak)
    bus.subscribe(EventType.POWER, self.onPower)
    bus.subscribe(EventType.PAUSE, self.onPause)

  def start(self):
    self.logger.info("Connecting to MQTT service '%s'..." % self.cfg.mqttHostName)
    try:
      self.mqttClient = self.getMyMqtt()
      self.mqttClient.on_message = self.on_message

      worker = threading.Thread(target=self.mqttLooper, args=())
      worker.daemon = True
      worker.name = "MqttTh"
      worker.start()
      while not self.mqttClient.is_connected():
        self.logger.info("Waiting for MQTT connection...")
        time.sleep(1)
      self.mqttStarted = True

      self.logger.info("MQTT connected: %s" % self.mqttClient.is_connected())
      self.publishAll()
    except Exception as ex:
      self.logger.error("Error starting MQTT: %s" % format(ex))

  def registerTopics(self):
    topicPrefix = str(self.cfg.mqttClientName) + "/"
    for topic in ("zone/+/+/command", "system/+/command", "switch/command"):
      topicStr = topicPrefix + topic
      self.mqttClient.subscribe(topicStr)
      self.logger.info("Topic '%s' registered." % topicStr)

  def getMyMqtt(self):
    mqttClient = client.Client(client.CallbackAPIVersion.VERSION1, self.cfg.mqttClientName)
    mqttClient.user_data_set(self)
    mqttClient.on_connect = self.on_connect
    mqttClient.on_disconnect = self.on_disconnect
    mqttClient.connect(self.cfg.mqttHostName)
    return mqttClient

  def mqttLooper(self):
    self.logger.info("MQTT thread started...")
    while not self.irrigate.terminated:
      try:
        self.mqttClient.loop_forever(retry_first_connection=True)
        # If we reach here, loop exited
        if self.irrigate.terminated:
          break
        self.logger.warning("MQTT loop exited, reconnecting...")
        time.sleep(5)
      except Exception as ex:
        self.logger.error("MQTT loop exception: %s. Reconnecting..." % format(ex))
        if self.irrigate.terminated:
          break
        time.sleep(5)
    self.logger.info("MQTT thread terminated")

  def on_connect(self, client, userdata, flags, rc):
    if rc == 0:
      self.logger.info("Connected to MQTT Broker.")
      # Re-subscribe on every connect/reconnect
      self.registerTopics()
      self.mqttStarted = True
    else:
      self.logger.error("Failed to connect, return code %d\n" % (rc))

  def on_disconnect(self, client, userdata, rc):
    self.mqttStarted = False
    if rc != 0:
      self.logger.warning("MQTT connection lost unexpectedly (code: %d). Will attempt reconnection." % rc)
    else:
      self.logger.info("MQTT disconnected gracefully.")

  def shutdown(self):
    """Gracefully shutdown MQTT connection"""
    if self.mqttClient:
      try:
        self.logger.info("Shutting down MQTT connection...")
        self.mqttClient.disconnect()
        self.mqttStarted = False
      except Exception as ex:
        self.logger.error("Error during MQTT shutdown: %s" % format(ex))

  def on_message(self, client, userdata, msg):
    self.logger.info("Received message: " + str(msg.topic))
    self.processMessages(msg.topic, msg.payload)

  def publish(self, topic, payload):
    topicPrefix = str(self.cfg.mqttClientName)
    if not topic.startswith("/"):
      topicPrefix = topicPrefix + "/raspi/"

    full_topic = topicPrefix + topic

    if not self.mqttStarted:
      self.logger.debug("MQTT not connected. Message for topic '%s' not published." % full_topic)
      return False

    try:
      result = self.mqttClient.publish(full_topic, payload)
      if result.rc != 0:
        self.logger.warning("MQTT publish failed for topic '%s' with return code %d" % (full_topic, result.rc))
        return False

      self.logger.debug("MQTT message published for topic '%s' payload '%s'." % (full_topic, payload))
      return True

    except Exception as ex:
      self.logger.error("MQTT publish exception for topic '%s': %s" % (full_topic, format(ex)))
      return False

  def publishAll(self):
    snapshot = self.irrigate.snapshot()
    self.publish("/svc/power", int(snapshot["system"]["power"]))
    self.publish("/svc/pause", snapshot["system"]["pause_timeout"])
    for zone in snapshot["zones"]:
      prefix = "zone/" + zone["id"] + "/"
      self.publish(prefix + "status", "active" if zone["active"] else "inactive")
      self.publish(prefix + "name", zone["name"])
      self.publish(prefix + "enabled", int(zone["enabled"]))
      self.publish(prefix + "runtime", zone["runtime"])
      self.publish(prefix + "remaining", zone["remaining"])
    if snapshot["tanks"]["percentage"] is not None:
      self.publish("/svc/waterlevel", round(snapshot["tanks"]["percentage"]))

  def processMessages(self, topic, payload):
    self.logger.debug("MQTT message received for topic '%s' payload '%s'." % (topic, payload))
    try:
      if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8")
      topicParts = topic.split("/")[1:]

      if topicParts[0] == "zone" and len(topicParts) == 4:
        zoneId = topicParts[1]
        if self.irrigate.zones.getZone(zoneId) is None:
          raise Exception(f"Zone '{zoneId}' does not exist in configuration. Ignoring message.")

        if topicParts[2] == "active":
          return self.irrigate.request(ActivationRequest.ZONE, self.parseFlag(payload), zoneId)
        if topicParts[2] == "name":
          return self.irrigate.renameZone(zoneId, str(payload))
        if topicParts[2] == "enabled":
          return self.irrigate.setZoneEnabled(zoneId, self.parseFlag(payload))
        if topicParts[2] == "runtime":
          return self.irrigate.setZoneRuntime(zoneId, float(payload))

      elif topicParts[0] == "system" and len(topicParts) == 3:
        if topicParts[1] == "active":
          return self.irrigate.request(ActivationRequest.SYSTEM, self.parseFlag(payload))
        if topicParts[1] == "pause":
          return self.irrigate.setPause(int(float(payload)))
        if topicParts[1] == "pausedays":
          return self.irrigate.power.pauseForDays(int(payload))

      elif topicParts[0] == "switch" and len(topicParts) == 2:
        if not self.cfg.powerSwitch:
          raise Exception("Power switch is not enabled in configuration. Ignoring message.")
        return self.irrigate.request(ActivationRequest.SWITCH, self.parseFlag(payload))

      self.logger.warning("Invalid topic or payload received for topic %s = '%s'" % (topic, payload))
    except Exception as ex:
      self.logger.error("Error parsing payload received for topic %s = '%s'. Error message: '%s'" % (topic, payload, format(ex)))
    return False

  def parseFlag(self, payload):
    value = int(payload)
    if value not in (0, 1):
      raise ValueError("Expected 0 or 1 but got %s" % value)
    return value == 1

  def onZoneActive(self, event):
    self.publish("zone/" + event["zone_id"] + "/status", "active")

  def onZoneInactive(self, event):
    prefix = "zone/" + event["zone_id"] + "/"
    self.publish(prefix + "status", "inactive")
    self.publish(prefix + "liters", round(event["water"], 2))
    self.publish(prefix + "seconds", round(event["duration"]))

  def onZoneRemaining(self, event):
    self.publish("zone/" + event["zone_id"] + "/remaining", event["remaining"])

  def onZoneReverted(self, event):
    self.publish("zone/" + event["zone_id"] + "/status", "inactive")

  def onZoneConfig(self, event):
    prefix = "zone/" + event["zone_id"] + "/"
    self.publish(prefix + "name", event["name"])
    self.publish(prefix + "enabled", int(event["enabled"]))
    self.publish(prefix + "runtime", event["runtime"])

  def onValve(self, event):
    self.publish("valve/%s/status" % event["pin"], "open" if event.type == EventType.VALVE_OPENED else "closed")

  def onTankLevel(self, event):
    prefix = "tank/" + event["id"] + "/"
    self.publish(prefix + "level", round(event["waterlevel"]))
    self.publish(prefix + "percentage", round(event["percentage"]))

  def onWaterLevel(self, event):
    self.publish("/svc/waterlevel", round(event["percentage"]))

  def onFlow(self, event):
    # Sampled every second; only changes are worth sending
    rate = round(event["rate"], 1)
    if rate != self._lastFlowRate:
      self._lastFlowRate = rate
      self.publish("flow/rate", rate)

  def onLeak(self, event):
    self.publish("/svc/leak", 1 if event.type == EventType.LEAK_DETECTED else 0)

  def onPower(self, event):
    self.publish("/svc/power", int(event["power"]))

  def onPause(self, event):
    self.publish("/svc/pause", event["pause_timeout"])
