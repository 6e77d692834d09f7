from unittest.mock import MagicMock
from test_base import init
from test_base import activePins

def connect(irrigate):
  irrigate.mqtt.mqttClient = MagicMock()
  irrigate.mqtt.mqttClient.publish.return_value.rc = 0
  irrigate.mqtt.mqttStarted = True
  return irrigate.mqtt.mqttClient

def published(mqttClient):
  return [(call.args[0], call.args[1]) for call in mqttClient.publish.call_args_list]

def test_mqttZoneActivation(tmp_path):
  irrigate, clock, timers = init(tmp_path)
  irrigate.mqtt.processMessages("xxx/zone/front/active/command", b"1")
  assert irrigate.debouncer.pending() == 1
  timers.advance(0.5)
  assert activePins(irrigate) == [5]
  irrigate.mqtt.processMessages("xxx/zone/front/active/command", b"0")
  timers.advance(0.5)
  assert activePins(irrigate) == []

def test_mqttZoneSettings(tmp_path):
  irrigate, clock, timers = init(tmp_path)
  zone = irrigate.zones.getZone("back")
  assert irrigate.mqtt.processMessages("xxx/zone/back/name/command", b"Orchard")
  assert irrigate.mqtt.processMessages("xxx/zone/back/runtime/command", b"90")
  assert irrigate.mqtt.processMessages("xxx/zone/back/enabled/command", b"0")
  assert zone.name == "Orchard"
  assert zone.runtime == 90
  assert not zone.enabled

def test_mqttInvalidPayloads(tmp_path):
  irrigate, clock, timers = init(tmp_path)
  zone = irrigate.zones.getZone("back")
  assert not irrigate.mqtt.processMessages("xxx/zone/back/enabled/command", b"5")
  assert not irrigate.mqtt.processMessages("xxx/zone/back/runtime/command", b"soon")
  assert not irrigate.mqtt.processMessages("xxx/zone/back/runtime/command", b"nan")
  assert not irrigate.mqtt.processMessages("xxx/zone/back/runtime/command", b"inf")
  assert not irrigate.mqtt.processMessages("xxx/zone/nothere/active/command", b"1")
  assert not irrigate.mqtt.processMessages("xxx/zone/back/colour/command", b"1")
  assert not irrigate.mqtt.processMessages("xxx/queue/back/command", b"1")
  assert zone.enabled
  assert zone.runtime == 600
  assert irrigate.debouncer.pending() == 0

def test_mqttSystemCommands(tmp_path):
  irrigate, clock, timers = init(tmp_path)
  irrigate.mqtt.processMessages("xxx/system/active/command", b"0")
  timers.advance(0.5)
  assert not irrigate.power.isPowered()
  irrigate.mqtt.processMessages("xxx/switch/command", b"1")
  timers.advance(0.5)
  assert irrigate.power.isPowered()
  until = int(clock()) + 3600
  assert irrigate.mqtt.processMessages("xxx/system/pause/command", str(until).encode())
  assert irrigate.power.pauseTimeout == until
  assert irrigate.mqtt.processMessages("xxx/system/pausedays/command", b"1")
  assert irrigate.power.pauseTimeout > until

def test_mqttSwitchNeedsOption(tmp_path):
  irrigate, clock, timers = init(tmp_path, lambda data: data["options"].update(power_switch=False))
  assert not irrigate.mqtt.processMessages("xxx/switch/command", b"0")
  assert irrigate.debouncer.pending() == 0

def test_mqttPublishesZoneState(tmp_path):
  irrigate, clock, timers = init(tmp_path)
  mqttClient = connect(irrigate)
  irrigate.activateZone("front")
  clock.advance(300)
  irrigate.zones.tick()
  messages = published(mqttClient)
  assert ("xxx/raspi/zone/front/status", "active") in messages
  assert ("xxx/raspi/zone/front/remaining", 300) in messages
  assert ("xxx/raspi/valve/5/status", "open") in messages
  assert ("xxx/raspi/valve/5/status", "closed") in messages
  assert ("xxx/raspi/zone/front/status", "inactive") in messages
  assert ("xxx/raspi/zone/front/seconds", 300) in messages

def test_mqttPublishesSystemState(tmp_path):
  irrigate, clock, timers = init(tmp_path)
  mqttClient = connect(irrigate)
  irrigate.setPower(False)
  irrigate.setZoneRuntime("front", 120)
  messages = published(mqttClient)
  assert ("xxx/svc/power", 0) in messages
  assert ("xxx/raspi/zone/front/runtime", 120) in messages

def test_mqttNotConnectedDoesNotPublish(tmp_path):
  irrigate, clock, timers = init(tmp_path)
  assert not irrigate.mqtt.publish("zone/front/status", "active")
