import threading
import json
from events import EventType
from test_base import init
from test_base import Recorder
from test_base import activePins

def test_initAllIdle(tmp_path):
  irrigate, clock, timers = init(tmp_path)
  assert irrigate.power.isPowered()
  assert irrigate.zones.numberRunningZones() == 0
  assert irrigate.zones.numberEnabledZones() == 4
  assert activePins(irrigate) == []
  assert len(irrigate.allValves()) == 7
  assert irrigate.waterflow is not None
  assert irrigate.leak is not None

def test_everyXSeconds(tmp_path):
  irrigate, clock, timers = init(tmp_path)
  test1 = 0
  test2 = 0
  for i in range(13):
    if irrigate.everyXSeconds("test1", 3, False):
      test1 += 1
    if irrigate.everyXSeconds("test2", 12, True):
      test2 += 1
    clock.advance(1)
  assert test1 == 4
  assert test2 == 2

def test_leakDetectedAfterValveCloses(tmp_path):
  irrigate, clock, timers = init(tmp_path)
  recorder = Recorder(irrigate.bus, EventType.LEAK_DETECTED, EventType.LEAK_CLEARED)
  irrigate.waterflow.start(irrigate.hardware)
  irrigate.activateZone("front")
  for i in range(20):
    irrigate.hardware.pulse(17, 30)
    clock.advance(1)
    irrigate.tick()
  irrigate.deactivateZone("front")

  # Water keeps running with every valve closed
  for i in range(10):
    irrigate.hardware.pulse(17, 10)
    clock.advance(1)
    irrigate.tick()
  assert recorder.events == []
  for i in range(2):
    irrigate.hardware.pulse(17, 10)
    clock.advance(1)
    irrigate.tick()
  assert irrigate.leak.leakDetected
  assert len(recorder.of(EventType.LEAK_DETECTED)) == 1

  for i in range(31):
    clock.advance(1)
    irrigate.tick()
  assert not irrigate.leak.leakDetected
  assert len(recorder.of(EventType.LEAK_CLEARED)) == 1

def test_leakAlertRaised(tmp_path):
  irrigate, clock, timers = init(tmp_path)
  irrigate.waterflow.start(irrigate.hardware)
  for i in range(3):
    irrigate.hardware.pulse(17, 10)
    clock.advance(1)
    irrigate.tick()
  assert [alert.type.value for alert in irrigate.alerts.history] == ["leak"]

def test_tankRefreshOnTimer(tmp_path):
  irrigate, clock, timers = init(tmp_path)
  calls = []
  irrigate.tanks.refresh = lambda: calls.append(clock())
  irrigate.tick()
  for i in range(120):
    clock.advance(1)
    irrigate.tick()
  assert len(calls) == 2

def test_zoneConfigPersisted(tmp_path):
  irrigate, clock, timers = init(tmp_path)
  irrigate.renameZone("back", "Orchard")
  irrigate.setZoneRuntime("back", 900)
  irrigate.setZoneEnabled("spare", True)
  with open(irrigate.cfg.filename, 'r') as f:
    saved = json.load(f)
  zones = {zone["id"]: zone for zone in saved["zones"]}
  assert zones["back"]["name"] == "Orchard"
  assert zones["back"]["runtime"] == 900
  assert zones["spare"]["enabled"] is True
  assert zones["garden"]["relay_pin"] == [6, 13, 19]

def test_startAndShutdown(tmp_path):
  irrigate, clock, timers = init(tmp_path)
  irrigate.start()
  assert irrigate.timer.is_alive()
  assert irrigate.waterflow.started
  irrigate.activateZone("front")
  irrigate.shutdown()
  assert not irrigate.timer.is_alive()
  assert activePins(irrigate) == []

def test_snapshot(tmp_path):
  irrigate, clock, timers = init(tmp_path)
  snapshot = irrigate.snapshot()
  assert snapshot["system"]["power"]
  assert snapshot["system"]["pause_timeout"] == 0
  assert snapshot["system"]["max_running_zones"] == 1
  assert [zone["id"] for zone in snapshot["zones"]] == ["front", "garden", "back", "spare", "unwired"]
  assert [tank["id"] for tank in snapshot["tanks"]["tanks"]] == ["tank1", "tank2"]
  assert snapshot["waterflow"]["enabled"]

def test_slowAlertChannelDoesNotStallTick(tmp_path):
  irrigate, clock, timers = init(tmp_path)
  started = threading.Event()
  release = threading.Event()

  class SlowChannel:
    def send(self, alert):
      started.set()
      release.wait(10)
      return True

  irrigate.alerts.channels.append(SlowChannel())
  irrigate.waterflow.start(irrigate.hardware)
  irrigate.hardware.pulse(17, 10)
  clock.advance(1)
  irrigate.tick()
  assert irrigate.leak.leakDetected
  assert started.wait(5)
  # Delivery is still in progress after the tick returned
  assert not irrigate.alerts.wait(0.1)

  # Zones keep counting down while the alert is still being delivered
  irrigate.activateZone("back")
  clock.advance(600)
  irrigate.tick()
  assert not irrigate.zones.getZone("back").isActive()
  release.set()
  assert irrigate.alerts.wait(5)
