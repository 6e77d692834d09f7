from events import EventType
from model import ActivationRequest
from test_base import init
from test_base import Recorder
from test_base import activePins

ENABLED_ZONES = ["front", "garden", "back", "unwired"]

def test_systemCommandSuppressesZoneRequests(tmp_path):
  irrigate, clock, timers = init(tmp_path)
  irrigate.setPower(False)
  recorder = Recorder(irrigate.bus, EventType.POWER, EventType.ZONE_ACTIVE, EventType.ZONE_REVERTED)

  assert irrigate.request(ActivationRequest.SYSTEM, True)
  for zoneId in ENABLED_ZONES:
    irrigate.request(ActivationRequest.ZONE, True, zoneId)
  assert irrigate.debouncer.pending() == 5
  assert recorder.events == []

  timers.advance(0.5)
  assert irrigate.debouncer.pending() == 0
  assert irrigate.power.isPowered()
  assert len(recorder.of(EventType.POWER)) == 1
  assert recorder.of(EventType.ZONE_ACTIVE) == []
  assert activePins(irrigate) == []

  # Suppressed zones settle back to inactive a little later
  timers.advance(0.5)
  assert sorted(event["zone_id"] for event in recorder.of(EventType.ZONE_REVERTED)) == sorted(ENABLED_ZONES)

def test_singleZoneRequestDoesNotTouchPower(tmp_path):
  irrigate, clock, timers = init(tmp_path)
  recorder = Recorder(irrigate.bus, EventType.POWER)
  irrigate.request(ActivationRequest.ZONE, True, "front")
  timers.advance(0.5)
  assert irrigate.zones.getZone("front").isActive()
  assert recorder.events == []
  assert irrigate.power.isPowered()

def test_zoneWithSystemWhileOffDoesNotPowerOn(tmp_path):
  irrigate, clock, timers = init(tmp_path)
  irrigate.setPower(False)
  recorder = Recorder(irrigate.bus, EventType.POWER, EventType.ZONE_REVERTED)
  irrigate.request(ActivationRequest.ZONE, True, "front")
  irrigate.request(ActivationRequest.SYSTEM, True)
  timers.advance(0.5)
  assert not irrigate.power.isPowered()
  assert recorder.of(EventType.POWER) == []
  assert not irrigate.zones.getZone("front").isActive()
  timers.advance(0.5)
  assert [event["zone_id"] for event in recorder.of(EventType.ZONE_REVERTED)] == ["front"]

def test_systemOffCommandStopsRunningZone(tmp_path):
  irrigate, clock, timers = init(tmp_path)
  irrigate.activateZone("back")
  irrigate.request(ActivationRequest.SYSTEM, False)
  for zoneId in ENABLED_ZONES:
    irrigate.request(ActivationRequest.ZONE, False, zoneId)
  timers.advance(0.5)
  assert not irrigate.power.isPowered()
  assert not irrigate.zones.getZone("back").isActive()
  assert activePins(irrigate) == []

def test_partialZoneBurstExecutesInOrder(tmp_path):
  irrigate, clock, timers = init(tmp_path)
  recorder = Recorder(irrigate.bus, EventType.ZONE_ACTIVE)
  irrigate.request(ActivationRequest.ZONE, True, "front")
  irrigate.request(ActivationRequest.ZONE, True, "back")
  timers.advance(0.5)
  # Single zone policy leaves the last request running
  assert [event["zone_id"] for event in recorder.of(EventType.ZONE_ACTIVE)] == ["front", "back"]
  assert irrigate.zones.getZone("back").isActive()
  assert not irrigate.zones.getZone("front").isActive()

def test_windowStartsWithFirstRequest(tmp_path):
  irrigate, clock, timers = init(tmp_path)
  irrigate.request(ActivationRequest.ZONE, True, "front")
  timers.advance(0.25)
  irrigate.request(ActivationRequest.ZONE, False, "front")
  timers.advance(0.25)
  assert irrigate.debouncer.pending() == 0
  assert not irrigate.zones.getZone("front").isActive()
  irrigate.request(ActivationRequest.ZONE, True, "front")
  assert irrigate.debouncer.pending() == 1
  timers.advance(0.5)
  assert irrigate.zones.getZone("front").isActive()

def test_switchRequestPowersSystem(tmp_path):
  irrigate, clock, timers = init(tmp_path)
  irrigate.setPower(False)
  irrigate.request(ActivationRequest.SWITCH, True)
  timers.advance(0.5)
  assert irrigate.power.isPowered()

def test_unknownRequestTypeIgnored(tmp_path):
  irrigate, clock, timers = init(tmp_path)
  assert not irrigate.request("valve", True, "front")
  assert irrigate.debouncer.pending() == 0
