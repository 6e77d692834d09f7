from events import EventType
from gpio import TestHardware
from valves import Valve
from test_base import makeBus
from test_base import getLogger
from test_base import FakeClock
from test_base import Recorder

def makeValve(pin = 5):
  bus = makeBus()
  clock = FakeClock()
  hardware = TestHardware(getLogger())
  valve = Valve(getLogger(), bus, hardware, "Test zone", pin, clock)
  recorder = Recorder(bus, EventType.VALVE_OPENED, EventType.VALVE_CLOSED)
  return valve, bus, clock, hardware, recorder

def test_openAndClose():
  valve, bus, clock, hardware, recorder = makeValve()
  assert not valve.isOpen()
  valve.open()
  assert valve.isOpen()
  assert hardware.isActive(5)
  opened = recorder.of(EventType.VALVE_OPENED)[0]
  assert opened["id"] == valve.id
  assert opened["time"] == clock()

  clock.advance(42)
  valve.close()
  assert not valve.isOpen()
  assert not hardware.isActive(5)
  closed = recorder.of(EventType.VALVE_CLOSED)[0]
  assert closed["duration"] == 42
  assert closed["water"] == 0

def test_flowAttributedOnlyWhileOpen():
  valve, bus, clock, hardware, recorder = makeValve()
  bus.publish(EventType.FLOW, time=clock(), rate=6, volume=0.1)
  valve.open()
  bus.publish(EventType.FLOW, time=clock(), rate=6, volume=0.1)
  bus.publish(EventType.FLOW, time=clock(), rate=12, volume=0.2)
  assert abs(valve.getWaterUsage() - 0.3) < 1e-9
  valve.close()
  assert abs(recorder.of(EventType.VALVE_CLOSED)[0]["water"] - 0.3) < 1e-9
  assert valve.getWaterUsage() == 0
  bus.publish(EventType.FLOW, time=clock(), rate=6, volume=0.1)
  assert valve.getWaterUsage() == 0
  assert bus.subscriberCount(EventType.FLOW) == 0

def test_reopenResetsVolume():
  valve, bus, clock, hardware, recorder = makeValve()
  valve.open()
  bus.publish(EventType.FLOW, time=clock(), rate=6, volume=0.1)
  valve.open()
  assert valve.getWaterUsage() == 0
  assert bus.subscriberCount(EventType.FLOW) == 1

def test_closeNeverOpenedHasZeroDuration():
  valve, bus, clock, hardware, recorder = makeValve()
  valve.close()
  closed = recorder.of(EventType.VALVE_CLOSED)[0]
  assert closed["duration"] == 0
  assert closed["water"] == 0

def test_noRelayIsSilentNoop():
  valve, bus, clock, hardware, recorder = makeValve(pin=None)
  valve.open()
  assert not valve.isOpen()
  valve.close()
  assert recorder.events == []
  assert hardware.history == []
