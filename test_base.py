import os
import json
import shutil
import logging
from types import SimpleNamespace
from events import EventBus
from irrigate import IrrigationSystem

START_TIME = 1700000000.0
BASE_DIR = os.path.dirname(os.path.abspath(__file__))

class FakeClock:
  def __init__(self, start = START_TIME):
    self.now = start

  def __call__(self):
    return self.now

  def advance(self, seconds):
    self.now = self.now + seconds
    return self.now

class ManualTimer:
  def __init__(self, owner, delay, callback):
    self.owner = owner
    self.delay = delay
    self.callback = callback
    self.daemon = False
    self.due = None
    self.cancelled = False

  def start(self):
    self.due = self.owner.clock() + self.delay
    self.owner.pending.append(self)

  def cancel(self):
    self.cancelled = True

class ManualTimers:
  """threading.Timer replacement that only fires when run() is called and the fake clock says so"""

  def __init__(self, clock):
    self.clock = clock
    self.pending = []

  def __call__(self, delay, callback):
    return ManualTimer(self, delay, callback)

  def run(self):
    fired = 0
    while True:
      due = [timer for timer in self.pending if timer.due <= self.clock()]
      if len(due) == 0:
        return fired
      for timer in due:
        self.pending.remove(timer)
        if not timer.cancelled:
          timer.callback()
          fired += 1

  def advance(self, seconds):
    self.clock.advance(seconds)
    return self.run()

class Recorder:
  """Collects every event of the given types published on a bus"""

  def __init__(self, bus, *eventTypes):
    self.events = []
    for eventType in eventTypes:
      bus.subscribe(eventType, self.events.append)

  def of(self, eventType):
    return [event for event in self.events if event.type == eventType]

  def clear(self):
    self.events.clear()

def getLogger():
  logger = logging.getLogger("IrrigationTest")
  logger.setLevel(logging.DEBUG)
  return logger

def makeBus():
  return EventBus(getLogger())

def loadTestConfig():
  with open(os.path.join(BASE_DIR, "test_config.json"), 'r') as f:
    return json.load(f)

def writeConfig(tmp_path, data, withSchema = True):
  filename = os.path.join(str(tmp_path), "config.json")
  with open(filename, 'w') as f:
    json.dump(data, f, indent=2)
  if withSchema:
    shutil.copy(os.path.join(BASE_DIR, "config.schema.json"), os.path.join(str(tmp_path), "config.schema.json"))
  return filename

def init(tmp_path, update = None):
  """Build an IrrigationSystem over a copy of test_config.json driven by a fake clock and manual timers"""
  data = loadTestConfig()
  if update is not None:
    update(data)
  filename = writeConfig(tmp_path, data)
  clock = FakeClock()
  timers = ManualTimers(clock)
  irrigate = IrrigationSystem(filename, clock=clock, timerFactory=timers,
                              historyFile=os.path.join(str(tmp_path), "zone_history.csv"))
  return irrigate, clock, timers

def zoneConfig(id, pins, runtime = 300, enabled = True, name = None):
  return SimpleNamespace(id=id, name=name or id, enabled=enabled, runtime=runtime, relayPins=pins)

def tankConfig(id, trigPin = 23, echoPin = 24, sensorHeight = 2200, minimumLevel = 200, enabled = True):
  return SimpleNamespace(id=id, name=id, enabled=enabled, capacity=1000, sensorHeight=sensorHeight,
                         minimumLevel=minimumLevel, trigPin=trigPin, echoPin=echoPin)

def activePins(irrigate):
  return irrigate.hardware.activePins()
