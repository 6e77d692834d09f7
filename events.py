import threading
from enum import Enum

def startTimer(timerFactory, delay, callback):
  """Run callback once after delay seconds, off the caller's thread"""
  timer = timerFactory(delay, callback)
  timer.daemon = True
  timer.start()
  return timer

class EventType(Enum):
  VALVE_OPENED = "valve_opened"
  VALVE_CLOSED = "valve_closed"
  TANK_LEVEL = "tank_level"
  WATER_LEVEL = "water_level"
  FLOW = "flow"
  LEAK_DETECTED = "leak_detected"
  LEAK_CLEARED = "leak_cleared"
  ZONE_ACTIVE = "zone_active"
  ZONE_INACTIVE = "zone_inactive"
  ZONE_REMAINING = "zone_remaining"
  ZONE_REVERTED = "zone_reverted"
  ZONE_CONFIG = "zone_config"
  POWER = "power"
  PAUSE = "pause"

class Event():
  def __init__(self, type, data = None):
    self.type = type
    self.data = data if data is not None else {}

  def __getitem__(self, key):
    return self.data[key]

  def get(self, key, default = None):
    return self.data.get(key, default)

  def to_dict(self):
    return {"type": self.type.value, **self.data}

  def __repr__(self):
    return "Event(%s, %s)" % (self.type.value, self.data)

class EventBus():
  """Typed publish/subscribe mediator shared by all components.

  Delivery is synchronous on the publishing thread and in subscription order,
  so events of one type reach each subscriber in publish order. A failing
  subscriber is logged and skipped.
  """

  def __init__(self, logger):
    self.logger = logger
    self._lock = threading.RLock()
    self._subscribers = {}

  def subscribe(self, eventType, callback):
    with self._lock:
      self._subscribers.setdefault(eventType, []).append(callback)

  def unsubscribe(self, eventType, callback):
    with self._lock:
      callbacks = self._subscribers.get(eventType, [])
      if callback in callbacks:
        callbacks.remove(callback)

  def subscriberCount(self, eventType):
    with self._lock:
      return len(self._subscribers.get(eventType, []))

  def publish(self, eventType, **data):
    event = Event(eventType, data)
    with self._lock:
      callbacks = list(self._subscribers.get(eventType, []))
    for callback in callbacks:
      try:
        callback(event)
      except Exception as ex:
        self.logger.error("Event subscriber for '%s' failed: %s" % (eventType.value, format(ex)))
    return event
