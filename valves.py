import time
import uuid
import threading
from events import EventType

class Valve():
  def __init__(self, logger, bus, hardware, zoneName, pin, clock = time.time):
    self.logger = logger
    self.bus = bus
    self.hardware = hardware
    self.zoneName = zoneName
    self.pin = pin
    self.clock = clock
    self.id = str(uuid.uuid4())
    self.openedTime = None
    self.waterAmount = 0
    self._lock = threading.Lock()

    if self.pin is None:
      self.logger.warning("No relay pin specified for irrigation zone valve '%s'." % zoneName)
    elif self.hardware is not None:
      self.logger.debug("Setting up irrigation zone valve '%s' using relay pin %s." % (zoneName, pin))
      self.hardware.setupRelay(self.pin)

  def open(self):
    if self.pin is None:
      return

    self.logger.debug("Opening irrigation valve on relay pin %s." % self.pin)
    if self.hardware is not None:
      self.hardware.openRelay(self.pin)

    with self._lock:
      self.openedTime = self.clock()
      self.waterAmount = 0
    self.bus.unsubscribe(EventType.FLOW, self.onFlow)
    self.bus.subscribe(EventType.FLOW, self.onFlow)
    self.bus.publish(EventType.VALVE_OPENED, id=self.id, pin=self.pin, time=self.openedTime)

  def close(self):
    if self.pin is None:
      return

    if self.hardware is not None:
      self.hardware.closeRelay(self.pin)

    self.bus.unsubscribe(EventType.FLOW, self.onFlow)
    now = self.clock()
    with self._lock:
      duration = now - self.openedTime if self.openedTime is not None else 0
      water = self.waterAmount
      self.waterAmount = 0
      self.openedTime = None

    self.bus.publish(EventType.VALVE_CLOSED, id=self.id, pin=self.pin, time=now, water=water, duration=duration)
    self.logger.debug("Closed irrigation valve on relay pin %s. Recorded %.3fL over %s seconds." % (self.pin, water, round(duration)))

  def isOpen(self):
    return self.openedTime is not None

  def getWaterUsage(self):
    return self.waterAmount

  def onFlow(self, event):
    volume = event.get("volume")
    if volume is None:
      return
    with self._lock:
      if self.openedTime is not None:
        self.waterAmount = self.waterAmount + volume

  def snapshot(self):
    return {
      "id": self.id,
      "pin": self.pin,
      "is_open": self.isOpen(),
      "water": round(self.waterAmount, 3),
    }
