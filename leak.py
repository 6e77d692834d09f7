import time
import threading
from collections import deque
from events import EventType

FLOW_WINDOW = 30  # Seconds of water flow samples kept to determine a constant leak
LEAK_SETTLE_TIME = 10  # Seconds after a valve closes before flow is attributed to a leak
LEAK_THRESHOLD = 80  # Percentage of non-zero samples in the window that indicates a leak

class LeakDetector():
  def __init__(self, logger, bus, clock = time.time, window = FLOW_WINDOW, settleTime = LEAK_SETTLE_TIME, threshold = LEAK_THRESHOLD):
    self.logger = logger
    self.bus = bus
    self.clock = clock
    self.window = window
    self.settleTime = settleTime
    self.threshold = threshold
    self.leakDetected = False
    self.lastValveClose = 0
    self.flowData = deque()
    self._runningZones = set()
    self._lock = threading.Lock()

    bus.subscribe(EventType.FLOW, self.onFlow)
    bus.subscribe(EventType.VALVE_CLOSED, self.onValveClosed)
    bus.subscribe(EventType.ZONE_ACTIVE, self.onZoneActive)
    bus.subscribe(EventType.ZONE_INACTIVE, self.onZoneInactive)

  def onValveClosed(self, event):
    self.lastValveClose = event["time"]

  def onZoneActive(self, event):
    self._runningZones.add(event["zone_id"])

  def onZoneInactive(self, event):
    self._runningZones.discard(event["zone_id"])

  def runningZones(self):
    return len(self._runningZones)

  def nonZeroPercentage(self):
    if len(self.flowData) == 0:
      return 0
    nonZero = len([sample for sample in self.flowData if sample["volume"] != 0])
    return nonZero / len(self.flowData) * 100

  def onFlow(self, event):
    if event.get("time") is None:
      return

    with self._lock:
      self.flowData.append({"time": event["time"], "volume": event.get("volume", 0)})
      while len(self.flowData) > 0 and event["time"] - self.flowData[0]["time"] > self.window:
        self.flowData.popleft()

      if self.runningZones() != 0:
        return

      percentage = self.nonZeroPercentage()
      if percentage > self.threshold and self._settled(event["time"]):
        if not self.leakDetected:
          self.leakDetected = True
          self.logger.warning("Detected suspected water leak on irrigation system (%d%% of flow samples over %ss)." % (percentage, self.window))
          self.bus.publish(EventType.LEAK_DETECTED, time=event["time"], percentage=percentage)

      elif percentage == 0 and self.leakDetected:
        self.leakDetected = False
        self.logger.info("Suspected water leak no longer detected on irrigation system.")
        self.bus.publish(EventType.LEAK_CLEARED, time=event["time"])

  def _settled(self, now):
    return self.lastValveClose == 0 or now - self.lastValveClose > self.settleTime

  def snapshot(self):
    return {
      "leak_detected": self.leakDetected,
      "samples": len(self.flowData),
      "non_zero_percentage": round(self.nonZeroPercentage(), 1),
      "last_valve_close": self.lastValveClose,
    }
