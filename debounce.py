import threading
import functools
from model import ActivationRequest
from events import EventType
from events import startTimer

DEBOUNCE_WINDOW = 0.5  # Seconds over which near-simultaneous requests are batched
REVERT_DELAY = 0.5

class RequestDebouncer():
  """Resolves bursts of activation requests into the actions that should run.

  Asking a voice assistant to turn the system on is seen as one system request
  plus one request for every enabled zone. Turning on a single zone while the
  system is off is seen as one zone request plus one system request.
  """

  def __init__(self, logger, bus, zones, power, window = DEBOUNCE_WINDOW, timerFactory = threading.Timer):
    self.logger = logger
    self.bus = bus
    self.zones = zones
    self.power = power
    self.window = window
    self.timerFactory = timerFactory
    self._requests = []
    self._timer = None
    self._lock = threading.Lock()

  def submit(self, kind, value, zoneId = None):
    if kind not in (ActivationRequest.SYSTEM, ActivationRequest.SWITCH, ActivationRequest.ZONE):
      self.logger.warning("Unknown activation request type '%s' ignored." % kind)
      return False

    with self._lock:
      self._requests.append(ActivationRequest(kind, bool(value), zoneId))
      if self._timer is None:
        self._timer = startTimer(self.timerFactory, self.window, self.flush)
    return True

  def pending(self):
    return len(self._requests)

  def flush(self):
    with self._lock:
      requests = self._requests
      self._requests = []
      self._timer = None

    systemCount = len([r for r in requests if r.isSystem()])
    zoneCount = len([r for r in requests if r.kind == ActivationRequest.ZONE])
    enabledZones = self.zones.numberEnabledZones()

    for request in requests:
      if request.kind == ActivationRequest.SYSTEM and zoneCount == 1:
        # Zone turned on while the system was off
        request.takeAction = False
      if request.kind == ActivationRequest.ZONE and systemCount == 1 and enabledZones == zoneCount:
        # Whole system turned on/off, not each zone
        request.takeAction = False

    for request in requests:
      if request.isSystem():
        if request.takeAction:
          self.power.setPower(request.value)
        else:
          self.logger.debug("Suppressed '%s' request to turn %s." % (request.kind, "on" if request.value else "off"))
      elif request.takeAction:
        self.zones.setZoneActive(request.zoneId, request.value)
      else:
        self.logger.debug("Suppressed zone '%s' request." % request.zoneId)
        startTimer(self.timerFactory, REVERT_DELAY, functools.partial(self._revert, request.zoneId))

    return requests

  def _revert(self, zoneId):
    zone = self.zones.getZone(zoneId)
    if zone is None or zone.isActive():
      return
    self.bus.publish(EventType.ZONE_REVERTED, zone_id=zoneId)
