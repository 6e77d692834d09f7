import math
import time
import threading
import functools
from model import Zone
from model import Countdown
from valves import Valve
from events import EventType
from events import startTimer

REVERT_DELAY = 0.5  # Seconds before a rejected activation settles back to inactive
DEFAULT_MAX_RUNTIME = 7200
SHUTDOWN_GRACE = 2

class ZoneController():
  def __init__(self, logger, bus, hardware, zonesCfg, maxRuntime = DEFAULT_MAX_RUNTIME, maxRunningZones = 1,
               powered = False, clock = time.time, timerFactory = threading.Timer):
    self.logger = logger
    self.bus = bus
    self.clock = clock
    self.timerFactory = timerFactory
    self.maxRuntime = maxRuntime
    self.maxRunningZones = max(1, maxRunningZones)
    self.powered = powered
    self.zones = {}
    self._valveZones = {}
    self._lock = threading.RLock()

    for zoneCfg in zonesCfg:
      pins = zoneCfg.relayPins if len(zoneCfg.relayPins) > 0 else [None]
      valves = [Valve(logger, bus, hardware, zoneCfg.name, pin, clock) for pin in pins]
      zone = Zone(zoneCfg.id, zoneCfg.name, zoneCfg.enabled, min(zoneCfg.runtime, maxRuntime), valves)
      for valve in valves:
        self._valveZones[valve.id] = zone.id
      self.zones[zone.id] = zone
      self.logger.info("Zone '%s' created with %d valve(s)%s." % (zone.name, len(valves), "" if zone.enabled else " but disabled"))

    bus.subscribe(EventType.VALVE_CLOSED, self.onValveClosed)
    bus.subscribe(EventType.POWER, self.onPower)

  def getZone(self, zoneId):
    return self.zones.get(zoneId)

  def _lookup(self, zoneId, action):
    zone = self.zones.get(zoneId)
    if zone is None:
      self.logger.warning("Cannot %s unknown zone '%s'." % (action, zoneId))
    return zone

  def numberRunningZones(self):
    return len([zone for zone in self.zones.values() if zone.isActive()])

  def numberEnabledZones(self):
    return len([zone for zone in self.zones.values() if zone.enabled])

  def setZoneActive(self, zoneId, value):
    if value:
      return self.activateZone(zoneId)
    return self.deactivateZone(zoneId)

  def activateZone(self, zoneId):
    with self._lock:
      zone = self._lookup(zoneId, "activate")
      if zone is None:
        return False

      if not zone.enabled:
        self.logger.warning("Zone '%s' is disabled. Activation ignored." % zone.name)
        return False

      if not self.powered:
        self.logger.info("Zone '%s' requested while irrigation system is off. Request rejected." % zone.name)
        startTimer(self.timerFactory, REVERT_DELAY, functools.partial(self._revert, zone.id))
        return False

      if zone.isActive():
        self._deactivate(zone)

      now = self.clock()
      while self.numberRunningZones() >= self.maxRunningZones:
        running = [z for z in self.zones.values() if z.isActive()]
        self._deactivate(min(running, key=lambda z: z.countdown.remaining(now)))

      zone.totalWater = 0
      zone.totalDuration = 0
      zone.countdown = Countdown(now, zone.runtime)
      self.bus.publish(EventType.ZONE_ACTIVE, zone_id=zone.id, name=zone.name, time=now, runtime=zone.runtime)
      # Whether "physical" or "virtual", the first valve in the list runs first
      zone.valves[0].open()
      self.bus.publish(EventType.ZONE_REMAINING, zone_id=zone.id, remaining=zone.runtime)
      self.logger.info("Zone '%s' was turned on for %s seconds." % (zone.name, zone.runtime))
      return True

  def deactivateZone(self, zoneId):
    with self._lock:
      zone = self._lookup(zoneId, "deactivate")
      if zone is None:
        return False
      return self._deactivate(zone)

  def deactivateAll(self):
    with self._lock:
      for zone in self.zones.values():
        if zone.isActive():
          self._deactivate(zone)

  def powerOff(self):
    """Stop accepting activations, then finish every running zone"""
    with self._lock:
      self.powered = False
      self.deactivateAll()

  def _deactivate(self, zone):
    # Countdown goes first so a late tick cannot reopen a valve
    countdown = zone.countdown
    zone.countdown = None
    if countdown is not None:
      countdown.cancelled = True

    for valve in zone.valves:
      if valve.isOpen():
        valve.close()

    if countdown is None:
      return False

    self.bus.publish(EventType.ZONE_REMAINING, zone_id=zone.id, remaining=0)
    self.bus.publish(EventType.ZONE_INACTIVE, zone_id=zone.id, name=zone.name, time=self.clock(),
                     start=countdown.startTime, water=zone.totalWater, duration=zone.totalDuration)
    self.logger.info("Zone '%s' was turned off. Used %.3fL over %s seconds." % (zone.name, zone.totalWater, round(zone.totalDuration)))
    return True

  def _revert(self, zoneId):
    zone = self.zones.get(zoneId)
    if zone is None or zone.isActive():
      return
    self.bus.publish(EventType.ZONE_REVERTED, zone_id=zoneId)

  def tick(self):
    now = self.clock()
    with self._lock:
      for zone in list(self.zones.values()):
        countdown = zone.countdown
        if countdown is None or countdown.cancelled:
          continue
        self._tickZone(zone, countdown, now)

  def _tickZone(self, zone, countdown, now):
    count = len(zone.valves)
    sliceLength = countdown.runtime / count
    while countdown.valveIndex < count - 1:
      valveEndTime = countdown.endTime - sliceLength * (count - countdown.valveIndex - 1)
      if now < valveEndTime:
        break
      # Reached the end of this valve's share, hand over to the next in line
      zone.valves[countdown.valveIndex].close()
      countdown.valveIndex += 1
      zone.valves[countdown.valveIndex].open()

    if now >= countdown.endTime:
      self.logger.info("Zone '%s' runtime finished." % zone.name)
      self._deactivate(zone)
      return

    self.bus.publish(EventType.ZONE_REMAINING, zone_id=zone.id, remaining=int(countdown.remaining(now)))

  def onValveClosed(self, event):
    zone = self.zones.get(self._valveZones.get(event["id"]))
    if zone is None:
      return
    zone.totalWater = zone.totalWater + event["water"]
    zone.totalDuration = zone.totalDuration + event["duration"]

  def onPower(self, event):
    self.powered = event["power"]

  def renameZone(self, zoneId, name):
    with self._lock:
      zone = self._lookup(zoneId, "rename")
      if zone is None or not isinstance(name, str) or name.strip() == "":
        return False
      self.logger.debug("Setting irrigation zone name from '%s' to '%s'." % (zone.name, name.strip()))
      zone.name = name.strip()
      for valve in zone.valves:
        valve.zoneName = zone.name
      self._configChanged(zone)
      return True

  def setZoneEnabled(self, zoneId, value):
    with self._lock:
      zone = self._lookup(zoneId, "enable")
      if zone is None or not isinstance(value, bool):
        return False
      self.logger.debug("Setting irrigation zone '%s' status from '%s' to '%s'." %
                        (zone.name, "Enabled" if zone.enabled else "Disabled", "Enabled" if value else "Disabled"))
      if not value and zone.isActive():
        self._deactivate(zone)
      zone.enabled = value
      self._configChanged(zone)
      return True

  def setZoneRuntime(self, zoneId, seconds):
    with self._lock:
      zone = self._lookup(zoneId, "set runtime of")
      if zone is None or isinstance(seconds, bool) or not isinstance(seconds, (int, float)):
        return False
      if not math.isfinite(seconds) or seconds <= 0 or seconds > self.maxRuntime:
        self.logger.warning("Runtime %s for zone '%s' is outside 1..%s seconds." % (seconds, zone.name, self.maxRuntime))
        return False
      self.logger.debug("Setting irrigation zone '%s' runtime from %s to %s seconds." % (zone.name, zone.runtime, seconds))
      zone.runtime = seconds
      self._configChanged(zone)
      return True

  def _configChanged(self, zone):
    self.bus.publish(EventType.ZONE_CONFIG, zone_id=zone.id, name=zone.name, enabled=zone.enabled, runtime=zone.runtime)

  def closeAllValves(self, grace = SHUTDOWN_GRACE):
    locked = self._lock.acquire(timeout=grace)
    try:
      for zone in self.zones.values():
        if zone.countdown is not None:
          zone.countdown.cancelled = True
          zone.countdown = None
        for valve in zone.valves:
          if valve.isOpen():
            valve.close()
    finally:
      if locked:
        self._lock.release()

  def snapshotZone(self, zone, now = None):
    now = self.clock() if now is None else now
    return {
      "id": zone.id,
      "name": zone.name,
      "enabled": zone.enabled,
      "runtime": zone.runtime,
      "virtual": zone.isVirtual(),
      "active": zone.isActive(),
      "remaining": int(zone.countdown.remaining(now)) if zone.isActive() else 0,
      "total_water": round(zone.totalWater, 3),
      "total_duration": round(zone.totalDuration),
      "valves": [valve.snapshot() for valve in zone.valves],
    }

  def snapshot(self):
    now = self.clock()
    with self._lock:
      return [self.snapshotZone(zone, now) for zone in self.zones.values()]
