import os
import math
import time
import threading
import subprocess
from events import EventType

USONIC_READINGS = 1  # Number of ultrasonic readings averaged per measurement
USONIC_MIN_RANGE = 200  # Minimum range of the ultrasonic sensor in mm
USONIC_MAX_RANGE = 4500  # Maximum range of the ultrasonic sensor in mm
USONIC_TIMEOUT = 5
TANK_REFRESH_INTERVAL = 60  # Seconds between tank level refreshes
OUT_OF_RANGE = "OUT OF RANGE"

def scaleValue(value, sourceMin, sourceMax, targetMin, targetMax):
  value = min(max(value, sourceMin), sourceMax)
  return ((value - sourceMin) * (targetMax - targetMin)) / (sourceMax - sourceMin) + targetMin

def levelFromDistance(distance, sensorHeight, minimumLevel):
  """Convert a measured distance (mm) into (usable level mm, percentage).

  The sensor cannot see closer than its minimum range, so the min range..usable
  span is rescaled onto 0..usable rather than inverting the raw distance.
  """
  if math.isnan(distance):
    distance = USONIC_MAX_RANGE
  distance = min(max(distance, USONIC_MIN_RANGE), USONIC_MAX_RANGE, sensorHeight)
  usable = sensorHeight - minimumLevel
  level = usable - scaleValue(distance, USONIC_MIN_RANGE, usable, 0, usable)
  percentage = min(max(level / usable * 100, 0), 100)
  return level, percentage

class BaseMeasure():
  def __init__(self, logger, config = None):
    self.logger = logger
    self.config = config

  def measure(self, trigPin, echoPin):
    raise NotImplementedError()

class UsonicMeasure(BaseMeasure):
  """Runs the external 'usonic_measure' helper, which prints 'Distance: x cm' or 'OUT OF RANGE'"""

  def __init__(self, logger, config = None):
    BaseMeasure.__init__(self, logger, config)
    self.path = os.path.abspath(getattr(config, "path", "usonic_measure"))

  def available(self):
    return os.path.exists(self.path)

  def measure(self, trigPin, echoPin):
    try:
      result = subprocess.run([self.path, str(trigPin), str(echoPin)], capture_output=True, text=True, timeout=USONIC_TIMEOUT)
    except (OSError, subprocess.TimeoutExpired) as ex:
      self.logger.warning("Ultrasonic measurement failed: %s" % format(ex))
      return None

    output = result.stdout.strip()
    if output.upper() == OUT_OF_RANGE:
      return OUT_OF_RANGE
    if output.split(":")[0].upper() == "DISTANCE":
      try:
        distance = float(output.split(" ")[1]) * 10  # cm to mm
      except (IndexError, ValueError):
        distance = None
      if distance is not None and math.isfinite(distance):
        return distance
      self.logger.warning("Unexpected ultrasonic measurement output '%s'." % output)
    return None

class TestMeasure(BaseMeasure):
  def __init__(self, logger, config = None):
    BaseMeasure.__init__(self, logger, config)
    self.distances = {}

  def available(self):
    return True

  def measure(self, trigPin, echoPin):
    return self.distances.get((trigPin, echoPin))

def measureFactory(type, logger, config = None):
  if type == 'usonic':
    return UsonicMeasure(logger, config)

  if type == 'test':
    return TestMeasure(logger, config)

  raise Exception("Cannot find implementation for measurement type '%s'." % type)

class WaterTank():
  def __init__(self, logger, config):
    self.logger = logger
    self.id = config.id
    self.name = config.name
    self.capacity = config.capacity
    self.sensorHeight = config.sensorHeight
    self.minimumLevel = min(config.minimumLevel, config.sensorHeight)
    self.trigPin = config.trigPin
    self.echoPin = config.echoPin
    self.waterlevel = None
    self.percentage = None

  def hasGeometry(self):
    return self.trigPin is not None and self.echoPin is not None and self.sensorHeight > 0 \
      and self.sensorHeight - self.minimumLevel > USONIC_MIN_RANGE

  def snapshot(self):
    return {
      "id": self.id,
      "name": self.name,
      "capacity": self.capacity,
      "waterlevel": self.waterlevel,
      "percentage": self.percentage,
    }

class TankLevelAggregator():
  def __init__(self, logger, bus, tanksCfg, measure, readings = USONIC_READINGS):
    self.logger = logger
    self.bus = bus
    self.measure = measure
    self.readings = readings
    self.tanks = {}
    self.waterlevel = None
    self._inFlight = set()
    self._lock = threading.Lock()

    for tankCfg in tanksCfg:
      if not tankCfg.enabled:
        continue
      tank = WaterTank(logger, tankCfg)
      if not tank.hasGeometry():
        self.logger.warning("Tank '%s' has incomplete sensor geometry or pins. Water level will not be reported." % tank.name)
      else:
        self.logger.debug("Using pins %s, %s for ultrasonic water level measurements of tank '%s'." % (tank.trigPin, tank.echoPin, tank.name))
      self.tanks[tank.id] = tank

  def refresh(self):
    """Start a detached reading for every measurable tank"""
    for tank in self.tanks.values():
      if not tank.hasGeometry():
        continue
      with self._lock:
        if tank.id in self._inFlight:
          continue
        self._inFlight.add(tank.id)
      worker = threading.Thread(target=self._readWorker, args=(tank,))
      worker.daemon = True
      worker.name = f"TankTh-{tank.name}"
      worker.start()

  def _readWorker(self, tank):
    try:
      self.readTank(tank)
    except Exception as ex:
      self.logger.error("Error reading water level of tank '%s': %s" % (tank.name, format(ex)))
    finally:
      with self._lock:
        self._inFlight.discard(tank.id)

  def readTank(self, tank):
    if not tank.hasGeometry():
      return None

    total = 0
    for _ in range(self.readings):
      distance = self.measure.measure(tank.trigPin, tank.echoPin)
      if distance is None or distance == OUT_OF_RANGE or not math.isfinite(distance):
        # Keep the last known level
        self.logger.debug("Ultrasonic measurement for tank '%s' returned '%s'. Skipping update." % (tank.name, distance))
        return None
      total = total + distance

    level, percentage = levelFromDistance(total / self.readings, tank.sensorHeight, tank.minimumLevel)
    with self._lock:
      tank.waterlevel = level
      tank.percentage = percentage
      aggregate = self.aggregate()
      self.waterlevel = aggregate

    self.bus.publish(EventType.TANK_LEVEL, id=tank.id, waterlevel=level, percentage=percentage)
    self.bus.publish(EventType.WATER_LEVEL, percentage=aggregate)
    return percentage

  def aggregate(self):
    readings = [tank.percentage for tank in self.tanks.values() if tank.percentage is not None]
    if len(readings) == 0:
      return None
    return min(sum(readings), 100)

  def snapshot(self):
    return {
      "percentage": self.waterlevel,
      "tanks": [tank.snapshot() for tank in self.tanks.values()],
    }
