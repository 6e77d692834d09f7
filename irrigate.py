import sys
import time
import config
import signal
import getopt
import logging
import traceback
import threading
from mqtt import Mqtt
from datetime import datetime
from threading import Thread
from events import EventBus
from events import EventType
from gpio import hardwareFactory
from zones import ZoneController
from zones import SHUTDOWN_GRACE
from power import PowerScheduler
from power import PAUSE_CHECK_INTERVAL
from leak import LeakDetector
from alerts import AlertManager
from history import ZoneHistory
from history import HISTORY_FILE
from debounce import RequestDebouncer
from waterflows import FlowSampler
from watertank import measureFactory
from watertank import TankLevelAggregator
from watertank import TANK_REFRESH_INTERVAL
from watertank import USONIC_READINGS
from alert_channels import channelFactory
from api_server import run_api_server

TICK_INTERVAL = 1  # Seconds between zone countdown ticks and flow samples


def main(argv):
  options, remainder = getopt.getopt(argv[1:], "", ["config=", "test"])

  configFilename = "config.json"
  test = False

  for opt, arg in options:
    if opt == "--config":
      configFilename = arg
    elif opt == "--test":
      test = True

  irrigate = IrrigationSystem(configFilename)

  if test:
    irrigate.logger.info("Entering test mode. CTRL-C to exit...")
    try:
      while True:
        for valve in irrigate.allValves():
          valve.open()
          time.sleep(0.2)
        time.sleep(3)
        for valve in irrigate.allValves():
          valve.close()
          time.sleep(0.2)
        time.sleep(2)
    except KeyboardInterrupt:
      irrigate.shutdown()
      return 0

  if irrigate.cfg.apiEnabled:
    # Start FastAPI server in background thread
    api_thread = threading.Thread(target=run_api_server, args=(irrigate, irrigate.cfg.apiHost, irrigate.cfg.apiPort))
    api_thread.daemon = True
    api_thread.start()

  irrigate.start()
  try:
    while not irrigate.terminated:
      time.sleep(1)
  except KeyboardInterrupt:
    irrigate.shutdown()
  irrigate.logger.info("Program terminated.")
  return 0

class IrrigationSystem:
  def __init__(self, configFilename, clock = time.time, timerFactory = threading.Timer, historyFile = HISTORY_FILE):
    self.startTime = datetime.now()
    self.clock = clock
    self.timerFactory = timerFactory
    self.logger = self.getLogger()
    self.logger.info("Reading configuration file '%s'..." % configFilename)
    self.terminated = False
    self._intervalDict = {}
    self._wakeup = threading.Event()
    self.init(configFilename, historyFile)
    self.mqtt = Mqtt(self)
    self.createThreads()

    if threading.current_thread() is threading.main_thread():
      signal.signal(signal.SIGTERM, self.exit_gracefully)
      signal.signal(signal.SIGINT, self.exit_gracefully)

  def init(self, cfgFilename, historyFile):
    self.cfg = config.Config(self.logger, cfgFilename)
    self.bus = EventBus(self.logger)
    self.hardware = hardwareFactory(self.cfg.hardwareType, self.logger)

    self.zones = ZoneController(self.logger, self.bus, self.hardware, self.cfg.zones, self.cfg.maxRuntime,
                                self.cfg.maxRunningZones, self.cfg.power, self.clock, self.timerFactory)
    self.power = PowerScheduler(self.logger, self.bus, self.zones, self.cfg.power, self.cfg.pauseTimeout,
                                self.cfg.timezone, self.clock)
    self.debouncer = RequestDebouncer(self.logger, self.bus, self.zones, self.power, timerFactory=self.timerFactory)

    self.waterflow = None
    self.leak = None
    if self.cfg.waterflow is not None:
      self.waterflow = FlowSampler(self.logger, self.bus, self.cfg.waterflow, self.clock)
      if self.cfg.leakSensor:
        self.leak = LeakDetector(self.logger, self.bus, self.clock)
    elif self.cfg.leakSensor:
      self.logger.warning("Leak sensor enabled but no flow sensor pin configured. Leak detection disabled.")

    self.measure = measureFactory(self.cfg.measurementType, self.logger, self.cfg.measurement)
    self.tanks = TankLevelAggregator(self.logger, self.bus, self.cfg.tanks, self.measure,
                                     getattr(self.cfg.measurement, 'readings', USONIC_READINGS))

    channels = []
    alertsCfg = getattr(self.cfg.cfg, 'alerts', None)
    for channelCfg in getattr(alertsCfg, 'channels', []):
      channels.append(channelFactory(self.logger, channelCfg))
    self.alerts = AlertManager(self.logger, self.cfg, self.bus, channels)
    self.history = ZoneHistory(self.logger, self.bus, historyFile)

    # Persist runtime-editable state after every change
    for eventType in (EventType.POWER, EventType.PAUSE, EventType.ZONE_CONFIG):
      self.bus.subscribe(eventType, self.onConfigChanged)

  def createThreads(self):
    self.timer = Thread(target=self.timerThread, args=())
    self.timer.daemon = True
    self.timer.name = "TimerTh"

  def start(self):
    if self.cfg.mqttEnabled:
      self.logger.info("Starting MQTT...")
      self.mqtt.start()

    if self.waterflow is not None:
      try:
        self.logger.info("Starting waterflow.")
        self.waterflow.start(self.hardware)
      except Exception as ex:
        self.logger.error("Error starting waterflow '%s'." % format(ex))

    if not self.measure.available():
      self.logger.warning("Water level measurement helper is not available. Tank levels will not be reported.")
    self.tanks.refresh()

    self.logger.info("Starting timer thread '%s'." % self.timer.name)
    self.timer.start()

  def everyXSeconds(self, key, interval, bootstrap):
    now = self.clock()
    if not key in self._intervalDict.keys():
      self._intervalDict[key] = now
      return bootstrap

    if now >= self._intervalDict[key] + interval:
      self._intervalDict[key] = now
      return True

    return False

  def tick(self):
    self.zones.tick()

    if self.waterflow is not None and self.waterflow.started:
      self.waterflow.sample()

    if self.everyXSeconds("pauseCheck", PAUSE_CHECK_INTERVAL, False):
      self.power.tick()

    if self.everyXSeconds("tankRefresh", TANK_REFRESH_INTERVAL, False):
      self.tanks.refresh()

  def timerThread(self):
    while not self.terminated:
      try:
        self.tick()
      except Exception as ex:
        self.logger.error("Timer thread error '%s'. Continuing." % format(ex))
        self.logger.debug(traceback.format_exc())
      self._wakeup.wait(TICK_INTERVAL)
    self.logger.warning("Timer thread '%s' exited." % threading.current_thread().name)

  def exit_gracefully(self, signum, frame):
    self.logger.warning("Received signal %s. Closing all valves before exit..." % signum)
    self.shutdown()
    self.alerts.on_system_exit(signum)
    self.alerts.wait()
    sys.exit(128 + signum)

  def shutdown(self):
    self.terminated = True
    self._wakeup.set()
    self.zones.closeAllValves(SHUTDOWN_GRACE)
    if self.timer.is_alive() and self.timer is not threading.current_thread():
      self.timer.join(SHUTDOWN_GRACE)
    self.mqtt.shutdown()
    self.hardware.cleanup()

  def onConfigChanged(self, event):
    try:
      self.cfg.saveRuntimeConfig(self.snapshot())
    except Exception as ex:
      self.logger.error("Runtime configuration not saved: %s" % format(ex))

  def allValves(self):
    return [valve for zone in self.zones.zones.values() for valve in zone.valves]

  # Command entry points for the MQTT bridge and the HTTP API
  def activateZone(self, zoneId):
    return self.zones.activateZone(zoneId)

  def deactivateZone(self, zoneId):
    return self.zones.deactivateZone(zoneId)

  def setPower(self, value):
    return self.power.setPower(value)

  def setPause(self, untilEpochSeconds):
    return self.power.setPause(untilEpochSeconds)

  def renameZone(self, zoneId, name):
    return self.zones.renameZone(zoneId, name)

  def setZoneEnabled(self, zoneId, value):
    return self.zones.setZoneEnabled(zoneId, value)

  def setZoneRuntime(self, zoneId, seconds):
    return self.zones.setZoneRuntime(zoneId, seconds)

  def request(self, kind, value, zoneId = None):
    """Activation request from a presentation layer, resolved by the debouncer"""
    return self.debouncer.submit(kind, value, zoneId)

  def snapshot(self):
    delta = datetime.now() - self.startTime
    return {
      "system": {
        **self.power.snapshot(),
        "uptime_minutes": int(delta.total_seconds() // 60),
        "started_at": self.startTime.isoformat(),
        "timezone": self.cfg.timezone,
        "max_runtime": self.zones.maxRuntime,
        "max_running_zones": self.zones.maxRunningZones,
      },
      "zones": self.zones.snapshot(),
      "tanks": self.tanks.snapshot(),
      "waterflow": {
        "enabled": self.waterflow is not None,
        "started": self.waterflow is not None and self.waterflow.started,
        "flow_rate_lpm": round(self.waterflow.lastRate(), 2) if self.waterflow is not None else 0,
      },
      "leak": self.leak.snapshot() if self.leak is not None else None,
    }

  def getLogger(self):
    logger = logging.getLogger("IrrigationLogger")
    if logger.handlers:
      return logger
    formatter = logging.Formatter(fmt='%(asctime)s %(levelname)-8s %(message)s',
                                  datefmt='%Y-%m-%d %H:%M:%S')
    handler = logging.FileHandler('log.txt', mode='w')
    handler.setFormatter(formatter)
    screen_handler = logging.StreamHandler(stream=sys.stdout)
    screen_handler.setFormatter(formatter)
    logger.setLevel(logging.INFO)
    logger.addHandler(handler)
    logger.addHandler(screen_handler)
    return logger

if __name__ == '__main__':
    sys.exit(main(sys.argv))
