import threading

RELAY_MIN_PIN = 0
RELAY_MAX_PIN = 26

def validPin(pin):
  if isinstance(pin, bool):
    return None
  try:
    pin = int(pin)
  except (TypeError, ValueError):
    return None
  if RELAY_MIN_PIN <= pin <= RELAY_MAX_PIN:
    return pin
  return None

class BaseHardware():
  def __init__(self, logger, config = None):
    self.logger = logger
    self.config = config

  def setupRelay(self, pin):
    self.logger.debug("Setting up relay on pin %s" % pin)

  def openRelay(self, pin):
    self.logger.debug("Relay on pin %s active" % pin)

  def closeRelay(self, pin):
    self.logger.debug("Relay on pin %s inactive" % pin)

  def pollDigitalInput(self, pin, onEdge):
    self.logger.debug("Polling digital input on pin %s" % pin)

  def cleanup(self):
    pass

class TestHardware(BaseHardware):
  def __init__(self, logger, config = None):
    BaseHardware.__init__(self, logger, config)
    self.pins = {}
    self.edgeCallbacks = {}
    self.history = []
    self._lock = threading.Lock()

  def setupRelay(self, pin):
    BaseHardware.setupRelay(self, pin)
    with self._lock:
      self.pins[pin] = False

  def openRelay(self, pin):
    BaseHardware.openRelay(self, pin)
    with self._lock:
      self.pins[pin] = True
      self.history.append((pin, True))

  def closeRelay(self, pin):
    BaseHardware.closeRelay(self, pin)
    with self._lock:
      self.pins[pin] = False
      self.history.append((pin, False))

  def pollDigitalInput(self, pin, onEdge):
    BaseHardware.pollDigitalInput(self, pin, onEdge)
    self.edgeCallbacks[pin] = onEdge

  def pulse(self, pin, count = 1):
    for _ in range(count):
      self.edgeCallbacks[pin]()

  def isActive(self, pin):
    return self.pins.get(pin, False)

  def activePins(self):
    return sorted(pin for pin, active in self.pins.items() if active)

class RpiHardware(BaseHardware):
  def __init__(self, logger, config = None):
    BaseHardware.__init__(self, logger, config)
    # Only importable on a Raspberry Pi
    import RPi.GPIO as GPIO
    self.GPIO = GPIO
    GPIO.setmode(GPIO.BCM)
    GPIO.setwarnings(False)

  def setupRelay(self, pin):
    BaseHardware.setupRelay(self, pin)
    self.GPIO.setup(pin, self.GPIO.OUT, initial=self.GPIO.LOW)

  def openRelay(self, pin):
    BaseHardware.openRelay(self, pin)
    self.GPIO.output(pin, self.GPIO.HIGH)

  def closeRelay(self, pin):
    BaseHardware.closeRelay(self, pin)
    self.GPIO.output(pin, self.GPIO.LOW)

  def pollDigitalInput(self, pin, onEdge):
    BaseHardware.pollDigitalInput(self, pin, onEdge)
    self.GPIO.setup(pin, self.GPIO.IN, pull_up_down=self.GPIO.PUD_UP)
    self.GPIO.add_event_detect(pin, self.GPIO.RISING, callback=lambda channel: onEdge())

  def cleanup(self):
    self.logger.info("Releasing GPIO pins.")
    self.GPIO.cleanup()

def hardwareFactory(type, logger, config = None):
  if type == 'test':
    return TestHardware(logger, config)

  if type == 'rpi':
    return RpiHardware(logger, config)

  raise Exception("Cannot find implementation for hardware type '%s'." % type)
