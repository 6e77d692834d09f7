import json
import math
import os
import uuid
from gpio import validPin
from types import SimpleNamespace
from jsonschema import validate, ValidationError, SchemaError

DEFAULT_RUNTIME = 300
DEFAULT_MAX_RUNTIME = 7200

class Config:
  def __init__(self, logger, filename):
    self.logger = logger
    self.filename = filename  # Store filename for later saving

    # Load configuration file
    with open(filename, 'r') as stream:
      try:
        config_data = json.loads(stream.read())
      except Exception as ex:
        self.logger.exception(ex)
        raise ValueError(f"Configuration file '{filename}' is not valid JSON: {ex}")

    # Validate configuration against JSON schema
    self.validate_config_schema(config_data)

    # Convert to SimpleNamespace after validation
    self.cfg = json.loads(json.dumps(config_data), object_hook=lambda d: SimpleNamespace(**d))

    try:
      options = getattr(self.cfg, 'options', SimpleNamespace())
      self.maxRuntime = getattr(options, 'max_runtime', DEFAULT_MAX_RUNTIME)
      self.maxRunningZones = getattr(options, 'max_running_zones', 1)
      self.leakSensor = getattr(options, 'leak_sensor', False)
      self.waterLeakAlert = getattr(options, 'water_leak_alert', False)
      self.powerSwitch = getattr(options, 'power_switch', False)
      self.pauseTimeout = getattr(self.cfg, 'pause_timeout', 0)
      # A pending pause always starts the system switched off
      self.power = getattr(self.cfg, 'power', False) and self.pauseTimeout == 0
      self.timezone = getattr(self.cfg, 'timezone', 'UTC')
      self.hardwareType = self.cfg.hardware.type
      measurement = getattr(self.cfg, 'measurement', SimpleNamespace(type='usonic'))
      self.measurementType = measurement.type
      self.measurement = measurement

      mqtt = getattr(self.cfg, 'mqtt', SimpleNamespace(enabled=False))
      self.mqttEnabled = mqtt.enabled
      self.mqttClientName = getattr(mqtt, 'client_name', 'irrigation')
      self.mqttHostName = getattr(mqtt, 'hostname', 'localhost')

      api = getattr(self.cfg, 'api', SimpleNamespace(enabled=False))
      self.apiEnabled = api.enabled
      self.apiHost = getattr(api, 'host', '0.0.0.0')
      self.apiPort = getattr(api, 'port', 8000)

    except AttributeError as ex:
      self.logger.error(f"Error reading configuration '{filename}': {ex}. Aborting.")
      raise

    try:
      self.waterflow = self.initWaterFlow(options)
      self.tanks = self.initTanks()
      self.zones = self.initZones()
    except Exception as ex:
      self.logger.error("Failed to initialize configuration with error message '%s'. Aborting." % format(ex))
      raise

  def validate_config_schema(self, config_data):
    # Load the schema file
    schema_path = os.path.join(os.path.dirname(os.path.abspath(self.filename)), 'config.schema.json')
    if not os.path.exists(schema_path):
      self.logger.warning(f"Schema file not found at {schema_path} - skipping schema validation")
      return

    try:
      with open(schema_path, 'r') as schema_file:
        schema = json.load(schema_file)

      # Validate against schema
      validate(instance=config_data, schema=schema)
      self.logger.info("Configuration validation passed successfully")

    except ValidationError as e:
      # Format validation error message
      error_path = ' -> '.join(str(p) for p in e.path) if e.path else 'root'
      error_msg = f"Configuration validation failed at '{error_path}': {e.message}"
      self.logger.error(error_msg)
      raise ValueError(error_msg)

    except SchemaError as e:
      self.logger.error(f"Invalid schema file: {e.message}")
      raise ValueError(f"Invalid schema file: {e.message}")

  def initWaterFlow(self, options):
    pin = validPin(getattr(options, 'flow_sensor_pin', None))
    if pin is None:
      return None
    return SimpleNamespace(pin=pin, flowRate=getattr(options, 'flow_rate', 0.0))

  def initTanks(self):
    tanks = []
    for index, _tank_cfg in enumerate(getattr(self.cfg, 'tanks', [])):
      trigPin = validPin(getattr(_tank_cfg, 'sensor_trig_pin', None))
      echoPin = validPin(getattr(_tank_cfg, 'sensor_echo_pin', None))
      sensorHeight = max(getattr(_tank_cfg, 'sensor_height', 0), 0)
      tanks.append(SimpleNamespace(
        id=getattr(_tank_cfg, 'id', None) or str(uuid.uuid4()),
        name=getattr(_tank_cfg, 'name', None) or f"Tank {index + 1}",
        enabled=getattr(_tank_cfg, 'enabled', False),
        capacity=getattr(_tank_cfg, 'capacity', 0),
        sensorHeight=sensorHeight,
        minimumLevel=min(max(getattr(_tank_cfg, 'minimum_level', 0), 0), sensorHeight),
        # Both pins are needed for a measurement
        trigPin=trigPin if echoPin is not None else None,
        echoPin=echoPin if trigPin is not None else None,
      ))
    return tanks

  def initZones(self):
    zones = []
    ids = set()
    for index, _zone_cfg in enumerate(self.cfg.zones):
      zoneId = getattr(_zone_cfg, 'id', None) or str(uuid.uuid4())
      if zoneId in ids:
        raise Exception(f"Zone id already exists: {zoneId}")
      ids.add(zoneId)

      # A single pin is a "physical" zone, a list of pins a "virtual" zone
      relayPin = getattr(_zone_cfg, 'relay_pin', None)
      if isinstance(relayPin, list):
        relayPins = [validPin(pin) for pin in relayPin if validPin(pin) is not None]
      else:
        relayPins = [validPin(relayPin)] if validPin(relayPin) is not None else []

      runtime = getattr(_zone_cfg, 'runtime', DEFAULT_RUNTIME)
      if not math.isfinite(runtime):
        raise ValueError(f"Zone '{zoneId}' runtime {runtime} is not a number of seconds.")
      if runtime > self.maxRuntime:
        self.logger.warning(f"Zone '{_zone_cfg.name}' runtime {runtime} capped to {self.maxRuntime} seconds.")
        runtime = self.maxRuntime

      zones.append(SimpleNamespace(
        id=zoneId,
        name=getattr(_zone_cfg, 'name', None) or f"Zone {index + 1}",
        enabled=getattr(_zone_cfg, 'enabled', False),
        runtime=runtime,
        relayPins=relayPins,
      ))
    return zones

  def saveRuntimeConfig(self, snapshot):
    """Save runtime-editable state back to the config file.

    Only power, pause timeout and each zone's id, name, enabled flag and
    runtime are written - all other config values remain unchanged.
    """
    try:
      # Read the current config file to preserve formatting and all other settings
      with open(self.filename, 'r') as f:
        config_data = json.load(f)

      config_data['power'] = snapshot['system']['power']
      config_data['pause_timeout'] = snapshot['system']['pause_timeout']

      # Zones keep their configuration order
      for zone_cfg, zone in zip(config_data['zones'], snapshot['zones']):
        zone_cfg['id'] = zone['id']
        zone_cfg['name'] = zone['name']
        zone_cfg['enabled'] = zone['enabled']
        zone_cfg['runtime'] = zone['runtime']

      # Write the updated config back to file with nice formatting
      with open(self.filename, 'w') as f:
        json.dump(config_data, f, indent=2)

      self.logger.info(f"Runtime configuration saved to '{self.filename}'")

    except Exception as ex:
      self.logger.error(f"Error saving runtime configuration: {ex}")
      raise
