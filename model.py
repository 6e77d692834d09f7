class Zone:
  def __init__(self, id, name, enabled, runtime, valves):
    self.id = id
    self.name = name
    self.enabled = enabled
    self.runtime = runtime
    self.valves = valves
    self.countdown = None
    self.totalWater = 0
    self.totalDuration = 0

  def isActive(self):
    return self.countdown is not None

  def isVirtual(self):
    return len(self.valves) > 1

class Countdown:
  # Snapshot of the session taken at activation. Zone edits made while running
  # never touch it.
  def __init__(self, startTime, runtime):
    self.startTime = startTime
    self.runtime = runtime
    self.endTime = startTime + runtime
    self.valveIndex = 0
    self.cancelled = False

  def remaining(self, now):
    return max(0, self.endTime - now)

class ActivationRequest:
  SYSTEM = 'system'
  SWITCH = 'switch'
  ZONE = 'zone'

  def __init__(self, kind, value, zoneId = None):
    self.kind = kind
    self.value = value
    self.zoneId = zoneId
    self.takeAction = True

  def isSystem(self):
    return self.kind == ActivationRequest.SYSTEM or self.kind == ActivationRequest.SWITCH
