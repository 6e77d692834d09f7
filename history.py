import csv
import os
import threading
from datetime import datetime
from events import EventType

HISTORY_FILE = os.path.join("data", "zone_history.csv")
HISTORY_FIELDS = ['zone_id', 'zone_name', 'start', 'total_seconds', 'total_liters', 'avg_liters_per_minute']

def append_session(filename, zone_id, zone_name, start, total_seconds, total_liters):
  """
  Append one finished zone session to the CSV file.
  Sessions that never had a valve open (total_seconds <= 0) are not recorded.

  Args:
      filename: CSV file to append to
      zone_id: Id of the zone
      zone_name: Display name of the zone when the session ended
      start: Session start as unix timestamp
      total_seconds: Total seconds any valve of the zone was open
      total_liters: Total liters attributed to the zone's valves
  """
  if total_seconds <= 0:
    return False

  avg_liters_per_minute = (total_liters / total_seconds) * 60

  # Create data directory and file with header if it doesn't exist
  directory = os.path.dirname(filename)
  if directory:
    os.makedirs(directory, exist_ok=True)
  file_exists = os.path.isfile(filename)

  with open(filename, 'a', newline='') as f:
    writer = csv.writer(f)
    if not file_exists:
      writer.writerow(HISTORY_FIELDS)
    writer.writerow([zone_id, zone_name, datetime.fromtimestamp(start).isoformat(timespec='seconds'),
                     round(total_seconds), round(total_liters, 2), round(avg_liters_per_minute, 2)])
  return True

def load_sessions(filename, zone_id = None, limit = None):
  """Read recorded sessions, oldest first, optionally for a single zone and only the last `limit` ones"""
  if not os.path.isfile(filename):
    return []

  sessions = []
  with open(filename, 'r', newline='') as f:
    reader = csv.DictReader(f)
    for row in reader:
      if zone_id is not None and row['zone_id'] != zone_id:
        continue
      sessions.append({
        'zone_id': row['zone_id'],
        'zone_name': row['zone_name'],
        'start': row['start'],
        'total_seconds': int(float(row['total_seconds'])),
        'total_liters': float(row['total_liters']),
        'avg_liters_per_minute': float(row['avg_liters_per_minute']),
      })

  if limit is not None:
    sessions = sessions[-limit:] if limit > 0 else []
  return sessions

class ZoneHistory():
  """Records every finished zone session published on the bus"""

  def __init__(self, logger, bus, filename = HISTORY_FILE):
    self.logger = logger
    self.filename = filename
    self._lock = threading.Lock()
    bus.subscribe(EventType.ZONE_INACTIVE, self.onZoneInactive)

  def onZoneInactive(self, event):
    try:
      with self._lock:
        recorded = append_session(self.filename, event["zone_id"], event["name"], event["start"],
                                  event["duration"], event["water"])
      if recorded:
        self.logger.debug("Recorded session of zone '%s' in '%s'." % (event["name"], self.filename))
    except OSError as ex:
      self.logger.error("Error recording session of zone '%s': %s" % (event["name"], format(ex)))

  def sessions(self, zoneId = None, limit = None):
    with self._lock:
      return load_sessions(self.filename, zoneId, limit)
