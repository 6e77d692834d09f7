import uvicorn
from fastapi import FastAPI, HTTPException

app = FastAPI(title="Irrigation API", version="1.0.0")

# Global reference to the IrrigationSystem instance
irrigate_instance = None


def require_system():
    if irrigate_instance is None:
        raise HTTPException(status_code=503, detail="System not initialized")
    return irrigate_instance


def require_zone(zone_id: str):
    irrigate = require_system()
    zone = irrigate.zones.getZone(zone_id)
    if zone is None:
        raise HTTPException(status_code=404, detail=f"Zone '{zone_id}' not found")
    return irrigate, zone


@app.get("/api/status")
async def get_full_status():
    """Get complete system status"""
    return require_system().snapshot()


@app.get("/api/zones")
async def get_zones():
    """Get all zones summary"""
    irrigate = require_system()
    zones = []
    for zone in irrigate.zones.snapshot():
        zones.append({
            "id": zone["id"],
            "name": zone["name"],
            "enabled": zone["enabled"],
            "active": zone["active"],
            "remaining": zone["remaining"],
        })
    return {"zones": zones}


@app.get("/api/zones/{zone_id}")
async def get_zone_details(zone_id: str):
    """Get detailed zone information including its valves"""
    irrigate, zone = require_zone(zone_id)
    return irrigate.zones.snapshotZone(zone)


@app.get("/api/zones/{zone_id}/history")
async def get_zone_history(zone_id: str, limit: int = 30):
    """Get the most recent finished sessions of a zone"""
    irrigate, zone = require_zone(zone_id)
    return {"zone": zone_id, "sessions": irrigate.history.sessions(zone_id, limit)}


@app.post("/api/zones/{zone_id}/activate")
async def activate_zone(zone_id: str):
    """Start the zone for its configured runtime"""
    irrigate, zone = require_zone(zone_id)
    if not irrigate.activateZone(zone_id):
        raise HTTPException(status_code=409, detail=f"Zone '{zone_id}' cannot be activated (disabled or system off)")

    irrigate.logger.info(f"Manual start: Zone '{zone.name}' activated via API")
    return {"success": True, "zone": zone_id, "action": "activated", "runtime": zone.runtime}


@app.post("/api/zones/{zone_id}/deactivate")
async def deactivate_zone(zone_id: str):
    """Stop the zone and close its valves"""
    irrigate, zone = require_zone(zone_id)
    stopped = irrigate.deactivateZone(zone_id)
    irrigate.logger.info(f"Manual stop: Zone '{zone.name}' deactivated via API")
    return {"success": True, "zone": zone_id, "action": "deactivated" if stopped else "already_inactive"}


@app.put("/api/zones/{zone_id}/name")
async def update_zone_name(zone_id: str, request: dict):
    """Rename a zone

    Request body: {"name": "Front lawn"}
    """
    irrigate, zone = require_zone(zone_id)
    name = request.get("name")
    if not irrigate.renameZone(zone_id, name):
        raise HTTPException(status_code=400, detail="Missing or empty name")
    return {"success": True, "zone": zone_id, "name": zone.name}


@app.put("/api/zones/{zone_id}/enabled")
async def update_zone_enabled(zone_id: str, enabled: bool):
    """Enable or disable a zone. Disabling a running zone stops it."""
    irrigate, zone = require_zone(zone_id)
    irrigate.setZoneEnabled(zone_id, enabled)
    return {"success": True, "zone": zone_id, "enabled": zone.enabled, "action": "enabled_updated"}


@app.put("/api/zones/{zone_id}/runtime")
async def update_zone_runtime(zone_id: str, seconds: float):
    """Set the zone runtime in seconds"""
    irrigate, zone = require_zone(zone_id)
    if not irrigate.setZoneRuntime(zone_id, seconds):
        raise HTTPException(status_code=400, detail=f"Runtime must be between 1 and {irrigate.zones.maxRuntime} seconds")
    return {"success": True, "zone": zone_id, "runtime": zone.runtime}


@app.get("/api/tanks")
async def get_tanks():
    """Get the aggregated and per-tank water levels"""
    return require_system().tanks.snapshot()


@app.get("/api/flow")
async def get_flow():
    """Get the current flow rate, leak state and the last 120 minutes of usage"""
    irrigate = require_system()
    waterflow_data = {
        "enabled": irrigate.waterflow is not None,
        "flow_rate_lpm": 0,
        "is_active": False,
        "leak": irrigate.leak.snapshot() if irrigate.leak is not None else None,
        "history": [],
    }
    if irrigate.waterflow is not None:
        flow_rate = irrigate.waterflow.lastRate()
        waterflow_data["flow_rate_lpm"] = round(flow_rate, 2)
        waterflow_data["is_active"] = flow_rate > 0
        waterflow_data["history"] = irrigate.waterflow.getHistory()
    return waterflow_data


@app.post("/api/system/power")
async def set_power(value: bool):
    """Switch the irrigation system on or off"""
    irrigate = require_system()
    irrigate.setPower(value)
    return {"success": True, **irrigate.power.snapshot()}


@app.post("/api/system/pause")
async def set_pause(until: int):
    """Pause watering until a unix timestamp (seconds). 0 clears the pause."""
    irrigate = require_system()
    if not irrigate.setPause(until):
        raise HTTPException(status_code=400, detail=f"Invalid pause timestamp: {until}")
    return {"success": True, **irrigate.power.snapshot()}


@app.post("/api/system/pause-days")
async def set_pause_days(days: int):
    """Pause watering for the rest of today (1) or today and the following days"""
    irrigate = require_system()
    if not irrigate.power.pauseForDays(days):
        raise HTTPException(status_code=400, detail=f"Invalid number of days: {days}")
    return {"success": True, **irrigate.power.snapshot()}


@app.get("/api/alerts")
async def get_alerts():
    """Get alerts raised since startup"""
    irrigate = require_system()
    return {"alerts": [alert.to_dict() for alert in irrigate.alerts.history]}


def run_api_server(irrigate, host="0.0.0.0", port=8000):
    global irrigate_instance
    irrigate_instance = irrigate

    irrigate.logger.info(f"Starting FastAPI server on {host}:{port}")
    irrigate.logger.info(f"API documentation available at http://{host}:{port}/docs")

    # Configure uvicorn to run without reloader (important for threading)
    config = uvicorn.Config(
        app=app,
        host=host,
        port=port,
        log_level="info",
        access_log=True,
        use_colors=True
    )
    server = uvicorn.Server(config)
    server.run()
