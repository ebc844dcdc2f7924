#!/usr/bin/env python3
"""Status web server - read-only view of every location's solar phase."""

import logging
from typing import Any, Dict

from aiohttp import web
from aiohttp.web import Request, Response

from sunphase.exceptions import SunPhaseError
from sunphase.locations import SunPhasePlatform
from sunphase.monitor import PhaseMonitor
from sunphase.publisher import sensor_name

logger = logging.getLogger(__name__)


def describe_monitor(monitor: PhaseMonitor) -> Dict[str, Any]:
    """JSON-friendly snapshot of one monitor."""
    state = monitor.state
    active = state.active_event if state else None
    sensors = {}
    if state:
        for event, reading in state.sensors.items():
            sensors[event.value] = {
                "name": sensor_name(monitor.name, event),
                "occupied": reading.occupied,
                "display_time": reading.display_time,
            }

    return {
        **monitor.config.to_dict(),
        "active_event": active.value if active else None,
        "active_name": active.display_name if active else None,
        "computed_at": state.computed_at.isoformat() if state and state.computed_at else None,
        "next_wakeup": monitor.next_wakeup.isoformat() if monitor.next_wakeup else None,
        "armed": monitor.is_armed,
        "sensors": sensors,
        "timeline": [[event.value, instant.isoformat()] for event, instant in state.timeline] if state else [],
    }


class StatusServer:
    """HTTP endpoints for inspecting and nudging phase monitors."""

    def __init__(self, platform: SunPhasePlatform, port: int = 8099, host: str = "0.0.0.0"):
        self.platform = platform
        self.port = port
        self.host = host
        self.app = web.Application()
        self.runner = None
        self.setup_routes()

    def setup_routes(self):
        # Ingress-prefixed routes first, then the bare ones
        self.app.router.add_route('GET', '/{path:.*}/health', self.health_check)
        self.app.router.add_route('GET', '/{path:.*}/api/locations', self.get_locations)
        self.app.router.add_route('GET', '/{path:.*}/api/locations/{name}', self.get_location)
        self.app.router.add_route('POST', '/{path:.*}/api/locations/{name}/refresh', self.refresh_location)

        self.app.router.add_get('/health', self.health_check)
        self.app.router.add_get('/api/locations', self.get_locations)
        self.app.router.add_get('/api/locations/{name}', self.get_location)
        self.app.router.add_post('/api/locations/{name}/refresh', self.refresh_location)

    async def health_check(self, request: Request) -> Response:
        """Health check endpoint."""
        return web.json_response({
            "status": "healthy",
            "locations": len(self.platform.monitors),
        })

    async def get_locations(self, request: Request) -> Response:
        return web.json_response({
            "locations": [describe_monitor(m) for m in self.platform.monitors.values()]
        })

    async def get_location(self, request: Request) -> Response:
        name = request.match_info["name"]
        monitor = self.platform.get_monitor(name)
        if monitor is None:
            return web.json_response({"error": f"Unknown location: {name}"}, status=404)
        return web.json_response(describe_monitor(monitor))

    async def refresh_location(self, request: Request) -> Response:
        name = request.match_info["name"]
        monitor = self.platform.get_monitor(name)
        if monitor is None:
            return web.json_response({"error": f"Unknown location: {name}"}, status=404)
        try:
            self.platform.refresh(name)
        except SunPhaseError as e:
            logger.error(f"Error refreshing location '{name}': {e}")
            return web.json_response({"error": str(e)}, status=409)
        except Exception as e:
            logger.error(f"Error refreshing location '{name}': {e}")
            return web.json_response({"error": str(e)}, status=500)
        logger.info(f"Manual refresh of location '{name}'")
        return web.json_response(describe_monitor(monitor))

    async def start(self):
        """Start serving; returns once the site is listening."""
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        site = web.TCPSite(self.runner, self.host, self.port)
        await site.start()
        logger.info(f"Status server started on port {self.port}")

    async def stop(self):
        if self.runner is not None:
            await self.runner.cleanup()
            self.runner = None
