"""JSON endpoints for location changes, display control and history queries.

Every handler reaches the core through app.state.service. Bridge errors
map to HTTP statuses in one place (_error_response); request validation
problems are answered with 400 before the core is called.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from ledbridge.exceptions import (
    BridgeError,
    ConnectError,
    FetchError,
    NotConnectedError,
    SchemaError,
    StorageError,
)
from ledbridge.models import Direction, DisplayMode, LedSettings, Location, utc_now
from ledbridge.storage.store import DEFAULT_PAGE_SIZE, StorageDomain

log = structlog.get_logger(__name__)

router = APIRouter()

_ERROR_STATUS: tuple[tuple[type[BridgeError], int], ...] = (
    (NotConnectedError, 503),
    (ConnectError, 503),
    (FetchError, 502),
    (SchemaError, 502),
    (StorageError, 500),
)


def _jsonable(obj: Any) -> Any:
    """Recursively convert Decimal and datetime values for JSON serialization."""
    if isinstance(obj, Decimal):
        return float(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, dict):
        return {k: _jsonable(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_jsonable(item) for item in obj]
    return obj


def _error_response(exc: BridgeError) -> JSONResponse:
    status = next(
        (code for exc_type, code in _ERROR_STATUS if isinstance(exc, exc_type)), 500
    )
    log.warning(
        "api_request_failed",
        error_type=type(exc).__name__,
        error=str(exc),
        status=status,
    )
    return JSONResponse(content={"error": str(exc)}, status_code=status)


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse(content={"error": message}, status_code=400)


async def _json_body(request: Request) -> dict[str, Any] | None:
    """Parsed JSON object body, or None when the body is missing or malformed."""
    try:
        body = await request.json()
    except Exception:
        return None
    return body if isinstance(body, dict) else None


def _int_param(value: str | None, default: int) -> int:
    """Lenient integer query parameter; falls back to default on bad input."""
    try:
        return int(value) if value is not None else default
    except ValueError:
        return default


def _parse_mode(value: Any) -> DisplayMode | None:
    """Raises ValueError for an unknown mode."""
    if value in (None, ""):
        return None
    return DisplayMode(value)


# ---------------------------------------------------------------------------
# Weather
# ---------------------------------------------------------------------------


@router.post("/weather/location")
async def update_weather_location(request: Request) -> JSONResponse:
    """Switch the weather location and fetch conditions there immediately.

    Expects JSON body with lat and lon (latitude/longitude also accepted).
    """
    body = await _json_body(request)
    if body is None:
        return _bad_request("Invalid JSON body")

    lat = body.get("lat", body.get("latitude"))
    lon = body.get("lon", body.get("longitude"))
    if lat in (None, "") or lon in (None, ""):
        return _bad_request("Missing required field: lat and lon")

    try:
        location = Location(latitude=float(lat), longitude=float(lon))
    except (TypeError, ValueError) as e:
        return _bad_request(f"Invalid location: {e}")

    service = request.app.state.service
    try:
        record = await service.trigger_weather_fetch(location)
    except BridgeError as e:
        return _error_response(e)

    return JSONResponse(content={"success": True, "data": record.to_dict()})


@router.get("/weather/current")
async def get_weather_current(request: Request) -> JSONResponse:
    """Latest stored weather observation; data is null before the first cycle."""
    gateway = request.app.state.service.gateway
    try:
        row = await gateway.latest(StorageDomain.WEATHER)
    except BridgeError as e:
        return _error_response(e)
    return JSONResponse(content={"success": True, "data": _jsonable(row)})


@router.get("/weather/history")
async def get_weather_history(
    request: Request, limit: str | None = None, offset: str | None = None
) -> JSONResponse:
    gateway = request.app.state.service.gateway
    try:
        rows = await gateway.history(
            StorageDomain.WEATHER,
            limit=_int_param(limit, DEFAULT_PAGE_SIZE),
            offset=_int_param(offset, 0),
        )
    except BridgeError as e:
        return _error_response(e)
    return JSONResponse(content={"success": True, "data": _jsonable(rows)})


# ---------------------------------------------------------------------------
# Exchange
# ---------------------------------------------------------------------------


@router.get("/exchange/current")
async def get_exchange_current(
    request: Request, base: str = "USD", target: str = "VND"
) -> JSONResponse:
    """Latest rate for a pair, derived through USD when not fetched directly."""
    publisher = request.app.state.service.publisher
    try:
        quote = await publisher.quote_pair(base, target)
    except BridgeError as e:
        return _error_response(e)
    return JSONResponse(
        content={"success": True, "data": quote.to_dict() if quote else None}
    )


@router.post("/exchange/display")
async def display_exchange(request: Request) -> JSONResponse:
    """Show one currency pair on the display.

    Expects JSON body with base and target.
    """
    body = await _json_body(request)
    if body is None:
        return _bad_request("Invalid JSON body")

    base = body.get("base")
    target = body.get("target")
    if not isinstance(base, str) or not isinstance(target, str) or not base or not target:
        return _bad_request("Missing required field: base and target")

    publisher = request.app.state.service.publisher
    try:
        quote = await publisher.display_exchange_pair(base, target)
    except BridgeError as e:
        return _error_response(e)

    if quote is None:
        return JSONResponse(
            content={
                "error": f"No exchange rate data for {base.upper()}/{target.upper()}",
                "suggestion": "Try again after the next exchange update or pick another pair",
            },
            status_code=404,
        )

    return JSONResponse(
        content={
            "success": True,
            "message": "Exchange rate sent to display",
            "data": quote.to_dict(),
        }
    )


@router.post("/exchange/refresh")
async def refresh_exchange(request: Request) -> JSONResponse:
    """Run an exchange cycle now and return the stored records."""
    service = request.app.state.service
    try:
        records = await service.trigger_exchange_fetch()
    except BridgeError as e:
        return _error_response(e)
    return JSONResponse(
        content={"success": True, "data": [record.to_dict() for record in records]}
    )


@router.get("/exchange/history")
async def get_exchange_history(
    request: Request,
    limit: str | None = None,
    offset: str | None = None,
    base: str | None = None,
    target: str | None = None,
) -> JSONResponse:
    gateway = request.app.state.service.gateway
    try:
        rows = await gateway.history(
            StorageDomain.EXCHANGE,
            limit=_int_param(limit, DEFAULT_PAGE_SIZE),
            offset=_int_param(offset, 0),
            base_currency=base.upper() if base else None,
            target_currency=target.upper() if target else None,
        )
    except BridgeError as e:
        return _error_response(e)
    return JSONResponse(content={"success": True, "data": _jsonable(rows)})


@router.get("/exchange/average")
async def get_exchange_average(
    request: Request,
    minutes: str | None = None,
    base: str = "USD",
    target: str = "VND",
) -> JSONResponse:
    """Average rate for a pair over the trailing window (default 60 minutes)."""
    window = _int_param(minutes, 60)
    if window <= 0:
        return _bad_request("minutes must be positive")

    gateway = request.app.state.service.gateway
    try:
        result = await gateway.exchange_average(window, base.upper(), target.upper())
    except BridgeError as e:
        return _error_response(e)

    return JSONResponse(
        content={
            "success": True,
            "data": {
                "base_currency": base.upper(),
                "target_currency": target.upper(),
                "minutes": window,
                **_jsonable(result),
            },
        }
    )


# ---------------------------------------------------------------------------
# Display messages and settings
# ---------------------------------------------------------------------------


@router.post("/message/send")
async def send_message(request: Request) -> JSONResponse:
    """Send free text to the display.

    Expects JSON body with message and optional mode
    (scroll_left, scroll_right or blink).
    """
    body = await _json_body(request)
    if body is None:
        return _bad_request("Invalid JSON body")

    message = body.get("message")
    if not isinstance(message, str) or not message.strip():
        return _bad_request("Missing required field: message")

    try:
        mode = _parse_mode(body.get("mode"))
    except ValueError:
        return _bad_request(f"Invalid mode: {body.get('mode')!r}")

    service = request.app.state.service
    try:
        ack = await service.publish_display_text(message, mode)
    except BridgeError as e:
        return _error_response(e)

    return JSONResponse(content={"success": True, "message": message, "ack": ack.to_dict()})


@router.get("/message/history")
async def get_message_history(
    request: Request, limit: str | None = None, offset: str | None = None
) -> JSONResponse:
    gateway = request.app.state.service.gateway
    try:
        rows = await gateway.history(
            StorageDomain.MESSAGES,
            limit=_int_param(limit, DEFAULT_PAGE_SIZE),
            offset=_int_param(offset, 0),
        )
    except BridgeError as e:
        return _error_response(e)
    return JSONResponse(content={"success": True, "data": _jsonable(rows)})


@router.post("/led/settings")
async def update_led_settings(request: Request) -> JSONResponse:
    """Push display settings. Expects JSON body with any of mode, speed, brightness."""
    body = await _json_body(request)
    if body is None:
        return _bad_request("Invalid JSON body")

    try:
        settings = LedSettings(
            mode=_parse_mode(body.get("mode")),
            speed=int(body["speed"]) if body.get("speed") is not None else None,
            brightness=(
                int(body["brightness"]) if body.get("brightness") is not None else None
            ),
        )
    except (TypeError, ValueError) as e:
        return _bad_request(f"Invalid LED settings: {e}")

    service = request.app.state.service
    try:
        ack = await service.publish_display_settings(settings)
    except BridgeError as e:
        return _error_response(e)

    return JSONResponse(
        content={"success": True, "settings": settings.to_dict(), "ack": ack.to_dict()}
    )


# ---------------------------------------------------------------------------
# Traffic log
# ---------------------------------------------------------------------------


@router.get("/logs")
async def get_logs(
    request: Request,
    limit: str | None = None,
    offset: str | None = None,
    topic: str | None = None,
    direction: str | None = None,
) -> JSONResponse:
    """Bus traffic log, newest first, optionally filtered by topic and direction."""
    try:
        direction_filter = Direction(direction) if direction else None
    except ValueError:
        return _bad_request(f"Invalid direction: {direction!r}")

    gateway = request.app.state.service.gateway
    try:
        rows = await gateway.history(
            StorageDomain.LOGS,
            limit=_int_param(limit, DEFAULT_PAGE_SIZE),
            offset=_int_param(offset, 0),
            topic=topic or None,
            direction=direction_filter,
        )
    except BridgeError as e:
        return _error_response(e)
    return JSONResponse(content={"success": True, "data": _jsonable(rows)})


# ---------------------------------------------------------------------------
# One-shot display views
# ---------------------------------------------------------------------------


@router.post("/auto/time")
async def display_time(request: Request) -> JSONResponse:
    """Show the current local time and date on the display."""
    publisher = request.app.state.service.publisher
    try:
        text = await publisher.display_clock()
    except BridgeError as e:
        return _error_response(e)

    time_text, _, date_text = text.partition(" - ")
    return JSONResponse(
        content={
            "success": True,
            "message": "Time sent to display",
            "data": {"time": time_text, "date": date_text},
        }
    )


@router.post("/auto/weather")
async def display_weather(request: Request) -> JSONResponse:
    """Show the latest stored weather on the display."""
    publisher = request.app.state.service.publisher
    try:
        record = await publisher.display_weather_summary()
    except BridgeError as e:
        return _error_response(e)

    if record is None:
        return JSONResponse(content={"error": "No weather data available"}, status_code=404)

    return JSONResponse(
        content={
            "success": True,
            "message": "Weather sent to display",
            "data": record.to_dict(),
        }
    )


@router.get("/health")
async def health(request: Request) -> JSONResponse:
    """Broker link state and scheduler status."""
    service = request.app.state.service
    return JSONResponse(
        content={"timestamp": utc_now().isoformat(), **service.get_status()}
    )
