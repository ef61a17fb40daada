# Resolves the user's position for proximity sort.
# Accepts a raw "lat,lng" pair (what a device GPS fix is forwarded as) or a
# free-text place name, which is forward-geocoded through Mapbox.

import asyncio
import logging
import random
import re
from typing import Optional
from urllib.parse import quote

import httpx

from cragsearch.core.config import settings
from cragsearch.core.errors import LocationUnavailable
from cragsearch.models.dto import GeoPoint
from cragsearch.utils.geomath import as_point

logger = logging.getLogger(__name__)

MAPBOX_API_URL = "https://api.mapbox.com/geocoding/v5/mapbox.places/{query}.json"

# "lat,lng" or "lat lng"; comma decimals are accepted when the separator is whitespace
COORD_PATTERN = re.compile(r'^([-+]?\d{1,3}(?:[.,]\d+)?)(?:\s*,\s*|\s+)([-+]?\d{1,3}(?:[.,]\d+)?)$')

def parse_coordinates(text: str) -> Optional[GeoPoint]:
    """
    Parse a coordinate pair typed or pasted by the user.

    Latitude comes first. A pair whose first value cannot be a latitude but whose
    second can is read as "lng,lat". Returns None when the text is not a pair.
    """
    match = COORD_PATTERN.match(text.strip())
    if not match:
        return None
    try:
        val1 = float(match.group(1).replace(',', '.'))
        val2 = float(match.group(2).replace(',', '.'))
    except ValueError:
        return None

    if abs(val1) <= 90 and abs(val2) <= 180:
        lat, lng = val1, val2
    elif abs(val2) <= 90 and abs(val1) <= 180:
        lat, lng = val2, val1
    else:
        raise LocationUnavailable(f"Coordinates {val1},{val2} are out of range.", code="INVALID_COORDINATES")
    return GeoPoint(lat=lat, lng=lng)

async def resolve_location(
    text: str,
    client: Optional[httpx.AsyncClient] = None,
    token: Optional[str] = None,
) -> GeoPoint:
    """
    Resolve a location string to a GeoPoint.

    Raises:
        LocationUnavailable: empty input, no geocoder configured, no match,
        a backend error, or timeouts after the configured retries.
    """
    query = (text or "").strip()
    if not query:
        raise LocationUnavailable("No location given.", code="EMPTY_LOCATION")

    point = parse_coordinates(query)
    if point is not None:
        logger.info(f"Direct coordinate input detected: {point.lat}, {point.lng}")
        return point

    token = token or settings.MAPBOX_TOKEN
    if not token:
        raise LocationUnavailable("Place search is not configured.", code="GEOCODER_DISABLED")

    url = MAPBOX_API_URL.format(query=quote(query))
    params = {"access_token": token, "limit": 1}

    max_retries = settings.MAPBOX_MAX_RETRIES
    backoff_time = settings.MAPBOX_INITIAL_BACKOFF

    for attempt in range(max_retries + 1):
        try:
            if client is not None:
                response = await client.get(url, params=params)
            else:
                async with httpx.AsyncClient(timeout=settings.MAPBOX_TIMEOUT) as own_client:
                    response = await own_client.get(url, params=params)
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException:
            logger.warning(f"Mapbox geocoding attempt {attempt + 1} timed out.")
            if attempt < max_retries:
                wait_time = backoff_time * (2 ** attempt) + random.uniform(-0.2, 0.2)
                logger.info(f"Retrying in {wait_time:.2f}s...")
                await asyncio.sleep(max(0.0, wait_time))
                continue
            raise LocationUnavailable("Location service timed out.", code="GEOCODER_TIMEOUT")
        except httpx.HTTPStatusError as e:
            logger.error(f"Mapbox API returned status error: {e.response.status_code}")
            raise LocationUnavailable("Location service is unavailable.", code="GEOCODER_ERROR") from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Mapbox geocoding failed: {e}")
            raise LocationUnavailable("Location service is unavailable.", code="GEOCODER_ERROR") from e

        features = data.get("features") if isinstance(data, dict) else None
        if not features:
            raise LocationUnavailable(f"No place found for '{query}'.", code="LOCATION_NOT_FOUND")

        center = features[0].get("center") or []
        point = as_point({"lng": center[0], "lat": center[1]}) if len(center) == 2 else None
        if point is None:
            raise LocationUnavailable("Location service returned an invalid position.", code="GEOCODER_ERROR")
        return point

    # Loop always returns or raises
    raise LocationUnavailable("Location service timed out.", code="GEOCODER_TIMEOUT")
