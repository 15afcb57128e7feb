"""Overpass API specifics: endpoint pools, query text, response checks."""

from __future__ import annotations

import json
from typing import Any

from gridpool.errors import EmptyResponseError, SerializationError
from gridpool.models import BoundingBox

PRIMARY_ENDPOINTS: tuple[str, ...] = (
    "https://overpass-api.de/api/interpreter",
    "https://lz4.overpass-api.de/api/interpreter",
    "https://z.overpass-api.de/api/interpreter",
)

FALLBACK_ENDPOINTS: tuple[str, ...] = (
    "https://maps.mail.ru/osm/tools/overpass/api/interpreter",
)

QUERY_TIMEOUT = 360  # seconds, server side

# Tag keys whose nodes, ways and relations are pulled for a chunk.
FEATURE_KEYS: tuple[str, ...] = (
    "building",
    "highway",
    "landuse",
    "natural",
    "leisure",
    "water",
    "waterway",
    "amenity",
    "tourism",
    "bridge",
    "railway",
    "barrier",
    "entrance",
    "door",
)


def build_query(bbox: BoundingBox) -> str:
    """Return the Overpass QL query for every mapped feature inside *bbox*."""
    selectors = "\n".join(f'    nwr["{key}"];' for key in FEATURE_KEYS)
    return (
        f"[out:json][timeout:{QUERY_TIMEOUT}]"
        f"[bbox:{bbox.min_lat},{bbox.min_lng},{bbox.max_lat},{bbox.max_lng}];\n"
        "(\n"
        f"{selectors}\n"
        "    way;\n"
        ")->.relsinbbox;\n"
        "(\n"
        "    way(r.relsinbbox);\n"
        ")->.waysinbbox;\n"
        "(\n"
        "    node(w.waysinbbox);\n"
        "    node(w.relsinbbox);\n"
        ")->.nodesinbbox;\n"
        ".relsinbbox out body;\n"
        ".waysinbbox out body;\n"
        ".nodesinbbox out skel qt;"
    )


def parse_response(payload: bytes | str) -> dict[str, Any]:
    """Decode an Overpass JSON response and require at least one element.

    Raises:
        SerializationError: If *payload* is not a JSON object.
        EmptyResponseError: If it has no elements. The server's ``remark``
            is surfaced in the message.
    """
    try:
        data = json.loads(payload)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise SerializationError(f"Server response is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise SerializationError("Server response is not a JSON object")

    elements = data.get("elements")
    if isinstance(elements, list) and elements:
        return data

    remark = data.get("remark")
    if isinstance(remark, str) and remark:
        if "runtime error" in remark and "out of memory" in remark:
            raise EmptyResponseError(
                "The query ran out of memory on the server. Try a smaller area."
            )
        raise EmptyResponseError(f"API returned: {remark}")
    raise EmptyResponseError("API returned no data. Please try again.")
