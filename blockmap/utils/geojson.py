"""
GeoJSON serialization for boundaries and vigor zones.

The editor works on unclosed vertex lists; rings are closed only here.
"""
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from blockmap.domain.models import LatLng, VigorZone, RasterRecord


def ring_to_geojson(ring: Sequence[LatLng]) -> dict[str, Any]:
    """
    Convert an unclosed vertex list to a GeoJSON Polygon.

    Args:
        ring: List of (lat, lng) vertices

    Returns:
        GeoJSON Polygon with a closed [lng, lat] ring
    """
    coordinates = [[p.lng, p.lat] for p in ring]
    if coordinates and coordinates[0] != coordinates[-1]:
        coordinates.append(list(coordinates[0]))
    return {
        "type": "Polygon",
        "coordinates": [coordinates],
    }


def geojson_to_ring(geojson: Optional[dict[str, Any]]) -> list[LatLng]:
    """
    Convert a GeoJSON Polygon to an unclosed vertex list.

    Args:
        geojson: GeoJSON Polygon (outer ring only is used)

    Returns:
        List of (lat, lng) vertices, empty for missing geometry
    """
    if not geojson or not geojson.get("coordinates"):
        return []
    outer = geojson["coordinates"][0]
    ring = [LatLng(float(lat), float(lng)) for lng, lat in outer]
    if len(ring) > 1 and ring[0] == ring[-1]:
        ring.pop()
    return ring


def zones_to_feature_collection(
    zones: Sequence[VigorZone],
    boundary: Optional[Sequence[LatLng]] = None,
    record: Optional[RasterRecord] = None,
    field_id: Optional[str] = None,
    field_name: Optional[str] = None,
    acres: Optional[float] = None,
) -> dict[str, Any]:
    """
    Export vigor zones, and the block boundary, as a FeatureCollection.

    Args:
        zones: Zones from classify_vigor_zones
        boundary: Optional block ring added as the first feature
        record: Raster the zones were derived from
        field_id: Owning field identifier
        field_name: Owning field name
        acres: Block acreage, used to size each zone

    Returns:
        GeoJSON FeatureCollection
    """
    features = []
    acquisition = None
    if record is not None and record.acquisition_date is not None:
        acquisition = record.acquisition_date.isoformat()

    if boundary:
        features.append({
            "type": "Feature",
            "geometry": ring_to_geojson(boundary),
            "properties": {
                "featureType": "block_boundary",
                "blockId": field_id,
                "blockName": field_name,
                "acres": acres,
            },
        })

    for idx, zone in enumerate(zones):
        if zone.polygon is None:
            continue
        features.append({
            "type": "Feature",
            "geometry": zone.polygon,
            "properties": {
                "featureType": "ndvi_zone",
                "zoneId": f"zone-{idx}",
                "blockId": field_id,
                "vigorLevel": zone.level,
                "ndviRange": list(zone.ndvi_range),
                "ndviMean": zone.mean_ndvi,
                "percentOfField": zone.percent_of_field,
                "acres": acres * zone.percent_of_field / 100 if acres else None,
                "irrigationRate": zone.recommended_rate,
                "color": zone.color,
                "acquisitionDate": acquisition,
                "sceneId": record.scene_id if record else None,
            },
        })

    return {
        "type": "FeatureCollection",
        "properties": {
            "exportedAt": datetime.now(timezone.utc).isoformat(),
            "blockId": field_id,
            "blockName": field_name,
            "meanNDVI": record.mean_value if record else None,
            "acquisitionDate": acquisition,
        },
        "features": features,
    }
