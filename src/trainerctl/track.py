"""
GPS track geometry: cumulative distance, interpolation and gradient.
"""

import bisect
import logging
import math
import xml.etree.ElementTree as ET
from dataclasses import dataclass, replace
from pathlib import Path
from typing import List, Optional, Sequence, Union

from .errors import ScheduleInvalid

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6371000.0

# Half-width of the window used to measure gradient
GRADIENT_WINDOW_M = 50.0

# Segments shorter than this are not interpolated
MIN_SEGMENT_M = 0.1

# Windows shorter than this give no gradient
MIN_GRADIENT_SPAN_M = 1.0


@dataclass(frozen=True)
class TrackPoint:
    """A point of a recorded or planned route."""

    lat: float
    lon: float
    elevation: Optional[float] = None
    time: Optional[str] = None
    heart_rate: Optional[int] = None
    cadence: Optional[int] = None
    power: Optional[int] = None
    distance_from_start: float = 0.0


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two coordinates in meters."""
    p1 = math.radians(lat1)
    p2 = math.radians(lat2)
    dp = math.radians(lat2 - lat1)
    dl = math.radians(lon2 - lon1)
    a = math.sin(dp / 2) ** 2 + math.cos(p1) * math.cos(p2) * math.sin(dl / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(a)))


def materialize(points: Sequence[TrackPoint]) -> List[TrackPoint]:
    """Return copies of ``points`` with ``distance_from_start`` filled in.

    Points must already be in traversal order. The first point is at 0 m.
    """
    result: List[TrackPoint] = []
    accumulated = 0.0
    for i, point in enumerate(points):
        if i > 0:
            prev = points[i - 1]
            accumulated += haversine_m(prev.lat, prev.lon, point.lat, point.lon)
        result.append(replace(point, distance_from_start=accumulated))
    return result


def _interpolate_elevation(
    e1: Optional[float], e2: Optional[float], ratio: float
) -> Optional[float]:
    if e1 is not None and e2 is not None:
        return e1 + (e2 - e1) * ratio
    return e1 if e1 is not None else e2


class Track:
    """An ordered, distance-indexed list of track points.

    Use :meth:`from_points` to build one from raw GPS points; the constructor
    expects ``distance_from_start`` to be populated already.
    """

    def __init__(self, name: str, points: Sequence[TrackPoint]) -> None:
        if not points:
            raise ScheduleInvalid(f"Track {name!r} has no points")
        self.name = name
        self.points = tuple(points)
        self._distances = [p.distance_from_start for p in self.points]
        for a, b in zip(self._distances, self._distances[1:]):
            if b < a:
                raise ScheduleInvalid(
                    f"Track {name!r} distances decrease ({a:.1f}m -> {b:.1f}m)"
                )

    @classmethod
    def from_points(cls, name: str, points: Sequence[TrackPoint]) -> "Track":
        return cls(name, materialize(points))

    @property
    def total_distance(self) -> float:
        return self._distances[-1]

    @property
    def has_elevation(self) -> bool:
        return any(p.elevation is not None for p in self.points)

    def position_at(self, distance: float) -> TrackPoint:
        """Interpolated point at ``distance`` meters from the start.

        The distance is clamped to the track. Exact endpoint and vertex
        distances return the stored point itself.
        """
        if distance <= 0:
            return self.points[0]
        if distance >= self.total_distance:
            return self.points[-1]

        i = bisect.bisect_right(self._distances, distance) - 1
        p1 = self.points[i]
        if p1.distance_from_start == distance:
            return p1
        p2 = self.points[i + 1]

        segment = p2.distance_from_start - p1.distance_from_start
        if segment < MIN_SEGMENT_M:
            return p1

        ratio = (distance - p1.distance_from_start) / segment
        return TrackPoint(
            lat=p1.lat + (p2.lat - p1.lat) * ratio,
            lon=p1.lon + (p2.lon - p1.lon) * ratio,
            elevation=_interpolate_elevation(p1.elevation, p2.elevation, ratio),
            distance_from_start=distance,
        )

    def gradient_at(self, distance: float) -> float:
        """Slope in percent over a window centered on ``distance``.

        Returns 0 when elevation is missing at either end of the window or the
        window collapses below 1 m.
        """
        before = self.position_at(max(distance - GRADIENT_WINDOW_M, 0.0))
        after = self.position_at(min(distance + GRADIENT_WINDOW_M, self.total_distance))

        if before.elevation is None or after.elevation is None:
            return 0.0

        span = after.distance_from_start - before.distance_from_start
        if span < MIN_GRADIENT_SPAN_M:
            return 0.0

        return (after.elevation - before.elevation) / span * 100

    def __len__(self) -> int:
        return len(self.points)

    def __repr__(self) -> str:
        return (
            f"Track(name={self.name!r}, points={len(self.points)}, "
            f"distance={self.total_distance:.0f}m)"
        )


def _local(tag: str) -> str:
    """Tag name without its XML namespace."""
    return tag.rsplit("}", 1)[-1]


def _child_text(element: ET.Element, name: str) -> Optional[str]:
    for child in element:
        if _local(child.tag) == name:
            return (child.text or "").strip()
    return None


def _to_float(text: Optional[str]) -> Optional[float]:
    try:
        return float(text) if text else None
    except ValueError:
        return None


def _to_int(text: Optional[str]) -> Optional[int]:
    value = _to_float(text)
    return int(value) if value is not None else None


def _read_trackpoint(element: ET.Element) -> TrackPoint:
    heart_rate = cadence = power = None
    for child in element.iter():
        name = _local(child.tag).lower()
        if child is element or name in ("ele", "time"):
            continue
        # Garmin/Strava style extensions: hr, cad, power
        if "hr" in name and heart_rate is None:
            heart_rate = _to_int((child.text or "").strip())
        elif "cad" in name and cadence is None:
            cadence = _to_int((child.text or "").strip())
        elif "power" in name and power is None:
            power = _to_int((child.text or "").strip())

    return TrackPoint(
        lat=_to_float(element.get("lat")) or 0.0,
        lon=_to_float(element.get("lon")) or 0.0,
        elevation=_to_float(_child_text(element, "ele")),
        time=_child_text(element, "time"),
        heart_rate=heart_rate,
        cadence=cadence,
        power=power,
    )


def parse_gpx(text: Union[str, bytes]) -> Track:
    """Build a materialized track from GPX document text.

    All ``trkseg`` segments of all ``trk`` elements are joined in document
    order. The first track name found is used.

    Raises:
        ScheduleInvalid: If the document is not GPX or has no track points
    """
    try:
        root = ET.fromstring(text)
    except ET.ParseError as e:
        raise ScheduleInvalid(f"Invalid GPX document: {e}") from e

    if _local(root.tag) != "gpx":
        raise ScheduleInvalid(f"Expected <gpx> root element, got <{_local(root.tag)}>")

    name = "Unnamed Track"
    points: List[TrackPoint] = []
    for trk in root:
        if _local(trk.tag) != "trk":
            continue
        trk_name = _child_text(trk, "name")
        if trk_name and name == "Unnamed Track":
            name = trk_name
        for element in trk.iter():
            if _local(element.tag) == "trkpt":
                points.append(_read_trackpoint(element))

    if not points:
        raise ScheduleInvalid("GPX document contains no track points")

    logger.info(f"Read GPX track {name!r} with {len(points)} points")
    return Track.from_points(name, points)


def read_gpx(path: Union[str, Path]) -> Track:
    """Read a GPX file into a materialized track."""
    return parse_gpx(Path(path).read_bytes())
