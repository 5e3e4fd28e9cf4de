"""Geo cluster engine — groups deals on a map by proximity and plans walking routes between them.

Clustering is a single greedy pass in distance-from-centre order. It is
deterministic but not globally optimal, and a larger radius does not always
yield fewer clusters: a seed can absorb a point that would otherwise have
joined two others. The nearest-neighbour route is likewise an approximation
of the shortest tour.
"""

import logging
import math
from collections import Counter

from spendwise.schemas.deals import Coordinates, ScoredDeal
from spendwise.schemas.geo import (
    DealCluster,
    DealMap,
    DealMapMetadata,
    DealRoute,
    GeoDeal,
    MapBounds,
)

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0
CLUSTER_RADIUS_METERS = 500
BOUNDS_PADDING = 0.1

# Surabaya, used when no deal carries coordinates
DEFAULT_CENTER = Coordinates(lat=-7.2575, lng=112.7521)
DEFAULT_BOUNDS = MapBounds(north=-6.2, south=-7.8, east=113.0, west=112.6)

# (span in degrees strictly greater than, zoom)
ZOOM_BREAKPOINTS = ((10, 8), (5, 9), (2, 10), (1, 11), (0.5, 12), (0.2, 13), (0.1, 14))
MAX_ZOOM = 15


def haversine_km(a: Coordinates, b: Coordinates) -> float:
    d_lat = math.radians(b.lat - a.lat)
    d_lng = math.radians(b.lng - a.lng)
    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(a.lat)) * math.cos(math.radians(b.lat)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def to_geo_deals(deals: list[ScoredDeal]) -> list[GeoDeal]:
    """Deals without coordinates cannot be placed and are dropped."""
    return [
        GeoDeal(id=deal.id, coordinates=deal.coordinates, deal=deal)
        for deal in deals
        if deal.coordinates is not None
    ]


def centroid(points: list[Coordinates]) -> Coordinates:
    if not points:
        return DEFAULT_CENTER
    return Coordinates(
        lat=sum(p.lat for p in points) / len(points),
        lng=sum(p.lng for p in points) / len(points),
    )


def bounds_for(points: list[Coordinates]) -> MapBounds:
    if not points:
        return DEFAULT_BOUNDS
    north = max(p.lat for p in points)
    south = min(p.lat for p in points)
    east = max(p.lng for p in points)
    west = min(p.lng for p in points)
    lat_pad = (north - south) * BOUNDS_PADDING
    lng_pad = (east - west) * BOUNDS_PADDING
    return MapBounds(north=north + lat_pad, south=south - lat_pad, east=east + lng_pad, west=west - lng_pad)


def zoom_for(bounds: MapBounds) -> int:
    span = max(bounds.north - bounds.south, bounds.east - bounds.west)
    for threshold, zoom in ZOOM_BREAKPOINTS:
        if span > threshold:
            return zoom
    return MAX_ZOOM


def dominant_tier(members: list[GeoDeal]) -> str:
    """Majority budget tier; ties go to the tier seen first."""
    counts = Counter(m.deal.budget_category for m in members)
    best = max(counts.values())
    return next(tier for tier in counts if counts[tier] == best)


def _build_cluster(cluster_id: str, members: list[GeoDeal]) -> DealCluster:
    ratings = [m.deal.rating for m in members if m.deal.rating is not None]
    return DealCluster(
        id=cluster_id,
        center=centroid([m.coordinates for m in members]),
        deals=members,
        cluster_type=dominant_tier(members),
        average_rating=sum(ratings) / len(ratings) if ratings else 0.0,
        total_savings=sum(m.deal.savings for m in members),
        category_breakdown=dict(Counter(m.deal.category for m in members)),
    )


def cluster_deals(
    geo_deals: list[GeoDeal],
    center: Coordinates,
    radius_km: float = CLUSTER_RADIUS_METERS / 1000,
) -> list[DealCluster]:
    """Greedy proximity clustering; every deal lands in exactly one cluster."""
    ordered = sorted(
        (
            deal.model_copy(update={"distance_from_center": haversine_km(center, deal.coordinates)})
            for deal in geo_deals
        ),
        key=lambda d: d.distance_from_center,
    )

    clusters: list[DealCluster] = []
    processed: set[int] = set()
    for i, seed in enumerate(ordered):
        if i in processed:
            continue
        members = [seed]
        processed.add(i)
        for j in range(i + 1, len(ordered)):
            if j not in processed and haversine_km(seed.coordinates, ordered[j].coordinates) <= radius_km:
                members.append(ordered[j])
                processed.add(j)
        clusters.append(_build_cluster(f"cluster-{len(clusters) + 1}", members))
    return clusters


def deals_in_radius(deals: list[ScoredDeal], center: Coordinates, radius_km: float) -> list[GeoDeal]:
    return [
        geo.model_copy(update={"distance_from_center": distance})
        for geo in to_geo_deals(deals)
        if (distance := haversine_km(center, geo.coordinates)) <= radius_km
    ]


def optimize_route(deals: list[ScoredDeal], start: Coordinates) -> DealRoute:
    """Nearest-neighbour tour from `start`. Approximate: not guaranteed shortest."""
    remaining = to_geo_deals(deals)
    stops: list[GeoDeal] = []
    position = start
    total = 0.0
    while remaining:
        distances = [haversine_km(position, d.coordinates) for d in remaining]
        nearest = distances.index(min(distances))
        stop = remaining.pop(nearest)
        total += distances[nearest]
        stops.append(stop.model_copy(update={"distance_from_center": distances[nearest]}))
        position = stop.coordinates
    return DealRoute(start=start, stops=stops, total_distance_km=total)


class GeoClusterEngine:
    def __init__(self, radius_meters: float = CLUSTER_RADIUS_METERS):
        self.radius_km = radius_meters / 1000

    def build_map(
        self,
        deals: list[ScoredDeal],
        center: Coordinates | None = None,
        zoom: int | None = None,
    ) -> DealMap:
        geo_deals = to_geo_deals(deals)
        points = [g.coordinates for g in geo_deals]
        bounds = bounds_for(points)
        center = center or centroid(points)
        clusters = cluster_deals(geo_deals, center, self.radius_km)

        # Each deal records its cluster and its distance to that cluster's centre.
        placed: list[GeoDeal] = []
        for cluster in clusters:
            for member in cluster.deals:
                placed.append(member.model_copy(update={
                    "cluster_id": cluster.id,
                    "distance_from_center": haversine_km(cluster.center, member.coordinates),
                }))

        average_distance = (
            sum(haversine_km(center, p) for p in points) / len(points) if points else 0.0
        )
        logger.info(f"Built deal map with {len(clusters)} clusters from {len(geo_deals)} deals")
        return DealMap(
            deals=placed,
            clusters=clusters,
            bounds=bounds,
            center=center,
            zoom=zoom or zoom_for(bounds),
            metadata=DealMapMetadata(
                total_deals=len(deals),
                clustered_deals=len(placed),
                average_distance=average_distance,
            ),
        )

    def cluster(self, deals: list[ScoredDeal], center: Coordinates | None = None) -> list[DealCluster]:
        geo_deals = to_geo_deals(deals)
        center = center or centroid([g.coordinates for g in geo_deals])
        return cluster_deals(geo_deals, center, self.radius_km)

    deals_in_radius = staticmethod(deals_in_radius)
    optimize_route = staticmethod(optimize_route)


geo_cluster_engine = GeoClusterEngine()
