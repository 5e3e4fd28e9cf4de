from pydantic import BaseModel

from spendwise.schemas.deals import Coordinates, ScoredDeal


class GeoDeal(BaseModel):
    id: str
    coordinates: Coordinates
    deal: ScoredDeal
    cluster_id: str | None = None
    distance_from_center: float = 0.0  # km


class DealCluster(BaseModel):
    id: str
    center: Coordinates
    deals: list[GeoDeal]
    cluster_type: str  # dominant budget tier
    average_rating: float
    total_savings: float
    category_breakdown: dict[str, int]


class MapBounds(BaseModel):
    north: float
    south: float
    east: float
    west: float


class DealMapMetadata(BaseModel):
    total_deals: int
    clustered_deals: int
    average_distance: float  # km from map centre


class DealMap(BaseModel):
    deals: list[GeoDeal]
    clusters: list[DealCluster]
    bounds: MapBounds
    center: Coordinates
    zoom: int
    metadata: DealMapMetadata


class DealRoute(BaseModel):
    start: Coordinates
    stops: list[GeoDeal]
    total_distance_km: float
