"""Pydantic models for the external route optimizer wire format.

These mirror the RouteXL tour API: the request is a list of locations sent
as a form field, the response is a keyed route with arrival and distance
per visited location.
"""
from pydantic import BaseModel, ConfigDict, Field, AliasChoices, field_serializer
from typing import Dict, List, Optional


class LocationRestrictions(BaseModel):
    """Time-window restrictions for a location, in minutes after start."""
    ready: Optional[int] = Field(default=None, description="Earliest arrival")
    due: Optional[int] = Field(default=None, description="Latest arrival")
    before: Optional[int] = Field(default=None)
    after: Optional[int] = Field(default=None)


class OptimizerLocation(BaseModel):
    """One location to visit.

    ``address`` doubles as the key the optimizer echoes back as ``name``,
    so callers put a stop id (or "start"/"end") in it.
    """
    address: str
    lat: float
    lng: float
    servicetime: Optional[int] = Field(default=None, ge=0, description="Minutes on site")
    restrictions: Optional[LocationRestrictions] = None

    @field_serializer("lat", "lng")
    def _format_coordinate(self, value: float) -> str:
        # Optimizer expects invariant-culture decimal strings
        return repr(float(value))


class OptimizedStop(BaseModel):
    """A visited location in the optimized route."""
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(validation_alias=AliasChoices("name", "Name"))
    arrival: float = Field(default=0, validation_alias=AliasChoices("arrival", "Arrival"))
    distance: float = Field(default=0, validation_alias=AliasChoices("distance", "Distance"))


class OptimizerResponse(BaseModel):
    """Raw tour response as returned by the optimizer."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(validation_alias=AliasChoices("id", "Id"))
    count: int = Field(validation_alias=AliasChoices("count", "Count"))
    feasible: bool = Field(validation_alias=AliasChoices("feasible", "Feasible"))
    route: Dict[str, OptimizedStop] = Field(validation_alias=AliasChoices("route", "Route"))


class RouteStopResult(BaseModel):
    """One stop of the visiting order, in position order."""
    position: int
    name: str
    arrival: float
    distance: float


class OptimizationResult(BaseModel):
    """Parsed optimizer result with the visiting order."""
    id: str
    count: int
    feasible: bool
    stops: List[RouteStopResult]

    @classmethod
    def from_response(cls, response: OptimizerResponse) -> "OptimizationResult":
        try:
            ordered = sorted(response.route.items(), key=lambda item: int(item[0]))
        except ValueError as e:
            raise ValueError(f"Route keys must be integer positions: {e}")

        return cls(
            id=response.id,
            count=response.count,
            feasible=response.feasible,
            stops=[
                RouteStopResult(
                    position=int(key),
                    name=stop.name,
                    arrival=stop.arrival,
                    distance=stop.distance,
                )
                for key, stop in ordered
            ],
        )

    @property
    def visiting_order(self) -> List[str]:
        return [stop.name for stop in self.stops]


class OptimizedJourneyStop(BaseModel):
    """Stop of a journey after optimization."""
    stop_id: int
    order: int
    estimated_arrival: int = Field(description="Minutes after journey start")
    distance: float = Field(description="Kilometres from journey start")


class JourneyOptimizationResponse(BaseModel):
    """Result of optimizing one journey."""
    journey_id: int
    feasible: bool
    total_distance: float
    total_duration: int = Field(description="Minutes from start to end")
    stops: List[OptimizedJourneyStop]
