# Value types shared by the geometry helpers, the search engine and the API.

from enum import Enum
from typing import Annotated, Dict, FrozenSet, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from cragsearch.models.scales import Style, label_to_grade

# --- Geometry ---

class GeoPoint(BaseModel):
    """A WGS84 coordinate. Non-finite components mark the point as absent."""
    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., description="Latitude in decimal degrees.")
    lng: float = Field(..., description="Longitude in decimal degrees.")

# A ring: closure between the last and first point is implied.
Polygon = List[GeoPoint]

class Region(BaseModel):
    """Map framing rectangle, always derived from points."""
    model_config = ConfigDict(frozen=True)

    center: GeoPoint
    lat_span: float
    lng_span: float

class BoundaryPolygon(BaseModel):
    """A drawn boundary (sector or area) that a dropped point can be assigned to."""
    id: str
    name: Optional[str] = None
    ring: Polygon = Field(default_factory=list)

# --- Searchable entities ---

class EntityKind(str, Enum):
    AREA = "area"
    SECTOR = "sector"
    PROBLEM = "problem"

class SortMode(str, Enum):
    POPULARITY = "popularity"
    PROXIMITY = "proximity"

class _Entity(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    coordinate: Optional[GeoPoint] = None

class AreaEntity(_Entity):
    kind: Literal["area"] = "area"
    description: Optional[str] = None
    boulder_count: int = 0

class SectorEntity(_Entity):
    kind: Literal["sector"] = "sector"
    area_id: str
    area_name: str = ""

class ProblemEntity(_Entity):
    kind: Literal["problem"] = "problem"
    avg_grade: Optional[float] = None
    vote_count: int = 0
    style: Optional[Style] = None
    sector_id: Optional[str] = None
    sector_name: Optional[str] = None
    area_id: str = ""
    area_name: str = ""
    boulder_id: Optional[str] = None
    boulder_name: Optional[str] = None
    avg_rating: Optional[float] = Field(None, description="Community rating 1-5, independent of grade.")

SearchableEntity = Annotated[
    Union[AreaEntity, SectorEntity, ProblemEntity],
    Field(discriminator="kind"),
]

# --- Queries ---

class EntityTypes(BaseModel):
    """Which entity kinds a search should hit."""
    model_config = ConfigDict(frozen=True)

    area: bool = True
    sector: bool = True
    problem: bool = True

    def enabled(self, kind: EntityKind) -> bool:
        return getattr(self, kind.value)

class SearchQuery(BaseModel):
    """One search attempt. Never mutated; build a new one with model_copy(update=...)."""
    model_config = ConfigDict(frozen=True)

    text: str = ""
    min_grade: Optional[float] = None
    max_grade: Optional[float] = None
    styles: FrozenSet[Style] = frozenset()
    entity_types: EntityTypes = Field(default_factory=EntityTypes)
    sort_mode: SortMode = SortMode.POPULARITY
    user_location: Optional[GeoPoint] = None

class FilterCriteria(BaseModel):
    """In-memory filter parameters. Unset fields never narrow the candidate list."""
    model_config = ConfigDict(frozen=True)

    text: str = ""
    min_grade: Optional[float] = None
    max_grade: Optional[float] = None
    styles: FrozenSet[Style] = frozenset()
    sector_id: Optional[str] = None
    boulder_id: Optional[str] = None

# --- Results ---

class SearchResults(BaseModel):
    """Three parallel ranked buckets; kinds are never interleaved."""
    areas: List[AreaEntity] = Field(default_factory=list)
    sectors: List[SectorEntity] = Field(default_factory=list)
    problems: List[ProblemEntity] = Field(default_factory=list)
    generation: int = 0
    sort_applied: Optional[SortMode] = None
    location_required: bool = Field(False, description="Proximity sort was requested without a location.")

    @classmethod
    def empty(cls, generation: int = 0) -> "SearchResults":
        return cls(generation=generation)

    def total(self) -> int:
        return len(self.areas) + len(self.sectors) + len(self.problems)

class BoulderMarker(BaseModel):
    id: str
    name: str
    problem_count: int
    coordinate: GeoPoint
    sector_id: Optional[str] = None

class AreaProblemsView(BaseModel):
    problems: List[ProblemEntity]
    boulders: List[BoulderMarker]
    total_count: int = Field(..., description="Problems in the area before filtering.")
    region: Region

class AssignmentPolicy(str, Enum):
    UNSCOPED = "unscoped"
    FIRST_AVAILABLE = "first_available"

class Assignment(BaseModel):
    container_id: Optional[str] = None
    matched: bool = Field(False, description="True when a boundary actually contains the point.")

# --- API Request Models ---

class SearchRequest(BaseModel):
    """Request model for the /api/search endpoint."""
    text: str = Field("", description="Free-text name fragment.")
    min_grade: Optional[float] = Field(None, description="Lowest grade, as a code (VB=0 ... V18=19) or a label such as \"V4\".")
    max_grade: Optional[float] = Field(None, description="Highest grade, as a code or a label.")
    styles: List[Style] = Field(default_factory=list)
    entity_types: EntityTypes = Field(default_factory=EntityTypes)
    sort_mode: SortMode = SortMode.POPULARITY
    user_location: Optional[GeoPoint] = None

    @field_validator("min_grade", "max_grade", mode="before")
    @classmethod
    def grade_from_label(cls, v):
        if isinstance(v, str):
            code = label_to_grade(v)
            if code is None:
                raise ValueError(f"unknown grade label: {v!r}")
            return code
        return v

    def to_query(self) -> SearchQuery:
        return SearchQuery(
            text=self.text,
            min_grade=self.min_grade,
            max_grade=self.max_grade,
            styles=frozenset(self.styles),
            entity_types=self.entity_types,
            sort_mode=self.sort_mode,
            user_location=self.user_location,
        )

class SearchHit(BaseModel):
    entity: SearchableEntity
    distance_km: Optional[float] = Field(None, description="Distance from the user, proximity sort only.")
    grade_label: Optional[str] = Field(None, description="Display grade, problems only.")
    style_label: Optional[str] = Field(None, description="Display style, problems only.")

class SearchResponse(BaseModel):
    """Public DTO for the /api/search response."""
    areas: List[SearchHit]
    sectors: List[SearchHit]
    problems: List[SearchHit]
    sort_applied: Optional[SortMode] = None
    location_required: bool = False

class LocationRequest(BaseModel):
    address: str = Field(..., description="Free-text place name or a 'lat,lng' pair.")

class RegionRequest(BaseModel):
    points: List[GeoPoint] = Field(default_factory=list)
    min_lat_span: float = Field(0.02, gt=0)
    min_lng_span: float = Field(0.02, gt=0)
    zoom_scale: float = Field(1.0, gt=0)

class AssignPointRequest(BaseModel):
    point: GeoPoint
    policy: AssignmentPolicy = AssignmentPolicy.UNSCOPED

class FinalizeBoundaryRequest(BaseModel):
    points: List[GeoPoint]

class FinalizeBoundaryResponse(BaseModel):
    ring: Polygon
    point_count: int

# --- Error Response Model ---

class ErrorResponse(BaseModel):
    """Standardized error response model."""
    error: str = Field(..., description="A machine-readable error code.")
    detail: str = Field(..., description="A human-readable explanation.")
    context: Optional[Dict[str, str]] = None
