"""Static city centroids, the last-resort venue location source.

A centroid only places a venue in the right city, so results from here
are never definitive: a later run with a configured geocoder replaces
them once the tentative cache entry expires.
"""

from __future__ import annotations

from datetime import timedelta

from concert_binder.models import GeoPoint, VenueQuery
from concert_binder.providers.base import Found, MetadataProvider, NotFound, ProviderOutcome, days

# "City, ST" -> (lat, lng)
CITY_COORDINATES: dict[str, tuple[float, float]] = {
    # Colorado
    "Morrison, CO": (39.6653, -105.2055),
    "Denver, CO": (39.7392, -104.9903),
    "Boulder, CO": (40.0150, -105.2705),
    "Colorado Springs, CO": (38.8339, -104.8214),
    "Fort Collins, CO": (40.5853, -105.0844),
    "Aspen, CO": (39.1911, -106.8175),
    "Telluride, CO": (37.9375, -107.8123),
    # New York
    "Syracuse, NY": (43.0481, -76.1474),
    "Rochester, NY": (43.1566, -77.6088),
    "Buffalo, NY": (42.8864, -78.8784),
    "Vernon, NY": (43.0801, -75.5410),
    "Liverpool, NY": (43.1064, -76.2177),
    "Darien Center, NY": (42.9287, -78.3934),
    "Saratoga, NY": (43.0748, -73.7864),
    "New York City, NY": (40.7128, -74.0060),
    "Poughkeepsie, NY": (41.7004, -73.9210),
    # Maryland & DC
    "Baltimore, MD": (39.2904, -76.6122),
    "Towson, MD": (39.4015, -76.6019),
    "Silver Spring, MD": (38.9907, -77.0261),
    "Columbia, MD": (39.2037, -76.8610),
    "Hagerstown, MD": (39.6418, -77.7200),
    "Washington, DC": (38.9072, -77.0369),
    # Pennsylvania
    "Philadelphia, PA": (39.9526, -75.1652),
    "Hershey, PA": (40.2859, -76.6502),
    # Virginia
    "Springfield, VA": (38.7891, -77.1870),
    "Bristow, VA": (38.7212, -77.5458),
    # Others
    "New Orleans, LA": (29.9511, -90.0715),
    "Austin, TX": (30.2672, -97.7431),
    "Fort Lauderdale, FL": (26.1224, -80.1373),
    "St. Petersburg, FL": (27.7676, -82.6403),
    "Worcester, MA": (42.2626, -71.8023),
    "Camden, NJ": (39.9259, -75.1196),
    "Sayreville, NJ": (40.4573, -74.3640),
    "Chicago, IL": (41.8781, -87.6298),
    "Portland, OR": (45.5152, -122.6784),
}

_BY_LOWER = {city_state.lower(): coords for city_state, coords in CITY_COORDINATES.items()}


def city_coordinates(city_state: str) -> tuple[float, float] | None:
    """Centroid for ``"City, ST"`` (case-insensitive), or None."""
    return _BY_LOWER.get(city_state.strip().lower())


class CityCentroidProvider(MetadataProvider[VenueQuery, GeoPoint]):
    name = "city_centroid"
    payload_type = GeoPoint

    def __init__(
        self,
        table: dict[str, tuple[float, float]] | None = None,
        base_confidence: float = 0.30,
        ttl: timedelta = days(30),
    ):
        super().__init__(base_confidence, ttl)
        self._table = (
            {k.lower(): v for k, v in table.items()} if table is not None else _BY_LOWER
        )

    def lookup(self, entity: VenueQuery) -> ProviderOutcome:
        coords = self._table.get(entity.city_state.strip().lower())
        if coords is None:
            return NotFound(f"no centroid for {entity.city_state!r}")
        lat, lng = coords
        return Found(GeoPoint(lat=lat, lng=lng), self.base_confidence, definitive=False)


## Tests


def test_city_centroid_lookup():
    provider = CityCentroidProvider()
    outcome = provider.lookup(VenueQuery("Red Rocks Amphitheatre", "Morrison", "CO"))
    assert isinstance(outcome, Found)
    assert outcome.payload.lat == 39.6653
    assert not outcome.definitive
    assert isinstance(provider.lookup(VenueQuery("X", "Nowhere", "ZZ")), NotFound)


def test_city_coordinates_case_insensitive():
    assert city_coordinates("chicago, il") == (41.8781, -87.6298)
    assert city_coordinates("Atlantis, XX") is None
