"""
ReserveCalifornia adapter (UseDirect back end)

The availability grid accepts any date range per facility, so requested days
collapse to a single [min..max] window. Campground ids are composite
"parentPlaceId/facilityId" strings.
"""
import asyncio
import logging
from datetime import date, datetime, timedelta
from typing import Optional, List, Dict, Any, Iterable
from dateutil import parser as date_parser

from .base import Provider, normalize_days, parse_feature, to_float
from .endpoints import (
    ReserveCaliforniaEndpoints,
    ReserveCaliforniaPages,
    RESERVE_CALIFORNIA_HEADERS,
    GridRequest,
)
from ..common.errors import (
    UpstreamError,
    TransientUpstreamError,
    PermanentUpstreamError,
    RecordParseError,
)
from ..common.models import (
    AvailabilityCell,
    CampgroundInfo,
    CampsiteInfo,
    DateRange,
    Feature,
    normalize_day,
    utcnow,
)
from ..common.scheduler import RetryStrategy

logger = logging.getLogger(__name__)

# Checked in order, first match wins
CAMPSITE_TYPE_KEYWORDS = [
    ("tent", "tent"),
    ("rv", "rv"),
    ("cabin", "cabin"),
    ("group", "group"),
    ("primitive", "primitive"),
    ("yurt", "yurt"),
    ("camp", "campsite"),
]


def facility_id(campground_id: str) -> str:
    parts = campground_id.split("/")
    if len(parts) == 2:
        return parts[1]
    return campground_id


def guess_campsite_type(unit_name: str) -> str:
    lowered = (unit_name or "").lower()
    for keyword, campsite_type in CAMPSITE_TYPE_KEYWORDS:
        if keyword in lowered:
            return campsite_type
    return "standard"


def guess_equipment(unit_name: str, vehicle_length: int = 0) -> List[str]:
    lowered = (unit_name or "").lower()
    equipment = []
    if "tent" in lowered:
        equipment.append("tent")
    if "rv" in lowered or vehicle_length > 0:
        equipment.append("rv")
        if vehicle_length > 0:
            equipment.append(f"rv up to {vehicle_length} ft")
    return equipment or ["standard"]


def split_highlights(highlights: Optional[str]) -> List[str]:
    """ "Birdwatching<br>Boating<br>" -> ["birdwatching", "boating"] """
    if not highlights:
        return []
    return [h.strip().lower() for h in highlights.split("<br>") if h.strip()]


class ReserveCalifornia(Provider):
    """reservecalifornia.com via calirdr.usedirect.com"""

    name = "reservecalifornia"
    max_places = 2000
    detail_attempts = 3

    def __init__(
        self,
        client,
        requests_per_second: float = 1.0,
        place_delay: float = 0.05,
        unit_delay: float = 0.2,
        detail_retry_delay_ms: int = 1000
    ):
        super().__init__(client, requests_per_second)
        self.place_delay = place_delay
        self.unit_delay = unit_delay
        self.detail_retry_delay_ms = detail_retry_delay_ms

    def campground_url(self, campground_id: str) -> str:
        return ReserveCaliforniaPages.park(campground_id)

    def campsite_url(self, campground_id: str, campsite_id: str) -> str:
        return ReserveCaliforniaPages.park(campground_id)

    def plan_buckets(self, days: Iterable[date | datetime]) -> List[DateRange]:
        normalized = normalize_days(days)
        if not normalized:
            return []
        return [DateRange(start=normalized[0], end=normalized[-1])]

    async def _grid(self, campground_id: str, start: date, end: date) -> Dict[str, Any]:
        request = GridRequest(facility_id=facility_id(campground_id), start_date=start, end_date=end)
        data = await self._post_json(
            ReserveCaliforniaEndpoints.grid(),
            "grid",
            request.to_dict(),
            headers=RESERVE_CALIFORNIA_HEADERS
        )
        if not isinstance(data, dict):
            raise PermanentUpstreamError("reservecalifornia grid: unexpected payload")

        units = (data.get("Facility") or {}).get("Units") or {}
        if not isinstance(units, dict):
            raise PermanentUpstreamError("reservecalifornia grid: Units is not an object")
        return units

    # ========================================
    # Availability
    # ========================================

    async def fetch_availability(self, campground_id: str, start: date, end: date) -> List[AvailabilityCell]:
        if not campground_id:
            raise PermanentUpstreamError("facility/campground id required")

        start, end = normalize_day(start), normalize_day(end)
        logger.info(f"Fetching RC grid for {campground_id} {start}..{end}")
        units = await self._grid(campground_id, start, end)
        checked_at = utcnow()

        cells = []
        for key, unit in units.items():
            if not isinstance(unit, dict) or unit.get("UnitId") is None:
                logger.warning(f"Skipping malformed unit {key} in {campground_id}")
                continue

            site_id = str(unit["UnitId"])
            slices = unit.get("Slices") or {}
            if not isinstance(slices, dict):
                logger.warning(f"Skipping unit {site_id} in {campground_id}: Slices is {type(slices).__name__}")
                continue

            for slice_key, cell_slice in slices.items():
                try:
                    day = self._parse_slice_day(cell_slice)
                except RecordParseError as e:
                    logger.error(f"Bad slice for {campground_id}/{site_id}: {e}")
                    continue

                if day < start or day > end:
                    continue

                cells.append(AvailabilityCell(
                    provider=self.name,
                    campground_id=campground_id,
                    campsite_id=site_id,
                    day=day,
                    available=bool(cell_slice.get("IsFree")) and not cell_slice.get("IsBlocked"),
                    last_checked=checked_at
                ))

        return cells

    @staticmethod
    def _parse_slice_day(cell_slice: Any) -> date:
        if not isinstance(cell_slice, dict):
            raise RecordParseError(f"slice is {type(cell_slice).__name__}")
        try:
            return normalize_day(date_parser.isoparse(cell_slice.get("Date")).date())
        except (TypeError, ValueError) as e:
            raise RecordParseError(f"{cell_slice.get('Date')!r}: {e}") from e

    # ========================================
    # Catalog
    # ========================================

    async def fetch_campgrounds(self) -> List[CampgroundInfo]:
        """
        List city parks, then each active park's facilities.

        A failed place lookup is logged and skipped.
        """
        logger.info("Starting ReserveCalifornia campground sync")
        parks = await self._get_json(ReserveCaliforniaEndpoints.city_parks(), "citypark")
        if not isinstance(parks, dict):
            raise PermanentUpstreamError("reservecalifornia citypark: unexpected payload")

        campgrounds: List[CampgroundInfo] = []
        checked = 0
        for park in parks.values():
            if not isinstance(park, dict) or not park.get("IsActive") or not park.get("PlaceId"):
                continue

            try:
                place = await self._post_json(
                    ReserveCaliforniaEndpoints.place(),
                    "place",
                    {"PlaceId": str(park["PlaceId"])},
                    headers=RESERVE_CALIFORNIA_HEADERS
                )
                campgrounds.extend(self._parse_place(place))
            except (UpstreamError, RecordParseError) as e:
                logger.warning(f"Place {park['PlaceId']} lookup failed: {e}")

            checked += 1
            if checked >= self.max_places:
                logger.warning(f"Stopping ReserveCalifornia sync after {checked} places")
                break
            await asyncio.sleep(self.place_delay)

        logger.info(f"ReserveCalifornia campground sync completed: {checked} places, {len(campgrounds)} campgrounds")
        return campgrounds

    def _parse_place(self, data: Any) -> List[CampgroundInfo]:
        place = data.get("SelectedPlace") if isinstance(data, dict) else None
        if not isinstance(place, dict) or not place.get("PlaceId"):
            raise RecordParseError("place response without SelectedPlace")

        parent_id = str(place["PlaceId"])
        parent_name = place.get("Name") or parent_id
        campgrounds = []

        for facility in (place.get("Facilities") or {}).values():
            if not isinstance(facility, dict):
                continue
            if "campground" not in (facility.get("Category") or "").lower():
                continue

            latitude = to_float(facility.get("Latitude"))
            longitude = to_float(facility.get("Longitude"))
            if not latitude or not longitude:
                latitude = to_float(place.get("Latitude"))
                longitude = to_float(place.get("Longitude"))

            amenities = split_highlights(facility.get("Allhighlights")) or split_highlights(place.get("Allhighlights"))

            campgrounds.append(CampgroundInfo(
                id=f"{parent_id}/{facility.get('FacilityId')}",
                name=f"{parent_name}: {facility.get('Name')}",
                latitude=latitude,
                longitude=longitude,
                amenities=amenities,
                image_url=place.get("ImageUrl") or None,
                price_unit="night"
            ))

        return campgrounds

    async def fetch_campsites(self, campground_id: str) -> List[CampsiteInfo]:
        """
        Grid listing for the coming week, then one detail call per unit.

        A unit whose details cannot be fetched falls back to what the grid
        listing tells us.
        """
        start = utcnow().date()
        units = await self._grid(campground_id, start, start + timedelta(days=7))
        logger.info(f"Retrieved {len(units)} units for facility {facility_id(campground_id)}")

        campsites = []
        detailed = 0
        for unit in units.values():
            if not isinstance(unit, dict) or unit.get("UnitId") is None:
                continue

            details = await self._fetch_unit_details(unit["UnitId"], start)
            if details is None:
                campsites.append(self._campsite_from_grid(unit))
            else:
                campsites.append(self._campsite_from_details(unit, details))
                detailed += 1

            await asyncio.sleep(self.unit_delay)

        logger.info(f"Completed campsite fetch for {campground_id}: {len(campsites)} units, {detailed} with details")
        return campsites

    async def _fetch_unit_details(self, unit_id: int, start: date) -> Optional[Dict[str, Any]]:
        """Details with bounded retry on 429/5xx and network errors. None means fall back."""
        url = ReserveCaliforniaEndpoints.unit_details(unit_id, start.isoformat())
        retry = RetryStrategy(
            max_attempts=self.detail_attempts,
            base_delay_ms=self.detail_retry_delay_ms,
            max_delay_ms=self.detail_retry_delay_ms * self.detail_attempts,
            linear_backoff=True
        )

        while retry.should_retry():
            retry.record_attempt()
            try:
                data = await self._get_json(url, "details", headers=RESERVE_CALIFORNIA_HEADERS)
            except TransientUpstreamError as e:
                logger.warning(f"Transient error for unit {unit_id} details (attempt {retry.attempts}): {e}")
                if retry.should_retry():
                    await retry.wait()
                continue
            except PermanentUpstreamError as e:
                logger.warning(f"Unit {unit_id} details unavailable: {e}")
                return None

            if isinstance(data, dict) and isinstance(data.get("Unit"), dict):
                return data
            logger.warning(f"Unit {unit_id} details missing Unit object")
            return None

        return None

    def _campsite_from_grid(self, unit: Dict[str, Any]) -> CampsiteInfo:
        name = unit.get("Name") or str(unit["UnitId"])
        vehicle_length = int(to_float(unit.get("VehicleLength")))
        return CampsiteInfo(
            id=str(unit["UnitId"]),
            name=name,
            campsite_type=guess_campsite_type(name),
            equipment=guess_equipment(name, vehicle_length)
        )

    def _campsite_from_details(self, unit: Dict[str, Any], details: Dict[str, Any]) -> CampsiteInfo:
        info = details["Unit"]
        name = info.get("Name") or unit.get("Name") or str(unit["UnitId"])

        equipment = []
        if info.get("IsTentSite"):
            equipment.append("tent")
        if info.get("IsRVSite"):
            equipment.append("rv")
            vehicle_length = int(to_float(info.get("VehicleLength")))
            if vehicle_length > 0:
                equipment.append(f"rv up to {vehicle_length} ft")

        campsite_type = ((details.get("UnitType") or {}).get("Name") or "").lower() or guess_campsite_type(name)

        amenities = []
        features = []
        for amenity in (details.get("Amenities") or {}).values():
            if not isinstance(amenity, dict) or not amenity.get("Name"):
                continue
            amenities.append(amenity["Name"].lower())
            if amenity.get("Value"):
                features.append(parse_feature(amenity["Name"], amenity["Value"]))

        nightly = details.get("NightlyUnit") or {}
        if nightly.get("MaxOccupancy"):
            features.append(Feature(name="Max Occupancy", value_numeric=to_float(nightly["MaxOccupancy"])))
        if nightly.get("MaxVehicles"):
            features.append(Feature(name="Max Vehicles", value_numeric=to_float(nightly["MaxVehicles"])))

        cost = to_float(details.get("Rate"))
        return CampsiteInfo(
            id=str(info.get("UnitId") or unit["UnitId"]),
            name=name,
            campsite_type=campsite_type,
            cost_per_night=cost,
            price_min=cost,
            price_max=cost,
            equipment=equipment or ["standard"],
            amenities=amenities,
            features=features,
            preview_image_url=details.get("UnitImage") or None
        )
