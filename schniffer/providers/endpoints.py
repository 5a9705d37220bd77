"""
Upstream endpoints for the supported reservation back ends

⚠️ WARNING: These endpoints are undocumented and may change without notice.

They were discovered by inspecting network traffic in browser DevTools.
"""
from dataclasses import dataclass, field
from datetime import date
from typing import List
from urllib.parse import urlencode


RECGOV_BASE_URL = "https://www.recreation.gov"
RECGOV_API_BASE = f"{RECGOV_BASE_URL}/api"

RC_BASE_URL = "https://reservecalifornia.com"
RC_API_BASE = "https://calirdr.usedirect.com/RDR/rdr"


class RecGovEndpoints:
    """
    Collection of Recreation.gov API endpoints.

    To discover endpoints yourself:
    1. Open browser DevTools → Network tab
    2. Browse a campground's availability calendar
    3. Filter by XHR/Fetch requests
    """

    @staticmethod
    def search_campgrounds(start: int = 0, size: int = 100) -> str:
        """
        Page through every campground.

        GET /api/search?fq=entity_type:campground&size={size}&start={start}
        """
        params = {
            "fq": "entity_type:campground",
            "size": size,
            "start": start
        }
        return f"{RECGOV_API_BASE}/search?{urlencode(params)}"

    @staticmethod
    def search_campsites(campground_id: str, size: int = 1000) -> str:
        """
        List campsite metadata for a campground.

        GET /api/search/campsites?fq=asset_id:{id}&size={size}
        """
        params = {
            "fq": f"asset_id:{campground_id}",
            "size": size
        }
        return f"{RECGOV_API_BASE}/search/campsites?{urlencode(params)}"

    @staticmethod
    def campground_rates(campground_id: str) -> str:
        """
        Seasonal rate tables keyed by fee template id.

        GET /api/camps/campgrounds/{id}/rates
        """
        return f"{RECGOV_API_BASE}/camps/campgrounds/{campground_id}/rates"

    @staticmethod
    def campground_availability(campground_id: str, start_date: str) -> str:
        """
        Get availability for all campsites in a campground for a month.

        GET /api/camps/availability/campground/{id}/month?start_date={ISO_DATE}

        The start_date should be first of month, e.g., "2025-08-01T00:00:00.000Z"
        Response includes availability status for each campsite for each day.
        """
        return f"{RECGOV_API_BASE}/camps/availability/campground/{campground_id}/month?{urlencode({'start_date': start_date})}"


class RecGovPages:
    """Public pages linked from notifications"""

    @staticmethod
    def campground(campground_id: str) -> str:
        if not campground_id:
            return ""
        return f"{RECGOV_BASE_URL}/camping/campgrounds/{campground_id}"

    @staticmethod
    def campsite(campsite_id: str) -> str:
        if not campsite_id:
            return ""
        return f"{RECGOV_BASE_URL}/camping/campsites/{campsite_id}"


class ReserveCaliforniaEndpoints:
    """UseDirect endpoints behind reservecalifornia.com"""

    @staticmethod
    def grid() -> str:
        """
        Availability grid for one facility.

        POST /search/grid
        Body: see GridRequest
        """
        return f"{RC_API_BASE}/search/grid"

    @staticmethod
    def city_parks() -> str:
        """
        Every park, keyed by CityParkId.

        GET /fd/citypark
        """
        return f"{RC_API_BASE}/fd/citypark"

    @staticmethod
    def place() -> str:
        """
        A park ("place") and its facilities.

        POST /search/place
        Body: {"PlaceId": "712"}
        """
        return f"{RC_API_BASE}/search/place"

    @staticmethod
    def unit_details(unit_id: int | str, start_date: str) -> str:
        """
        Details for one campsite ("unit").

        GET /search/details/{unit_id}/startdate/{YYYY-MM-DD}
        """
        return f"{RC_API_BASE}/search/details/{unit_id}/startdate/{start_date}"


class ReserveCaliforniaPages:
    @staticmethod
    def park(campground_id: str) -> str:
        """Composite ids look like "parentId/facilityId" (e.g. "1260/2181")"""
        parts = campground_id.split("/")
        if len(parts) != 2:
            return f"{RC_BASE_URL}/"
        return f"{RC_BASE_URL}/Web/#!park/{parts[0]}/{parts[1]}"


# Common request headers to mimic browser
DEFAULT_HEADERS = {
    "Accept": "application/json, text/plain, */*",
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "gzip, deflate",
    "Sec-Fetch-Dest": "empty",
    "Sec-Fetch-Mode": "cors",
    "Sec-Fetch-Site": "same-origin",
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
}

RECGOV_HEADERS = {
    "Origin": RECGOV_BASE_URL,
    "Referer": f"{RECGOV_BASE_URL}/",
}

RESERVE_CALIFORNIA_HEADERS = {
    "Content-Type": "application/json",
    "Origin": RC_BASE_URL,
    "Referer": f"{RC_BASE_URL}/",
    "Sec-Fetch-Site": "cross-site",
}


# Known response structures

AVAILABILITY_STATUS_MAP = {
    "Available": True,
    "Reserved": False,
    "Not Available": False,
    "Walk Up": False,  # First-come, first-served
    "Not Reservable": False,
    "Not Reservable Management": False,
    "Open": True,
}


@dataclass
class GridRequest:
    """
    Request body for the ReserveCalifornia availability grid.

    Dates are inclusive calendar days.
    """
    facility_id: str
    start_date: date
    end_date: date
    unit_types_group_ids: List[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "IsADA": False,
            "MinVehicleLength": 0,
            "UnitCategoryId": 0,
            "StartDate": self.start_date.isoformat(),
            "WebOnly": True,
            "UnitTypesGroupIds": self.unit_types_group_ids,
            "SleepingUnitId": 0,
            "EndDate": self.end_date.isoformat(),
            "UnitSort": "orderby",
            "InSeasonOnly": True,
            "FacilityId": self.facility_id,
            "RestrictADA": False,
        }
