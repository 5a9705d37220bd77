"""
Recreation.gov adapter

Availability is served one calendar month per request, so requested days are
bucketed by month.
"""
import logging
from datetime import date, datetime
from typing import Optional, List, Dict, Any, Iterable
from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta

from .base import Provider, normalize_days, friendly_name, parse_feature, to_float
from .endpoints import RecGovEndpoints, RecGovPages, RECGOV_HEADERS, AVAILABILITY_STATUS_MAP
from ..common.errors import UpstreamError, PermanentUpstreamError, RecordParseError
from ..common.models import (
    AvailabilityCell,
    CampgroundInfo,
    CampsiteInfo,
    DateRange,
    normalize_day,
    utcnow,
)

logger = logging.getLogger(__name__)


def month_start(day: date) -> date:
    return day.replace(day=1)


def month_end(day: date) -> date:
    return month_start(day) + relativedelta(months=1, days=-1)


class RecreationGov(Provider):
    """recreation.gov public JSON API"""

    name = "recreation_gov"
    page_size = 100

    def campground_url(self, campground_id: str) -> str:
        return RecGovPages.campground(campground_id)

    def campsite_url(self, campground_id: str, campsite_id: str) -> str:
        return RecGovPages.campsite(campsite_id)

    def plan_buckets(self, days: Iterable[date | datetime]) -> List[DateRange]:
        months = sorted({month_start(d) for d in normalize_days(days)})
        return [DateRange(start=m, end=month_end(m)) for m in months]

    # ========================================
    # Availability
    # ========================================

    async def fetch_availability(self, campground_id: str, start: date, end: date) -> List[AvailabilityCell]:
        """
        Fetch every month page touching [start, end].

        Cells outside the range are dropped; a malformed entry is skipped.
        """
        start, end = normalize_day(start), normalize_day(end)
        checked_at = utcnow()
        cells: List[AvailabilityCell] = []

        month = month_start(start)
        while month <= end:
            url = RecGovEndpoints.campground_availability(
                campground_id,
                month.strftime("%Y-%m-%dT00:00:00.000Z")
            )
            logger.info(f"Fetching availability {url}")
            data = await self._get_json(url, "availability", headers=RECGOV_HEADERS)
            cells.extend(self._parse_month(campground_id, data, start, end, checked_at))
            month += relativedelta(months=1)

        return cells

    def _parse_month(
        self,
        campground_id: str,
        data: Any,
        start: date,
        end: date,
        checked_at: datetime
    ) -> List[AvailabilityCell]:
        if not isinstance(data, dict):
            raise PermanentUpstreamError(f"recreation_gov availability: unexpected payload {type(data).__name__}")

        campsites = data.get("campsites") or {}
        if not isinstance(campsites, dict):
            raise PermanentUpstreamError(f"recreation_gov availability: campsites is {type(campsites).__name__}")

        cells = []
        for site_id, site_data in campsites.items():
            if not isinstance(site_data, dict) or not isinstance(site_data.get("availabilities") or {}, dict):
                logger.warning(f"Skipping malformed campsite entry {site_id} in {campground_id}")
                continue

            campsite_type = site_data.get("campsite_type")
            for date_str, status in (site_data.get("availabilities") or {}).items():
                if not isinstance(status, str):
                    logger.warning(f"Skipping {campground_id}/{site_id} {date_str!r}: status {status!r}")
                    continue
                try:
                    day = self._parse_day(date_str)
                except RecordParseError as e:
                    logger.error(f"Bad date from rec.gov for {campground_id}/{site_id}: {e}")
                    continue

                if day < start or day > end:
                    continue

                cells.append(AvailabilityCell(
                    provider=self.name,
                    campground_id=campground_id,
                    campsite_id=str(site_id),
                    day=day,
                    available=AVAILABILITY_STATUS_MAP.get(status, False),
                    last_checked=checked_at,
                    campsite_type=campsite_type
                ))
        return cells

    @staticmethod
    def _parse_day(date_str: str) -> date:
        try:
            return normalize_day(date_parser.isoparse(date_str))
        except (TypeError, ValueError) as e:
            raise RecordParseError(f"{date_str!r}: {e}") from e

    # ========================================
    # Catalog
    # ========================================

    async def fetch_campgrounds(self) -> List[CampgroundInfo]:
        """Page through the search API until a short page"""
        logger.info("Starting recreation.gov campground sync")
        start = 0
        pages = 0
        campgrounds: List[CampgroundInfo] = []

        while True:
            pages += 1
            data = await self._get_json(
                RecGovEndpoints.search_campgrounds(start, self.page_size),
                "search",
                headers=RECGOV_HEADERS
            )
            if not isinstance(data, dict):
                raise PermanentUpstreamError("recreation_gov search: unexpected payload")

            results = data.get("results") or []
            for result in results:
                try:
                    campground = self._parse_campground(result)
                except RecordParseError as e:
                    logger.warning(f"Skipping campground search result: {e}")
                    continue
                if campground:
                    campgrounds.append(campground)

            logger.info(f"recreation.gov page {pages}: {len(results)} results, {len(campgrounds)} campgrounds so far")

            if len(results) < self.page_size:
                break
            start += len(results)

        logger.info(f"recreation.gov campground sync completed: {pages} pages, {len(campgrounds)} campgrounds")
        return campgrounds

    def _parse_campground(self, result: Any) -> Optional[CampgroundInfo]:
        if not isinstance(result, dict) or not result.get("entity_id"):
            raise RecordParseError(f"missing entity_id in {str(result)[:100]}")
        if not result.get("reservable"):
            return None

        name = result.get("name") or result["entity_id"]
        if result.get("parent_name"):
            name = f"{result['parent_name']}: {name}"

        amenities = [
            a["activity_name"].lower()
            for a in result.get("activities") or []
            if isinstance(a, dict) and a.get("activity_name")
        ]
        price_range = result.get("price_range") or {}

        return CampgroundInfo(
            id=str(result["entity_id"]),
            name=name,
            latitude=to_float(result.get("latitude")),
            longitude=to_float(result.get("longitude")),
            rating=to_float(result.get("average_rating")),
            amenities=amenities,
            image_url=result.get("preview_image_url") or None,
            price_min=to_float(price_range.get("amount_min")),
            price_max=to_float(price_range.get("amount_max")),
            price_unit=price_range.get("per_unit") or None
        )

    async def fetch_campsites(self, campground_id: str) -> List[CampsiteInfo]:
        """Campsite listing plus the campground's rate table"""
        data = await self._get_json(
            RecGovEndpoints.search_campsites(campground_id),
            "campsites",
            headers=RECGOV_HEADERS
        )
        if not isinstance(data, dict):
            raise PermanentUpstreamError("recreation_gov campsites: unexpected payload")

        try:
            rates = await self._fetch_rates(campground_id)
        except UpstreamError as e:
            logger.warning(f"Fetch campground rates failed for {campground_id}: {e}")
            rates = {}

        campsites = []
        for site in data.get("campsites") or []:
            if not isinstance(site, dict) or not site.get("reservable"):
                continue
            try:
                campsites.append(self._parse_campsite(site, rates))
            except RecordParseError as e:
                logger.warning(f"Skipping campsite in {campground_id}: {e}")

        logger.debug(f"Fetched {len(campsites)} campsites for campground {campground_id}")
        return campsites

    def _parse_campsite(self, site: Dict[str, Any], rates: Dict[str, float]) -> CampsiteInfo:
        if not site.get("campsite_id"):
            raise RecordParseError("campsite without campsite_id")

        features = [
            parse_feature(attr.get("attribute_name", ""), attr.get("attribute_value"))
            for attr in site.get("attributes") or []
            if isinstance(attr, dict)
        ]
        for key in ("campsite_reserve_type", "campsite_status", "type", "type_of_use"):
            features.append(parse_feature(friendly_name(key), site.get(key)))

        equipment = []
        for eq in site.get("permitted_equipment") or []:
            if isinstance(eq, dict) and eq.get("equipment_name"):
                features.append(parse_feature("Permitted Equipment", eq["equipment_name"]))
                equipment.append(eq["equipment_name"].lower())

        prices = [
            rates[template_id]
            for template_id in (site.get("fee_templates") or {}).values()
            if template_id in rates
        ]
        price_min = min(prices) if prices else 0.0
        price_max = max(prices) if prices else 0.0

        return CampsiteInfo(
            id=str(site["campsite_id"]),
            name=site.get("name") or str(site["campsite_id"]),
            campsite_type=(site.get("type") or "standard").lower(),
            cost_per_night=price_min,
            price_min=price_min,
            price_max=price_max,
            rating=to_float(site.get("average_rating")),
            equipment=equipment,
            features=features,
            preview_image_url=site.get("preview_image_url") or None
        )

    async def _fetch_rates(self, campground_id: str) -> Dict[str, float]:
        """fee template id -> highest nightly price across seasons"""
        data = await self._get_json(
            RecGovEndpoints.campground_rates(campground_id),
            "rates",
            headers=RECGOV_HEADERS
        )
        lookup: Dict[str, float] = {}
        if not isinstance(data, dict):
            return lookup
        for season in data.get("rates_list") or []:
            if not isinstance(season, dict):
                continue
            for template_id, rate in (season.get("rate_map") or {}).items():
                price = to_float((rate or {}).get("per_night"))
                lookup[template_id] = max(lookup.get(template_id, 0.0), price)
            for template_id, price in (season.get("price_map") or {}).items():
                lookup[template_id] = max(lookup.get(template_id, 0.0), to_float(price))
        return lookup
