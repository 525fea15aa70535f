"""Sunrise and sunset lookups for solar schedules."""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Dict, Optional
from zoneinfo import ZoneInfo

from astral import LocationInfo
from astral.sun import sun


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SolarTimes:
    """Sunrise and sunset for one day, timezone-aware."""
    sunrise: datetime
    sunset: datetime


class SolarCalculator:
    """
    Calculate sunrise and sunset times for the configured location.

    Caches daily calculations to avoid redundant computation.
    """

    def __init__(self, latitude: float, longitude: float, timezone: str):
        """
        Initialize solar calculator.

        Args:
            latitude: Location latitude in degrees
            longitude: Location longitude in degrees
            timezone: IANA timezone string (e.g., "America/New_York")
        """
        self.latitude = latitude
        self.longitude = longitude
        self.timezone_str = timezone
        self.timezone = ZoneInfo(timezone)

        self.location = LocationInfo(
            name="Location",
            region="",
            timezone=timezone,
            latitude=latitude,
            longitude=longitude
        )

        # date -> SolarTimes without offset
        self._cache: Dict[date, SolarTimes] = {}

        logger.info(
            f"Solar calculator initialized: lat={latitude}, lon={longitude}, tz={timezone}"
        )

    def calculate_solar_times(self, target_date: date) -> SolarTimes:
        """
        Calculate sunrise and sunset for given date.

        Args:
            target_date: Date to calculate solar times for

        Returns:
            SolarTimes in the configured timezone

        Raises:
            ValueError: If solar calculation fails (e.g., polar regions)
        """
        if target_date in self._cache:
            logger.debug(f"Using cached solar times for {target_date}")
            return self._cache[target_date]

        try:
            s = sun(self.location.observer, date=target_date, tzinfo=self.timezone)
        except ValueError as e:
            # astral raises ValueError when the sun never rises or sets that day
            logger.error(f"Failed to calculate solar times for {target_date}: {e}")
            raise ValueError(f"Solar calculation failed: {e}")

        times = SolarTimes(sunrise=s['sunrise'], sunset=s['sunset'])
        self._cache[target_date] = times

        logger.info(
            f"Calculated solar times for {target_date}: "
            f"sunrise={times.sunrise.strftime('%H:%M')}, "
            f"sunset={times.sunset.strftime('%H:%M')}"
        )

        return times

    def sunrise_sunset(self, target_date: date, offset_minutes: int = 0) -> Optional[SolarTimes]:
        """
        Get sunrise and sunset with an offset applied to both.

        Args:
            target_date: Date to get solar times for
            offset_minutes: Minutes to offset (positive = after, negative = before)

        Returns:
            SolarTimes with offset applied, or None if there is no data for the date
        """
        try:
            times = self.calculate_solar_times(target_date)
        except ValueError:
            return None

        if offset_minutes == 0:
            return times

        delta = timedelta(minutes=offset_minutes)
        shifted = SolarTimes(sunrise=times.sunrise + delta, sunset=times.sunset + delta)
        logger.debug(
            f"Applied offset {offset_minutes}min: sunrise={shifted.sunrise.strftime('%H:%M')}, "
            f"sunset={shifted.sunset.strftime('%H:%M')}"
        )
        return shifted

    def clear_cache(self):
        """Clear the solar time cache."""
        self._cache.clear()
        logger.debug("Solar time cache cleared")

    def get_cached_dates(self) -> list:
        """Get list of dates currently cached."""
        return list(self._cache.keys())
