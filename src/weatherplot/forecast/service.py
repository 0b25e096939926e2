# SPDX-FileCopyrightText: 2020-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

import logging
from dataclasses import dataclass
from typing import Protocol

from lxml import etree

from weatherplot.mapping import MappingError

from . import WeatherData, parse_weather

__all__ = 'ForecastSource', 'ForecastUnavailable', 'WeatherResult', 'Weather'  # noqa: RUF022


log = logging.getLogger(__name__)


class ForecastUnavailable(Exception):  # noqa: N818
    """
    Raised by a ForecastSource when the forecast document cannot be obtained.

    The message is meant to be shown to the user as is, for example
    "Query failed; city/state probably not found."
    """


class ForecastSource(Protocol):
    def fetch(self, city: str, state: str) -> bytes:
        """Return the raw forecast document for the city, or raise ForecastUnavailable"""
        ...


@dataclass(frozen=True, slots=True)
class WeatherResult:
    successful: bool
    message: str


class Weather:
    """
    Query forecasts from a ForecastSource and present them as chart series.

    The most recently parsed forecast is kept and used by the accessors.
    A failed query leaves the previous forecast in place.
    """

    no_location = 'Nowhere, USA'

    def __init__(self, source: ForecastSource) -> None:
        self.source = source
        self.forecast: WeatherData | None = None

    def get_weather(self, city: str, state: str) -> WeatherResult:
        try:
            document = self.source.fetch(city, state)
        except ForecastUnavailable as exc:
            log.warning('Could not fetch the forecast for %s, %s: %s', city, state, exc)
            return WeatherResult(successful=False, message=str(exc))

        try:
            forecast = parse_weather(document)
        except (MappingError, etree.XMLSyntaxError) as exc:
            log.warning('Could not parse the forecast for %s, %s: %s', city, state, exc)
            return WeatherResult(successful=False, message='Could not parse XML result')

        self.forecast = forecast
        return WeatherResult(successful=True, message='Successful!')

    def location_name(self) -> str:
        if self.forecast is None or not self.forecast.locations:
            return self.no_location
        location = self.forecast.locations[0]
        return ', '.join(part for part in (location.city, location.country) if part) or self.no_location

    def temperature_series(self) -> list[tuple[str, float | None, float | None]]:
        """Return a (day, max temperature, min temperature) tuple for each forecast day, in Fahrenheit"""
        if self.forecast is None:
            return []
        series = []
        for forecast_day in self.forecast.forecast_days:
            label = '' if forecast_day.day is None else forecast_day.day.isoformat()
            temperature = forecast_day.temperature
            if temperature is None:
                series.append((label, None, None))
            else:
                series.append((label, temperature.max_fahrenheit, temperature.min_fahrenheit))
        return series

    def axis_labels(self) -> list[str]:
        return [day for day, _, _ in self.temperature_series()]

    def chart_series(self) -> list[tuple[str, list[float]]]:
        data = self.temperature_series()
        return [
            ('Max Temperatures', [max_temp or 0.0 for _, max_temp, _ in data]),
            ('Min Temperatures', [min_temp or 0.0 for _, _, min_temp in data]),
        ]
