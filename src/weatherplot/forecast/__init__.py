# SPDX-FileCopyrightText: 2020-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from datetime import date

from weatherplot.mapping import AnnotatedXMLElement, MultiElement, OptionalAttribute, WrappedMultiElement, from_string

__all__ = 'WeatherData', 'Location', 'ForecastDay', 'Temperature', 'kelvin_to_fahrenheit', 'parse_weather'  # noqa: RUF022


def kelvin_to_fahrenheit(kelvin: float) -> float:
    return (kelvin - 273.15) * 9 / 5 + 32


class Location(AnnotatedXMLElement, name='location'):
    city: OptionalAttribute[str] = OptionalAttribute(str, name='name', default=None)
    country: OptionalAttribute[str] = OptionalAttribute(str, default=None)


class Temperature(AnnotatedXMLElement, name='temperature'):
    """Temperatures for one forecast day, in Kelvin"""

    day: OptionalAttribute[float] = OptionalAttribute(float, default=None)
    night: OptionalAttribute[float] = OptionalAttribute(float, default=None)
    min: OptionalAttribute[float] = OptionalAttribute(float, default=None)
    max: OptionalAttribute[float] = OptionalAttribute(float, default=None)

    @property
    def min_fahrenheit(self) -> float | None:
        return None if self.min is None else kelvin_to_fahrenheit(self.min)

    @property
    def max_fahrenheit(self) -> float | None:
        return None if self.max is None else kelvin_to_fahrenheit(self.max)


class ForecastDay(AnnotatedXMLElement, name='time'):
    day: OptionalAttribute[date] = OptionalAttribute(date, default=None)
    temperatures: MultiElement[Temperature] = MultiElement(Temperature)

    @property
    def temperature(self) -> Temperature | None:
        """The first temperature entry of the day, which is the one in effect"""
        return self.temperatures[0] if self.temperatures else None


class WeatherData(AnnotatedXMLElement, name='weatherdata'):
    locations: MultiElement[Location] = MultiElement(Location)
    forecast_days: WrappedMultiElement[ForecastDay] = WrappedMultiElement(ForecastDay, name='forecast')


def parse_weather(document: str | bytes) -> WeatherData:
    """Parse a forecast document, raising MappingError (or lxml's XMLSyntaxError) if it cannot be read"""
    return from_string(document, WeatherData)
