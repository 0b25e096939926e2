# SPDX-FileCopyrightText: 2020-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

import logging
from datetime import date

import pytest

from weatherplot.forecast import ForecastDay, Location, Temperature, WeatherData, kelvin_to_fahrenheit, parse_weather
from weatherplot.forecast.service import ForecastUnavailable, Weather, WeatherResult
from weatherplot.mapping import ConversionError, NameMismatchError, deserialize, serialize

boston_forecast = b"""\
<weatherdata>
  <location name="Boston" country="US"/>
  <forecast><time day="2024-01-01">
    <temperature day="280" night="275" min="270" max="285"/>
  </time></forecast>
</weatherdata>
"""

two_day_forecast = b"""\
<weatherdata>
  <location name="Springfield" country="US"/>
  <forecast>
    <time day="2024-03-01">
      <temperature day="283.15" night="278.15" min="273.15" max="293.15"/>
      <temperature day="200" night="200" min="200" max="200"/>
    </time>
    <time day="2024-03-02"/>
  </forecast>
</weatherdata>
"""


class FakeSource:
    def __init__(self, document: bytes | None = None, error: str | None = None) -> None:
        self.document = document
        self.error = error
        self.queries: list[tuple[str, str]] = []

    def fetch(self, city: str, state: str) -> bytes:
        self.queries.append((city, state))
        if self.error is not None:
            raise ForecastUnavailable(self.error)
        assert self.document is not None
        return self.document


class TestUnitConversion:

    def test_kelvin_to_fahrenheit(self) -> None:
        assert kelvin_to_fahrenheit(273.15) == 32.0
        assert kelvin_to_fahrenheit(373.15) == 212.0

    def test_temperature_accessors(self) -> None:
        temperature = Temperature(min=273.15, max=373.15)
        assert temperature.min_fahrenheit == 32.0
        assert temperature.max_fahrenheit == 212.0
        assert Temperature().max_fahrenheit is None


class TestWeatherData:

    def test_end_to_end(self) -> None:
        weather = parse_weather(boston_forecast)

        assert weather.locations == [Location(city='Boston', country='US')]
        assert len(weather.forecast_days) == 1

        forecast_day = weather.forecast_days[0]
        assert forecast_day.day == date(2024, 1, 1)
        assert forecast_day.temperature is not None
        assert forecast_day.temperature.min_fahrenheit == kelvin_to_fahrenheit(270)
        assert forecast_day.temperature.max_fahrenheit == kelvin_to_fahrenheit(285)
        assert forecast_day.temperature.day == 280.0
        assert forecast_day.temperature.night == 275.0

    def test_first_temperature_is_used(self) -> None:
        weather = parse_weather(two_day_forecast)
        first, second = weather.forecast_days
        assert len(first.temperatures) == 2
        assert first.temperature == Temperature(day=283.15, night=278.15, min=273.15, max=293.15)
        assert second.temperature is None

    def test_locations_may_be_empty(self) -> None:
        weather = parse_weather(b'<weatherdata><forecast/></weatherdata>')
        assert weather.locations == []
        assert weather.forecast_days == []

    def test_invalid_documents(self) -> None:
        with pytest.raises(NameMismatchError):
            parse_weather(b'<notweatherdata/>')

        with pytest.raises(ConversionError, match=r"Cannot convert 'soon' to date for field 'day'"):
            parse_weather(b'<weatherdata><forecast><time day="soon"/></forecast></weatherdata>')

    def test_incomplete_entries(self) -> None:
        weather = parse_weather(b'<weatherdata><location name="Boston"/><forecast><time/></forecast></weatherdata>')
        assert weather.locations == [Location(city='Boston')]
        assert weather.locations[0].country is None
        assert weather.forecast_days == [ForecastDay()]
        assert weather.forecast_days[0].day is None

        assert parse_weather(b'<weatherdata><location name="Boston" country="US"/></weatherdata>').forecast_days == []

    def test_round_trip(self) -> None:
        weather = WeatherData(
            locations=[Location(city='Boston', country='US')],
            forecast_days=[
                ForecastDay(day=date(2024, 1, 1), temperatures=[Temperature(day=280.0, night=275.0, min=270.0, max=285.0)]),
                ForecastDay(day=date(2024, 1, 2)),
            ],
        )
        element = serialize(weather)
        assert [child.tag for child in element] == ['location', 'forecast']
        assert deserialize(element, WeatherData) == weather


class TestWeatherService:

    def test_successful_query(self) -> None:
        source = FakeSource(two_day_forecast)
        weather = Weather(source)

        assert weather.location_name() == 'Nowhere, USA'
        assert weather.temperature_series() == []

        assert weather.get_weather('Springfield', 'MA') == WeatherResult(successful=True, message='Successful!')
        assert source.queries == [('Springfield', 'MA')]

        assert weather.location_name() == 'Springfield, US'
        assert weather.temperature_series() == [
            ('2024-03-01', kelvin_to_fahrenheit(293.15), 32.0),
            ('2024-03-02', None, None),
        ]
        assert weather.axis_labels() == ['2024-03-01', '2024-03-02']
        assert weather.chart_series() == [
            ('Max Temperatures', [kelvin_to_fahrenheit(293.15), 0.0]),
            ('Min Temperatures', [32.0, 0.0]),
        ]

    def test_unparsable_document(self, caplog: pytest.LogCaptureFixture) -> None:
        weather = Weather(FakeSource(b'<notweatherdata/>'))
        with caplog.at_level(logging.WARNING, logger='weatherplot.forecast.service'):
            result = weather.get_weather('Boston', 'MA')
        assert result == WeatherResult(successful=False, message='Could not parse XML result')
        assert weather.forecast is None
        assert 'Could not parse the forecast for Boston, MA' in caplog.text

        weather = Weather(FakeSource(b'<weatherdata>'))
        assert weather.get_weather('Boston', 'MA') == WeatherResult(successful=False, message='Could not parse XML result')

    def test_failed_fetch_keeps_previous_forecast(self) -> None:
        source = FakeSource(boston_forecast)
        weather = Weather(source)
        assert weather.get_weather('Boston', 'MA').successful

        source.error = 'Query failed; city/state probably not found.'
        assert weather.get_weather('Nowhere', 'XX') == WeatherResult(successful=False, message='Query failed; city/state probably not found.')
        assert weather.location_name() == 'Boston, US'

    def test_incomplete_forecast(self) -> None:
        document = b'<weatherdata><location name="Boston"/><forecast><time><temperature max="273.15"/></time></forecast></weatherdata>'
        weather = Weather(FakeSource(document))

        assert weather.get_weather('Boston', 'MA') == WeatherResult(successful=True, message='Successful!')
        assert weather.location_name() == 'Boston'
        assert weather.temperature_series() == [('', 32.0, None)]
        assert weather.chart_series() == [('Max Temperatures', [32.0]), ('Min Temperatures', [0.0])]

        weather = Weather(FakeSource(b'<weatherdata><location/><forecast/></weatherdata>'))
        assert weather.get_weather('Boston', 'MA').successful
        assert weather.location_name() == 'Nowhere, USA'
