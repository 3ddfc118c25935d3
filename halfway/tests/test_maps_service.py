import asyncio
from unittest import mock

import pytest
from googlemaps import exceptions as gm_exceptions

from halfway.errors import DirectionsUnavailable, GeocodeFailed, SearchBackendUnavailable
from halfway.maps_service import GoogleMapsService, build_google_service
from halfway.models import Coordinate, TravelMode


MIDPOINT = Coordinate(51.5081, -0.1333)


@pytest.fixture
def client():
    with mock.patch('halfway.maps_service.googlemaps.Client') as factory:
        yield factory.return_value


@pytest.fixture
def service(client):
    svc = GoogleMapsService('AIza-test-key')
    yield svc
    svc.cleanup()


def _place(place_id, lat, lng, types=('cafe', 'food'), **extra):
    data = {
        'place_id': place_id,
        'name': place_id.title(),
        'types': list(types),
        'geometry': {'location': {'lat': lat, 'lng': lng}},
        'vicinity': f"{place_id} street",
    }
    data.update(extra)
    return data


def test_placeholder_key_is_rejected():
    with pytest.raises(ValueError):
        GoogleMapsService('your_api_key_here')
    with pytest.raises(ValueError):
        GoogleMapsService('')


def test_build_google_service_without_key_returns_none():
    assert build_google_service(None) is None
    assert build_google_service('your_api_key_here') is None


def test_geocode_address(service, client):
    client.geocode.return_value = [{
        'formatted_address': 'Westminster, London SW1A 0AA, UK',
        'geometry': {'location': {'lat': 51.5007, 'lng': -0.1246}},
    }]
    found = service.geocode_address('Westminster')
    assert found == {'name': 'Westminster, London SW1A 0AA, UK', 'coordinate': Coordinate(51.5007, -0.1246)}
    client.geocode.assert_called_once_with('Westminster')


def test_geocode_no_match(service, client):
    client.geocode.return_value = []
    with pytest.raises(GeocodeFailed, match='Atlantis'):
        service.geocode_address('Atlantis')


def test_geocode_api_error(service, client):
    client.geocode.side_effect = gm_exceptions.ApiError('OVER_QUERY_LIMIT')
    with pytest.raises(GeocodeFailed):
        service.geocode_address('Westminster')


def test_search_places_maps_results(service, client):
    client.places_nearby.return_value = {'results': [
        _place('abc', 51.5090, -0.1330),
        _place('def', 51.5060, -0.1340, types=()),
    ]}
    places = service.search_places(MIDPOINT, 2000.0, 'cafe', limit=5)

    client.places_nearby.assert_called_once_with(location=(51.5081, -0.1333), radius=2000, keyword='cafe')
    assert [p.id for p in places] == ['abc', 'def']
    assert places[0].category == 'cafe'
    assert places[0].address == 'abc street'
    assert places[0].coordinate == Coordinate(51.5090, -0.1330)
    assert places[1].category == ''


def test_search_places_respects_limit_and_skips_malformed(service, client):
    broken = {'name': 'No id or geometry'}
    client.places_nearby.return_value = {'results': [broken] + [_place(f"p{i}", 51.5, -0.13) for i in range(8)]}
    places = service.search_places(MIDPOINT, 2000, 'cafe', limit=3)
    assert [p.id for p in places] == ['p0', 'p1', 'p2']


def test_search_places_backend_error(service, client):
    client.places_nearby.side_effect = gm_exceptions.TransportError('connection reset')
    with pytest.raises(SearchBackendUnavailable):
        service.search_places(MIDPOINT, 2000, 'bar')


def test_route_duration_sums_legs(service, client):
    client.directions.return_value = [{'legs': [
        {'duration': {'value': 300}},
        {'duration': {'value': 420}},
    ]}]
    seconds = service.route_duration(Coordinate(51.5007, -0.1246), MIDPOINT, TravelMode.WALKING)
    assert seconds == 720
    client.directions.assert_called_once_with(
        origin='51.5007,-0.1246',
        destination='51.5081,-0.1333',
        mode='walking',
        alternatives=False,
    )


def test_route_duration_without_route(service, client):
    client.directions.return_value = []
    with pytest.raises(DirectionsUnavailable):
        service.route_duration(Coordinate(51.5007, -0.1246), MIDPOINT, TravelMode.DRIVING)


def test_route_duration_timeout(service, client):
    client.directions.side_effect = gm_exceptions.Timeout()
    with pytest.raises(DirectionsUnavailable):
        service.route_duration(Coordinate(51.5007, -0.1246), MIDPOINT, TravelMode.DRIVING)


def test_async_wrappers_use_executor(service, client):
    client.places_nearby.return_value = {'results': [_place('abc', 51.5090, -0.1330)]}
    client.directions.return_value = [{'legs': [{'duration': {'value': 61}}]}]

    async def scenario():
        places = await service.search_places_async(MIDPOINT, 2000, 'cafe')
        seconds = await service.route_duration_async(MIDPOINT, places[0].coordinate, TravelMode.DRIVING)
        return places, seconds

    places, seconds = asyncio.run(scenario())
    assert [p.id for p in places] == ['abc']
    assert seconds == 61
