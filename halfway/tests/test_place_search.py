import asyncio

from halfway.models import Category, Coordinate
from halfway.place_search import PlaceSearchAdapter

from conftest import FakeSearchBackend, raw


CENTER = Coordinate(51.5081, -0.1333)


def _many(prefix, n):
    return [raw(f"{prefix}-{i}", 51.5081 + i * 0.0001, -0.1333) for i in range(n)]


def test_one_query_per_category_with_doubled_region():
    backend = FakeSearchBackend()
    adapter = PlaceSearchAdapter(backend)
    asyncio.run(adapter.search(CENTER, 1000, Category.searchable()))

    assert sorted(c['query'] for c in backend.calls) == ['bar', 'cafe', 'park', 'restaurant']
    assert all(c['radius_m'] == 2000 for c in backend.calls)
    assert all(c['center'] == CENTER for c in backend.calls)
    assert all(c['limit'] == 5 for c in backend.calls)


def test_free_text_replaces_category_queries():
    backend = FakeSearchBackend({'ramen': [raw('r1', 51.5082, -0.1333)]})
    adapter = PlaceSearchAdapter(backend)
    results = asyncio.run(adapter.search(CENTER, 800, Category.searchable(), free_text='  ramen '))

    assert [c['query'] for c in backend.calls] == ['ramen']
    assert backend.calls[0]['radius_m'] == 1600
    assert [[p.id for p in r] for r in results] == [['r1']]


def test_blank_free_text_falls_back_to_categories():
    assert PlaceSearchAdapter.build_queries({Category.CAFE}, '   ') == ['cafe']
    assert PlaceSearchAdapter.build_queries({Category.PARK, Category.CAFE}) == ['cafe', 'park']


def test_results_capped_per_query():
    backend = FakeSearchBackend({'cafe': _many('cafe', 9), 'bar': _many('bar', 2)})
    adapter = PlaceSearchAdapter(backend)
    results = asyncio.run(adapter.search(CENTER, 1000, {Category.CAFE, Category.BAR}))

    assert [len(r) for r in results] == [5, 2]


def test_failed_query_is_treated_as_empty():
    backend = FakeSearchBackend(
        {'cafe': [raw('c1', 51.5082, -0.1333)], 'park': [raw('p1', 51.5083, -0.1333, 'park')]},
        failures={'bar'},
    )
    adapter = PlaceSearchAdapter(backend)
    results = asyncio.run(adapter.search(CENTER, 1000, Category.searchable()))

    by_query = dict(zip(PlaceSearchAdapter.build_queries(Category.searchable()), results))
    assert by_query['bar'] == []
    assert [p.id for p in by_query['cafe']] == ['c1']
    assert [p.id for p in by_query['park']] == ['p1']


def test_unexpected_backend_error_does_not_fail_search():
    class Broken(FakeSearchBackend):
        async def search_places_async(self, center, radius_m, query, limit=5):
            if query == 'cafe':
                raise RuntimeError('socket closed')
            return [raw(f'{query}-1', 51.5082, -0.1333)]

    adapter = PlaceSearchAdapter(Broken())
    results = asyncio.run(adapter.search(CENTER, 1000, {Category.CAFE, Category.BAR}))
    assert [[p.id for p in r] for r in results] == [[], ['bar-1']]


def test_slow_query_times_out_and_counts_as_empty():
    class Slow(FakeSearchBackend):
        async def search_places_async(self, center, radius_m, query, limit=5):
            if query == 'park':
                await asyncio.sleep(5)
            return [raw(f'{query}-1', 51.5082, -0.1333)]

    adapter = PlaceSearchAdapter(Slow(), timeout=0.05)
    results = asyncio.run(adapter.search(CENTER, 1000, {Category.CAFE, Category.PARK}))
    assert [[p.id for p in r] for r in results] == [['cafe-1'], []]


def test_queries_run_concurrently():
    backend = FakeSearchBackend(delay=0.02)
    adapter = PlaceSearchAdapter(backend)
    asyncio.run(adapter.search(CENTER, 1000, Category.searchable()))
    assert backend.max_in_flight == 4


def test_no_categories_means_no_queries():
    backend = FakeSearchBackend()
    adapter = PlaceSearchAdapter(backend)
    assert asyncio.run(adapter.search(CENTER, 1000, set())) == []
    assert backend.calls == []


def test_category_synonyms():
    assert Category.BAR.synonyms == ['pub', 'nightclub', 'lounge', 'wine bar', 'brewery']
    assert Category.CAFE.synonyms == ['coffee shop', 'espresso bar', 'patisserie']
    assert Category.OTHER.synonyms == []


def test_explicit_keywords_run_with_doubled_region():
    backend = FakeSearchBackend({'pub': [raw('p1', 51.5082, -0.1333, 'pub')]})
    adapter = PlaceSearchAdapter(backend)
    results = asyncio.run(adapter.run_queries(CENTER, 500, ['pub', 'lounge']))

    assert [(c['query'], c['radius_m']) for c in backend.calls] == [('pub', 1000), ('lounge', 1000)]
    assert [[p.id for p in r] for r in results] == [['p1'], []]
