"""Tests for the Flask API (read endpoints and the guarded refresh trigger)."""

import pytest

from conftest import StubFundamentalsSource, StubPriceSource, utc
from app import app
from dashboard_cache.market import Source
from dashboard_cache.refresh import RefreshCoordinator


@pytest.fixture
def client(db_path, monkeypatch):
    monkeypatch.setitem(app.config, 'CACHE_DB_PATH', db_path)
    monkeypatch.setitem(app.config, 'REFRESH_TOKEN', '')
    monkeypatch.setitem(app.config, 'REFRESH_COORDINATOR', None)
    app.config['TESTING'] = True
    with app.test_client() as client:
        yield client


@pytest.fixture
def seeded(market, quarterly, historical):
    market.upsert_snapshot(Source.YAHOO,
                           {'current_sp500_price': 5900.0, 'daily_close_sp500_price': 5881.63},
                           utc(2025, 1, 6, 22))
    market.upsert_snapshot(Source.YCHARTS, {'current_cape': 37.2, 'cape_period': 'Dec 2024'},
                           utc(2025, 1, 6, 22))
    for quarter, dividend, eps in [('2024Q1', 18.0, 50.0), ('2024Q2', 18.5, 52.0),
                                   ('2024Q3', 19.0, 55.0), ('2024Q4', 19.5, 58.0)]:
        quarterly.upsert_quarter(quarter, dividend=dividend, eps_actual=eps)
    for year in range(2019, 2025):
        historical.append_year(year, 3000.0 + 100 * (year - 2019), 60.0, 150.0, 30.0)


def test_health(client):
    response = client.get('/health')
    assert response.status_code == 200
    assert response.get_json() == {'status': 'ok'}


def test_equity_empty_cache_is_404(client):
    response = client.get('/api/v1/equity')
    assert response.status_code == 404
    assert 'error' in response.get_json()


def test_equity(client, seeded):
    data = client.get('/api/v1/equity').get_json()
    assert data['current_sp500_price'] == pytest.approx(5900.0)
    assert data['daily_close_sp500_price'] == pytest.approx(5881.63)
    assert data['cape'] == pytest.approx(37.2)
    assert data['cape_period'] == 'Dec 2024'
    assert data['ttm_dividend'] == {'final_quarter': '2024Q4', 'value': 75.0}
    assert data['latest_eps_actual']['final_quarter'] == '2024Q4'
    assert data['estimated_eps_sum'] is None
    assert data['last_update'].startswith('2025-01-06T22:00:00')


def test_snapshot(client, seeded):
    data = client.get('/api/v1/equity/snapshot').get_json()
    assert data['last_yahoo_update'] == '2025-01-06T22:00:00+00:00'


def test_quarters(client, seeded):
    data = client.get('/api/v1/equity/quarters').get_json()
    assert [q['quarter'] for q in data] == ['2024Q1', '2024Q2', '2024Q3', '2024Q4']


def test_quarter(client, seeded):
    data = client.get('/api/v1/equity/quarters/2024Q3').get_json()
    assert data['eps_actual'] == pytest.approx(55.0)
    assert data['eps_estimated'] is None


def test_quarter_invalid_format(client):
    assert client.get('/api/v1/equity/quarters/2024Q5').status_code == 400


def test_quarter_not_found(client):
    assert client.get('/api/v1/equity/quarters/2030Q1').status_code == 404


def test_history_all(client, seeded):
    data = client.get('/api/v1/equity/history/all').get_json()
    assert [r['year'] for r in data] == list(range(2019, 2025))


def test_history_range(client, seeded):
    data = client.get('/api/v1/equity/history/2020/2023').get_json()
    assert [r['year'] for r in data] == [2020, 2021, 2022, 2023]
    assert data[0]['dividend_yield'] == pytest.approx(60.0 / 3100.0)


def test_history_year(client, seeded):
    assert client.get('/api/v1/equity/history/2021').get_json()['sp500_price'] == pytest.approx(3200.0)
    assert client.get('/api/v1/equity/history/1990').status_code == 404


def test_metrics(client, seeded):
    data = client.get('/api/v1/equity/metrics').get_json()
    assert data['first_year'] == 2019
    assert data['current_price_cagr'] is None


def test_metrics_without_history(client):
    assert client.get('/api/v1/equity/metrics').status_code == 404


def test_cache_stats(client, seeded):
    data = client.get('/api/v1/cache/stats').get_json()
    assert data['quarters'] == 4
    assert data['historical_years'] == 6
    assert data['has_snapshot'] is True


def test_refresh_disabled_without_token(client):
    assert client.post('/api/v1/refresh').status_code == 403


def test_refresh_rejects_bad_token(client, monkeypatch):
    monkeypatch.setitem(app.config, 'REFRESH_TOKEN', 'secret')
    assert client.post('/api/v1/refresh').status_code == 401
    response = client.post('/api/v1/refresh', headers={'Authorization': 'Bearer wrong'})
    assert response.status_code == 401


def test_refresh_runs_cycle(client, db_path, monkeypatch):
    coordinator = RefreshCoordinator(db_path, StubPriceSource(value=6001.0), StubFundamentalsSource())
    monkeypatch.setitem(app.config, 'REFRESH_TOKEN', 'secret')
    monkeypatch.setitem(app.config, 'REFRESH_COORDINATOR', coordinator)

    response = client.post('/api/v1/refresh', headers={'Authorization': 'Bearer secret'})

    assert response.status_code == 200
    data = response.get_json()
    assert data['status'] == 'completed'
    assert data['outcomes'] == {'yahoo': 'updated', 'ycharts': 'updated'}

    snapshot = client.get('/api/v1/equity/snapshot').get_json()
    assert snapshot['current_sp500_price'] == pytest.approx(6001.0)

    status = client.get('/api/v1/refresh/status').get_json()
    assert status['last_run']['status'] == 'completed'


def test_monthly_returns(client, db_path):
    from dashboard_cache.monthly import MonthlyReturnStore

    store = MonthlyReturnStore(db_path)
    store.record_month('2024-12', -0.025, timestamp=utc(2025, 1, 3))
    store.record_month('2024-11', 0.0587, timestamp=utc(2024, 12, 2))

    data = client.get('/api/v1/equity/returns/monthly').get_json()

    assert [m['month'] for m in data] == ['2024-11', '2024-12']
    assert data[1]['total_return'] == pytest.approx(-0.025)
    assert client.get('/api/v1/cache/stats').get_json()['monthly_returns'] == 2


def test_metrics_include_returns_cagr(client, seeded):
    data = client.get('/api/v1/equity/metrics').get_json()
    assert 'past_returns_cagr' in data
    assert data['past_returns_cagr'] is None
