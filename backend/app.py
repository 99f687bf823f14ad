import hmac
import logging

from flask import Flask, request, jsonify
from flask_cors import CORS

from config import Config
from dashboard_cache import (
    CacheError, NotFound, StaleWrite, InvalidQuarterFormat, DuplicateYear,
    ScrapeFailure, ValidationFailure, MarketCache, QuarterlyStore, HistoricalStore,
    MonthlyReturnStore,
    RefreshCoordinator, get_db_stats, get_job_status, start_refresh_job,
)
from dashboard_cache.metrics import calculate_market_metrics, quarterly_summary

logger = logging.getLogger(__name__)

app = Flask(__name__)
app.config['CACHE_DB_PATH'] = Config.CACHE_DB_PATH
app.config['REFRESH_TOKEN'] = Config.REFRESH_TOKEN
CORS(app)

ERROR_STATUS = {
    NotFound: 404,
    InvalidQuarterFormat: 400,
    ValidationFailure: 400,
    DuplicateYear: 409,
    StaleWrite: 409,
    ScrapeFailure: 502,
}


def _db_path():
    return app.config['CACHE_DB_PATH']


def _coordinator():
    """Coordinator for on-demand refreshes (tests inject one via app.config)."""
    coordinator = app.config.get('REFRESH_COORDINATOR')
    if coordinator is None:
        coordinator = RefreshCoordinator(_db_path())
    return coordinator


@app.errorhandler(CacheError)
def handle_cache_error(error):
    for error_type, status in ERROR_STATUS.items():
        if isinstance(error, error_type):
            return jsonify({'error': str(error)}), status
    logger.error(f"Unhandled cache error: {error}")
    return jsonify({'error': str(error)}), 500


@app.route('/health', methods=['GET'])
def health_check():
    """Health check endpoint"""
    return jsonify({'status': 'ok'})


@app.route('/api/v1/equity', methods=['GET'])
def get_equity_data():
    """Latest snapshot with quarterly dividend and EPS aggregates"""
    snapshot = MarketCache(_db_path()).get_latest_snapshot()
    quarters = QuarterlyStore(_db_path()).list_quarters()

    summary = quarterly_summary(quarters)
    return jsonify({
        'daily_close_sp500_price': snapshot.daily_close_sp500_price,
        'current_sp500_price': snapshot.current_sp500_price,
        'cape': snapshot.current_cape,
        'cape_period': snapshot.cape_period,
        'ttm_dividend': summary['ttm_dividend'],
        'latest_eps_actual': summary['latest_eps_actual'],
        'estimated_eps_sum': summary['estimated_eps_sum'],
        'last_update': snapshot.to_dict()['last_ycharts_update'],
    })


@app.route('/api/v1/equity/snapshot', methods=['GET'])
def get_snapshot():
    return jsonify(MarketCache(_db_path()).get_latest_snapshot().to_dict())


@app.route('/api/v1/equity/quarters', methods=['GET'])
def get_quarters():
    quarters = QuarterlyStore(_db_path()).list_quarters()
    return jsonify([q.to_dict() for q in quarters])


@app.route('/api/v1/equity/quarters/<quarter>', methods=['GET'])
def get_quarter(quarter):
    return jsonify(QuarterlyStore(_db_path()).get_quarter(quarter).to_dict())


@app.route('/api/v1/equity/returns/monthly', methods=['GET'])
def get_monthly_returns():
    months = MonthlyReturnStore(_db_path()).list_months()
    return jsonify([m.to_dict() for m in months])


@app.route('/api/v1/equity/history/all', methods=['GET'])
def get_equity_history():
    rows = HistoricalStore(_db_path()).get_all()
    return jsonify([r.to_dict() for r in rows])


@app.route('/api/v1/equity/history/<int:year>', methods=['GET'])
def get_equity_year(year):
    return jsonify(HistoricalStore(_db_path()).get_year(year).to_dict())


@app.route('/api/v1/equity/history/<int:start_year>/<int:end_year>', methods=['GET'])
def get_equity_history_range(start_year, end_year):
    rows = HistoricalStore(_db_path()).get_range(start_year, end_year)
    return jsonify([r.to_dict() for r in rows])


@app.route('/api/v1/equity/metrics', methods=['GET'])
def get_market_metrics():
    rows = HistoricalStore(_db_path()).get_all()
    return jsonify(calculate_market_metrics(rows))


@app.route('/api/v1/cache/stats', methods=['GET'])
def get_cache_stats():
    return jsonify(get_db_stats(_db_path()))


@app.route('/api/v1/refresh/status', methods=['GET'])
def get_refresh_status():
    return jsonify(get_job_status(_db_path()))


@app.route('/api/v1/refresh', methods=['POST'])
def trigger_refresh():
    """Run one refresh cycle now (requires the shared refresh token)"""
    token = app.config.get('REFRESH_TOKEN')
    if not token:
        return jsonify({'error': 'Refresh endpoint is disabled'}), 403

    auth = request.headers.get('Authorization', '')
    supplied = auth[len('Bearer '):] if auth.startswith('Bearer ') else ''
    if not supplied or not hmac.compare_digest(supplied, token):
        return jsonify({'error': 'Invalid or missing refresh token'}), 401

    force = request.args.get('force', 'false').lower() == 'true'
    result = _coordinator().run_once(force=force)
    return jsonify(result.to_dict())


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(name)s: %(message)s')
    if Config.REFRESH_ENABLED:
        logger.info(f"Background refresh: {start_refresh_job(Config.CACHE_DB_PATH)}")
    app.run(debug=Config.DEBUG, host=Config.HOST, port=Config.PORT, use_reloader=False)
