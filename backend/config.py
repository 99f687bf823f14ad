import os
from dotenv import load_dotenv

load_dotenv()

class Config:
    DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'
    HOST = os.getenv('HOST', '127.0.0.1')
    PORT = int(os.getenv('PORT', '3030'))

    # Cache configuration
    CACHE_DB_PATH = os.getenv('CACHE_DB_PATH', 'data/market_cache.db')

    # Scrape requests
    SCRAPE_TIMEOUT_SECONDS = float(os.getenv('SCRAPE_TIMEOUT_SECONDS', '15'))
    API_RATE_LIMIT_DELAY = float(os.getenv('API_RATE_LIMIT_DELAY', '1.0'))
    API_MAX_RETRIES = int(os.getenv('API_MAX_RETRIES', '3'))
    USER_AGENT = os.getenv(
        'USER_AGENT',
        'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36'
    )

    # Cache refresh policy
    PRICE_REFRESH_MINUTES = int(os.getenv('PRICE_REFRESH_MINUTES', '15'))
    FUNDAMENTALS_REFRESH_HOURS = int(os.getenv('FUNDAMENTALS_REFRESH_HOURS', '24'))
    REFRESH_INTERVAL_SECONDS = int(os.getenv('REFRESH_INTERVAL_SECONDS', '300'))
    REFRESH_ENABLED = os.getenv('REFRESH_ENABLED', 'True').lower() == 'true'

    # Market close in the exchange's local time (3:30 PM Central)
    MARKET_TIMEZONE = os.getenv('MARKET_TIMEZONE', 'America/Chicago')
    MARKET_CLOSE_TIME = os.getenv('MARKET_CLOSE_TIME', '15:30')

    # Shared secret for POST /api/v1/refresh (empty disables the endpoint)
    REFRESH_TOKEN = os.getenv('REFRESH_TOKEN', '')

    # Upstream sources
    YAHOO_QUOTE_URL = os.getenv('YAHOO_QUOTE_URL', 'https://finance.yahoo.com/quote/%5EGSPC')
    YCHARTS_BASE_URL = os.getenv('YCHARTS_BASE_URL', 'https://ycharts.com/indicators')

    YCHARTS_INDICATORS = {
        'dividend': 'sp_500_dividends_per_share',
        'eps_actual': 'sp_500_eps',
        'eps_estimated': 'sp_500_earnings_per_share_forward_estimate',
        'cape': 'cyclically_adjusted_pe_ratio',
        'monthly_return': 'sp_500_monthly_total_return',
    }

    # Trailing window for "current" CAGR metrics
    METRICS_RECENT_YEARS = 10
