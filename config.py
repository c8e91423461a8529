# 配置文件

import os
from typing import Optional

try:
    import config_private  # local secrets; attributes managed per account
except ImportError:  # pragma: no cover - secrets file optional
    config_private = None


def _get_private(attr_name: str, env_name: Optional[str] = None, default: Optional[str] = None):
    """Fetch secrets from config_private first, then environment variables."""
    if config_private and hasattr(config_private, attr_name):
        return getattr(config_private, attr_name)
    return os.getenv(env_name or attr_name, default)


def _is_truthy(value: Optional[str]) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')


def _get_float(attr_name: str, default: float) -> float:
    raw = _get_private(attr_name, attr_name, None)
    if raw in (None, ''):
        return float(default)
    try:
        return float(raw)
    except (TypeError, ValueError):
        return float(default)


# REST 连接配置
REST_CONNECTION_CONFIG = {
    'timeout': 10,                  # 单次请求超时（秒）
    'user_agent': 'PerpRiskGuard/1.0',
}

# Binance USDT-M futures
BINANCE_FAPI_BASE_URL = (
    _get_private('BINANCE_FAPI_BASE_URL', 'BINANCE_FAPI_BASE_URL', '') or 'https://fapi.binance.com'
).rstrip('/')
BINANCE_RECV_WINDOW_MS = int(_get_float('BINANCE_RECV_WINDOW_MS', 5000))
# Binance rejects orders below 5-20 USDT notional depending on the symbol; used when
# exchangeInfo does not carry a MIN_NOTIONAL filter.
BINANCE_DEFAULT_MIN_NOTIONAL = _get_float('BINANCE_DEFAULT_MIN_NOTIONAL', 10.0)
BINANCE_ENABLE_HEDGE_MODE = _is_truthy(_get_private('BINANCE_ENABLE_HEDGE_MODE', 'BINANCE_ENABLE_HEDGE_MODE', '1'))

# Gate.io USDT-settled futures
GATE_API_BASE_URL = (
    _get_private('GATE_API_BASE_URL', 'GATE_API_BASE_URL', '') or 'https://api.gateio.ws'
).rstrip('/')
GATE_API_PREFIX = '/api/v4'
GATE_SETTLE = (_get_private('GATE_SETTLE', 'GATE_SETTLE', '') or 'usdt').lower()

# Credentials (attribute names looked up in config_private.py, then env)
BINANCE_API_KEY_ATTR = 'BN_API_KEY'
BINANCE_SECRET_KEY_ATTR = 'BN_SECRET_KEY'
GATE_API_KEY_ATTR = 'GATE_API_KEY'
GATE_SECRET_KEY_ATTR = 'GATE_SECRET_KEY'

# 账户/持仓缓存有效期（秒）
ACCOUNT_CACHE_TTL_SECONDS = _get_float('ACCOUNT_CACHE_TTL_SECONDS', 5.0)
# Instrument metadata changes rarely; cache it longer.
INSTRUMENT_CACHE_TTL_SECONDS = 15 * 60

# 切换杠杆后的冷却期（秒）
LEVERAGE_COOLDOWN_SECONDS = _get_float('LEVERAGE_COOLDOWN_SECONDS', 5.0)

# 本地止盈止损轮询
SLTP_POLL_INTERVAL_SECONDS = _get_float('SLTP_POLL_INTERVAL_SECONDS', 2.0)
SLTP_REARM_ON_FAILED_CLOSE = _is_truthy(
    _get_private('SLTP_REARM_ON_FAILED_CLOSE', 'SLTP_REARM_ON_FAILED_CLOSE', '0')
)

# Telegram 通知
TELEGRAM_BOT_TOKEN = _get_private('TELEGRAM_BOT_TOKEN', 'TELEGRAM_BOT_TOKEN', '')
TELEGRAM_CHAT_ID = _get_private('TELEGRAM_CHAT_ID', 'TELEGRAM_CHAT_ID', '')
TELEGRAM_API_BASE_URL = 'https://api.telegram.org'
