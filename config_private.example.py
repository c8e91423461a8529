"""
Local secrets template (DO NOT COMMIT REAL KEYS).

- Copy to `config_private.py` (gitignored) and fill in your own credentials.
- Alternatively, every value can be provided via an environment variable of the same name.
"""

# ---- Binance USDT-M futures ----
BN_API_KEY = ""
BN_SECRET_KEY = ""
# Optional endpoint override (e.g. testnet: https://testnet.binancefuture.com)
BINANCE_FAPI_BASE_URL = ""

# ---- Gate.io USDT futures ----
GATE_API_KEY = ""
GATE_SECRET_KEY = ""
# Optional endpoint override (e.g. testnet: https://fx-api-testnet.gateio.ws)
GATE_API_BASE_URL = ""

# ---- Telegram notifications (optional) ----
TELEGRAM_BOT_TOKEN = ""
TELEGRAM_CHAT_ID = ""
