from solders.pubkey import Pubkey

# ============================================
# PROGRAM IDS
# ============================================
PUMP_PROGRAM = Pubkey.from_string("6EF8rrecthR5Dkzon8Nwu78hRvfCKubJ14M5uBEwF6P")
WSOL_MINT = Pubkey.from_string("So11111111111111111111111111111111111111112")

BONDING_CURVE_SEED = b"bonding-curve"

# ============================================
# UNITS
# ============================================
LAMPORTS_PER_SOL = 1_000_000_000
PUMP_TOKEN_DECIMALS = 6

# ============================================
# PRICE APIS
# ============================================
JUPITER_PRICE_API = "https://lite-api.jup.ag/price/v3"

# ============================================
# STORE KEYS
# ============================================
OPEN_POSITIONS_KEY = "open_positions"
POSITION_KEY = "position:{asset}"
TRADES_KEY = "trades:{day}"
PRICE_CACHE_KEY = "price:{asset}"
GRADUATED_KEY = "graduated:{asset}"
PRICE_HISTORY_KEY = "price_history:{asset}"
FORCE_EXIT_KEY = "force_exit:{asset}"
WALLET_SOLD_KEY = "wallet_sold:{wallet}:{asset}"
WALLET_CHECKED_KEY = "wallet_checked:{wallet}:{asset}"
COOLDOWN_KEY = "cooldown:{asset}"
SNIPER_SIGNALS_KEY = "sniper_signals"
COPY_SIGNALS_KEY = "copy_signals"
