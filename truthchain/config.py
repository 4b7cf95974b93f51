import os

# Ledger
LEDGER_BACKEND = os.getenv("LEDGER_BACKEND", "sui")  # "sui" or "memory"
SUI_RPC_URL = os.getenv("SUI_RPC_URL", "https://fullnode.testnet.sui.io:443")
SUI_PRIVATE_KEY = os.getenv("SUI_PRIVATE_KEY", "")
PACKAGE_ID = os.getenv("TRUTHCHAIN_PACKAGE_ID", os.getenv("PACKAGE_ID", ""))
REGISTRY_OBJECT_ID = os.getenv("TRUTHCHAIN_REGISTRY_OBJECT_ID", os.getenv("REGISTRY_OBJECT_ID", ""))
SUI_GAS_BUDGET = int(os.getenv("SUI_GAS_BUDGET", 50_000_000))
SUI_NETWORK = os.getenv("SUI_NETWORK", "testnet")

# Lookup polling (the ledger is eventually consistent)
LEDGER_LOOKUP_RETRIES = int(os.getenv("LEDGER_LOOKUP_RETRIES", 3))
LEDGER_LOOKUP_DELAY_SECONDS = float(os.getenv("LEDGER_LOOKUP_DELAY_SECONDS", 2.0))
LEDGER_LOOKUP_BACKOFF_FACTOR = float(os.getenv("LEDGER_LOOKUP_BACKOFF_FACTOR", 0.0))
LEDGER_EVENT_SCAN_LIMIT = int(os.getenv("LEDGER_EVENT_SCAN_LIMIT", 500))

# Blob storage
BLOB_BACKEND = os.getenv("BLOB_BACKEND", "walrus")  # "walrus", "local" or "memory"
WALRUS_PUBLISHER_URL = os.getenv("WALRUS_PUBLISHER_URL", "https://publisher.walrus-testnet.walrus.space")
WALRUS_AGGREGATOR_URL = os.getenv("WALRUS_AGGREGATOR_URL", "https://aggregator.walrus-testnet.walrus.space")
WALRUS_EPOCHS = int(os.getenv("WALRUS_EPOCHS", 5))
LOCAL_BLOB_DIR = os.getenv("LOCAL_BLOB_DIR", "uploads/blobs")

HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", 30))

# Integrity proofs
PROOF_STRATEGY = os.getenv("PROOF_STRATEGY", "merkle")  # "merkle" or "digest"
PROOF_CHUNK_SIZE = int(os.getenv("PROOF_CHUNK_SIZE", 1024))

# Anti-abuse guards
SIMILARITY_BLOCK_THRESHOLD = int(os.getenv("SIMILARITY_BLOCK_THRESHOLD", 95))
SIMILARITY_WARN_THRESHOLD = int(os.getenv("SIMILARITY_WARN_THRESHOLD", 85))
REPUTATION_BLOCK_FLOOR = int(os.getenv("REPUTATION_BLOCK_FLOOR", 20))

# Attestation index
INDEX_REPLAY_ON_STARTUP = os.getenv("INDEX_REPLAY_ON_STARTUP", "false").lower() == "true"
INDEX_REPLAY_LIMIT = int(os.getenv("INDEX_REPLAY_LIMIT", 500))

# API
MAX_FILE_SIZE = int(os.getenv("MAX_FILE_SIZE", 50 * 1024 * 1024))  # 50MB default
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", 8000))
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
