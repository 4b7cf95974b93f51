#!/usr/bin/env python3
"""
Development server runner for the TruthChain API.

Checks the ledger and blob store configuration, probes both backends, then
starts uvicorn with auto-reload.
"""

import importlib.util
import sys
import uvicorn
from pathlib import Path

# Add the parent directory to Python path
sys.path.append(str(Path(__file__).parent.parent))

# Load environment variables before truthchain.config reads them
from dotenv import load_dotenv
load_dotenv()

from truthchain import config

# import name -> distribution name
REQUIRED_MODULES = {
    "fastapi": "fastapi",
    "uvicorn": "uvicorn",
    "multipart": "python-multipart",
    "requests": "requests",
    "cryptography": "cryptography",
    "PIL": "Pillow",
    "numpy": "numpy",
    "structlog": "structlog",
}


def missing_ledger_settings():
    if config.LEDGER_BACKEND != "sui":
        return []
    settings = {
        "SUI_PRIVATE_KEY": config.SUI_PRIVATE_KEY,
        "TRUTHCHAIN_PACKAGE_ID": config.PACKAGE_ID,
        "TRUTHCHAIN_REGISTRY_OBJECT_ID": config.REGISTRY_OBJECT_ID,
    }
    return [name for name, value in settings.items() if not value]


def check_environment():
    """Validate backend selection and report what is configured."""
    if config.LEDGER_BACKEND not in ("sui", "memory"):
        print(f"❌ Unsupported LEDGER_BACKEND: {config.LEDGER_BACKEND}")
        return False
    if config.BLOB_BACKEND not in ("walrus", "local", "memory"):
        print(f"❌ Unsupported BLOB_BACKEND: {config.BLOB_BACKEND}")
        return False

    missing = missing_ledger_settings()
    if missing:
        # verification keeps working; registrations end as partial successes
        print(f"⚠️  Ledger writes disabled, missing: {', '.join(missing)}")
        print("   Set them in .env or run with LEDGER_BACKEND=memory.")
    else:
        print("✅ Ledger configuration complete")

    print("\n📋 Configuration:")
    print(f"  Ledger: {config.LEDGER_BACKEND} ({config.SUI_NETWORK}, {config.SUI_RPC_URL})")
    print(f"  Blobs: {config.BLOB_BACKEND}")
    print(f"  Proofs: {config.PROOF_STRATEGY} (chunk size {config.PROOF_CHUNK_SIZE})")
    print(f"  Lookup retries: {config.LEDGER_LOOKUP_RETRIES} x {config.LEDGER_LOOKUP_DELAY_SECONDS}s")
    print(f"  Index replay on startup: {config.INDEX_REPLAY_ON_STARTUP}")
    print(f"  Signing key: {'set' if config.SUI_PRIVATE_KEY else 'Not set'}")
    return True


def check_dependencies():
    """Check if all required dependencies are importable."""
    missing = [dist for module, dist in REQUIRED_MODULES.items() if importlib.util.find_spec(module) is None]
    if missing:
        print(f"❌ Missing required packages: {', '.join(missing)}")
        print("Please run: pip install -e .")
        return False

    print("✅ All required dependencies found")
    return True


def probe_backends():
    """Health-check the configured ledger and blob store; failures only warn."""
    from truthchain.core.ledger import create_ledger_client
    from truthchain.core.storage import create_blob_store

    for label, factory in (("Ledger", create_ledger_client), ("Blob store", create_blob_store)):
        try:
            health = factory().health_check()
        except Exception as e:
            print(f"⚠️  {label} could not be created: {e}")
            continue
        if health.get("available"):
            print(f"✅ {label} reachable ({health.get('backend')})")
        else:
            print(f"⚠️  {label} unreachable ({health.get('backend')}): {health.get('error')}")


def main():
    print("🔗 TruthChain - Development Server")
    print("=" * 50)

    if not check_environment() or not check_dependencies():
        sys.exit(1)

    probe_backends()

    debug = config.DEBUG or "--reload" in sys.argv
    print(f"\n🚀 Serving on http://{config.API_HOST}:{config.API_PORT} (docs at /docs, reload={debug})")
    print("⏹️  Press Ctrl+C to stop the server")
    print("=" * 50)

    try:
        uvicorn.run(
            "truthchain.main:app",
            host=config.API_HOST,
            port=config.API_PORT,
            reload=debug,
            log_level="debug" if debug else config.LOG_LEVEL.lower(),
            access_log=True,
        )
    except KeyboardInterrupt:
        print("\n🛑 Server stopped by user")


if __name__ == "__main__":
    main()
