#!/usr/bin/env python3
"""
Development server runner for the CopyGuard API
Includes auto-reload and environment checking
"""

import os
import sys
import uvicorn
from pathlib import Path

# Add the parent directory to Python path
sys.path.append(str(Path(__file__).parent.parent))

# Load environment variables from .env file
from dotenv import load_dotenv
load_dotenv()


def check_environment():
    """Report oracle credentials and optional settings. Missing credentials only degrade the service."""
    optional_vars = [
        "API_HOST",
        "API_PORT",
        "DEBUG",
        "EMBEDDING_PROVIDER",
        "DOUBAO_BASE_URL",
        "FINGERPRINT_MATCH_THRESHOLD",
        "MAX_CANDIDATES",
        "VERIFICATION_BATCH_SIZE",
    ]

    if os.getenv("DOUBAO_API_KEY") or os.getenv("API_KEY"):
        print("✅ Oracle API key found")
    else:
        print("⚠️  DOUBAO_API_KEY is not set: assessments will run but every verification will fail")

    print("\n📋 Optional configurations:")
    for var in optional_vars:
        print(f"  {var}: {os.getenv(var, 'Not set')}")


def check_dependencies():
    """Check if all required dependencies are available."""
    required_modules = [
        "fastapi",
        "uvicorn",
        "requests",
        "PIL",  # Pillow imports as PIL
        "numpy",
        "structlog",
    ]
    if os.getenv("EMBEDDING_PROVIDER", "doubao").lower() == "clip":
        required_modules += ["torch", "transformers"]

    missing_modules = []
    for module in required_modules:
        try:
            __import__(module)
        except ImportError:
            missing_modules.append(module)

    if missing_modules:
        print(f"❌ Missing required Python modules: {', '.join(missing_modules)}")
        print("Please run: pip install -e .[clip]" if "torch" in missing_modules else "Please run: pip install -e .")
        return False

    print("✅ All required dependencies found")
    return True


def main():
    """Main entry point for development server."""
    print("🛡️  CopyGuard - Development Server")
    print("=" * 50)

    check_environment()

    if not check_dependencies():
        sys.exit(1)

    host = os.getenv("API_HOST", "0.0.0.0")
    port = int(os.getenv("API_PORT", 8000))
    debug = os.getenv("DEBUG", "true").lower() == "true"

    print(f"\n🚀 Starting development server...")
    print(f"   Host: {host}")
    print(f"   Port: {port}")
    print(f"   Debug: {debug}")
    print(f"   Docs: http://{host}:{port}/docs")
    print("\n⏹️  Press Ctrl+C to stop the server")
    print("=" * 50)

    try:
        uvicorn.run(
            "copyguard.main:app",
            host=host,
            port=port,
            reload=debug,
            log_level="debug" if debug else "info",
            access_log=True,
        )
    except KeyboardInterrupt:
        print("\n🛑 Server stopped by user")
    except Exception as e:
        print(f"\n❌ Server error: {str(e)}")
        sys.exit(1)


if __name__ == "__main__":
    main()
