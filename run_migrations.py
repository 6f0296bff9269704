"""
Run schema migrations before the app starts.
Deploy start command: python run_migrations.py && uvicorn advisory.main:app ...
The app also upgrades on startup; running this first surfaces failures in the
deploy log before any traffic is served.
"""
import sys
from pathlib import Path

from dotenv import load_dotenv
load_dotenv()

from alembic import command
from alembic.config import Config

from advisory.core.config import settings


def run():
    root = Path(__file__).resolve().parent
    alembic_cfg = Config(str(root / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(root / "alembic"))
    alembic_cfg.set_main_option("sqlalchemy.url", settings.database_url.replace("%", "%%"))
    print("▶ Running Alembic upgrade to head...")
    try:
        command.upgrade(alembic_cfg, "head")
    except Exception as e:
        print(f"❌ Migration failed: {e}")
        return False
    print("✅ Migrations completed")
    return True


if __name__ == "__main__":
    success = run()
    sys.exit(0 if success else 1)
