import os
import yaml
from pathlib import Path
from dotenv import load_dotenv

from celia.services.errors import ConfigurationError

BASE_DIR = Path(__file__).parent

# Bot-level .env first, then the shared one at the repo root (no overriding)
load_dotenv(BASE_DIR / ".env")
load_dotenv(BASE_DIR.parent / ".env", override=False)


class Config:
    """Configuration loader for Celia"""

    def __init__(self, config_file: Path = None):
        self.base_dir = BASE_DIR
        config_file = config_file or self.base_dir / "config.yaml"

        # Load main config.yaml
        with open(config_file, "r") as f:
            data = yaml.safe_load(f) or {}

        # ── Bot info (from YAML) ───────────────────────────────
        self.name = data.get("name", "Celia")
        self.description = data.get("description", "")
        self.version = data.get("version", "0.0.0")

        # ── Server config (from YAML) ─────────────────────────
        server = data.get("server", {}) or {}
        self.server_host = server.get("host", "0.0.0.0")
        self.server_port = int(os.environ.get("CELIA_PORT", server.get("port", 8031)))

        # ── Database config (from YAML, env override) ────────
        db_config = data.get("database", {}) or {}
        db_path = os.environ.get("CELIA_DB_PATH") or db_config.get("path", "database/celia.db")
        if not os.path.isabs(db_path):
            db_path = str(self.base_dir / db_path)
        self.database_path = db_path

        # ── Zureo API config ──────────────────────────────────
        zureo_config = data.get("zureo", {}) or {}
        self.zureo_base_url = (
            os.environ.get("ZUREO_API_URL")
            or zureo_config.get("base_url", "https://api.zureo.com")
        )
        self.zureo_page_size = zureo_config.get("page_size", 1000)
        self.zureo_timeout = zureo_config.get("timeout", 30)
        self.zureo_page_delay = zureo_config.get("page_delay", 3)
        self.zureo_long_pause_every = zureo_config.get("long_pause_every", 10)
        self.zureo_long_pause = zureo_config.get("long_pause", 30)
        self.zureo_rate_limit_cooldown = zureo_config.get("rate_limit_cooldown", 45)
        self.zureo_max_rate_limit_retries = zureo_config.get("max_rate_limit_retries", 5)
        self.zureo_max_backoff = zureo_config.get("max_backoff", 300)
        self.default_tax_multiplier = zureo_config.get("default_tax_multiplier", 1.22)

        # Zureo credentials (from environment only - never in config)
        self.zureo_username = os.environ.get("ZUREO_USERNAME")
        self.zureo_password = os.environ.get("ZUREO_PASSWORD")
        self.zureo_domain = os.environ.get("ZUREO_DOMAIN")
        self.zureo_company_id = os.environ.get("ZUREO_COMPANY_ID")

        # Validate required credentials
        self._validate_zureo_credentials()

        # ── Sync config (from YAML) ──────────────────────────
        sync_config = data.get("sync", {}) or {}
        self.sync_strategy = sync_config.get("strategy", "upsert")
        self.sync_batch_size = sync_config.get("batch_size", 100)
        self.sync_max_age_hours = sync_config.get("max_age_hours", 24)
        self.sync_lease_minutes = sync_config.get("lease_minutes", 15)
        self.synonyms_file = str(self.base_dir / sync_config.get("synonyms_file", "category_synonyms.yaml"))

        # ── Schedule config (from YAML) ──────────────────────
        self.schedule = data.get("schedule", {}) or {}
        self.schedule_enabled = bool(self.schedule.get("enabled", False))
        self.scheduler_timezone = self.schedule.get("timezone", "UTC")

        # ── Secrets / env-specific settings ────────────────────

        # Flask secret key
        self.flask_secret_key = (
            os.environ.get("FLASK_SECRET_KEY")
            or os.environ.get("SECRET_KEY", "dev-secret-key-change-in-production")
        )

        # Shared bot API key for bot-to-bot communication
        self.bot_api_key = os.environ.get("BOT_API_KEY")

    def missing_zureo_credentials(self) -> list:
        """Names of the required Zureo variables that are not set"""
        required = {
            "ZUREO_USERNAME": self.zureo_username,
            "ZUREO_PASSWORD": self.zureo_password,
            "ZUREO_DOMAIN": self.zureo_domain,
            "ZUREO_COMPANY_ID": self.zureo_company_id,
        }
        return [name for name, value in required.items() if not value]

    def _validate_zureo_credentials(self):
        """Validate that required Zureo credentials are present"""
        missing = self.missing_zureo_credentials()

        if missing and not os.environ.get("SKIP_ENV_VALIDATION"):
            raise ConfigurationError(
                f"Missing required Zureo credentials: {', '.join(missing)}. "
                "Set these environment variables before starting Celia."
            )


config = Config()
