"""
Configuration centrale du moteur de synchronisation via variables d'environnement.
Charger depuis un fichier .env en développement.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Base locale (appareil), SQLite embarqué
    LOCAL_DATABASE_URL: str = "sqlite:///./attendance_local.db"

    # Store distant de référence (service FastAPI)
    REMOTE_API_URL: str = "http://localhost:8000"
    REMOTE_DATABASE_URL: str = "sqlite:///./attendance_remote.db"
    REMOTE_TIMEOUT_SECONDS: float = 10.0

    # Sonde de connectivité (détection « lie-fi »)
    HEARTBEAT_PATH: str = "/api/heartbeat"
    PROBE_TIMEOUT_SECONDS: float = 3.0
    DEGRADED_THRESHOLD_SECONDS: float = 2.5
    CONNECTIVITY_CHECK_INTERVAL_SECONDS: int = 30

    # Synchronisation
    AUTO_SYNC_INTERVAL_SECONDS: int = 60
    MAX_SYNC_RETRIES: int = 5
    FRESH_SYNC_LOOKBACK_DAYS: int = 30

    # Environnement
    ENV: str = "development"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


settings = Settings()
