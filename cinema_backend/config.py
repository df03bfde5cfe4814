from dataclasses import dataclass
from pathlib import Path
from dotenv import load_dotenv
import logging
import os

load_dotenv()


@dataclass(frozen=True)
class Config:
    secret_key: str
    database: str
    database_timeout: float
    upload_folder: Path
    max_image_kb: int
    cors_origins: list[str]
    log_level: str
    seed_data: bool

    def as_flask_config(self) -> dict:
        return {
            "SECRET_KEY": self.secret_key,
            "DATABASE": self.database,
            "DATABASE_TIMEOUT": self.database_timeout,
            "UPLOAD_FOLDER": str(self.upload_folder),
            "MAX_IMAGE_KB": self.max_image_kb,
            # multipart overhead on top of the image itself
            "MAX_CONTENT_LENGTH": (self.max_image_kb + 512) * 1024,
            "CORS_ORIGINS": self.cors_origins,
            "LOG_LEVEL": self.log_level,
            "SEED_DATA": self.seed_data,
        }


def load_config() -> Config:
    logger = logging.getLogger(__name__)

    def _int(name: str, default: int) -> int:
        raw = os.getenv(name, str(default)).strip()
        try:
            value = int(raw)
        except ValueError:
            logger.warning("invalid %s=%s, using default=%s", name, raw, default)
            return default
        if value <= 0:
            logger.warning("invalid %s=%s, using default=%s", name, raw, default)
            return default
        return value

    def _float(name: str, default: float) -> float:
        raw = os.getenv(name, str(default)).strip()
        try:
            value = float(raw)
        except ValueError:
            logger.warning("invalid %s=%s, using default=%s", name, raw, default)
            return default
        return value if value > 0 else default

    def _bool(name: str, default: bool) -> bool:
        raw = os.getenv(name)
        if raw is None or raw.strip() == "":
            return default
        val = raw.strip().lower()
        if val in ("1", "true", "yes", "on"):
            return True
        if val in ("0", "false", "no", "off"):
            return False
        logger.warning("invalid %s=%s, using default=%s", name, raw, default)
        return default

    def _list(name: str, default: str) -> list[str]:
        raw = os.getenv(name, default)
        return [x.strip() for x in raw.split(",") if x.strip()]

    secret_key = os.getenv("SECRET_KEY", "").strip()
    if not secret_key:
        logger.warning("SECRET_KEY not set, using an insecure development key")
        secret_key = "cinema-dev-secret-key"

    return Config(
        secret_key=secret_key,
        database=os.getenv("DATABASE", "cinema.db").strip() or "cinema.db",
        database_timeout=_float("DATABASE_TIMEOUT", 5.0),
        upload_folder=Path(os.getenv("UPLOAD_FOLDER", "./uploads")),
        max_image_kb=_int("MAX_IMAGE_KB", 2048),
        cors_origins=_list("CORS_ORIGINS", "*"),
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO",
        seed_data=_bool("SEED_DATA", False),
    )
