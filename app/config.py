from dataclasses import dataclass
import os

from dotenv import load_dotenv


load_dotenv()


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    app_name: str
    database_url: str
    log_level: str
    input_path: str
    output_dir: str
    export_batch_size: int
    export_malformed: bool
    max_upsert_retries: int
    retry_backoff_seconds: float


def get_settings() -> Settings:
    return Settings(
        app_name=os.getenv("APP_NAME", "customer-intake"),
        database_url=os.getenv("DATABASE_URL", "sqlite:///./customers.db"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        input_path=os.getenv("INPUT_PATH", "./data/input/customers.txt"),
        output_dir=os.getenv("OUTPUT_DIR", "./output"),
        export_batch_size=int(os.getenv("EXPORT_BATCH_SIZE", "100000")),
        export_malformed=_env_flag("EXPORT_MALFORMED", "true"),
        max_upsert_retries=int(os.getenv("MAX_UPSERT_RETRIES", "2")),
        retry_backoff_seconds=float(os.getenv("RETRY_BACKOFF_SECONDS", "0.5")),
    )
