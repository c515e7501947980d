# bookpress/config.py
import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List


def _env_bool(name: str, default: bool = False) -> bool:
    val = os.getenv(name)
    if val is None:
        return default
    return val.strip().lower() in {"1", "true", "yes", "on"}

def _env_csv(name: str, default: str = "*") -> List[str]:
    raw = os.getenv(name, default)
    return [x.strip() for x in raw.split(",") if x.strip()]

def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw not in (None, "") else default

def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw not in (None, "") else default

def _env_json(name: str) -> Dict[str, Any]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return {}
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError(f"{name} must be a JSON object")
    return data


@dataclass(frozen=True)
class Config:
    # OpenAI
    openai_api_key: str
    openai_text_model: str
    openai_image_model: str
    openai_vision_model: str
    # Gemini
    gemini_api_key: str
    gemini_text_model: str
    gemini_image_model: str
    # Provider routing: names registered in the text / image registries
    text_primary: str
    text_fallback: str
    image_primary: str
    image_fallback: str
    provider_overrides: Dict[str, Any]      # {"stage": {"primary": .., "fallback": .., "model": ..}}
    provider_timeout_seconds: float         # hard timeout per provider HTTP call
    # API / CORS
    allowed_origins: List[str]
    # Output handling
    base_output_dir: Path
    upload_artifacts: bool                  # push final PDFs to GCS and sign URLs
    # Logging
    log_level: str
    gcs_bucket: str
    signed_url_ttl: int
    public_base_url: str

    # Queue / Cloud Tasks
    queue_backend: str                      # "cloud_tasks" | "local"
    gcp_project: str
    gcp_location: str
    tasks_queue_prefix: str                 # one queue per stage: <prefix>-<stage>
    task_dispatch_deadline_seconds: int
    stage_workers: int                      # local backend: threads per stage
    stage_max_attempts: int

    # Print production
    asset_root: Path
    icc_profile_path: str
    default_reading_age: str
    candidates_per_page: int
    max_pages: int
    convert_cmyk: bool
    promo_url: str

    # Print vendor / partner handoff
    print_api_url: str
    print_api_key: str
    print_track_interval_seconds: int
    print_track_max_polls: int
    partner_webhook_url: str
    partner_webhook_secret: str

    sweep_jobs_on_startup: bool             # optional: run a sweep on app startup
    sweep_ttl_hours: int                    # delete jobs older than this if final exists

    text_defaults: Dict[str, Any] = field(default_factory=lambda: {
        "font_family": "Arial",
        "font_size": 100,
        "line_spacing": 110,
        "text_color": "#000000",
        "text_width_percent": 80,
        "border_percent": 5,
    })

    def __post_init__(self):
        if self.provider_timeout_seconds >= self.task_dispatch_deadline_seconds:
            raise ValueError(
                "PROVIDER_TIMEOUT_SECONDS must be shorter than TASK_DISPATCH_DEADLINE_SECONDS "
                f"({self.provider_timeout_seconds} >= {self.task_dispatch_deadline_seconds})"
            )
        if self.queue_backend not in {"cloud_tasks", "local"}:
            raise ValueError(f"unknown QUEUE_BACKEND {self.queue_backend!r}")


def _default_provider(key_env: str, name: str) -> str:
    return name if os.getenv(key_env) else "mock"


def load_config() -> Config:
    pkg_dir = Path(__file__).resolve().parent
    return Config(
        openai_api_key = os.getenv("OPENAI_API_KEY", ""),
        openai_text_model = os.getenv("OPENAI_TEXT_MODEL", "gpt-4o-mini"),
        openai_image_model = os.getenv("OPENAI_IMAGE_MODEL", "dall-e-3"),
        openai_vision_model = os.getenv("OPENAI_VISION_MODEL", "gpt-4o"),
        gemini_api_key = os.getenv("GEMINI_API_KEY", ""),
        gemini_text_model = os.getenv("GEMINI_TEXT_MODEL", "gemini-2.5-flash"),
        gemini_image_model = os.getenv("GEMINI_IMAGE_MODEL", "imagen-4.0-generate-001"),
        text_primary = os.getenv("TEXT_PROVIDER_PRIMARY", _default_provider("OPENAI_API_KEY", "openai")),
        text_fallback = os.getenv("TEXT_PROVIDER_FALLBACK", ""),
        image_primary = os.getenv("IMAGE_PROVIDER_PRIMARY", _default_provider("OPENAI_API_KEY", "openai")),
        image_fallback = os.getenv("IMAGE_PROVIDER_FALLBACK", ""),
        provider_overrides = _env_json("PROVIDER_OVERRIDES"),
        provider_timeout_seconds = _env_float("PROVIDER_TIMEOUT_SECONDS", 120.0),
        allowed_origins = _env_csv("ALLOWED_ORIGINS", "*"),
        base_output_dir = Path(os.getenv("OUTPUT_DIR", str(pkg_dir / "output"))),
        upload_artifacts = _env_bool("UPLOAD_ARTIFACTS", False),
        log_level = os.getenv("LOG_LEVEL", "INFO"),
        gcs_bucket = os.getenv("GCS_BUCKET", ""),
        signed_url_ttl = _env_int("GCS_SIGNED_URL_TTL", 3600),
        public_base_url = os.getenv("BASE_URL", "http://localhost:8080"),
        queue_backend = os.getenv("QUEUE_BACKEND", "local"),
        gcp_location = os.getenv("REGION", "us-central1"),
        gcp_project = os.getenv("PROJECT_ID", ""),
        tasks_queue_prefix = os.getenv("TASKS_QUEUE_PREFIX", "bookpress"),
        task_dispatch_deadline_seconds = _env_int("TASK_DISPATCH_DEADLINE_SECONDS", 1800),
        stage_workers = _env_int("STAGE_WORKERS", 2),
        stage_max_attempts = _env_int("STAGE_MAX_ATTEMPTS", 3),
        asset_root = Path(os.getenv("ASSET_ROOT", str(pkg_dir / "assets"))),
        icc_profile_path = os.getenv("ICC_PROFILE_PATH", ""),
        default_reading_age = os.getenv("DEFAULT_READING_AGE", "3-5"),
        candidates_per_page = _env_int("CANDIDATES_PER_PAGE", 2),
        max_pages = _env_int("MAX_PAGES", 24),
        convert_cmyk = _env_bool("CONVERT_CMYK", False),
        promo_url = os.getenv("PROMO_URL", "bookpress.example"),
        print_api_url = os.getenv("PRINT_API_URL", ""),
        print_api_key = os.getenv("PRINT_API_KEY", ""),
        print_track_interval_seconds = _env_int("PRINT_TRACK_INTERVAL_SECONDS", 3600),
        print_track_max_polls = _env_int("PRINT_TRACK_MAX_POLLS", 72),
        partner_webhook_url = os.getenv("PARTNER_WEBHOOK_URL", ""),
        partner_webhook_secret = os.getenv("PARTNER_WEBHOOK_SECRET", ""),
        sweep_jobs_on_startup = _env_bool("SWEEP_JOBS_ON_STARTUP", False),
        sweep_ttl_hours = _env_int("SWEEP_TTL_HOURS", 24),
    )

# Load once and ensure output directory exists
config = load_config()
config.base_output_dir.mkdir(parents=True, exist_ok=True)
