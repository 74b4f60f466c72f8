import os
from dotenv import load_dotenv

load_dotenv()

DEFAULT_INFERENCE_URL = "https://api-inference.huggingface.co/models/facebook/detr-resnet-50"


def _env(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value is None:
        return default
    return value


def _env_flag(name: str, default: bool = False) -> bool:
    value = _env(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Settings:
    def __init__(self) -> None:
        # Proxy
        self.inference_api_token: str | None = _env("HF_API_TOKEN", "") or None
        self.inference_url: str = _env("INFERENCE_URL", DEFAULT_INFERENCE_URL) or DEFAULT_INFERENCE_URL
        self.confidence_threshold = float(_env("CONFIDENCE_THRESHOLD", "0.25"))
        self.inference_max_attempts = int(_env("INFERENCE_MAX_ATTEMPTS", "3"))
        self.inference_retry_delay = float(_env("INFERENCE_RETRY_DELAY", "1.0"))
        self.inference_timeout = float(_env("INFERENCE_TIMEOUT", "30"))

        # Editor
        self.autocount_url: str = _env("AUTOCOUNT_URL", "http://localhost:8000/autocount") or "http://localhost:8000/autocount"
        self.autocount_timeout = float(_env("AUTOCOUNT_TIMEOUT", "60"))
        self.local_fallback = _env_flag("AUTOCOUNT_LOCAL_FALLBACK")
        self.camera_index = int(_env("CAMERA_INDEX", "0"))
        self.camera_scan_limit = int(_env("CAMERA_SCAN_LIMIT", "5"))
        self.camera_width = int(_env("CAMERA_WIDTH", "1280"))
        self.camera_height = int(_env("CAMERA_HEIGHT", "720"))


settings = Settings()
