from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache


def _load_dotenv_if_present() -> None:
    """
    Load environment variables from a local `.env` file (dev convenience).

    Production deployments should set real environment variables instead.
    """
    try:
        from dotenv import load_dotenv  # type: ignore

        # Do not override existing environment variables.
        load_dotenv(override=False)
    except Exception:
        return


# Load .env as early as possible (dev only).
_load_dotenv_if_present()


def _env_str(name: str, default: str = "") -> str:
    return (os.environ.get(name) or "").strip() or default


def _env_int(name: str, default: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    try:
        return int(raw or default)
    except Exception:
        return default


def _env_float(name: str, default: float) -> float:
    raw = (os.environ.get(name) or "").strip()
    try:
        return float(raw) if raw else default
    except Exception:
        return default


def _env_flag(name: str, default: bool) -> bool:
    raw = (os.environ.get(name) or "").strip().lower()
    if not raw:
        return default
    return raw not in {"0", "false", "no", "off"}


def _env_csv(name: str) -> list[str]:
    raw = (os.environ.get(name) or "").strip()
    return [x.strip() for x in raw.split(",") if x.strip()]


def _threshold(name: str, default: float) -> float:
    v = _env_float(name, default)
    # Scores are probabilities; anything outside [0, 1] is a typo.
    return min(1.0, max(0.0, v))


def normalize_database_url(url: str) -> str:
    # Some managed providers still supply `postgres://...` which SQLAlchemy treats as invalid.
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


def database_url() -> str:
    return normalize_database_url(os.environ.get("DATABASE_URL") or "sqlite:///./local.db")


def jwt_secret() -> str:
    return os.environ.get("JWT_SECRET") or "dev-secret-change-me"


def is_local_dev() -> bool:
    """
    We treat the app as "local dev" when DATABASE_URL is not set, because
    `database_url()` falls back to sqlite in that case.
    """
    return not (os.environ.get("DATABASE_URL") or "").strip()


def app_env() -> str:
    """
    Application environment marker:
    - local (default when running with sqlite fallback)
    - development / dev
    - staging
    - prod
    """
    raw = (os.environ.get("APP_ENV") or "").strip().lower()
    if raw:
        return raw
    return "local" if is_local_dev() else "prod"


def is_development() -> bool:
    """Full diagnostic detail in error responses is only exposed in these environments."""
    return app_env() in {"local", "dev", "development"}


def allowed_hosts() -> list[str]:
    """
    Comma-separated list for TrustedHost middleware.
    Example: ALLOWED_HOSTS=api.example.com,example.com
    """
    hosts = _env_csv("ALLOWED_HOSTS")
    return hosts or ["*"]


def cors_origins() -> list[str]:
    origins = _env_csv("CORS_ORIGINS")
    if origins:
        return origins
    # Reasonable local defaults (dev).
    return [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]


def enforce_secure_secrets() -> None:
    """
    Fail-fast in production if dangerous defaults are still in use.
    """
    if app_env() in {"prod", "production"}:
        if jwt_secret() == "dev-secret-change-me":
            raise RuntimeError("JWT_SECRET must be set in production (default dev secret detected)")


# -----------------------
# Moderation
# -----------------------
DEFAULT_HUMAN_LABELS: tuple[str, ...] = (
    "person", "people", "human", "humans", "man", "men", "woman", "women",
    "child", "children", "baby", "babies", "infant", "toddler", "kid", "kids",
    "boy", "boys", "girl", "girls", "teenager", "teen", "adult", "adults",
    "face", "faces", "portrait", "portraits", "selfie", "selfies",
    "family", "families", "crowd", "crowds", "group", "groups",
    "team", "teams", "couple", "couples", "friends", "friend",
    "worker", "workers", "employee", "employees", "staff", "personnel",
    "elderly", "senior", "youth", "young", "old",
)

DEFAULT_ANIMAL_LABELS: tuple[str, ...] = (
    "dog", "dogs", "puppy", "puppies", "canine", "canines", "hound", "hounds",
    "terrier", "bulldog", "labrador", "german shepherd", "poodle",
    "golden retriever", "beagle", "rottweiler", "boxer",
    "cat", "cats", "kitten", "kittens", "feline", "felines",
    "persian", "siamese", "maine coon", "bengal",
    "bird", "birds", "parrot", "parrots", "pigeon", "pigeons",
    "crow", "crows", "eagle", "eagles", "owl", "owls",
    "horse", "horses", "cow", "cows", "buffalo", "goat", "goats",
    "sheep", "pig", "pigs",
    "monkey", "monkeys", "elephant", "elephants",
    "tiger", "tigers", "lion", "lions", "bear", "bears",
)


@dataclass(frozen=True)
class ModerationSettings:
    """
    Thresholds and vocabularies used by the decision engine.

    Built once per process by `moderation_settings()`; pass it around explicitly
    instead of reading the environment inside the engine.
    """

    face_threshold: float = 0.5
    human_object_threshold: float = 0.5
    human_label_threshold: float = 0.3
    animal_object_threshold: float = 0.5
    animal_label_threshold: float = 0.6
    adult_threshold: float = 0.6
    violence_threshold: float = 0.6
    racy_threshold: float = 0.6
    # Confidences in [threshold - band, threshold) are flagged for review.
    borderline_band: float = 0.15
    human_labels: tuple[str, ...] = DEFAULT_HUMAN_LABELS
    animal_labels: tuple[str, ...] = DEFAULT_ANIMAL_LABELS


@lru_cache(maxsize=1)
def moderation_settings() -> ModerationSettings:
    human_labels = tuple(x.lower() for x in _env_csv("MODERATION_HUMAN_LABELS")) or DEFAULT_HUMAN_LABELS
    animal_labels = tuple(x.lower() for x in _env_csv("MODERATION_ANIMAL_LABELS")) or DEFAULT_ANIMAL_LABELS
    return ModerationSettings(
        face_threshold=_threshold("MODERATION_FACE_THRESHOLD", 0.5),
        human_object_threshold=_threshold("MODERATION_HUMAN_OBJECT_THRESHOLD", 0.5),
        human_label_threshold=_threshold("MODERATION_HUMAN_LABEL_THRESHOLD", 0.3),
        animal_object_threshold=_threshold("MODERATION_ANIMAL_OBJECT_THRESHOLD", 0.5),
        animal_label_threshold=_threshold("MODERATION_ANIMAL_LABEL_THRESHOLD", 0.6),
        adult_threshold=_threshold("MODERATION_ADULT_THRESHOLD", 0.6),
        violence_threshold=_threshold("MODERATION_VIOLENCE_THRESHOLD", 0.6),
        racy_threshold=_threshold("MODERATION_RACY_THRESHOLD", 0.6),
        borderline_band=_threshold("MODERATION_BORDERLINE_BAND", 0.15),
        human_labels=human_labels,
        animal_labels=animal_labels,
    )


# -----------------------
# Storage
# -----------------------
def _default_uploads_dir() -> str:
    return os.path.join(os.path.dirname(__file__), "..", "uploads")


@dataclass(frozen=True)
class StorageSettings:
    temp_dir: str
    properties_dir: str
    # Public URL that maps onto the uploads root (parent of properties_dir).
    base_url: str
    max_upload_bytes: int = 5 * 1024 * 1024
    remote_hosts: tuple[str, ...] = ("firebasestorage.googleapis.com", "res.cloudinary.com")
    remote_fetch_timeout: float = 30.0
    watermark_enabled: bool = True
    watermark_text: str = "360coordinates"


@lru_cache(maxsize=1)
def storage_settings() -> StorageSettings:
    root = _env_str("UPLOADS_DIR", _default_uploads_dir())
    return StorageSettings(
        temp_dir=_env_str("UPLOAD_TEMP_DIR", os.path.join(root, "temp")),
        properties_dir=_env_str("UPLOAD_PROPERTIES_DIR", os.path.join(root, "properties")),
        base_url=_env_str("UPLOAD_BASE_URL", "http://localhost:8000/uploads").rstrip("/"),
        max_upload_bytes=max(1, _env_int("MAX_UPLOAD_IMAGE_BYTES", 5 * 1024 * 1024)),
        remote_hosts=tuple(h.lower() for h in _env_csv("REMOTE_IMAGE_HOSTS"))
        or ("firebasestorage.googleapis.com", "res.cloudinary.com"),
        remote_fetch_timeout=_env_float("REMOTE_FETCH_TIMEOUT_SECONDS", 30.0),
        watermark_enabled=_env_flag("WATERMARK_ENABLED", True),
        watermark_text=_env_str("WATERMARK_TEXT", "360coordinates"),
    )


# -----------------------
# Google Cloud Vision
# -----------------------
def google_vision_api_key() -> str:
    return _env_str("GOOGLE_VISION_API_KEY")


def google_application_credentials() -> str:
    """
    Path to a service account JSON key file.

    DO NOT commit the real key file. Use a secret volume / env var on the server.
    """
    return _env_str("GOOGLE_APPLICATION_CREDENTIALS")


def vision_timeout_seconds() -> float:
    return _env_float("VISION_TIMEOUT_SECONDS", 20.0)


# -----------------------
# Firebase Storage (remote re-upload)
# -----------------------
def firebase_storage_bucket() -> str:
    """Overrides the bucket parsed from the download URL (custom domains)."""
    return _env_str("FIREBASE_STORAGE_BUCKET")


def firebase_credentials_file() -> str:
    return _env_str("FIREBASE_CREDENTIALS_FILE") or google_application_credentials()


# -----------------------
# Cloudinary (remote re-upload)
# -----------------------
def cloudinary_cloud_name() -> str:
    return _env_str("CLOUDINARY_CLOUD_NAME")


def cloudinary_api_key() -> str:
    return _env_str("CLOUDINARY_API_KEY")


def cloudinary_api_secret() -> str:
    return _env_str("CLOUDINARY_API_SECRET")
