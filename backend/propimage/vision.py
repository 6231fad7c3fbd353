"""
Google Cloud Vision client used for image moderation.

The client never raises past `classify()`: credential problems, network failures,
provider errors, malformed JSON and empty payloads all come back as a
`ClassificationResult` with `available=False`, so the decision engine can treat
"no data" as a normal input.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass, field
from typing import Any

import requests
from google.auth.transport.requests import AuthorizedSession
from google.oauth2 import service_account

from propimage.config import google_application_credentials, google_vision_api_key, vision_timeout_seconds


logger = logging.getLogger(__name__)

VISION_ANNOTATE_URL = "https://vision.googleapis.com/v1/images:annotate"
VISION_SCOPES = ["https://www.googleapis.com/auth/cloud-platform"]
CONNECT_TIMEOUT_SECONDS = 10.0
MAX_LABEL_RESULTS = 20

# SafeSearch likelihood enum -> numeric score.
LIKELIHOOD_SCORES: dict[str, float] = {
    "VERY_UNLIKELY": 0.0,
    "UNLIKELY": 0.2,
    "POSSIBLE": 0.4,
    "LIKELY": 0.7,
    "VERY_LIKELY": 0.95,
    "UNKNOWN": 0.5,
}


@dataclass(frozen=True)
class FaceDetection:
    confidence: float


@dataclass(frozen=True)
class ObjectDetection:
    name: str
    confidence: float


@dataclass(frozen=True)
class LabelDetection:
    description: str
    confidence: float


@dataclass(frozen=True)
class SafetyScores:
    adult: float | None = None
    violence: float | None = None
    racy: float | None = None

    @property
    def complete(self) -> bool:
        return self.adult is not None and self.violence is not None and self.racy is not None

    def as_dict(self) -> dict[str, float | None]:
        return {"adult": self.adult, "violence": self.violence, "racy": self.racy}


@dataclass(frozen=True)
class ClassificationResult:
    available: bool
    faces: tuple[FaceDetection, ...] = ()
    objects: tuple[ObjectDetection, ...] = ()
    labels: tuple[LabelDetection, ...] = ()
    safety: SafetyScores = field(default_factory=SafetyScores)
    # Provider payload, kept verbatim for the audit column.
    raw: dict[str, Any] = field(default_factory=dict)
    error: str = ""

    @classmethod
    def unavailable(cls, error: str) -> ClassificationResult:
        return cls(available=False, error=error)

    @property
    def apis_used(self) -> list[str]:
        return ["google_vision"] if self.available else []


class VisionNotConfigured(RuntimeError):
    pass


def _score(value: Any) -> float:
    v = float(value if value is not None else 0.0)
    return min(1.0, max(0.0, v))


def _likelihood(value: Any) -> float:
    if isinstance(value, int):
        # Numeric enum (0=UNKNOWN in the REST surface, 1..5 = VERY_UNLIKELY..VERY_LIKELY).
        names = ["UNKNOWN", "VERY_UNLIKELY", "UNLIKELY", "POSSIBLE", "LIKELY", "VERY_LIKELY"]
        value = names[value] if 0 <= value < len(names) else "UNKNOWN"
    return LIKELIHOOD_SCORES.get(str(value or "UNKNOWN").upper(), 0.5)


def parse_annotate_response(data: Any) -> ClassificationResult:
    """Normalize an `images:annotate` JSON body into a ClassificationResult."""
    if not isinstance(data, dict):
        return ClassificationResult.unavailable("malformed response")
    responses = data.get("responses")
    if not isinstance(responses, list) or not responses:
        return ClassificationResult.unavailable("no response from provider")
    r0 = responses[0]
    if not isinstance(r0, dict) or not r0:
        return ClassificationResult.unavailable("empty payload")
    err = r0.get("error")
    if err:
        msg = err.get("message") if isinstance(err, dict) else str(err)
        return ClassificationResult.unavailable(f"provider error: {msg or 'unknown'}")

    try:
        faces = tuple(
            FaceDetection(confidence=_score(f.get("detectionConfidence")))
            for f in (r0.get("faceAnnotations") or [])
        )
        objects = tuple(
            ObjectDetection(name=str(o.get("name") or "").strip().lower(), confidence=_score(o.get("score")))
            for o in (r0.get("localizedObjectAnnotations") or [])
        )
        labels = tuple(
            LabelDetection(description=str(lb.get("description") or "").strip().lower(), confidence=_score(lb.get("score")))
            for lb in (r0.get("labelAnnotations") or [])
        )
        ss = r0.get("safeSearchAnnotation")
        if isinstance(ss, dict) and ss:
            safety = SafetyScores(
                adult=_likelihood(ss.get("adult")),
                violence=_likelihood(ss.get("violence")),
                racy=_likelihood(ss.get("racy")),
            )
        else:
            # Missing SafeSearch must not read as "safe".
            safety = SafetyScores()
    except (AttributeError, TypeError, ValueError) as exc:
        return ClassificationResult.unavailable(f"malformed response ({exc.__class__.__name__})")

    return ClassificationResult(
        available=True,
        faces=faces,
        objects=objects,
        labels=labels,
        safety=safety,
        raw=r0,
    )


class VisionClient:
    def __init__(
        self,
        *,
        api_key: str = "",
        credentials_file: str = "",
        timeout: float = 20.0,
    ) -> None:
        self.api_key = (api_key or "").strip()
        self.credentials_file = (credentials_file or "").strip()
        self.timeout = float(timeout)

    @classmethod
    def from_env(cls) -> VisionClient:
        return cls(
            api_key=google_vision_api_key(),
            credentials_file=google_application_credentials(),
            timeout=vision_timeout_seconds(),
        )

    def _session(self) -> requests.Session:
        if self.api_key:
            return requests.Session()
        if self.credentials_file:
            creds = service_account.Credentials.from_service_account_file(self.credentials_file, scopes=VISION_SCOPES)
            return AuthorizedSession(creds)
        raise VisionNotConfigured("missing GOOGLE_VISION_API_KEY / GOOGLE_APPLICATION_CREDENTIALS")

    def _request_body(self, raw: bytes) -> dict[str, Any]:
        return {
            "requests": [
                {
                    "image": {"content": base64.b64encode(raw).decode("ascii")},
                    "features": [
                        {"type": "SAFE_SEARCH_DETECTION"},
                        {"type": "LABEL_DETECTION", "maxResults": MAX_LABEL_RESULTS},
                        {"type": "FACE_DETECTION"},
                        {"type": "OBJECT_LOCALIZATION"},
                    ],
                }
            ]
        }

    def classify(self, raw: bytes) -> ClassificationResult:
        if not raw:
            return ClassificationResult.unavailable("empty image")
        try:
            session = self._session()
        except Exception as exc:
            logger.warning("Vision client unavailable: %s", exc)
            return ClassificationResult.unavailable(f"client initialization failed: {exc}")

        params = {"key": self.api_key} if self.api_key else None
        try:
            with session:
                resp = session.post(
                    VISION_ANNOTATE_URL,
                    params=params,
                    json=self._request_body(raw),
                    timeout=(CONNECT_TIMEOUT_SECONDS, self.timeout),
                )
        except Exception as exc:
            # Timeouts, TLS and connection errors, token refresh failures.
            logger.warning("Vision request failed: %s", exc.__class__.__name__)
            return ClassificationResult.unavailable(f"service unavailable ({exc.__class__.__name__})")

        if not resp.ok:
            logger.warning("Vision request returned HTTP %s", resp.status_code)
            return ClassificationResult.unavailable(f"http_{int(resp.status_code)}")
        try:
            data = resp.json()
        except ValueError:
            return ClassificationResult.unavailable("malformed response (invalid JSON)")
        return parse_annotate_response(data)
