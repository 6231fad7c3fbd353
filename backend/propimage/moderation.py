"""
Moderation decision engine.

`evaluate()` is a pure function: it takes a ClassificationResult (or None when the
classifier could not be reached) plus the ModerationSettings and returns one
immutable ModerationDecision. Stages run in a fixed order and the first rejection
wins:

    1. classifier unavailable            -> PENDING (service_unavailable)
    2. faces                             -> REJECTED (human_detected)
    3. localized objects: person/people  -> REJECTED (human_detected)
    4. labels vs. human vocabulary       -> REJECTED (human_detected)
    5. localized objects vs. animals     -> REJECTED (animal_detected)
    6. labels vs. animal vocabulary      -> REJECTED (animal_detected)
    7. SafeSearch adult/violence/racy    -> REJECTED (*_content), PENDING when incomplete
    8. approval gate                     -> SAFE, or PENDING on borderline evidence

Borderline detections (within `borderline_band` below a face/object threshold)
never reject on their own but keep the image out of SAFE.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Literal, Optional

from propimage.config import ModerationSettings
from propimage.errors import error_message
from propimage.vision import ClassificationResult


ModerationStatus = Literal["SAFE", "REJECTED", "PENDING"]

SAFE: ModerationStatus = "SAFE"
REJECTED: ModerationStatus = "REJECTED"
PENDING: ModerationStatus = "PENDING"

HUMAN_OBJECT_NAMES = frozenset({"person", "people", "human"})

# reason codes for non-rejections
APPROVED = "approved"
SERVICE_UNAVAILABLE = "service_unavailable"
SAFETY_INCOMPLETE = "safety_incomplete"
BORDERLINE_DETECTION = "borderline_detection"
CHECKS_INCOMPLETE = "checks_incomplete"


@dataclass(frozen=True)
class ModerationDecision:
    status: ModerationStatus
    reason_code: str
    reason_message: str
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def rejected(self) -> bool:
        return self.status == REJECTED


def _pct(confidence: float) -> float:
    return round(float(confidence) * 100, 1)


def match_vocabulary(text: str, vocabulary: tuple[str, ...]) -> str | None:
    """Return the first vocabulary term found in `text`, as an exact match or a substring."""
    t = (text or "").strip().lower()
    if not t:
        return None
    for term in vocabulary:
        term_l = term.lower()
        if t == term_l or term_l in t:
            return term_l
    return None


def _is_borderline(confidence: float, threshold: float, band: float) -> bool:
    return 0.0 < confidence < threshold and confidence >= threshold - band


def _reject(code: str, details: dict[str, Any], **msg_args: Any) -> ModerationDecision:
    return ModerationDecision(status=REJECTED, reason_code=code, reason_message=error_message(code, **msg_args), details=details)


def _pending(code: str, message: str, details: dict[str, Any]) -> ModerationDecision:
    return ModerationDecision(status=PENDING, reason_code=code, reason_message=message, details=details)


# Each stage returns a rejection or None; borderline evidence is appended to `flags`.
Stage = Callable[[ClassificationResult, ModerationSettings, list], Optional[ModerationDecision]]


def _check_faces(result: ClassificationResult, s: ModerationSettings, flags: list) -> ModerationDecision | None:
    for face in result.faces:
        if face.confidence >= s.face_threshold:
            return _reject(
                "human_detected",
                {
                    "detection_method": "face_detection",
                    "detected": "face",
                    "confidence": _pct(face.confidence),
                    "detected_issue": f"Human detected via face_detection, confidence {_pct(face.confidence)}%",
                },
            )
        if _is_borderline(face.confidence, s.face_threshold, s.borderline_band):
            flags.append({"type": "face", "confidence": _pct(face.confidence), "threshold": _pct(s.face_threshold)})
    return None


def _check_human_objects(result: ClassificationResult, s: ModerationSettings, flags: list) -> ModerationDecision | None:
    for obj in result.objects:
        if obj.name.lower() not in HUMAN_OBJECT_NAMES:
            continue
        if obj.confidence >= s.human_object_threshold:
            return _reject(
                "human_detected",
                {
                    "detection_method": "object_localization",
                    "detected": obj.name,
                    "confidence": _pct(obj.confidence),
                    "detected_issue": f"Human detected via object_localization ({obj.name}), confidence {_pct(obj.confidence)}%",
                },
            )
        if _is_borderline(obj.confidence, s.human_object_threshold, s.borderline_band):
            flags.append(
                {"type": "human_object", "name": obj.name, "confidence": _pct(obj.confidence), "threshold": _pct(s.human_object_threshold)}
            )
    return None


def _top_label_match(result: ClassificationResult, vocabulary: tuple[str, ...], threshold: float) -> tuple[str, float] | None:
    best: tuple[str, float] | None = None
    for label in result.labels:
        if label.confidence < threshold:
            continue
        if match_vocabulary(label.description, vocabulary) is None:
            continue
        if best is None or label.confidence > best[1]:
            best = (label.description, label.confidence)
    return best


def _check_human_labels(result: ClassificationResult, s: ModerationSettings, flags: list) -> ModerationDecision | None:
    top = _top_label_match(result, s.human_labels, s.human_label_threshold)
    if top is None:
        return None
    name, conf = top
    return _reject(
        "human_detected",
        {
            "detection_method": "label_detection",
            "detected": name,
            "confidence": _pct(conf),
            "detected_issue": f"Human detected via label_detection ({name}), confidence {_pct(conf)}%",
        },
    )


def _check_animal_objects(result: ClassificationResult, s: ModerationSettings, flags: list) -> ModerationDecision | None:
    best: tuple[str, float] | None = None
    for obj in result.objects:
        if match_vocabulary(obj.name, s.animal_labels) is None:
            continue
        if obj.confidence >= s.animal_object_threshold:
            if best is None or obj.confidence > best[1]:
                best = (obj.name, obj.confidence)
        elif _is_borderline(obj.confidence, s.animal_object_threshold, s.borderline_band):
            flags.append(
                {"type": "animal_object", "name": obj.name, "confidence": _pct(obj.confidence), "threshold": _pct(s.animal_object_threshold)}
            )
    if best is None:
        return None
    name, conf = best
    return _reject(
        "animal_detected",
        {
            "detection_method": "object_localization",
            "detected": name,
            "confidence": _pct(conf),
            "detected_issue": f"Animal detected via object_localization ({name}), confidence {_pct(conf)}%",
        },
        animal_name=name,
    )


def _check_animal_labels(result: ClassificationResult, s: ModerationSettings, flags: list) -> ModerationDecision | None:
    top = _top_label_match(result, s.animal_labels, s.animal_label_threshold)
    if top is None:
        return None
    name, conf = top
    return _reject(
        "animal_detected",
        {
            "detection_method": "label_detection",
            "detected": name,
            "confidence": _pct(conf),
            "detected_issue": f"Animal detected via label_detection ({name}), confidence {_pct(conf)}%",
        },
        animal_name=name,
    )


SUBJECT_STAGES: tuple[tuple[str, Stage], ...] = (
    ("faces", _check_faces),
    ("human_objects", _check_human_objects),
    ("human_labels", _check_human_labels),
    ("animal_objects", _check_animal_objects),
    ("animal_labels", _check_animal_labels),
)
ALL_CHECKS = tuple(name for name, _ in SUBJECT_STAGES) + ("safety",)


def _check_safety(
    result: ClassificationResult, s: ModerationSettings, checks: list[str], flags: list
) -> ModerationDecision | None:
    scores = result.safety
    if not scores.complete:
        return _pending(
            SAFETY_INCOMPLETE,
            "SafeSearch data incomplete. Image will be reviewed manually.",
            {
                "detected_issue": "SafeSearch scores missing",
                "confidence_scores": scores.as_dict(),
                "borderline_detections": list(flags),
                "checks_run": list(checks),
            },
        )
    checks.append("safety")
    for code, label, score, threshold in (
        ("adult_content", "Adult", scores.adult, s.adult_threshold),
        ("violence_content", "Violent", scores.violence, s.violence_threshold),
        ("racy_content", "Suggestive", scores.racy, s.racy_threshold),
    ):
        if score is not None and score >= threshold:
            return _reject(
                code,
                {
                    "detection_method": "safe_search",
                    "score": score,
                    "detected_issue": f"{label} content detected (score: {score})",
                    "confidence_scores": scores.as_dict(),
                },
            )
    return None


def evaluate(result: ClassificationResult | None, settings: ModerationSettings) -> ModerationDecision:
    """Decide SAFE / REJECTED / PENDING for one classification result. Never raises."""
    if result is None or not result.available:
        error = (result.error if result is not None else "") or "no classification result"
        return _pending(
            SERVICE_UNAVAILABLE,
            "Moderation service unavailable. Image will be reviewed manually.",
            {"detected_issue": f"Moderation service unavailable: {error}"},
        )

    flags: list[dict[str, Any]] = []
    checks: list[str] = []
    for name, stage in SUBJECT_STAGES:
        decision = stage(result, settings, flags)
        checks.append(name)
        if decision is not None:
            return decision

    decision = _check_safety(result, settings, checks, flags)
    if decision is not None:
        return decision

    if tuple(checks) != ALL_CHECKS:
        return _pending(
            CHECKS_INCOMPLETE,
            "Moderation checks incomplete. Image will be reviewed manually.",
            {"detected_issue": "Not every moderation check ran", "checks_run": checks},
        )

    if flags:
        kinds = sorted({f["type"] for f in flags})
        return _pending(
            BORDERLINE_DETECTION,
            "Low-confidence detection found. Image will be reviewed manually.",
            {
                "detected_issue": "Borderline detection: " + ", ".join(kinds),
                "borderline_detections": flags,
                "checks_run": checks,
            },
        )

    return ModerationDecision(
        status=SAFE,
        reason_code=APPROVED,
        reason_message="Image approved successfully - passed all moderation checks",
        details={"detected_issue": "Image passed all moderation checks", "checks_run": checks},
    )
