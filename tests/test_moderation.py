from __future__ import annotations

from dataclasses import replace

import pytest

from propimage.config import ModerationSettings
from propimage.moderation import (
    APPROVED,
    BORDERLINE_DETECTION,
    PENDING,
    REJECTED,
    SAFE,
    SAFETY_INCOMPLETE,
    SERVICE_UNAVAILABLE,
    evaluate,
    match_vocabulary,
)
from propimage.vision import ClassificationResult

from conftest import make_result


class TestScenarios:
    def test_face_above_threshold_rejects_as_human(self, settings):
        decision = evaluate(make_result(faces=(0.82,)), settings)
        assert decision.status == REJECTED
        assert decision.reason_code == "human_detected"
        assert decision.details["confidence"] == 82.0
        assert decision.details["detection_method"] == "face_detection"
        assert "82.0%" in decision.details["detected_issue"]

    def test_dog_label_rejects_as_animal(self, settings):
        decision = evaluate(make_result(labels=(("dog", 0.75),)), settings)
        assert decision.status == REJECTED
        assert decision.reason_code == "animal_detected"
        assert decision.details["detected"] == "dog"
        assert "(dog)" in decision.reason_message

    def test_unavailable_classifier_is_pending(self, settings):
        decision = evaluate(ClassificationResult.unavailable("service unavailable (Timeout)"), settings)
        assert decision.status == PENDING
        assert decision.reason_code == SERVICE_UNAVAILABLE
        assert "unavailable" in decision.reason_message.lower()

    def test_missing_result_is_pending(self, settings):
        assert evaluate(None, settings).reason_code == SERVICE_UNAVAILABLE

    def test_clean_image_is_safe(self, settings):
        decision = evaluate(make_result(labels=(("building", 0.95), ("window", 0.88))), settings)
        assert decision.status == SAFE
        assert decision.reason_code == APPROVED


class TestProperties:
    def test_unavailable_wins_over_rejecting_evidence(self, settings):
        result = replace(make_result(faces=(0.99,), labels=(("dog", 0.99),), safety=(0.95, 0.95, 0.95)), available=False)
        assert evaluate(result, settings).status == PENDING

    def test_everything_below_threshold_and_band_is_safe(self, settings):
        result = make_result(
            faces=(0.2,),
            objects=(("person", 0.2), ("dog", 0.2)),
            labels=(("person", 0.1), ("cat", 0.3)),
            safety=(0.4, 0.4, 0.4),
        )
        assert evaluate(result, settings).status == SAFE

    @pytest.mark.parametrize(
        "rejected,raised",
        [
            ({"faces": (0.9,)}, {"faces": (1.0,)}),
            ({"objects": (("person", 0.9),)}, {"objects": (("person", 1.0),)}),
            ({"labels": (("woman", 0.9),)}, {"labels": (("woman", 1.0),)}),
            ({"objects": (("cat", 0.9),)}, {"objects": (("cat", 1.0),)}),
            ({"labels": (("horse", 0.9),)}, {"labels": (("horse", 1.0),)}),
            ({"safety": (0.95, 0.0, 0.0)}, {"safety": (1.0, 0.0, 0.0)}),
            ({"faces": (0.9,)}, {"faces": (0.9,), "labels": (("dog", 1.0),)}),
            ({"labels": (("horse", 0.9),)}, {"labels": (("horse", 0.9),), "safety": (1.0, 1.0, 1.0)}),
        ],
    )
    def test_raising_a_confidence_never_turns_rejection_into_safe(self, settings, rejected, raised):
        assert evaluate(make_result(**rejected), settings).status == REJECTED
        assert evaluate(make_result(**raised), settings).status == REJECTED

    def test_face_rejection_masks_later_stages(self, settings):
        result = make_result(faces=(0.8,), objects=(("dog", 0.99),), labels=(("cat", 0.99),), safety=(0.95, 0.95, 0.95))
        decision = evaluate(result, settings)
        assert decision.reason_code == "human_detected"
        assert decision.details["detection_method"] == "face_detection"

    def test_human_object_rejection_masks_animals(self, settings):
        result = make_result(objects=(("dog", 0.99), ("Person", 0.7)))
        decision = evaluate(result, settings)
        assert decision.reason_code == "human_detected"
        assert decision.details["detection_method"] == "object_localization"


class TestStages:
    def test_human_label_threshold_is_lower(self, settings):
        decision = evaluate(make_result(labels=(("people", 0.35),)), settings)
        assert decision.reason_code == "human_detected"
        assert decision.details["detection_method"] == "label_detection"

    @pytest.mark.parametrize("label", ["businessperson", "gentleman", "salesperson"])
    def test_human_label_matches_as_substring(self, settings, label):
        decision = evaluate(make_result(labels=((label, 0.9),)), settings)
        assert decision.reason_code == "human_detected"
        assert decision.details["detection_method"] == "label_detection"

    def test_multi_word_label_matches_vocabulary_term(self, settings):
        decision = evaluate(make_result(labels=(("dog breed", 0.8),)), settings)
        assert decision.reason_code == "animal_detected"

    def test_animal_label_below_threshold_passes(self, settings):
        assert evaluate(make_result(labels=(("dog", 0.55),)), settings).status == SAFE

    def test_animal_object_picks_highest_confidence(self, settings):
        decision = evaluate(make_result(objects=(("cat", 0.6), ("dog", 0.9))), settings)
        assert decision.reason_code == "animal_detected"
        assert decision.details["detected"] == "dog"
        assert decision.details["detection_method"] == "object_localization"

    @pytest.mark.parametrize(
        "safety,code",
        [
            ((0.7, 0.0, 0.0), "adult_content"),
            ((0.0, 0.95, 0.0), "violence_content"),
            ((0.0, 0.0, 0.7), "racy_content"),
        ],
    )
    def test_safety_scores_reject(self, settings, safety, code):
        decision = evaluate(make_result(safety=safety), settings)
        assert decision.status == REJECTED
        assert decision.reason_code == code

    def test_adult_checked_before_racy(self, settings):
        assert evaluate(make_result(safety=(0.7, 0.0, 0.95)), settings).reason_code == "adult_content"

    def test_incomplete_safety_is_pending(self, settings):
        decision = evaluate(make_result(safety=(0.0, None, 0.0)), settings)
        assert decision.status == PENDING
        assert decision.reason_code == SAFETY_INCOMPLETE

    def test_subject_rejection_beats_incomplete_safety(self, settings):
        decision = evaluate(make_result(faces=(0.9,), safety=(None, None, None)), settings)
        assert decision.reason_code == "human_detected"


class TestBorderline:
    def test_face_in_band_is_pending(self, settings):
        decision = evaluate(make_result(faces=(0.45,)), settings)
        assert decision.status == PENDING
        assert decision.reason_code == BORDERLINE_DETECTION
        assert decision.details["borderline_detections"][0]["type"] == "face"

    def test_person_object_in_band_is_pending(self, settings):
        assert evaluate(make_result(objects=(("person", 0.4),)), settings).reason_code == BORDERLINE_DETECTION

    def test_animal_object_in_band_is_pending(self, settings):
        assert evaluate(make_result(objects=(("dog", 0.4),)), settings).reason_code == BORDERLINE_DETECTION

    def test_below_band_is_safe(self, settings):
        assert evaluate(make_result(faces=(0.3,)), settings).status == SAFE

    def test_zero_confidence_is_not_borderline(self):
        s = ModerationSettings(face_threshold=0.1, borderline_band=0.15)
        assert evaluate(make_result(faces=(0.0,)), s).status == SAFE

    def test_hard_safety_rejection_beats_borderline(self, settings):
        decision = evaluate(make_result(faces=(0.45,), safety=(0.95, 0.0, 0.0)), settings)
        assert decision.reason_code == "adult_content"

    def test_custom_band(self):
        s = ModerationSettings(borderline_band=0.0)
        assert evaluate(make_result(faces=(0.45,)), s).status == SAFE


class TestMatchVocabulary:
    def test_exact(self):
        assert match_vocabulary("Dog", ("dog",)) == "dog"

    def test_substring(self):
        assert match_vocabulary("german shepherd dog", ("german shepherd",)) == "german shepherd"

    def test_substring_inside_word(self):
        assert match_vocabulary("bobcat", ("cat",)) == "cat"

    def test_no_match(self):
        assert match_vocabulary("living room", ("dog", "cat")) is None

    def test_empty(self):
        assert match_vocabulary("", ("dog",)) is None
