"""
Unit tests for the Geometry Scorer
"""
import numpy as np
import pytest
from hypothesis import given, strategies as st, settings

from liveness_gate.models.data_models import ChallengePolicy, FrameObservation, Landmark
from liveness_gate.services.geometry_scorer import (
    SCORED_LANDMARKS,
    GeometryScorer,
    blink_score_from_ratio,
    eye_aspect_ratio,
    smile_ratio,
    smile_score_from_ratio,
    to_landmark_array,
)
from tests.fixtures.synthetic_landmarks import (
    blinking_face,
    make_face_landmarks,
    neutral_face,
    smiling_face,
)

POLICY = ChallengePolicy()


@pytest.fixture
def scorer():
    return GeometryScorer()


class TestNoFace:
    """Inputs without a complete face"""

    def test_none_means_no_face(self, scorer):
        assert scorer.score(None) == FrameObservation.no_face()

    def test_empty_landmark_list(self, scorer):
        observation = scorer.score([])
        assert observation.face_detected is False
        assert observation.smile_score == 0.0
        assert observation.blink_score == 0.0

    def test_fewer_than_468_landmarks(self, scorer):
        landmarks = smiling_face()[:467]
        observation = scorer.score(landmarks)

        assert observation.face_detected is False
        assert observation.smile_score == 0.0
        assert observation.blink_score == 0.0
        assert observation.is_smile is False
        assert observation.is_blink is False

    @given(count=st.integers(min_value=0, max_value=467))
    @settings(max_examples=50, deadline=None)
    def test_any_short_landmark_set_scores_zero(self, count):
        """Property: fewer than 468 points never yields a face"""
        observation = GeometryScorer().score(np.random.default_rng(count).random((count, 3)))
        assert observation == FrameObservation.no_face()


class TestSmileScoring:
    """Smile ratio and its normalization"""

    def test_neutral_face_gives_feedback_but_no_smile(self, scorer):
        observation = scorer.score(neutral_face())

        assert observation.face_detected is True
        assert observation.smile_score == pytest.approx(0.25)
        assert observation.is_smile is False

    def test_pronounced_smile_triggers(self, scorer):
        observation = scorer.score(smiling_face())

        assert observation.is_smile is True
        assert observation.smile_score == pytest.approx(0.85)

    @pytest.mark.parametrize("ratio", [0.65, 0.7, 0.9, 1.5])
    def test_score_saturates_at_one(self, ratio):
        assert smile_score_from_ratio(ratio, POLICY) == 1.0

    def test_ratio_below_low_threshold_scores_zero(self):
        assert smile_score_from_ratio(0.3, POLICY) == 0.0

    def test_continuous_score_rises_before_flag_triggers(self, scorer):
        """Scores in (0.45, 0.58] are visual feedback only"""
        observation = scorer.score(make_face_landmarks(smile_ratio=0.55))

        assert observation.smile_score > 0.0
        assert observation.is_smile is False

    def test_smile_ratio_matches_geometry(self):
        assert smile_ratio(make_face_landmarks(smile_ratio=0.6)) == pytest.approx(0.6)

    @given(
        a=st.floats(min_value=0.45, max_value=0.65),
        b=st.floats(min_value=0.45, max_value=0.65)
    )
    @settings(max_examples=100)
    def test_score_monotonic_in_ratio(self, a, b):
        """Property: smile score is non-decreasing in the smile ratio"""
        low, high = sorted((a, b))
        assert smile_score_from_ratio(low, POLICY) <= smile_score_from_ratio(high, POLICY)


class TestBlinkScoring:
    """Eye-aspect ratio and its normalization"""

    def test_open_eyes(self, scorer):
        observation = scorer.score(neutral_face())

        assert observation.blink_score == 0.0
        assert observation.is_blink is False

    def test_closed_eyes(self, scorer):
        observation = scorer.score(blinking_face())

        assert observation.is_blink is True
        assert observation.blink_score == pytest.approx(0.75)

    def test_half_closed_eyes_score_without_flag(self, scorer):
        observation = scorer.score(make_face_landmarks(ear=0.2))

        assert observation.blink_score == pytest.approx(0.25)
        assert observation.is_blink is False

    @given(ear=st.floats(min_value=-10, max_value=10, allow_nan=False))
    @settings(max_examples=100)
    def test_blink_score_bounded(self, ear):
        assert 0.0 <= blink_score_from_ratio(ear, POLICY) <= 1.0


class TestDegenerateGeometry:
    """Zero-length reference distances never raise"""

    def test_coincident_eye_corners_give_zero_smile(self, scorer):
        landmarks = smiling_face()
        landmarks[263] = landmarks[33]

        assert smile_ratio(landmarks) == 0.0
        assert scorer.score(landmarks).smile_score == 0.0

    def test_zero_eye_width_defaults_to_open(self, scorer):
        landmarks = blinking_face()
        landmarks[133] = landmarks[33]

        assert eye_aspect_ratio(landmarks) == 1.0
        observation = scorer.score(landmarks)
        assert observation.blink_score == 0.0
        assert observation.is_blink is False

    def test_all_points_identical(self, scorer):
        observation = scorer.score(np.zeros((468, 3)))

        assert observation.face_detected is True
        assert observation.smile_score == 0.0
        assert observation.blink_score == 0.0


class TestNonFiniteCoordinates:
    """Corrupt coordinates at scored landmarks"""

    @pytest.mark.parametrize("index", SCORED_LANDMARKS)
    def test_nan_at_scored_landmark_is_no_face(self, scorer, index):
        landmarks = smiling_face()
        landmarks[index, 0] = np.nan

        assert scorer.score(landmarks) == FrameObservation.no_face()

    def test_infinite_coordinate_is_no_face(self, scorer):
        landmarks = blinking_face()
        landmarks[159, 1] = np.inf

        assert scorer.score(landmarks) == FrameObservation.no_face()

    def test_nan_at_unscored_landmark_is_ignored(self, scorer):
        landmarks = smiling_face()
        landmarks[0] = np.nan

        assert scorer.score(landmarks).is_smile is True

    @given(
        index=st.sampled_from(SCORED_LANDMARKS),
        axis=st.sampled_from([0, 1]),
        value=st.sampled_from([np.nan, np.inf, -np.inf])
    )
    @settings(max_examples=50, deadline=None)
    def test_any_corrupt_scored_coordinate_is_no_face(self, index, axis, value):
        """Property: corrupt coordinates never leak out as scores or flags"""
        landmarks = neutral_face()
        landmarks[index, axis] = value

        assert GeometryScorer().score(landmarks) == FrameObservation.no_face()


class TestInputFormats:
    """Landmark containers accepted by the scorer"""

    def test_list_of_triples(self, scorer):
        as_list = smiling_face().tolist()
        assert scorer.score(as_list) == scorer.score(smiling_face())

    def test_landmark_tuples(self, scorer):
        points = [Landmark(*row) for row in smiling_face()]
        assert scorer.score(points).is_smile is True

    def test_two_dimensional_points(self):
        array = to_landmark_array([(0.1, 0.2), (0.3, 0.4)])
        assert array.shape == (2, 3)
        assert array[1, 2] == 0.0

    def test_scoring_is_deterministic(self, scorer):
        landmarks = make_face_landmarks(smile_ratio=0.6123, ear=0.1789)
        assert scorer.score(landmarks) == scorer.score(landmarks.copy())

    @given(seed=st.integers(min_value=0, max_value=10_000))
    @settings(max_examples=50, deadline=None)
    def test_scores_always_in_unit_interval(self, seed):
        observation = GeometryScorer().score(np.random.default_rng(seed).random((468, 3)))
        assert 0.0 <= observation.smile_score <= 1.0
        assert 0.0 <= observation.blink_score <= 1.0

    @pytest.mark.parametrize("landmarks", [5, [None], [5, 6], [[0.1, None]]])
    def test_non_point_input_is_value_error(self, landmarks):
        with pytest.raises(ValueError):
            to_landmark_array(landmarks)
