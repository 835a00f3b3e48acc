"""Tests for the landmark geometry score."""

from __future__ import annotations

import numpy as np
import pytest
from conftest import FRONTAL_LANDMARKS

from facecapture.quality.geometry import GEOMETRY_SENTINEL, geometry_score, geometry_terms

# Frontal face mirrored vertically: mouth above the eyes.
UPSIDE_DOWN = np.array([[75, 130], [125, 130], [100, 110], [80, 90], [120, 90]], dtype=np.float64)


class TestGeometryScore:
    def test_frontal_face_scores_weight_sum(self) -> None:
        assert geometry_terms(FRONTAL_LANDMARKS) == pytest.approx((1.0,) * 7)
        assert geometry_score(FRONTAL_LANDMARKS) == pytest.approx(11.0)

    def test_upside_down_face_loses_vertical_term(self) -> None:
        assert geometry_terms(UPSIDE_DOWN)[4] == pytest.approx(-1.0)
        assert geometry_score(UPSIDE_DOWN) == pytest.approx(7.0)

    def test_rolled_face_scores_lower(self) -> None:
        rolled = FRONTAL_LANDMARKS.astype(np.float64).copy()
        rolled[1, 1] += 20  # drop the right eye
        assert GEOMETRY_SENTINEL < geometry_score(rolled) < geometry_score(FRONTAL_LANDMARKS)

    def test_turned_face_scores_lower(self) -> None:
        turned = FRONTAL_LANDMARKS.astype(np.float64).copy()
        turned[2, 0] += 15  # nose off-center
        assert geometry_score(turned) < geometry_score(FRONTAL_LANDMARKS)

    def test_negative_coordinate_is_sentinel(self) -> None:
        bad = FRONTAL_LANDMARKS.astype(np.float64).copy()
        bad[3, 0] = -1
        assert geometry_terms(bad) is None
        assert geometry_score(bad) == GEOMETRY_SENTINEL

    def test_coincident_eyes_is_sentinel(self) -> None:
        bad = FRONTAL_LANDMARKS.astype(np.float64).copy()
        bad[1] = bad[0]
        assert geometry_score(bad) == GEOMETRY_SENTINEL

    def test_coincident_mouth_corners_is_sentinel(self) -> None:
        bad = FRONTAL_LANDMARKS.astype(np.float64).copy()
        bad[4] = bad[3]
        assert geometry_score(bad) == GEOMETRY_SENTINEL

    def test_eyes_on_mouth_line_zeroes_vertical_term(self) -> None:
        flat = np.array([[75, 100], [125, 100], [100, 100], [80, 100], [120, 100]], dtype=np.float64)
        assert geometry_terms(flat)[4] == 0.0

    def test_wrong_landmark_count_raises(self) -> None:
        with pytest.raises(ValueError, match="5 landmarks"):
            geometry_score(FRONTAL_LANDMARKS[:4])
