"""
座標ユーティリティとモデルのユニットテスト
"""

import math

import pytest

from weather_client.models.location import Coordinate, PermissionState, PermissionStatus
from weather_client.utils.geo import calculate_distance, format_coordinate, is_valid_coordinate


class TestCoordinateValidation:
    """座標の妥当性検証のテスト"""

    @pytest.mark.parametrize("latitude, longitude", [
        (0, 0),
        (90, 180),
        (-90, -180),
        (52.52, 13.41),
    ])
    def test_valid(self, latitude, longitude):
        assert is_valid_coordinate(latitude, longitude)

    @pytest.mark.parametrize("latitude, longitude", [
        (90.0001, 0),
        (0, -180.5),
        (math.nan, 0),
        (0, math.inf),
        (True, 0),
        ('52.52', 13.41),
        (None, None),
    ])
    def test_invalid(self, latitude, longitude):
        assert not is_valid_coordinate(latitude, longitude)

    def test_coordinate_rejects_invalid_values(self):
        with pytest.raises(ValueError):
            Coordinate(91, 0)


class TestGeoHelpers:
    """距離計算と表示のテスト"""

    def test_distance_berlin_paris(self):
        assert calculate_distance(52.52, 13.41, 48.8534, 2.3488) == pytest.approx(877, abs=5)

    def test_distance_same_point(self):
        assert calculate_distance(35.6762, 139.6503, 35.6762, 139.6503) == 0

    def test_format_coordinate(self):
        assert format_coordinate(52.52, 13.41) == '52.5200, 13.4100'

    def test_permission_requires_settings(self):
        assert PermissionState(PermissionStatus.DENIED, can_ask_again=False).requires_settings
        assert not PermissionState(PermissionStatus.DENIED, can_ask_again=True).requires_settings
        assert not PermissionState(PermissionStatus.GRANTED, can_ask_again=False).requires_settings
