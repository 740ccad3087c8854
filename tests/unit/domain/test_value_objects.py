"""Tests for domain value objects and entity helpers."""

import pytest

from soundmate.domain.entities import ActivityLevel, CellAggregate, CellTopTrack
from soundmate.domain.exceptions import (
    InvalidBoundsError,
    InvalidCellIdError,
    ValidationException,
)
from soundmate.domain.value_objects import (
    AudioFeatures,
    BoundingBox,
    Coordinate,
    TrackDescriptor,
    normalize_cell_id,
)


class TestCoordinate:
    def test_valid(self) -> None:
        assert Coordinate(lat=-90.0, lng=180.0).lat == -90.0

    @pytest.mark.parametrize(("lat", "lng"), [(90.1, 0.0), (0.0, -180.5)])
    def test_out_of_range(self, lat: float, lng: float) -> None:
        with pytest.raises(ValidationException):
            Coordinate(lat=lat, lng=lng)


class TestBoundingBox:
    def test_north_must_exceed_south(self) -> None:
        with pytest.raises(InvalidBoundsError):
            BoundingBox(north=52.4, south=52.4, east=13.6, west=13.2)

    def test_contains(self) -> None:
        box = BoundingBox(north=52.6, south=52.4, east=13.6, west=13.2)

        assert box.contains(52.52, 13.41) is True
        assert box.contains(52.7, 13.41) is False
        assert box.to_dict() == {"north": 52.6, "south": 52.4, "east": 13.6, "west": 13.2}


class TestCellIds:
    def test_normalises_case_and_whitespace(self) -> None:
        assert normalize_cell_id(" 891F1D48177FFFF ") == "891f1d48177ffff"

    @pytest.mark.parametrize("bad", ["", "   ", "zzzz", "89-1f", "8928308280fffffff"])
    def test_rejects_non_hex(self, bad: str) -> None:
        with pytest.raises(InvalidCellIdError):
            normalize_cell_id(bad)


class TestAudioFeatures:
    def test_from_dict_ignores_junk(self) -> None:
        features = AudioFeatures.from_dict({"energy": 1, "valence": "high", "extra": 0.3})

        assert features == AudioFeatures(energy=1.0)

    def test_from_empty_dict(self) -> None:
        assert AudioFeatures.from_dict({}) is None
        assert AudioFeatures.from_dict(None) is None

    def test_neutral_vector(self) -> None:
        neutral = AudioFeatures.neutral()

        assert neutral.energy == 0.5
        assert neutral.instrumentalness == 0.1
        assert AudioFeatures.from_dict(neutral.to_dict()) == neutral


class TestTrackDescriptor:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"external_id": "", "name": "Song", "artist": "A"},
            {"external_id": "id", "name": "", "artist": "A"},
            {"external_id": "id", "name": "x" * 501, "artist": "A"},
            {"external_id": "id", "name": "Song", "artist": ""},
        ],
    )
    def test_rejects_incomplete(self, kwargs: dict[str, str]) -> None:
        with pytest.raises(ValidationException):
            TrackDescriptor(**kwargs)


class TestCellAggregate:
    @pytest.mark.parametrize(
        ("plays", "level"),
        [
            (0, ActivityLevel.LOW),
            (10, ActivityLevel.LOW),
            (11, ActivityLevel.MEDIUM),
            (50, ActivityLevel.MEDIUM),
            (51, ActivityLevel.HIGH),
        ],
    )
    def test_activity_level(self, plays: int, level: ActivityLevel) -> None:
        cell = CellAggregate(
            cell_id="891f1d48177ffff", center_lat=0.0, center_lng=0.0, total_plays=plays
        )

        assert cell.activity_level == level

    def test_rank_score_weights(self) -> None:
        assert CellTopTrack.compute_rank_score(3, 2) == pytest.approx(2.7)
        assert CellTopTrack.compute_rank_score(3, 2, 0.5, 0.5) == pytest.approx(2.5)

    def test_averaged_features(self) -> None:
        cell = CellAggregate(cell_id="891f1d48177ffff", center_lat=0.0, center_lng=0.0)
        assert cell.averaged_features() is None

        cell.avg_energy = 0.8
        cell.avg_valence = 0.6
        cell.avg_danceability = 0.7
        cell.avg_acousticness = 0.2
        cell.avg_instrumentalness = 0.1

        assert cell.averaged_features() == AudioFeatures(
            energy=0.8,
            valence=0.6,
            danceability=0.7,
            acousticness=0.2,
            instrumentalness=0.1,
        )
