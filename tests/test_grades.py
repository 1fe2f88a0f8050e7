"""Tests for tower_dal.entities.grades."""

import pytest

from tower_dal.entities.grades import RouteClassifier, RouteType, all_classifiers


class TestDisplayString:
    """Tests for rendering grades."""

    @pytest.mark.parametrize(
        ("rawgrade", "route_type", "expected"),
        [
            (-1, RouteType.BOULDER, "VB"),
            (0, RouteType.BOULDER, "V0"),
            (10, RouteType.BOULDER, "V10"),
            (1, RouteType.TRAVERSE, "A"),
            (26, RouteType.COMPETITION, "Z"),
            (60, RouteType.TOPROPE, "5.6"),
            (61, RouteType.TOPROPE, "5.6+"),
            (69, RouteType.TOPROPE, "5.7-"),
            (70, RouteType.LEADCLIMB, "5.7"),
            (119, RouteType.LEADCLIMB, "5.12-"),
        ],
    )
    def test_display(self, rawgrade: int, route_type: RouteType, expected: str):
        """Test the display rules for every route type."""
        classifier = RouteClassifier(rawgrade=rawgrade, type=route_type)
        assert classifier.display_string == expected
        assert str(classifier) == expected


class TestParse:
    """Tests for parsing display strings back into grades."""

    @pytest.mark.parametrize(
        ("text", "route_type", "rawgrade"),
        [
            ("VB", RouteType.BOULDER, -1),
            ("V0", RouteType.BOULDER, 0),
            ("V1", RouteType.BOULDER, 1),
            ("A", RouteType.TRAVERSE, 1),
            ("B", RouteType.TRAVERSE, 2),
            ("Z", RouteType.COMPETITION, 26),
            ("5.6-", RouteType.TOPROPE, 59),
            ("5.6", RouteType.TOPROPE, 60),
            ("5.6+", RouteType.TOPROPE, 61),
            ("5.7", RouteType.LEADCLIMB, 70),
        ],
    )
    def test_parse(self, text: str, route_type: RouteType, rawgrade: int):
        """Test that display strings map to their stored grade."""
        assert RouteClassifier.parse(text, route_type).rawgrade == rawgrade

    @pytest.mark.parametrize(
        ("text", "route_type"),
        [
            ("V", RouteType.BOULDER),
            ("5.10", RouteType.BOULDER),
            ("AA", RouteType.TRAVERSE),
            ("a", RouteType.COMPETITION),
            ("V3", RouteType.TOPROPE),
            ("5.", RouteType.LEADCLIMB),
        ],
    )
    def test_invalid(self, text: str, route_type: RouteType):
        """Test that malformed grades are rejected."""
        with pytest.raises(ValueError):
            RouteClassifier.parse(text, route_type)

    def test_rope_grades_survive_display(self):
        """Test parse(display) is the identity on rope grades with a bias."""
        for rawgrade in (59, 60, 61, 99, 100, 101):
            classifier = RouteClassifier(rawgrade=rawgrade, type=RouteType.TOPROPE)
            assert RouteClassifier.parse(classifier.display_string, RouteType.TOPROPE) == classifier


class TestPoints:
    """Tests for leaderboard points."""

    def test_rope_points_are_raw(self):
        """Test that rope grades score their raw grade."""
        assert RouteClassifier(rawgrade=105, type=RouteType.LEADCLIMB).points == 105

    def test_other_points_are_scaled(self):
        """Test the boulder and lettered scale."""
        assert RouteClassifier(rawgrade=-1, type=RouteType.BOULDER).points == 50
        assert RouteClassifier(rawgrade=4, type=RouteType.BOULDER).points == 100
        assert RouteClassifier(rawgrade=2, type=RouteType.TRAVERSE).points == 80


class TestAllClassifiers:
    """Tests for listing selectable grades."""

    def test_boulder_grades(self):
        """Test that boulder grades run from VB to V7."""
        grades = all_classifiers(RouteType.BOULDER)

        assert len(grades) == 9
        assert grades[0].display_string == "VB"
        assert grades[-1].display_string == "V7"
        assert all(g.type is RouteType.BOULDER for g in grades)

    def test_rope_grades_include_modifiers(self):
        """Test that rope grades come in minus, plain and plus variants."""
        grades = all_classifiers(RouteType.TOPROPE)

        assert [g.rawgrade for g in grades[:3]] == [49, 50, 51]
        assert [str(g) for g in grades[:3]] == ["5.5-", "5.5", "5.5+"]
        assert grades[-1].rawgrade == 131

    def test_every_type_when_unfiltered(self):
        """Test that omitting the type lists the grades of every type."""
        grades = all_classifiers()

        assert {g.type for g in grades} == set(RouteType)
        assert len(grades) == 9 + 27 + 4 + 27 + 4
