import pytest

from app.domain.ledger import progression


@pytest.mark.parametrize(
    "xp, level",
    [(0, 1), (49, 1), (50, 2), (65, 2), (199, 2), (200, 3), (450, 4), (5000, 11), (18050, 20)],
)
def test_level_for_xp(xp, level):
    assert progression.level_for_xp(xp) == level


@pytest.mark.parametrize(
    "level, name",
    [
        (1, "Newcomer"),
        (5, "Newcomer"),
        (6, "Networker"),
        (10, "Networker"),
        (11, "Connector"),
        (20, "Connector"),
        (21, "Influencer"),
        (35, "Influencer"),
        (36, "Ambassador"),
        (50, "Ambassador"),
        (51, "Legend"),
    ],
)
def test_level_name_bands(level, name):
    assert progression.level_name(level) == name


def test_next_level_xp_grows_with_level():
    assert progression.next_level_xp(1) == 120
    values = [progression.next_level_xp(level) for level in range(1, 30)]
    assert values == sorted(values)
    assert len(set(values)) == len(values)


def test_level_never_below_one_for_negative_xp():
    assert progression.level_for_xp(-10) == 1
