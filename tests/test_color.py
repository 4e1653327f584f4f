import pytest

from termlight import ANSI_PALETTE, Color


def test_luma_bounds():
    assert Color(0, 0, 0).luma() == 0.0
    assert Color(255, 255, 255).luma() == pytest.approx(1.0)
    assert Color(255, 255, 255).luma() <= 1.0


def test_luma_is_monotonic():
    lumas = [Color(v, v, v).luma() for v in range(256)]
    assert lumas == sorted(lumas)


def test_luma_weights_green_most():
    assert Color(0, 255, 0).luma() > Color(255, 0, 0).luma() > Color(0, 0, 255).luma()


def test_luma_is_stable():
    color = Color(12, 200, 99)
    assert color.luma() == color.luma()


@pytest.mark.parametrize(
    ("color", "dark"),
    [
        (Color(0, 0, 0), True),
        (Color(40, 44, 52), True),
        (Color(253, 246, 227), False),
        (Color(255, 255, 255), False),
    ],
)
def test_is_dark(color, dark):
    assert color.is_dark() is dark


@pytest.mark.parametrize("channels", [(256, 0, 0), (0, -1, 0), (0, 0, 1.5)])
def test_invalid_channels_rejected(channels):
    with pytest.raises(ValueError, match="channel"):
        Color(*channels)


def test_color_is_immutable():
    color = Color(1, 2, 3)
    with pytest.raises(AttributeError):
        color.r = 4


def test_from_ansi():
    assert Color.from_ansi(0) == Color(0, 0, 0)
    assert Color.from_ansi(15) == Color(255, 255, 255)
    assert len(ANSI_PALETTE) == 16
    with pytest.raises(ValueError, match="out of range"):
        Color.from_ansi(16)


def test_hex():
    assert Color(255, 0, 128).hex() == "#ff0080"
