import pytest

from services.pricing.cost_model import (
    QUALITY_TIERS,
    analyze_complexity,
    compute_base_cost,
    describe_tiers,
    estimate_batch_cost,
    estimate_image_cost,
    estimate_user_charge,
    estimate_video_cost,
    round_half_up,
)
from shared.enums import OutputType, QualityMode


def test_round_half_up_rounds_halves_up() -> None:
    assert round_half_up(0.5) == 1
    assert round_half_up(2.5) == 3
    assert round_half_up(129.5) == 130
    assert round_half_up(2.125, 2) == 2.13


@pytest.mark.parametrize(
    "mode, expected_total",
    [
        (QualityMode.ECONOMY, 32),
        (QualityMode.BALANCED, 60),
        (QualityMode.PREMIUM, 130),
    ],
)
def test_video_cost_per_tier(mode: QualityMode, expected_total: int) -> None:
    estimate = estimate_video_cost(mode)
    assert estimate.total == expected_total
    assert set(estimate.breakdown) == {"script", "voice", "video", "assembly"}


def test_image_cost_scales_with_count() -> None:
    four = estimate_image_cost(QualityMode.BALANCED, 4)
    assert four.total == 64
    assert four.breakdown == {"script": 32.0, "images": 32.0}
    assert estimate_image_cost(QualityMode.BALANCED, 8).total == 128


def test_batch_cost_for_four_balanced_videos() -> None:
    quote = estimate_batch_cost(QualityMode.BALANCED, OutputType.VIDEO, 4)
    assert quote.total_cents == 240
    assert quote.per_item_cents == 60
    assert quote.user_charge_cents == 360
    assert quote.count == 4


def test_batch_cost_for_images() -> None:
    quote = estimate_batch_cost(QualityMode.BALANCED, OutputType.IMAGE, 4)
    assert quote.total_cents == 64
    assert quote.per_item_cents == 16
    assert quote.user_charge_cents == 96


def test_batch_cost_rejects_empty_batch() -> None:
    with pytest.raises(ValueError):
        estimate_batch_cost(QualityMode.ECONOMY, OutputType.VIDEO, 0)


def test_user_charge_and_base_cost_are_inverse() -> None:
    assert estimate_user_charge(240) == 360
    assert compute_base_cost(360) == 240
    assert estimate_user_charge(33) == 50  # 49.5 rounds up
    assert compute_base_cost(100, multiplier=2.0) == 50


def test_every_quality_mode_has_a_tier() -> None:
    assert set(QUALITY_TIERS) == set(QualityMode)
    tiers = describe_tiers()
    assert [tier["quality_mode"] for tier in tiers] == [mode.value for mode in QualityMode]


def test_analyze_complexity_suggests_tiers() -> None:
    assert analyze_complexity("a red mug").suggested_mode == QualityMode.ECONOMY
    assert analyze_complexity("a stunning cinematic shot of our new sneakers").suggested_mode == QualityMode.PREMIUM
    moderate = analyze_complexity(
        "show our coffee subscription to busy parents who need a morning routine that works"
    )
    assert moderate.suggested_mode == QualityMode.BALANCED
