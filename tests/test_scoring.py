import pytest
from autohunt.exceptions import ConfigurationError
from autohunt.services.classifier import TrimRelation
from autohunt.services.scoring import (
    Factor, Reason, ScoringWeights, DEFAULT_WEIGHTS, odometer_tolerance, score_match, source_tier,
)
from conftest import fingerprint_shape, listing_shape

def test_full_match_scores_every_factor():
    result = score_match(fingerprint_shape(), listing_shape())
    assert not result.short_circuited
    assert result.score == 9.75
    assert {r.factor for r in result.reasons} == set(Factor)
    assert result.points_for(Factor.MAKE_MODEL) == 3.0
    assert result.points_for(Factor.TRIM) == 1.5
    assert result.points_for(Factor.ODOMETER) == 1.5
    assert result.points_for(Factor.PRICE_TARGET) == 1.25
    assert result.points_for(Factor.PRICE_BELOW_SELL) == 0.5
    assert result.points_for(Factor.SOURCE) == 0.75
    assert result.trim_relation == TrimRelation.EXACT

def test_platform_mismatch_short_circuits():
    listing = listing_shape(make="Ford", model="Ranger", variant="XLT", asking_price=20000)
    result = score_match(fingerprint_shape(), listing)
    assert result.short_circuited
    assert result.score == DEFAULT_WEIGHTS.mismatch_score
    assert len(result.reasons) == 1
    assert result.reasons[0].factor == Factor.MAKE_MODEL
    assert "mismatch" in result.reasons[0].detail

def test_same_make_different_model_is_a_mismatch():
    listing = listing_shape(model="LandCruiser", variant="GXL")
    assert score_match(fingerprint_shape(), listing).short_circuited

def test_one_rank_upgrade_scores_partial_credit():
    result = score_match(fingerprint_shape(), listing_shape(variant="Rogue Double Cab"))
    assert result.trim_relation == TrimRelation.UPGRADE
    assert result.points_for(Factor.TRIM) == 0.75

@pytest.mark.parametrize("variant", ["SR Double Cab", "Workmate", "Rugged X"])
def test_rejected_trim_is_penalised(variant):
    result = score_match(fingerprint_shape(), listing_shape(variant=variant))
    assert result.points_for(Factor.TRIM) == -2.0
    assert result.trim_relation is None

def test_unknown_trim_contributes_nothing():
    result = score_match(fingerprint_shape(), listing_shape(variant="Double Cab"))
    trim_reason = next(r for r in result.reasons if r.factor == Factor.TRIM)
    assert trim_reason.points == 0.0
    assert "not comparable" in trim_reason.detail

def test_odometer_tolerance_widens_with_reference_km():
    assert odometer_tolerance(70000) == pytest.approx(17000)
    tolerances = [odometer_tolerance(km) for km in (0, 40000, 70000, 150000, 250000)]
    assert tolerances == sorted(tolerances)
    assert len(set(tolerances)) == len(tolerances)

def test_odometer_deviation_in_and_out_of_band():
    in_band = score_match(fingerprint_shape(reference_km=70000), listing_shape(km=85000))
    assert in_band.points_for(Factor.ODOMETER) == 1.5
    # same 15,000 km deviation is outside the tighter band at a lower reference
    out_of_band = score_match(fingerprint_shape(reference_km=40000), listing_shape(km=55000))
    assert out_of_band.points_for(Factor.ODOMETER) == 0.0

def test_missing_km_is_recorded_not_penalised():
    result = score_match(fingerprint_shape(), listing_shape(km=None))
    reason = next(r for r in result.reasons if r.factor == Factor.ODOMETER)
    assert reason == Reason(Factor.ODOMETER, 0.0, "km unknown")

@pytest.mark.parametrize("asking,target_pts,below_sell_pts", [
    (37000, 1.25, 0.5),
    (38000, 1.25, 0.5),
    (40000, 0.0, 0.5),
    (45000, 0.0, 0.0),
])
def test_price_factors_stack(asking, target_pts, below_sell_pts):
    result = score_match(fingerprint_shape(), listing_shape(asking_price=asking))
    assert result.points_for(Factor.PRICE_TARGET) == target_pts
    assert result.points_for(Factor.PRICE_BELOW_SELL) == below_sell_pts

def test_year_outside_range_scores_zero():
    result = score_match(fingerprint_shape(), listing_shape(year=2017))
    assert result.points_for(Factor.YEAR) == 0.0

@pytest.mark.parametrize("kwargs,tier,points", [
    (dict(source="pickles", source_class="auction"), "auction", 1.0),
    (dict(source="carsales", source_class="dealer"), "dealer", 0.75),
    (dict(source="autotrader", source_class="classifieds", seller_type=None), "classifieds", 0.5),
    (dict(source="gumtree_private", source_class="classifieds", seller_type="private"), "private", 0.0),
])
def test_source_tiers(kwargs, tier, points):
    listing = listing_shape(**kwargs)
    assert source_tier(listing) == tier
    assert score_match(fingerprint_shape(), listing).points_for(Factor.SOURCE) == points

def test_reasons_serialise_as_dicts():
    result = score_match(fingerprint_shape(), listing_shape())
    first = result.reasons_as_dicts()[0]
    assert first == {"factor": "make_model", "points": 3.0, "detail": "platform match TOYOTA:HILUX"}

def test_custom_weights_are_honoured():
    weights = ScoringWeights(source_dealer=0.25)
    result = score_match(fingerprint_shape(), listing_shape(), weights)
    assert result.score == 9.25

def test_default_weights_validate():
    assert DEFAULT_WEIGHTS.validate() is DEFAULT_WEIGHTS
    assert ScoringWeights.from_settings().validate()

@pytest.mark.parametrize("overrides", [
    dict(trim_reject=0.5),
    dict(make_model=1.0),
    dict(trim_upgrade=2.0),
    dict(price_below_sell=2.0),
    dict(source_private=2.0),
    dict(odometer=-1.0),
])
def test_invalid_weights_raise(overrides):
    with pytest.raises(ConfigurationError):
        ScoringWeights(**overrides).validate()
