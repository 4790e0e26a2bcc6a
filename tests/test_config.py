"""Tests for wind model selection, parameter loading and derived constants."""

from __future__ import annotations

import json
import math

import pytest

from galwind.config import (
    FixedEfficiencyWind,
    HaloScalingWind,
    SubgridWind,
    WindConstants,
    WindParams,
    load_wind_params,
    parse_wind_selector,
)
from galwind.distributed import LoopbackTransport
from galwind.errors import WindConfigError
from galwind.units import SEC_PER_MEGAYEAR


@pytest.mark.parametrize(
    "selector,kind,decouple",
    [
        ("ofjt10", HaloScalingWind, True),
        ("ofjt10,decouple", HaloScalingWind, True),
        ("vs08", FixedEfficiencyWind, False),
        ("vs08,decouple", FixedEfficiencyWind, True),
        ("sh03", SubgridWind, True),
        ("halo", HaloScalingWind, False),
        ("fixedefficiency, decouple", FixedEfficiencyWind, True),
        ("SUBGRID,fixedefficiency", SubgridWind, False),
    ],
)
def test_selector_picks_model(selector, kind, decouple):
    params = WindParams.from_mapping({"WindModel": selector})
    assert isinstance(params.model, kind)
    assert params.decouple_sph is decouple


@pytest.mark.parametrize("selector", ["halo,fixedefficiency", "subgrid,halo", "decouple", "", "bogus", "vs08,nope"])
def test_bad_selectors_rejected(selector):
    with pytest.raises(WindConfigError):
        WindParams.from_mapping({"WindModel": selector})


def test_config_errors_are_value_errors():
    with pytest.raises(ValueError):
        parse_wind_selector("nope")


def test_defaults():
    params = WindParams.from_mapping({})
    assert params == WindParams()
    assert params.model == HaloScalingWind(sigma0=353.0, speed_factor=3.7)
    assert params.decouple_sph is True
    assert params.max_free_travel_time_myr == 60.0
    assert params.free_travel_length == 20.0
    assert params.free_travel_dens_fac == 0.1


@pytest.mark.parametrize("selector", ["ofjt10", "vs08", "sh03", "vs08,decouple", "halo"])
def test_selector_round_trip(selector):
    params = WindParams.from_mapping({"WindModel": selector, "WindEfficiency": 3.0})
    assert WindParams.from_mapping({"WindModel": params.selector, "WindEfficiency": 3.0}) == params


def test_mapping_uses_parameter_file_names():
    params = WindParams.from_mapping(
        {
            "WindModel": "ofjt10",
            "WindSigma0": 250.0,
            "WindSpeedFactor": 2.5,
            "WindEnergyFraction": 0.5,
            "WindThermalFactor": 1.0,
            "MinWindVelocity": 10.0,
            "MaxWindFreeTravelTime": 30.0,
            "WindFreeTravelLength": 15.0,
            "WindFreeTravelDensFac": 0.2,
        }
    )
    assert params.model == HaloScalingWind(sigma0=250.0, speed_factor=2.5)
    assert params.energy_fraction == 0.5
    assert params.thermal_factor == 1.0
    assert params.min_wind_velocity == 10.0
    assert params.max_free_travel_time_myr == 30.0
    assert params.free_travel_length == 15.0
    assert params.free_travel_dens_fac == 0.2


@pytest.mark.parametrize(
    "kwargs",
    [
        {"free_travel_length": -1.0},
        {"min_wind_velocity": math.nan},
        {"model": FixedEfficiencyWind(efficiency=0.0)},
        {"model": HaloScalingWind(sigma0=0.0)},
        {"model": "halo"},
    ],
)
def test_invalid_params(kwargs):
    with pytest.raises(WindConfigError):
        WindParams(**kwargs)


def test_model_efficiency_and_speed():
    assert FixedEfficiencyWind(2.0).efficiency_and_speed(50.0, 0.5, 300.0) == (2.0, 150.0)
    assert SubgridWind(3.0).efficiency_and_speed(50.0, 1.0, 300.0) == (3.0, 300.0)
    eff, v = HaloScalingWind(sigma0=100.0, speed_factor=3.0).efficiency_and_speed(100.0, 0.5, 300.0)
    assert eff == pytest.approx(0.25)
    assert v == pytest.approx(300.0)


class TestWindConstants:
    def _derive(self, params: WindParams, **kw) -> WindConstants:
        args = dict(factor_sn=0.5, egy_spec_sn=8.0, phys_dens_thresh=5.0, unit_time_in_s=SEC_PER_MEGAYEAR)
        args.update(kw)
        return WindConstants.derive(params, **args)

    def test_fixed_efficiency_speed(self):
        c = self._derive(WindParams(model=FixedEfficiencyWind(efficiency=4.0)))
        # sqrt(2 * 1 * 0.5 * 8 / 0.5) / sqrt(4)
        assert c.wind_speed == pytest.approx(2.0)

    def test_halo_speed_not_scaled_by_efficiency(self):
        c = self._derive(WindParams())
        assert c.wind_speed == pytest.approx(4.0)

    def test_energy_fraction(self):
        c = self._derive(WindParams(energy_fraction=0.25))
        assert c.wind_speed == pytest.approx(2.0)

    def test_time_and_density_threshold(self):
        c = self._derive(WindParams())
        assert c.max_free_travel_time == pytest.approx(60.0)
        assert c.free_travel_dens_thresh == pytest.approx(0.5)
        assert c.ever_decouple

    def test_zero_free_travel_time_never_decouples(self):
        c = self._derive(WindParams(max_free_travel_time_myr=0.0))
        assert c.max_free_travel_time == 0.0
        assert not c.ever_decouple

    @pytest.mark.parametrize("kw", [{"factor_sn": 1.0}, {"factor_sn": -0.1}, {"unit_time_in_s": 0.0}])
    def test_invalid_inputs(self, kw):
        with pytest.raises(WindConfigError):
            self._derive(WindParams(), **kw)


def test_load_wind_params_from_json(tmp_path):
    path = tmp_path / "winds.json"
    path.write_text(json.dumps({"WindModel": "vs08", "WindEfficiency": 3.0, "WindFreeTravelLength": 10.0}))
    params = load_wind_params(path, LoopbackTransport())
    assert params.model == FixedEfficiencyWind(efficiency=3.0)
    assert params.decouple_sph is False
    assert params.free_travel_length == 10.0


def test_load_wind_params_defaults_without_file():
    assert load_wind_params(None, LoopbackTransport()) == WindParams()


def test_load_wind_params_rejects_non_object(tmp_path):
    path = tmp_path / "winds.json"
    path.write_text("[1, 2]")
    with pytest.raises(WindConfigError):
        load_wind_params(path, LoopbackTransport())
