"""
Tests for loading, validating and saving fitting configurations.
"""

import json

import numpy as np
import pytest
import yaml

from hfit.exceptions import ConfigurationError
from hfit.fitting.hfitting import HFitting
from hfit.io.config import (
    BasisConfig, FittingConfig, load_config, save_config, setup_fitting_from_config
)


YAML_CONFIG = """
basis:
  degrees: [3, 2]
  elements: [5, 4]
  domain: [[0, 2], [-1, 1]]

refinement:
  percentage: 0.25
  extension: [1, 2]
  smoothing: 1.0e-6
  tolerance: 1.0e-4
  iterations: 7
  threshold: -1
"""


class TestBasisConfig:
    """Tests for the basis section."""

    def test_defaults(self):
        config = BasisConfig()
        assert config.degrees == [2, 2]
        assert config.elements == [4, 4]
        assert config.dim == 2

    def test_build(self):
        basis = BasisConfig(degrees=[1, 3], elements=[2, 6],
                            domain=[(0, 1), (0, 3)]).build()
        assert basis.degrees == (1, 3)
        assert basis.n_elements_per_dir(0) == (2, 6)
        assert basis.domain == ((0.0, 1.0), (0.0, 3.0))

    @pytest.mark.parametrize("kwargs", [
        {"degrees": [], "elements": []},
        {"degrees": [2, 2], "elements": [4]},
        {"degrees": [-1, 2], "elements": [4, 4]},
        {"degrees": [2, 2], "elements": [0, 4]},
        {"degrees": [2], "elements": [4], "domain": [(1, 0)]},
        {"degrees": [2, 2], "elements": [4, 4], "domain": [(0, 1)]},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ConfigurationError):
            BasisConfig(**kwargs)


class TestFittingConfig:
    """Tests for the refinement settings."""

    def test_defaults(self):
        config = FittingConfig()
        assert config.percentage == 0.1
        assert config.extension == [2, 2]
        assert config.smoothing == 0.0
        assert config.threshold == -1.0
        assert config.iterations == 5

    def test_extension_defaults_to_degrees(self):
        config = FittingConfig(basis=BasisConfig(degrees=[3, 1], elements=[4, 4]))
        assert config.extension == [3, 1]

    @pytest.mark.parametrize("kwargs", [
        {"percentage": 1.5},
        {"percentage": -0.1},
        {"extension": [1]},
        {"extension": [1, -1]},
        {"smoothing": -1.0},
        {"tolerance": -1e-3},
        {"iterations": -1},
        {"iterations": 2.5},
        {"threshold": -0.5},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ConfigurationError):
            FittingConfig(**kwargs)

    def test_global_threshold_allowed(self):
        assert FittingConfig(threshold=0).threshold == 0.0

    def test_from_dict(self):
        config = FittingConfig.from_dict(yaml.safe_load(YAML_CONFIG))
        assert config.basis.degrees == [3, 2]
        assert config.basis.domain == [(0.0, 2.0), (-1.0, 1.0)]
        assert config.percentage == 0.25
        assert config.extension == [1, 2]
        assert config.smoothing == 1e-6
        assert config.iterations == 7

    def test_from_empty_dict(self):
        assert FittingConfig.from_dict({}) == FittingConfig()

    def test_unknown_section(self):
        with pytest.raises(ConfigurationError, match="sections"):
            FittingConfig.from_dict({"solver": {}})

    def test_unknown_refinement_key(self):
        with pytest.raises(ConfigurationError, match="percent"):
            FittingConfig.from_dict({"refinement": {"percent": 0.1}})

    def test_unknown_basis_key(self):
        with pytest.raises(ConfigurationError):
            FittingConfig.from_dict({"basis": {"degree": [2, 2]}})


class TestLoadSave:
    """Tests for reading and writing configuration files."""

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "fit.yaml"
        path.write_text(YAML_CONFIG)
        config = load_config(path)
        assert config.tolerance == 1e-4
        assert config.basis.elements == [5, 4]

    def test_load_json(self, tmp_path):
        path = tmp_path / "fit.json"
        path.write_text(json.dumps({"refinement": {"percentage": 0.3, "threshold": 0}}))
        config = load_config(str(path))
        assert config.percentage == 0.3
        assert config.threshold == 0.0

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yml"
        path.write_text("")
        assert load_config(path) == FittingConfig()

    def test_root_must_be_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ConfigurationError, match="mapping"):
            load_config(path)

    def test_unsupported_suffix(self, tmp_path):
        path = tmp_path / "fit.toml"
        path.write_text("")
        with pytest.raises(ConfigurationError, match="Unsupported"):
            load_config(path)

    def test_invalid_value_in_file(self, tmp_path):
        path = tmp_path / "fit.yaml"
        path.write_text("refinement:\n  percentage: 3\n")
        with pytest.raises(ConfigurationError):
            load_config(path)

    @pytest.mark.parametrize("suffix", [".yaml", ".json"])
    def test_save_and_reload(self, tmp_path, suffix):
        config = FittingConfig.from_dict(yaml.safe_load(YAML_CONFIG))
        path = tmp_path / ("saved" + suffix)
        save_config(config, path)
        assert load_config(path) == config


class TestSetupFromConfig:
    """Tests for building a refinement engine from a configuration."""

    def test_setup(self, grid):
        config = FittingConfig(percentage=0.2, extension=[1, 1], smoothing=1e-6)
        values = np.sin(3.0 * grid[:, 0]) * grid[:, 1]

        hfit = setup_fitting_from_config(config, grid, values)

        assert isinstance(hfit, HFitting)
        assert hfit.ref_percentage == 0.2
        assert hfit.extension == (1, 1)
        assert hfit.smoothing == 1e-6
        assert hfit.basis.size == 36

    def test_run_from_config(self, grid):
        config = FittingConfig(iterations=2, tolerance=0.0, smoothing=1e-5)
        values = np.tanh(10.0 * (grid[:, 0] - 0.5))

        hfit = setup_fitting_from_config(config, grid, values)
        hfit.iterative_refine(config.iterations, config.tolerance, config.threshold)

        assert hfit.iterations_done == 2

    def test_dimension_mismatch(self, grid):
        config = FittingConfig(basis=BasisConfig(degrees=[2], elements=[4]))
        with pytest.raises(ValueError):
            setup_fitting_from_config(config, grid, np.zeros(len(grid)))
