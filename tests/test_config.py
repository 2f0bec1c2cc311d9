import pytest

from trackergeo.detector_config import ExtractorConfig, get_extractor_config
from trackergeo.geometry_extraction.module_complex import COPLANAR_TOLERANCE


def test_defaults():
    config = ExtractorConfig(use_env=False)
    assert config.epsilon == pytest.approx(0.01)
    assert config.z_pixfwd == pytest.approx(1325.0)
    assert config.tag('barrel_module') == "BModule"
    assert config.qualified('barrel_namespace', 'barrel_parent') == "pixbar:2OTBarrel"


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("TRACKERGEO_OVERRIDES", "epsilon:0.02,bogus:3,z_pixfwd:abc")
    config = ExtractorConfig()
    assert config.epsilon == pytest.approx(0.02)
    # malformed and unknown entries are ignored
    assert config.z_pixfwd == pytest.approx(1325.0)


def test_environment_ignored_on_request(monkeypatch):
    monkeypatch.setenv("TRACKERGEO_OVERRIDES", "epsilon:0.5")
    assert ExtractorConfig(use_env=False).epsilon == pytest.approx(0.01)


def test_explicit_settings():
    config = get_extractor_config(names={'namespace': 'mytracker'}, numeric={'z_pixfwd': 1200}, use_env=False)
    assert config.tag('namespace') == "mytracker"
    assert config.z_pixfwd == pytest.approx(1200.0)
    with pytest.raises(ValueError):
        ExtractorConfig(numeric={'clearance': 1.0}, use_env=False)


def test_coplanar_tolerance_is_fixed(monkeypatch):
    monkeypatch.setenv("TRACKERGEO_OVERRIDES", "coplanar_tolerance:5")
    config = ExtractorConfig()
    assert not hasattr(config, 'coplanar_tolerance')
    with pytest.raises(ValueError):
        ExtractorConfig(numeric={'coplanar_tolerance': 5.0}, use_env=False)
    assert COPLANAR_TOLERANCE == pytest.approx(1e-3)
