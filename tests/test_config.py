"""Tests for YAML configuration loading and the immutable settings objects."""

import shutil
from pathlib import Path

import pytest
import yaml

import sudslib.config as config_pkg
from sudslib.config import ConfigLoader, StagingConfig
from sudslib.errors import ConfigurationError

from conftest import FEATURES

DEFAULTS_DIR = Path(config_pkg.__file__).parent / 'defaults'


@pytest.fixture
def loader(tmp_path):
    """Loader over a private copy of the shipped defaults."""
    shutil.copytree(DEFAULTS_DIR, tmp_path / 'defaults')
    return ConfigLoader(str(tmp_path))


def test_shipped_defaults_are_valid():
    config = StagingConfig.load(ConfigLoader())
    assert config.projection.nc == 10
    assert config.quality.outlier_thresholds == (8.0, 4.0)
    assert config.quality.resoap_required_n == 3
    assert config.classifier.method == 'lda'
    assert config.weighting.methods == ()
    assert config.features.channel_labels == ['EEG']
    assert config.n_features > 0


def test_local_overrides_are_merged(loader, tmp_path):
    local = tmp_path / 'local'
    local.mkdir()
    (local / 'staging.yaml').write_text(yaml.safe_dump({'projection': {'nc': 6}}))
    staging = loader.get_staging()
    assert staging['projection']['nc'] == 6
    # untouched keys keep their defaults
    assert staging['projection']['standardize_features'] is True
    assert staging['classifier']['method'] == 'lda'


def test_runtime_overrides_are_not_cached(loader):
    overridden = loader.get_staging({'weighting': {'methods': ['kl']}})
    assert overridden['weighting']['methods'] == ['kl']
    assert loader.get_staging()['weighting']['methods'] == []


def test_file_layer_sits_below_runtime_overrides(loader, tmp_path):
    site = tmp_path / 'site.yaml'
    site.write_text(yaml.safe_dump({'projection': {'nc': 6}, 'classifier': {'method': 'qda'}}))
    staging = loader.get_staging({'projection': {'nc': 3}}, path=site)
    assert staging['projection']['nc'] == 3
    assert staging['classifier']['method'] == 'qda'
    assert staging['projection']['standardize_features'] is True

    config = StagingConfig.load(loader, staging_file=str(site))
    assert config.projection.nc == 6
    assert config.classifier.method == 'qda'


def test_loaded_dicts_are_independent(loader):
    first = loader.get_staging()
    first['projection']['nc'] = 99
    assert loader.get_staging()['projection']['nc'] == 10


def test_config_file_must_be_a_mapping(loader, tmp_path):
    bad = tmp_path / 'bad.yaml'
    bad.write_text('- nc\n- 6\n')
    with pytest.raises(ConfigurationError, match='expected a mapping'):
        loader.get_staging(path=bad)


def test_missing_defaults(tmp_path):
    with pytest.raises(FileNotFoundError):
        ConfigLoader(str(tmp_path)).get_staging()


def test_to_dicts_round_trip(config):
    staging, features = config.to_dicts()
    assert StagingConfig.from_dicts(staging, features) == config


def test_with_weighting(config):
    changed = config.with_weighting(methods=('kl', 'soap'), percentile=20)
    assert changed.weighting.methods == ('kl', 'soap')
    assert changed.weighting.percentile == 20
    assert config.weighting.methods == ()
    assert changed.projection == config.projection


@pytest.mark.parametrize('staging', [
    {'projection': {'nc': 0}},
    {'projection': {'winsor_features': 0.6}},
    {'quality': {'min_epochs': 0}},
    {'quality': {'resoap_required_n': 0}},
    {'classifier': {'method': 'svm'}},
    {'classifier': {'n_stages': 4}},
    {'weighting': {'methods': ['entropy']}},
    {'weighting': {'repred_classes': 'all'}},
    {'projection': {'unknown_key': 1}},
])
def test_invalid_staging_settings(staging):
    with pytest.raises(ConfigurationError):
        StagingConfig.from_dicts(staging, FEATURES)


def test_invalid_feature_model():
    above_nyquist = {**FEATURES, 'channels': [
        {'label': 'EEG', 'sample_rate': 40, 'features': {'SPEC': {'lwr': 0.5, 'upr': 25}}},
    ]}
    with pytest.raises(ConfigurationError, match='Nyquist'):
        StagingConfig.from_dicts({}, above_nyquist)

    with pytest.raises(ConfigurationError, match='no channels'):
        StagingConfig.from_dicts({}, {**FEATURES, 'channels': []})

    with pytest.raises(ConfigurationError):
        StagingConfig.from_dicts({}, {**FEATURES, 'window': 'kaiser'})


def test_clear_cache_rereads_files(loader, tmp_path):
    assert loader.get_staging()['projection']['nc'] == 10
    local = tmp_path / 'local'
    local.mkdir()
    (local / 'staging.yaml').write_text(yaml.safe_dump({'projection': {'nc': 4}}))
    # cached until cleared
    assert loader.get_staging()['projection']['nc'] == 10
    loader.clear_cache()
    assert loader.get_staging()['projection']['nc'] == 4
