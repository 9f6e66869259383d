"""
Staging Settings

Immutable settings objects built once from the YAML configuration and
passed explicitly to every component. Use `dataclasses.replace` to
derive a variant (e.g. a different weighting method for one run).
"""

from dataclasses import dataclass, field, asdict, replace
from typing import Any, Dict, Optional, Tuple

from ..errors import ConfigurationError
from ..features.definitions import FeatureModel
from .loader import ConfigLoader, get_config

CLASSIFIER_METHODS = ('lda', 'qda')
WEIGHT_METHODS = ('kl', 'repred', 'soap')
REPRED_METRICS = ('kappa', 'mcc')
REPRED_CLASSES = ('nrw', 'full', 'rem')
REPRED_SUMMARIES = ('mean', 'median')


@dataclass(frozen=True)
class ProjectionSettings:
    """Scaling, decomposition and component post-processing."""
    nc: int = 10
    standardize_features: bool = True
    standardize_components: bool = False
    robust: bool = False
    winsor_features: float = 0.0
    winsor_components: float = 0.0
    denoise_lambda: float = 0.0
    required_comp_p: float = 0.01

    def __post_init__(self):
        if self.nc < 1:
            raise ConfigurationError(f"nc must be >= 1, got {self.nc}")
        for name in ('winsor_features', 'winsor_components'):
            value = getattr(self, name)
            if not 0.0 <= value < 0.5:
                raise ConfigurationError(f"{name} must be in [0, 0.5), got {value}")
        if self.denoise_lambda < 0:
            raise ConfigurationError("denoise_lambda must be >= 0")
        if self.required_comp_p <= 0:
            raise ConfigurationError("required_comp_p must be positive")


@dataclass(frozen=True)
class QualitySettings:
    """Epoch exclusion and recording usability thresholds."""
    outlier_thresholds: Tuple[float, ...] = (8.0, 4.0)
    hjorth_threshold: float = 5.0
    min_epochs: int = 20
    required_epoch_n: int = 10
    resoap_required_n: int = 3
    max_epochs_per_class: Optional[int] = None
    seed: int = 12345

    def __post_init__(self):
        if any(k <= 0 for k in self.outlier_thresholds):
            raise ConfigurationError("outlier thresholds must be positive")
        if self.hjorth_threshold <= 0:
            raise ConfigurationError("hjorth_threshold must be positive")
        if min(self.min_epochs, self.required_epoch_n, self.resoap_required_n) < 1:
            raise ConfigurationError("min_epochs, required_epoch_n and resoap_required_n must be >= 1")
        if self.max_epochs_per_class is not None and self.max_epochs_per_class < 1:
            raise ConfigurationError("max_epochs_per_class must be >= 1")


@dataclass(frozen=True)
class ClassifierSettings:
    """Discriminant model and trainer acceptance."""
    method: str = 'lda'
    n_stages: int = 5
    flat_priors: bool = False
    self_classification: bool = False
    self_prob: float = 1.01
    self_kappa: float = 1.01

    def __post_init__(self):
        if self.method not in CLASSIFIER_METHODS:
            raise ConfigurationError(f"Unknown classifier method: {self.method}")
        if self.n_stages not in (3, 5):
            raise ConfigurationError(f"n_stages must be 3 or 5, got {self.n_stages}")


@dataclass(frozen=True)
class WeightingSettings:
    """
    Ensemble weighting.

    Weight post-processing is always applied in this order: clip negative
    weights, mean normalisation with `mean_threshold`, `exponent`,
    `percentile` gating, normalisation to sum 1.
    """
    methods: Tuple[str, ...] = ()
    repred_metric: str = 'kappa'
    repred_classes: str = 'nrw'
    repred_summary: str = 'mean'
    mean_threshold: Optional[float] = None
    exponent: float = 0.0
    percentile: float = 0.0
    equal_in_selected: bool = False
    best_guess: bool = False
    allow_self: bool = False

    def __post_init__(self):
        unknown = [m for m in self.methods if m not in WEIGHT_METHODS]
        if unknown:
            raise ConfigurationError(f"Unknown weighting method(s): {unknown}")
        if self.repred_metric not in REPRED_METRICS:
            raise ConfigurationError(f"Unknown re-prediction metric: {self.repred_metric}")
        if self.repred_classes not in REPRED_CLASSES:
            raise ConfigurationError(f"Unknown re-prediction classes: {self.repred_classes}")
        if self.repred_summary not in REPRED_SUMMARIES:
            raise ConfigurationError(f"Unknown re-prediction summary: {self.repred_summary}")
        if self.exponent < 0:
            raise ConfigurationError("exponent must be >= 0")
        if not 0.0 <= self.percentile <= 100.0:
            raise ConfigurationError(f"percentile must be in [0, 100], got {self.percentile}")
        if self.mean_threshold is not None and self.mean_threshold < 0:
            raise ConfigurationError("mean_threshold must be >= 0")


@dataclass(frozen=True)
class StagingConfig:
    """
    Complete, immutable staging configuration.

    Attributes:
        features: Feature model (channels, blocks, Welch settings)
        projection: Projection settings
        quality: Quality-control settings
        classifier: Classifier settings
        weighting: Ensemble weighting settings
    """
    features: FeatureModel
    projection: ProjectionSettings = field(default_factory=ProjectionSettings)
    quality: QualitySettings = field(default_factory=QualitySettings)
    classifier: ClassifierSettings = field(default_factory=ClassifierSettings)
    weighting: WeightingSettings = field(default_factory=WeightingSettings)

    def __post_init__(self):
        problems = self.features.validate()
        if problems:
            raise ConfigurationError("invalid feature model: " + "; ".join(problems))

    @property
    def n_features(self) -> int:
        return self.features.n_features

    @property
    def n_channels(self) -> int:
        return self.features.n_channels

    def with_weighting(self, **changes) -> 'StagingConfig':
        """Copy of this configuration with some weighting settings changed."""
        return replace(self, weighting=replace(self.weighting, **changes))

    @classmethod
    def from_dicts(cls, staging: Dict[str, Any], features: Dict[str, Any]) -> 'StagingConfig':
        """
        Build from the `staging` and `features` configuration dictionaries.

        Raises:
            ConfigurationError: on unknown keys or invalid values
        """
        try:
            feature_model = FeatureModel.from_dict(features)
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"invalid feature configuration: {e}") from e

        def section(name, klass, tuples=()):
            values = dict(staging.get(name) or {})
            for key in tuples:
                if key in values and values[key] is not None:
                    values[key] = tuple(values[key])
            try:
                return klass(**values)
            except TypeError as e:
                raise ConfigurationError(f"invalid '{name}' settings: {e}") from e

        return cls(
            features=feature_model,
            projection=section('projection', ProjectionSettings),
            quality=section('quality', QualitySettings, ('outlier_thresholds',)),
            classifier=section('classifier', ClassifierSettings),
            weighting=section('weighting', WeightingSettings, ('methods',)),
        )

    @classmethod
    def load(cls, loader: Optional[ConfigLoader] = None,
             staging_overrides: Optional[Dict] = None,
             feature_overrides: Optional[Dict] = None,
             staging_file: Optional[str] = None,
             features_file: Optional[str] = None) -> 'StagingConfig':
        """
        Load from the layered YAML configuration.

        Args:
            loader: Config loader (default: the shared loader)
            staging_overrides: Runtime overrides for staging.yaml
            feature_overrides: Runtime overrides for features.yaml
            staging_file: YAML file merged over the staging defaults
            features_file: YAML file merged over the feature defaults

        Returns:
            StagingConfig
        """
        loader = loader or get_config()
        return cls.from_dicts(loader.get_staging(staging_overrides, staging_file),
                              loader.get_features(feature_overrides, features_file))

    def to_dicts(self) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """Inverse of from_dicts."""
        staging = {
            'projection': asdict(self.projection),
            'quality': asdict(self.quality),
            'classifier': asdict(self.classifier),
            'weighting': asdict(self.weighting),
        }
        staging['quality']['outlier_thresholds'] = list(self.quality.outlier_thresholds)
        staging['weighting']['methods'] = list(self.weighting.methods)
        return staging, self.features.to_dict()
