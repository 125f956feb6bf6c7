"""Parameter management for pipeline runs."""

import logging
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Dict, Literal, Optional, Union

import toml

logger = logging.getLogger(__name__)


@dataclass
class QCParameters:
    """Spot filter bounds. All bounds are exclusive."""

    min_features: float = 200
    max_features: float = 7500
    min_counts: float = 500
    max_counts: float = 40000
    max_mito_fraction: float = 0.20
    mito_prefix: str = "mt-"


@dataclass
class NormalizationParameters:
    """Pearson-residual normalization and variable feature selection."""

    n_top_genes: int = 3000
    theta: float = 100.0
    clip: Optional[float] = None


@dataclass
class ReductionParameters:
    """PCA, rank selection and UMAP."""

    max_components: int = 50
    variance_threshold: float = 0.90
    # "computed": fraction of the variance carried by the computed components;
    # "total": fraction of total variance over the selected features
    variance_basis: Literal["computed", "total"] = "computed"
    umap_n_neighbors: int = 15
    umap_min_dist: float = 0.5


@dataclass
class ClusteringParameters:
    """Neighbour graph and Leiden community detection."""

    n_neighbors: int = 20
    resolution: float = 0.8
    n_iterations: int = 2


@dataclass
class MarkerParameters:
    """Differential expression thresholds and per-call-site top-K values."""

    min_fraction: float = 0.25
    min_log_fold_change: float = 0.25
    only_positive: bool = True
    top_k_plot: int = 3
    top_k_table: int = 5


@dataclass
class SpatialGenesParameters:
    """Moran's I ranking of variable features."""

    n_neighbors: int = 6
    n_top_genes: int = 3


@dataclass
class IntegrationParameters:
    """Anchor-based integration of two sections."""

    n_features: int = 2000
    n_dims: int = 20
    k_anchor: int = 5
    k_filter: Optional[int] = 200
    k_weight: int = 100
    sd_weight: float = 1.0
    compare_unintegrated: bool = False


@dataclass
class LabelTransferParameters:
    """Reference-based label transfer."""

    label_key: str = "subclass"
    n_dims: int = 30
    k_anchor: int = 5
    k_weight: int = 50
    sd_weight: float = 1.0
    max_anchor_distance: Optional[float] = None


@dataclass
class DeconvolutionParameters:
    """Marker curation and proportion estimation."""

    species: str = "Mouse"
    tissue: str = "Brain"
    # group label -> cell type name as spelled in the marker lexicon
    cell_types: Dict[str, str] = field(
        default_factory=lambda: {
            "Astrocytes": "Astrocyte",
            "Endothelial": "Endothelial cell",
            "Macrophages": "Macrophage",
        }
    )
    top_k_per_cluster: int = 5
    markers_per_cell_type: int = 2
    reference_markers_per_type: int = 20
    min_spots_per_type: int = 2


@dataclass
class PipelineParameters:
    """Parameters for a full two-section run."""

    qc: QCParameters = field(default_factory=QCParameters)
    normalization: NormalizationParameters = field(default_factory=NormalizationParameters)
    reduction: ReductionParameters = field(default_factory=ReductionParameters)
    clustering: ClusteringParameters = field(default_factory=ClusteringParameters)
    markers: MarkerParameters = field(default_factory=MarkerParameters)
    spatial_genes: SpatialGenesParameters = field(default_factory=SpatialGenesParameters)
    integration: IntegrationParameters = field(default_factory=IntegrationParameters)
    label_transfer: LabelTransferParameters = field(default_factory=LabelTransferParameters)
    deconvolution: DeconvolutionParameters = field(default_factory=DeconvolutionParameters)

    # Misc
    random_state: int = 0
    n_workers: int = 2
    branch_timeout: Optional[float] = None
    # Randomly drawn genes mapped per section for illustration
    n_illustrative_genes: int = 2

    def to_dict(self):
        """Convert to a nested dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict):
        """Create from a nested dictionary, ignoring unknown keys."""
        kwargs = {}
        for f in fields(cls):
            if f.name not in d:
                continue
            value = d[f.name]
            sub_cls = _SECTION_TYPES.get(f.name)
            if sub_cls is not None and isinstance(value, dict):
                known = {sf.name for sf in fields(sub_cls)}
                value = sub_cls(**{k: v for k, v in value.items() if k in known})
            kwargs[f.name] = value
        return cls(**kwargs)


_SECTION_TYPES = {
    "qc": QCParameters,
    "normalization": NormalizationParameters,
    "reduction": ReductionParameters,
    "clustering": ClusteringParameters,
    "markers": MarkerParameters,
    "spatial_genes": SpatialGenesParameters,
    "integration": IntegrationParameters,
    "label_transfer": LabelTransferParameters,
    "deconvolution": DeconvolutionParameters,
}


def load_parameters(path: Union[str, Path]) -> PipelineParameters:
    """
    Load pipeline parameters from a TOML file.

    Tables in the file map onto the nested parameter groups, e.g.::

        random_state = 7

        [qc]
        min_features = 100

    Parameters
    ----------
    path : str or Path
        TOML file path.

    Returns
    -------
    PipelineParameters
        Parameters with file values overriding the defaults.
    """
    logger.info(f"Loading parameters from {path}")
    data = toml.load(str(path))
    return PipelineParameters.from_dict(data)


def save_parameters(params: PipelineParameters, path: Union[str, Path]) -> None:
    """Write parameters to a TOML file (``None`` values are omitted)."""
    payload = _drop_none(params.to_dict())
    with open(path, "w") as f:
        toml.dump(payload, f)
    logger.info(f"Saved parameters to {path}")


def _drop_none(d):
    if isinstance(d, dict):
        return {k: _drop_none(v) for k, v in d.items() if v is not None}
    return d


def validate_parameters(params: PipelineParameters) -> tuple[bool, list[str]]:
    """
    Validate parameters.

    Parameters
    ----------
    params : PipelineParameters
        Parameters to validate.

    Returns
    -------
    tuple of (bool, list)
        (is_valid, list of error messages)
    """
    errors = []

    qc = params.qc
    if qc.min_features >= qc.max_features:
        errors.append("qc.min_features must be < qc.max_features")
    if qc.min_counts >= qc.max_counts:
        errors.append("qc.min_counts must be < qc.max_counts")
    if not 0 < qc.max_mito_fraction <= 1:
        errors.append("qc.max_mito_fraction must be in (0, 1]")

    if params.normalization.n_top_genes < 1:
        errors.append("normalization.n_top_genes must be >= 1")

    red = params.reduction
    if red.max_components < 1:
        errors.append("reduction.max_components must be >= 1")
    if not 0 < red.variance_threshold <= 1:
        errors.append("reduction.variance_threshold must be in (0, 1]")
    if red.variance_basis not in ("total", "computed"):
        errors.append("reduction.variance_basis must be 'total' or 'computed'")

    if params.clustering.n_neighbors < 2:
        errors.append("clustering.n_neighbors must be >= 2")
    if params.clustering.resolution <= 0:
        errors.append("clustering.resolution must be > 0")

    mk = params.markers
    if mk.top_k_plot < 1 or mk.top_k_table < 1:
        errors.append("markers.top_k_plot and markers.top_k_table must be >= 1")
    if not 0 <= mk.min_fraction <= 1:
        errors.append("markers.min_fraction must be in [0, 1]")

    if params.spatial_genes.n_neighbors < 1:
        errors.append("spatial_genes.n_neighbors must be >= 1")

    integ = params.integration
    if integ.k_anchor < 1 or integ.k_weight < 1:
        errors.append("integration.k_anchor and integration.k_weight must be >= 1")
    if integ.n_dims < 1:
        errors.append("integration.n_dims must be >= 1")

    lt = params.label_transfer
    if lt.k_anchor < 1 or lt.k_weight < 1:
        errors.append("label_transfer.k_anchor and label_transfer.k_weight must be >= 1")

    if not params.deconvolution.cell_types:
        errors.append("deconvolution.cell_types must not be empty")

    if params.n_workers < 1:
        errors.append("n_workers must be >= 1")

    if params.n_illustrative_genes < 0:
        errors.append("n_illustrative_genes must be >= 0")

    is_valid = len(errors) == 0

    return is_valid, errors
