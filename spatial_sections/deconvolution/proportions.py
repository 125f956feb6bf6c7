"""Marker-restricted cell-type proportion estimation per spot."""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import anndata
import numpy as np
import pandas as pd
from scipy.optimize import nnls

from ..cluster_interpretation.utils import scale_to_target_sum
from ..dataset import CELL_TYPE_COL, RAW_LAYER, UNASSIGNED_LABEL, validate_dataset
from ..errors import DegenerateReferenceError
from ..modeling.parameters import DeconvolutionParameters

logger = logging.getLogger(__name__)

STAGE = "deconvolution"

PROPORTIONS_KEY = "cell_type_proportions"

# Added to per-gene mean expression before inverting it into a weight
_WEIGHT_EPS = 1e-8


@dataclass
class DeconvolutionResult:
    """
    Per-spot cell-type proportions.

    Attributes
    ----------
    proportions : pd.DataFrame
        Spots × cell types, rows non-negative and summing to 1.
    profiles : pd.DataFrame
        Marker genes × cell types reference profile used for the fit.
    residuals : pd.Series
        Weighted reconstruction error per spot.
    undetermined_spots : list of str
        Spots with no marker signal; given equal proportions.
    """

    proportions: pd.DataFrame
    profiles: pd.DataFrame
    residuals: pd.Series
    undetermined_spots: List[str] = field(default_factory=list)

    @property
    def cell_types(self) -> List[str]:
        return self.proportions.columns.tolist()

    @property
    def marker_genes(self) -> List[str]:
        return self.profiles.index.tolist()

    def dominant_cell_type(self) -> pd.Series:
        """Cell type with the largest proportion per spot."""
        return self.proportions.idxmax(axis=1)

    def to_frame(self) -> pd.DataFrame:
        """Long table: spot, cell_type, proportion."""
        frame = self.proportions.rename_axis("spot").reset_index()
        return frame.melt(id_vars="spot", var_name="cell_type", value_name="proportion")


def deconvolution_cell_types(
    query: anndata.AnnData,
    reference: anndata.AnnData,
    label_key: str = "subclass",
    min_spots_per_type: int = 2,
) -> List[str]:
    """Predicted cell types with enough spots that also occur in the reference."""
    counts = query.obs[CELL_TYPE_COL].astype(str).value_counts()
    counts = counts[(counts.index != UNASSIGNED_LABEL) & (counts >= min_spots_per_type)]
    in_reference = set(reference.obs[label_key].astype(str))
    dropped = sorted(set(counts.index) - in_reference)
    if dropped:
        logger.warning(f"Predicted cell types missing from reference are skipped: {dropped}")
    return sorted(ct for ct in counts.index if ct in in_reference)


def reference_profiles(
    reference: anndata.AnnData,
    genes: Sequence[str],
    cell_types: Sequence[str],
    label_key: str = "subclass",
    layer: str = RAW_LAYER,
) -> pd.DataFrame:
    """
    Mean library-size-scaled expression per cell type over ``genes``.

    Returns
    -------
    pd.DataFrame
        genes × cell types.
    """
    scaled = scale_to_target_sum(reference.layers[layer])
    scaled = scaled[:, reference.var_names.get_indexer(list(genes))]
    labels = reference.obs[label_key].astype(str).to_numpy()

    columns = {}
    for cell_type in cell_types:
        mask = labels == cell_type
        columns[cell_type] = scaled[mask].mean(axis=0)
    return pd.DataFrame(columns, index=list(genes))


def estimate_proportions(
    query: anndata.AnnData,
    reference: anndata.AnnData,
    marker_genes: Sequence[str],
    params: Optional[DeconvolutionParameters] = None,
    label_key: str = "subclass",
    cell_types: Optional[Sequence[str]] = None,
) -> DeconvolutionResult:
    """
    Estimate cell-type proportions for every spot.

    Each spot's library-size-scaled marker expression ``y`` is fit as
    ``A @ p`` with ``A`` the reference profile matrix, by non-negative least
    squares with per-gene weights ``1 / mean_profile(g)``. Coefficients are
    rescaled to sum to 1. Spots whose fit is all zero get equal proportions
    and are reported as undetermined.

    Parameters
    ----------
    query : anndata.AnnData
        Dataset after label transfer, with ``raw_counts``.
    reference : anndata.AnnData
        Reference atlas with ``raw_counts`` and ``obs[label_key]``.
    marker_genes : sequence of str
        Curated marker genes.
    params : DeconvolutionParameters, optional
        ``min_spots_per_type`` selects the cell types.
    label_key : str
        Reference label column.
    cell_types : sequence of str, optional
        Cell types to estimate; defaults to :func:`deconvolution_cell_types`.

    Returns
    -------
    DeconvolutionResult

    Raises
    ------
    DegenerateReferenceError
        If no markers or cell types remain, or the profile matrix has rank
        below the number of cell types.
    """
    params = params or DeconvolutionParameters()
    validate_dataset(query, STAGE)

    if cell_types is None:
        cell_types = deconvolution_cell_types(
            query, reference, label_key=label_key, min_spots_per_type=params.min_spots_per_type
        )
    cell_types = list(cell_types)
    if not cell_types:
        raise DegenerateReferenceError(STAGE, "no cell types to estimate")

    shared = set(query.var_names) & set(reference.var_names)
    genes = [g for g in dict.fromkeys(marker_genes) if g in shared]
    if not genes:
        raise DegenerateReferenceError(STAGE, "no marker genes measured in both query and reference")

    profiles = reference_profiles(reference, genes, cell_types, label_key=label_key)
    A = profiles.to_numpy()

    rank = np.linalg.matrix_rank(A)
    if rank < len(cell_types):
        raise DegenerateReferenceError(
            STAGE,
            f"reference profile matrix has rank {rank} for {len(cell_types)} cell types "
            f"over {len(genes)} marker genes",
        )

    logger.info(f"Deconvolving {query.n_obs} spots into {len(cell_types)} cell types using {len(genes)} markers")

    gene_weights = np.sqrt(1.0 / (A.mean(axis=1) + _WEIGHT_EPS))
    A_w = A * gene_weights[:, None]

    Y = scale_to_target_sum(query.layers[RAW_LAYER])[:, query.var_names.get_indexer(genes)]
    Y_w = Y * gene_weights[None, :]

    proportions = np.zeros((query.n_obs, len(cell_types)))
    residuals = np.zeros(query.n_obs)
    undetermined = np.zeros(query.n_obs, dtype=bool)

    for i in range(query.n_obs):
        coef, residuals[i] = nnls(A_w, Y_w[i])
        total = coef.sum()
        if total > 0:
            proportions[i] = coef / total
        else:
            proportions[i] = 1.0 / len(cell_types)
            undetermined[i] = True

    undetermined_spots = query.obs_names[undetermined].tolist()
    if undetermined_spots:
        logger.warning(
            f"{len(undetermined_spots)} spots have no marker signal; assigned equal proportions"
        )

    return DeconvolutionResult(
        proportions=pd.DataFrame(proportions, index=query.obs_names, columns=cell_types),
        profiles=profiles,
        residuals=pd.Series(residuals, index=query.obs_names, name="residual"),
        undetermined_spots=undetermined_spots,
    )


def attach_proportions(adata: anndata.AnnData, result: DeconvolutionResult) -> anndata.AnnData:
    """Copy of ``adata`` with proportions in ``obsm['cell_type_proportions']``."""
    adata = adata.copy()
    adata.obsm[PROPORTIONS_KEY] = result.proportions.reindex(adata.obs_names).fillna(0.0)
    adata.obs["dominant_cell_type"] = result.dominant_cell_type().reindex(adata.obs_names).to_numpy()
    adata.uns["deconvolution"] = {
        "cell_types": result.cell_types,
        "marker_genes": result.marker_genes,
        "n_undetermined": len(result.undetermined_spots),
    }
    return adata
