"""Shared feature selection across sections."""

import logging
from typing import List, Sequence

import anndata
import numpy as np
import pandas as pd

from ..dataset import get_variable_features
from ..errors import NoAnchorsFoundError

logger = logging.getLogger(__name__)

STAGE = "integration"


def select_integration_features(
    datasets: Sequence[anndata.AnnData],
    n_features: int = 2000,
) -> List[str]:
    """
    Choose genes to integrate on from the sections' variable features.

    A gene is eligible when it is measured in every dataset and is a variable
    feature in at least one. Eligible genes are ranked by the number of
    datasets that list them (descending), then by their median rank within
    those lists (ascending), then by gene id.

    Parameters
    ----------
    datasets : sequence of anndata.AnnData
        Normalized Datasets with ``uns['variable_features']``.
    n_features : int
        Maximum number of genes returned.

    Returns
    -------
    list of str
        Shared features in rank order.

    Raises
    ------
    NoAnchorsFoundError
        If no gene is eligible.
    """
    if len(datasets) < 2:
        raise ValueError("At least two datasets are required for integration")

    measured = set(datasets[0].var_names)
    for adata in datasets[1:]:
        measured &= set(adata.var_names)

    records = {}
    for adata in datasets:
        for rank, gene in enumerate(get_variable_features(adata), start=1):
            if gene in measured:
                records.setdefault(gene, []).append(rank)

    if not records:
        raise NoAnchorsFoundError(STAGE, "the datasets share no variable features")

    table = pd.DataFrame(
        {
            "gene": list(records.keys()),
            "n_datasets": [len(r) for r in records.values()],
            "median_rank": [float(np.median(r)) for r in records.values()],
        }
    )
    table = table.sort_values(
        ["n_datasets", "median_rank", "gene"],
        ascending=[False, True, True],
        kind="mergesort",
    )
    features = table["gene"].head(n_features).tolist()

    logger.info(
        f"Selected {len(features)} integration features "
        f"({int((table['n_datasets'] == len(datasets)).sum())} variable in all datasets)"
    )
    return features
