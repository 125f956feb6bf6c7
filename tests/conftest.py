"""Shared synthetic sections and reference atlases for the tests."""

import numpy as np
import pandas as pd
import pytest
from anndata import AnnData
from scipy import sparse

from spatial_sections.dataset import RAW_LAYER, new_dataset
from spatial_sections.modeling.parameters import (
    ClusteringParameters,
    DeconvolutionParameters,
    IntegrationParameters,
    LabelTransferParameters,
    MarkerParameters,
    NormalizationParameters,
    PipelineParameters,
    QCParameters,
    ReductionParameters,
    SpatialGenesParameters,
)

GENES = ["Gfap", "Aqp4", "Cldn5", "Flt1", "Actb", "Gapdh", "Malat1", "Snap25", "Plp1", "mt-Co1"]
ASTRO_GENES = ["Gfap", "Aqp4"]
ENDO_GENES = ["Cldn5", "Flt1"]


def simulate_counts(n_per_group, rng, scale=1.0):
    """
    Counts for two groups of spots over ``GENES``.

    The first ``n_per_group`` rows express the astrocyte genes highly, the
    rest the endothelial genes.
    """
    n = 2 * n_per_group
    lam = np.full((n, len(GENES)), 20.0)
    lam[:, GENES.index("mt-Co1")] = 15.0
    for gene in ASTRO_GENES:
        lam[:n_per_group, GENES.index(gene)] = 200.0
        lam[n_per_group:, GENES.index(gene)] = 2.0
    for gene in ENDO_GENES:
        lam[:n_per_group, GENES.index(gene)] = 2.0
        lam[n_per_group:, GENES.index(gene)] = 200.0
    return rng.poisson(lam * scale).astype(np.float32)


def make_section(name="A", n_per_group=10, seed=0, scale=1.0, scalefactors=None):
    """
    A Dataset of ``2 * n_per_group`` spots on a 4-row grid.

    The astrocyte group occupies the left columns and the endothelial group
    the right ones, so the marker genes are spatially coherent.
    """
    rng = np.random.default_rng(seed)
    n = 2 * n_per_group
    counts = simulate_counts(n_per_group, rng, scale=scale)

    coords = np.array([[100.0 * (i // 4), 100.0 * (i % 4)] for i in range(n)])

    meta = {"scalefactors": scalefactors} if scalefactors else None
    return new_dataset(
        counts,
        spot_ids=[f"{name}_spot{i}" for i in range(n)],
        gene_ids=GENES,
        coordinates=coords,
        section=name,
        image_metadata=meta,
    )


def make_reference(n_per_type=30, seed=1):
    """Reference atlas with 'Astro' and 'Endo' cells labelled in obs['subclass']."""
    rng = np.random.default_rng(seed)
    counts = simulate_counts(n_per_type, rng)
    labels = ["Astro"] * n_per_type + ["Endo"] * n_per_type

    X = sparse.csr_matrix(counts)
    reference = AnnData(
        X=X,
        obs=pd.DataFrame({"subclass": labels}, index=[f"cell{i}" for i in range(len(labels))]),
        var=pd.DataFrame(index=GENES),
    )
    reference.layers[RAW_LAYER] = X.copy()
    return reference


def toy_parameters():
    """Parameters scaled down for 20-spot sections with 10 genes."""
    return PipelineParameters(
        qc=QCParameters(
            min_features=0,
            max_features=1000,
            min_counts=0,
            max_counts=1e6,
            max_mito_fraction=0.5,
        ),
        normalization=NormalizationParameters(n_top_genes=10),
        reduction=ReductionParameters(
            max_components=8,
            variance_threshold=0.9,
            umap_n_neighbors=5,
        ),
        clustering=ClusteringParameters(n_neighbors=5, resolution=0.5),
        markers=MarkerParameters(),
        spatial_genes=SpatialGenesParameters(n_neighbors=4, n_top_genes=3),
        integration=IntegrationParameters(n_features=10, n_dims=2, k_anchor=5, k_filter=None, k_weight=10),
        label_transfer=LabelTransferParameters(n_dims=5, k_anchor=5, k_weight=10),
        deconvolution=DeconvolutionParameters(
            cell_types={"Astrocytes": "Astrocyte", "Endothelial": "Endothelial cell"},
            min_spots_per_type=2,
        ),
        random_state=0,
    )


@pytest.fixture
def section_a():
    return make_section("A", seed=0)


@pytest.fixture
def section_b():
    return make_section("B", seed=3, scale=1.5)


@pytest.fixture
def reference():
    return make_reference()


@pytest.fixture
def params():
    return toy_parameters()


@pytest.fixture
def section_factory():
    return make_section


@pytest.fixture
def genes():
    return list(GENES)
