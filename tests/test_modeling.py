"""Tests for normalization, dimensionality reduction and clustering."""

from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pandas as pd
import pytest

from spatial_sections.dataset import NORMALIZED_LAYER, PCA_KEY, UMAP_KEY, new_dataset
from spatial_sections.errors import InsufficientVarianceExplainedError
from spatial_sections.modeling import clustering, normalization, reduction
from spatial_sections.modeling.parameters import (
    ClusteringParameters,
    NormalizationParameters,
    ReductionParameters,
)


@pytest.fixture
def normalized(section_a):
    return normalization.normalize_dataset(section_a, NormalizationParameters(n_top_genes=6))


class TestNormalization:
    """Tests for Pearson-residual normalization."""

    def test_normalize_dataset(self, section_a, normalized):
        """Residual layer covers every gene; the input is unchanged."""
        assert NORMALIZED_LAYER not in section_a.layers
        assert normalized.layers[NORMALIZED_LAYER].shape == section_a.shape
        assert np.isfinite(normalized.layers[NORMALIZED_LAYER]).all()
        assert list(normalized.obs_names) == list(section_a.obs_names)

    def test_variable_features(self, normalized):
        """Variable features are the top genes by residual variance."""
        features = normalized.uns["variable_features"]

        assert len(features) == 6
        variances = normalized.var["residual_variance"]
        selected = variances[features].to_numpy()
        others = variances.drop(features).to_numpy()
        assert selected.min() >= others.max()
        assert normalized.var["variable_feature"].sum() == 6

    def test_marker_genes_are_variable(self, normalized):
        """Group-specific genes carry more residual variance than housekeeping genes."""
        features = normalized.uns["variable_features"]
        for gene in ["Gfap", "Aqp4", "Cldn5", "Flt1"]:
            assert gene in features

    def test_n_top_genes_capped(self, section_a):
        """Asking for more genes than measured returns all of them."""
        result = normalization.normalize_dataset(section_a, NormalizationParameters(n_top_genes=5000))
        assert len(result.uns["variable_features"]) == section_a.n_vars

    def test_rank_variable_features_tie_break(self):
        """Equal variances are ordered by gene id."""
        variances = pd.Series([2.0, 1.0, 2.0, np.nan], index=["b", "c", "a", "d"])

        assert normalization.rank_variable_features(variances, 4) == ["a", "b", "c", "d"]


class TestRankSelection:
    """Tests for choosing the number of principal components."""

    def test_select_n_components_example(self):
        """[0.5, 0.25, 0.1, 0.1, 0.05] reaches 0.90 at four components."""
        ratios = [0.5, 0.25, 0.1, 0.1, 0.05]
        assert reduction.select_n_components(ratios, threshold=0.90) == 4

    def test_threshold_reached_exactly(self):
        """A cumulative sum equal to the threshold counts as reached."""
        assert reduction.select_n_components([0.6, 0.3, 0.1], threshold=0.9) == 2

    def test_cumulative_variance_monotone(self):
        """Cumulative variance never decreases."""
        rng = np.random.default_rng(0)
        ratios = rng.dirichlet(np.ones(20))

        cum = reduction.cumulative_variance(ratios)

        assert np.all(np.diff(cum) >= 0)
        assert cum[-1] == pytest.approx(1.0)

    def test_insufficient_variance(self):
        """The error reports the best cumulative fraction reached."""
        with pytest.raises(InsufficientVarianceExplainedError) as excinfo:
            reduction.select_n_components([0.3, 0.2, 0.1], threshold=0.9, basis="total")

        assert excinfo.value.reached == pytest.approx(0.6)

    def test_default_basis_is_computed(self):
        """By default fractions are rescaled to the computed components."""
        assert reduction.select_n_components([0.3, 0.2, 0.1], threshold=0.9) == 3
        assert ReductionParameters().variance_basis == "computed"

    def test_unknown_basis(self):
        with pytest.raises(ValueError):
            reduction.cumulative_variance([0.5], basis="other")


class TestReduction:
    """Tests for the reduction stage."""

    def test_reduce_dimensions(self, normalized):
        """PCA and UMAP share the spot axis; selected rank is recorded."""
        params = ReductionParameters(max_components=5, umap_n_neighbors=5)

        reduced = reduction.reduce_dimensions(normalized, params)

        n_dims = reduced.uns["reduction"]["n_components"]
        assert 1 <= n_dims <= 5
        assert reduced.obsm[PCA_KEY].shape == (normalized.n_obs, 5)
        assert reduced.obsm[UMAP_KEY].shape == (normalized.n_obs, 2)
        assert PCA_KEY not in normalized.obsm

        cum = reduced.uns["reduction"]["cumulative_variance"]
        assert cum[n_dims - 1] >= 0.9 - 1e-9
        if n_dims > 1:
            assert cum[n_dims - 2] < 0.9

    def test_reduce_dimensions_deterministic(self, normalized):
        """The same seed gives the same embeddings."""
        params = ReductionParameters(max_components=5, umap_n_neighbors=5)

        first = reduction.reduce_dimensions(normalized, params, random_state=7)
        second = reduction.reduce_dimensions(normalized, params, random_state=7)

        np.testing.assert_allclose(first.obsm[PCA_KEY], second.obsm[PCA_KEY])
        np.testing.assert_allclose(first.obsm[UMAP_KEY], second.obsm[UMAP_KEY])

    def test_default_parameters_on_wide_section(self):
        """Default settings select a rank when genes far outnumber max_components."""
        rng = np.random.default_rng(5)
        n_spots, n_genes = 120, 300
        adata = new_dataset(
            rng.poisson(5.0, size=(n_spots, n_genes)).astype(np.float32),
            spot_ids=[f"spot{i}" for i in range(n_spots)],
            gene_ids=[f"g{j}" for j in range(n_genes)],
            coordinates=np.column_stack([np.arange(n_spots), np.zeros(n_spots)]),
            section="A",
        )
        normalized = normalization.normalize_dataset(adata, NormalizationParameters())

        reduced = reduction.reduce_dimensions(normalized, ReductionParameters())

        assert reduced.obsm[PCA_KEY].shape[1] == 50
        assert 1 <= reduced.uns["reduction"]["n_components"] <= 50

        with pytest.raises(InsufficientVarianceExplainedError):
            reduction.reduce_dimensions(normalized, ReductionParameters(variance_basis="total"))


class TestClustering:
    """Tests for graph clustering."""

    def test_relabel_by_size(self):
        """Largest cluster becomes 0; ties keep first appearance order."""
        labels = np.array(["x", "y", "y", "z", "z", "y", "x"])

        relabeled = clustering.relabel_by_size(labels)

        assert relabeled.tolist() == [1, 0, 0, 2, 2, 0, 1]

    def test_cluster_spots(self, normalized):
        """Every spot gets a non-negative cluster id."""
        reduced = reduction.reduce_dimensions(
            normalized,
            ReductionParameters(max_components=5, umap_n_neighbors=5),
        )

        clustered = clustering.cluster_spots(reduced, ClusteringParameters(n_neighbors=5, resolution=0.5))

        ids = clustered.obs["cluster_id"].to_numpy()
        assert (ids >= 0).all()
        assert clustered.uns["clustering"]["n_clusters"] == len(np.unique(ids))
        assert sorted(np.unique(ids)) == list(range(len(np.unique(ids))))

    def test_cluster_spots_separates_groups(self, normalized):
        """The two simulated groups never share a cluster."""
        reduced = reduction.reduce_dimensions(
            normalized,
            ReductionParameters(max_components=5, umap_n_neighbors=5),
        )
        clustered = clustering.cluster_spots(reduced, ClusteringParameters(n_neighbors=5, resolution=0.5))

        ids = clustered.obs["cluster_id"].to_numpy()
        assert set(ids[:10]).isdisjoint(set(ids[10:]))

    def test_cluster_spots_requires_pca(self, normalized):
        with pytest.raises(ValueError):
            clustering.cluster_spots(normalized)

    def test_cluster_spots_concurrent_matches_serial(self, normalized):
        """Seeded clustering from several threads matches a serial run."""
        reduced = reduction.reduce_dimensions(
            normalized,
            ReductionParameters(max_components=5, umap_n_neighbors=5),
        )
        params = ClusteringParameters(n_neighbors=5, resolution=1.0)
        expected = clustering.cluster_spots(reduced, params, random_state=3).obs["cluster_id"].to_numpy()

        with ThreadPoolExecutor(max_workers=4) as executor:
            futures = [executor.submit(clustering.cluster_spots, reduced, params, None, 3) for _ in range(8)]
            results = [f.result().obs["cluster_id"].to_numpy() for f in futures]

        for ids in results:
            np.testing.assert_array_equal(ids, expected)

    def test_leiden_uses_leidenalg(self, normalized):
        reduced = reduction.reduce_dimensions(
            normalized,
            ReductionParameters(max_components=5, umap_n_neighbors=5),
        )

        clustered = clustering.cluster_spots(reduced, ClusteringParameters(n_neighbors=5))

        assert clustered.uns["clustering"]["flavor"] == "leidenalg"
