"""Tests for cluster interpretation functionality."""

import numpy as np
import pandas as pd
import pytest

from spatial_sections import cluster_interpretation
from spatial_sections.cluster_interpretation.markers import (
    MARKER_COLUMNS,
    MarkerSet,
    _benjamini_hochberg_correction,
)
from spatial_sections.modeling.parameters import MarkerParameters


@pytest.fixture
def labelled_section(section_a):
    """Section with the two simulated groups as clusters 0 and 1."""
    adata = section_a.copy()
    adata.obs["cluster_id"] = np.array([0] * 10 + [1] * 10)
    return adata


@pytest.fixture
def marker_table():
    rows = [
        (0, "g1", 2.0), (0, "g2", 1.5), (0, "g3", 1.5), (0, "g4", 0.5),
        (1, "g5", 3.0), (1, "g6", 0.3),
    ]
    table = pd.DataFrame(rows, columns=["cluster_id", "gene", "average_log_fold_change"])
    table["fraction_expressing_in_cluster"] = 1.0
    table["fraction_expressing_outside"] = 0.1
    table["p_value"] = [0.01, 0.02, 0.001, 0.5, 0.01, 0.04]
    table["adjusted_p_value"] = table["p_value"]
    return MarkerSet(table=table[MARKER_COLUMNS])


class TestUtils:
    """Test utility functions."""

    def test_prepare_expression_data(self, section_a):
        """Test expression data preparation."""
        expr = cluster_interpretation.prepare_expression_data(section_a)

        assert expr.shape == section_a.shape
        assert isinstance(expr, np.ndarray)
        totals = np.expm1(expr).sum(axis=1)
        np.testing.assert_allclose(totals, 1e4)

    def test_scale_to_target_sum_zero_rows(self):
        """Spots without counts stay zero."""
        counts = np.array([[0.0, 0.0], [1.0, 3.0]])

        scaled = cluster_interpretation.scale_to_target_sum(counts, target_sum=100)

        np.testing.assert_allclose(scaled, [[0.0, 0.0], [25.0, 75.0]])


class TestMarkers:
    """Test marker gene computation."""

    def test_compute_markers(self, labelled_section):
        """Each cluster recovers its simulated marker genes."""
        markers = cluster_interpretation.compute_markers(labelled_section)

        assert isinstance(markers, MarkerSet)
        assert list(markers.table.columns) == MARKER_COLUMNS
        assert markers.groups == [0, 1]
        assert {"Gfap", "Aqp4"} <= set(markers.for_group(0)["gene"])
        assert {"Cldn5", "Flt1"} <= set(markers.for_group(1)["gene"])

    def test_marker_thresholds(self, labelled_section):
        """Retained rows satisfy the expression and fold-change thresholds."""
        params = MarkerParameters(min_fraction=0.5, min_log_fold_change=1.0)

        markers = cluster_interpretation.compute_markers(labelled_section, params=params)

        table = markers.table
        assert (table["fraction_expressing_in_cluster"] >= 0.5).all()
        assert (table["average_log_fold_change"] >= 1.0).all()
        assert ((table["adjusted_p_value"] >= 0) & (table["adjusted_p_value"] <= 1)).all()

    def test_unassigned_spots_excluded(self, labelled_section):
        """Spots with the -1 sentinel are never a group."""
        labelled_section.obs.loc[labelled_section.obs_names[:2], "cluster_id"] = -1

        markers = cluster_interpretation.compute_markers(labelled_section)

        assert -1 not in markers.groups

    def test_single_group_returns_empty(self, section_a):
        """Fewer than two groups gives an empty MarkerSet."""
        adata = section_a.copy()
        adata.obs["cluster_id"] = 0

        markers = cluster_interpretation.compute_markers(adata)

        assert markers.table.empty

    def test_compute_group_markers_fold_change(self, labelled_section):
        """Fold change is log2 of mean normalized expression plus one."""
        expr = cluster_interpretation.prepare_expression_data(labelled_section)

        stats = cluster_interpretation.compute_group_markers(labelled_section, "cluster_id", 0, expr=expr)

        j = list(labelled_section.var_names).index("Gfap")
        mean_in = np.expm1(expr[:10, j]).mean()
        mean_out = np.expm1(expr[10:, j]).mean()
        expected = np.log2(mean_in + 1) - np.log2(mean_out + 1)
        assert stats.loc[j, "average_log_fold_change"] == pytest.approx(expected)
        assert len(stats) == labelled_section.n_vars

    def test_missing_label_column(self, section_a):
        with pytest.raises(ValueError):
            cluster_interpretation.compute_markers(section_a, label_col="missing")


class TestMarkerSet:
    """Test top-K selection on marker tables."""

    def test_top_k_size_and_order(self, marker_table):
        """At most k rows per group, fold change descending, gene id tie-break."""
        top = marker_table.top_k(2)

        assert top[top["cluster_id"] == 0]["gene"].tolist() == ["g1", "g2"]
        assert top[top["cluster_id"] == 1]["gene"].tolist() == ["g5", "g6"]

    def test_top_k_fewer_than_k(self, marker_table):
        """Groups with fewer markers return all of them."""
        top = marker_table.top_k(10)

        assert (top["cluster_id"] == 0).sum() == 4
        assert (top["cluster_id"] == 1).sum() == 2

    def test_top_k_invalid(self, marker_table):
        with pytest.raises(ValueError):
            marker_table.top_k(0)

    def test_top_by_p_value(self, marker_table):
        top = marker_table.top_by_p_value(1)

        assert top["gene"].tolist() == ["g3", "g5"]

    def test_genes_and_restrict(self, marker_table):
        assert marker_table.genes(1) == ["g1", "g5"]

        restricted = marker_table.restrict_to_genes(["g2", "g6"])

        assert restricted.table["gene"].tolist() == ["g2", "g6"]


class TestBenjaminiHochberg:
    """Test FDR correction."""

    def test_known_values(self):
        p = np.array([0.01, 0.04, 0.03, 0.005])

        adjusted = _benjamini_hochberg_correction(p)

        np.testing.assert_allclose(adjusted, [0.02, 0.04, 0.04, 0.02])

    def test_monotone_and_bounded(self):
        rng = np.random.default_rng(0)
        p = rng.uniform(size=50)

        adjusted = _benjamini_hochberg_correction(p)

        order = np.argsort(p)
        assert np.all(np.diff(adjusted[order]) >= -1e-12)
        assert np.all(adjusted >= p)
        assert np.all(adjusted <= 1)


class TestSummaries:
    """Test summary computation."""

    def test_compute_cluster_summary(self, labelled_section):
        summary = cluster_interpretation.compute_cluster_summary(labelled_section)

        assert summary["group_id"].tolist() == [0, 1]
        assert summary["n_spots"].tolist() == [10, 10]
        assert summary["percent_of_total"].sum() == pytest.approx(100.0)
        assert "A" in summary.columns

    def test_compute_cluster_summary_excludes_unassigned(self, labelled_section):
        labelled_section.obs.loc[labelled_section.obs_names[:4], "cluster_id"] = -1

        summary = cluster_interpretation.compute_cluster_summary(labelled_section)

        assert -1 not in summary["group_id"].tolist()
        assert summary["n_spots"].sum() == 16
