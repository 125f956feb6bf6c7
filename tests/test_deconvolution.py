"""Tests for cell-type proportion estimation."""

import numpy as np
import pandas as pd
import pytest
from anndata import AnnData
from scipy import sparse

from spatial_sections.dataset import new_dataset
from spatial_sections.deconvolution import proportions
from spatial_sections.errors import DegenerateReferenceError
from spatial_sections.modeling.parameters import DeconvolutionParameters

GENES = ["m1", "m2", "m3", "m4", "m5", "m6"]
PROFILE_X = np.array([60.0, 30.0, 5.0, 5.0, 0.0, 0.0])
PROFILE_Y = np.array([0.0, 5.0, 5.0, 30.0, 40.0, 20.0])


def build_reference(profile_x, profile_y, n_per_type=5):
    """Reference in which every cell of a type has identical counts."""
    counts = np.vstack([np.tile(profile_x, (n_per_type, 1)), np.tile(profile_y, (n_per_type, 1))])
    reference = AnnData(
        X=sparse.csr_matrix(counts),
        obs=pd.DataFrame(
            {"subclass": ["X"] * n_per_type + ["Y"] * n_per_type},
            index=[f"cell{i}" for i in range(2 * n_per_type)],
        ),
        var=pd.DataFrame(index=GENES),
    )
    reference.layers["raw_counts"] = reference.X.copy()
    return reference


def build_query(rows, labels=None):
    rows = np.asarray(rows, dtype=float)
    n = rows.shape[0]
    query = new_dataset(
        rows,
        spot_ids=[f"spot{i}" for i in range(n)],
        gene_ids=GENES,
        coordinates=np.column_stack([np.arange(n), np.zeros(n)]),
        section="A",
    )
    if labels is not None:
        query.obs["predicted_cell_type"] = labels
    return query


class TestEstimateProportions:
    """Tests for estimate_proportions."""

    def test_recovers_known_mixture(self):
        """A 70/30 mixture of two profiles is recovered."""
        reference = build_reference(PROFILE_X, PROFILE_Y)
        query = build_query([0.7 * PROFILE_X + 0.3 * PROFILE_Y, PROFILE_X, PROFILE_Y])

        result = proportions.estimate_proportions(query, reference, GENES, cell_types=["X", "Y"])

        props = result.proportions
        assert props.loc["spot0", "X"] == pytest.approx(0.7, abs=0.05)
        assert props.loc["spot0", "Y"] == pytest.approx(0.3, abs=0.05)
        assert props.loc["spot1", "X"] == pytest.approx(1.0, abs=0.05)
        assert props.loc["spot2", "Y"] == pytest.approx(1.0, abs=0.05)

    def test_rows_sum_to_one(self):
        rng = np.random.default_rng(0)
        reference = build_reference(PROFILE_X, PROFILE_Y)
        query = build_query(rng.poisson(20, size=(8, len(GENES))))

        result = proportions.estimate_proportions(query, reference, GENES, cell_types=["X", "Y"])

        np.testing.assert_allclose(result.proportions.sum(axis=1), 1.0, atol=1e-6)
        assert (result.proportions.to_numpy() >= 0).all()

    def test_spot_without_signal_is_undetermined(self):
        """A spot with no marker counts gets equal proportions and is reported."""
        reference = build_reference(PROFILE_X, PROFILE_Y)
        query = build_query([PROFILE_X, np.zeros(len(GENES))])

        result = proportions.estimate_proportions(query, reference, GENES, cell_types=["X", "Y"])

        assert result.undetermined_spots == ["spot1"]
        np.testing.assert_allclose(result.proportions.loc["spot1"], [0.5, 0.5])

    def test_rank_deficient_reference(self):
        """Identical profiles cannot be separated."""
        reference = build_reference(PROFILE_X, PROFILE_X)
        query = build_query([PROFILE_X])

        with pytest.raises(DegenerateReferenceError):
            proportions.estimate_proportions(query, reference, GENES, cell_types=["X", "Y"])

    def test_no_shared_markers(self):
        reference = build_reference(PROFILE_X, PROFILE_Y)
        query = build_query([PROFILE_X])

        with pytest.raises(DegenerateReferenceError):
            proportions.estimate_proportions(query, reference, ["absent"], cell_types=["X", "Y"])

    def test_no_cell_types(self):
        reference = build_reference(PROFILE_X, PROFILE_Y)
        query = build_query([PROFILE_X], labels=["unassigned"])

        with pytest.raises(DegenerateReferenceError):
            proportions.estimate_proportions(query, reference, GENES)


class TestCellTypeSelection:
    """Tests for choosing the cell types to deconvolve."""

    def test_deconvolution_cell_types(self):
        reference = build_reference(PROFILE_X, PROFILE_Y)
        labels = ["X", "X", "Y", "Z", "Z", "unassigned", "unassigned"]
        query = build_query(np.tile(PROFILE_X, (len(labels), 1)), labels=labels)

        cell_types = proportions.deconvolution_cell_types(query, reference, min_spots_per_type=2)

        # Y has a single spot; Z is absent from the reference
        assert cell_types == ["X"]

    def test_reference_profiles(self):
        reference = build_reference(PROFILE_X, PROFILE_Y)

        profiles = proportions.reference_profiles(reference, ["m1", "m5"], ["X", "Y"])

        assert profiles.shape == (2, 2)
        assert profiles.loc["m1", "X"] == pytest.approx(1e4 * 60 / PROFILE_X.sum())
        assert profiles.loc["m5", "X"] == 0.0


class TestResult:
    """Tests for DeconvolutionResult helpers."""

    def test_attach_and_long_format(self):
        reference = build_reference(PROFILE_X, PROFILE_Y)
        query = build_query([0.7 * PROFILE_X + 0.3 * PROFILE_Y, PROFILE_Y])
        params = DeconvolutionParameters(min_spots_per_type=1)

        result = proportions.estimate_proportions(query, reference, GENES, params=params, cell_types=["X", "Y"])
        attached = proportions.attach_proportions(query, result)

        assert proportions.PROPORTIONS_KEY not in query.obsm
        assert attached.obsm[proportions.PROPORTIONS_KEY].shape == (2, 2)
        assert attached.obs["dominant_cell_type"].tolist() == ["X", "Y"]
        assert attached.uns["deconvolution"]["cell_types"] == ["X", "Y"]

        long = result.to_frame()
        assert list(long.columns) == ["spot", "cell_type", "proportion"]
        assert len(long) == 4
