"""Tests for reference-based label transfer."""

import numpy as np
import pandas as pd
import pytest

from spatial_sections.annotation import label_transfer
from spatial_sections.modeling.normalization import normalize_dataset
from spatial_sections.modeling.parameters import LabelTransferParameters, NormalizationParameters

NORMALIZATION = NormalizationParameters(n_top_genes=10)


@pytest.fixture
def query(section_a):
    return normalize_dataset(section_a, NORMALIZATION)


@pytest.fixture
def transfer_params():
    return LabelTransferParameters(n_dims=5, k_anchor=5, k_weight=10)


class TestTransferGenes:
    """Tests for choosing the genes labels are transferred on."""

    def test_query_genes_only(self):
        variances = pd.Series({"a": 3.0, "b": 2.0, "c": 1.0})

        genes = label_transfer.transfer_genes(variances, ["c", "a"], n_top_genes=3)

        assert genes == ["a", "c"]

    def test_top_genes_limit(self):
        variances = pd.Series({"a": 3.0, "b": 2.0, "c": 1.0})

        assert label_transfer.transfer_genes(variances, ["a", "b", "c"], n_top_genes=2) == ["a", "b"]


class TestTransferLabels:
    """Tests for transfer_labels."""

    def test_labels_recovered(self, query, reference, transfer_params):
        """Spots take the label of the matching reference population."""
        result = label_transfer.transfer_labels(query, reference, transfer_params, normalization=NORMALIZATION)

        predicted = result.obs["predicted_cell_type"].to_numpy()
        expected = np.array(["Astro"] * 10 + ["Endo"] * 10)
        assert (predicted == expected).mean() >= 0.9

    def test_outputs(self, query, reference, transfer_params):
        result = label_transfer.transfer_labels(query, reference, transfer_params, normalization=NORMALIZATION)

        assert (query.obs["predicted_cell_type"] == "unassigned").all()
        scores = result.obsm[label_transfer.PREDICTION_SCORES_KEY]
        assert list(scores.columns) == ["Astro", "Endo"]
        np.testing.assert_allclose(scores.sum(axis=1), 1.0)
        assert ((result.obs["prediction_score"] > 0) & (result.obs["prediction_score"] <= 1 + 1e-9)).all()
        assert result.uns["label_transfer"]["n_unassigned"] == 0
        assert result.uns["label_transfer"]["n_anchors"] > 0

    def test_reference_not_modified(self, query, reference, transfer_params):
        layers_before = set(reference.layers.keys())
        obs_before = list(reference.obs.columns)

        label_transfer.transfer_labels(query, reference, transfer_params, normalization=NORMALIZATION)

        assert set(reference.layers.keys()) == layers_before
        assert list(reference.obs.columns) == obs_before

    def test_max_anchor_distance_unassigns(self, query, reference):
        """Spots without an anchor within reach stay unassigned with a NaN score."""
        params = LabelTransferParameters(n_dims=5, k_anchor=5, k_weight=10, max_anchor_distance=-1.0)

        result = label_transfer.transfer_labels(query, reference, params, normalization=NORMALIZATION)

        assert (result.obs["predicted_cell_type"] == "unassigned").all()
        assert result.obs["prediction_score"].isna().all()
        assert result.uns["label_transfer"]["unassigned_spots"] == list(query.obs_names)

    def test_generous_max_anchor_distance(self, query, reference):
        params = LabelTransferParameters(n_dims=5, k_anchor=5, k_weight=10, max_anchor_distance=2.0)

        result = label_transfer.transfer_labels(query, reference, params, normalization=NORMALIZATION)

        assert result.uns["label_transfer"]["n_unassigned"] == 0

    def test_missing_label_key(self, query, reference):
        params = LabelTransferParameters(label_key="cell_class")

        with pytest.raises(KeyError):
            label_transfer.transfer_labels(query, reference, params)

    def test_missing_reference_counts(self, query, reference, transfer_params):
        del reference.layers["raw_counts"]

        with pytest.raises(KeyError):
            label_transfer.transfer_labels(query, reference, transfer_params)
