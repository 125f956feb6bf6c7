"""Tests for export module."""

import json

import numpy as np
import pandas as pd
import plotly.graph_objects as go
import pytest

from spatial_sections.export import manifest, sink
from spatial_sections.modeling.parameters import PipelineParameters
from spatial_sections.viz import embedding_plots, qc_plots, spatial_plots


class TestSinks:
    """Tests for artifact sinks."""

    def test_directory_sink_table(self, tmp_path):
        """Tables are written as CSV; a range index is not written."""
        out = sink.DirectoryArtifactSink(tmp_path)
        table = pd.DataFrame({"gene": ["Gfap", "Cldn5"], "score": [1.0, 2.0]})

        path = out.write_table("sections/A/markers", table)

        assert path == tmp_path / "sections" / "A" / "markers.csv"
        loaded = pd.read_csv(path)
        assert list(loaded.columns) == ["gene", "score"]
        assert out.written[0]["kind"] == "table"

    def test_directory_sink_labelled_index(self, tmp_path):
        out = sink.DirectoryArtifactSink(tmp_path)
        table = pd.DataFrame({"X": [0.7]}, index=pd.Index(["spot0"], name="spot"))

        path = out.write_table("proportions", table)

        assert pd.read_csv(path, index_col=0).index.tolist() == ["spot0"]

    def test_directory_sink_plotly_figure(self, tmp_path):
        out = sink.DirectoryArtifactSink(tmp_path)
        fig = go.Figure(go.Scatter(x=[0, 1], y=[0, 1]))

        path = out.write_figure("umap", fig)

        assert path.suffix == ".html"
        assert path.exists()

    def test_directory_sink_matplotlib_figure(self, tmp_path):
        import matplotlib

        matplotlib.use("Agg")
        import matplotlib.pyplot as plt

        out = sink.DirectoryArtifactSink(tmp_path, dpi=50)
        fig, ax = plt.subplots()
        ax.plot([0, 1], [0, 1])

        path = out.write_figure("degree", fig)

        assert path.suffix == ".png"
        assert path.exists()

    def test_directory_sink_rejects_unknown_figure(self, tmp_path):
        out = sink.DirectoryArtifactSink(tmp_path)

        with pytest.raises(TypeError):
            out.write_figure("bad", object())

    def test_memory_sink(self):
        out = sink.MemoryArtifactSink()
        table = pd.DataFrame({"a": [1]})

        out.write_table("t", table)
        out.write_figure("f", "figure")

        assert out.tables["t"] is table
        assert out.figures["f"] == "figure"


class TestManifest:
    """Tests for manifest creation."""

    def test_compute_file_hash(self, tmp_path):
        path = tmp_path / "data.txt"
        path.write_text("spots")

        digest = manifest.compute_file_hash(str(path))

        assert len(digest) == 64
        assert digest == manifest.compute_file_hash(str(path))

    def test_create_manifest(self, tmp_path, section_a, section_b):
        merged_a = section_a.copy()
        merged_a.uns["qc"] = {"spots_before": 20, "spots_after": 20}
        input_file = tmp_path / "input.h5ad"
        input_file.write_text("placeholder")

        result = manifest.create_manifest(
            merged_a,
            {"A": merged_a},
            parameters=PipelineParameters().to_dict(),
            input_files=[input_file, tmp_path],
        )

        is_valid, errors = manifest.validate_manifest(result)
        assert is_valid, errors
        assert result["output"]["n_spots"] == section_a.n_obs
        assert result["sections"]["A"]["spots_before_qc"] == 20
        assert "sha256" in result["input"]["files"][0]
        assert "sha256" not in result["input"]["files"][1]

    def test_save_manifest(self, tmp_path, section_a):
        result = manifest.create_manifest(section_a, {})
        path = tmp_path / "manifest.json"

        manifest.save_manifest(result, str(path))

        with open(path) as f:
            loaded = json.load(f)
        assert loaded["output"]["n_spots"] == section_a.n_obs

    def test_validate_manifest_missing_keys(self):
        is_valid, errors = manifest.validate_manifest({"timestamp": "now"})

        assert not is_valid
        assert any("version" in e for e in errors)


class TestPlots:
    """Tests for plotly figures."""

    def test_plot_spatial_scatter_gene(self, section_a):
        fig = spatial_plots.plot_spatial_scatter(section_a, gene="Gfap", layer="raw_counts")

        assert isinstance(fig, go.Figure)

    def test_plot_spatial_scatter_category(self, section_a):
        adata = section_a.copy()
        adata.obs["cluster_id"] = np.array([0] * 10 + [1] * 10)

        fig = spatial_plots.plot_spatial_scatter(adata, color_by="cluster_id", section="A")

        assert isinstance(fig, go.Figure)

    def test_plot_proportions(self, section_a):
        props = pd.DataFrame({"Astro": np.linspace(0, 1, section_a.n_obs)}, index=section_a.obs_names)

        fig = spatial_plots.plot_proportions(section_a, props, "Astro")

        assert isinstance(fig, go.Figure)
        with pytest.raises(ValueError):
            spatial_plots.plot_proportions(section_a, props, "Endo")

    def test_plot_embedding_requires_basis(self, section_a):
        with pytest.raises(ValueError):
            embedding_plots.plot_umap(section_a, color_by="section")

    def test_plot_pca(self, section_a):
        adata = section_a.copy()
        adata.obsm["X_pca"] = np.random.default_rng(0).normal(size=(adata.n_obs, 3))

        fig = embedding_plots.plot_pca(adata, color_by="section")

        assert isinstance(fig, go.Figure)


class TestIllustrativeGenes:
    """Tests for the seeded illustrative gene draw."""

    def test_same_seed_same_genes(self, section_a):
        first = spatial_plots.sample_illustrative_genes(section_a, n=3, random_state=4)
        second = spatial_plots.sample_illustrative_genes(section_a, n=3, random_state=4)

        assert first == second
        assert len(set(first)) == 3
        assert set(first) <= set(section_a.var_names)

    def test_capped_at_gene_count(self, section_a):
        genes = spatial_plots.sample_illustrative_genes(section_a, n=100, random_state=0)

        assert sorted(genes) == sorted(section_a.var_names)

    def test_negative_count(self, section_a):
        with pytest.raises(ValueError):
            spatial_plots.sample_illustrative_genes(section_a, n=-1)


class TestQCPlots:
    """Tests for QC metric figures."""

    @pytest.fixture
    def metrics(self):
        return pd.DataFrame(
            {
                "total_count": [500.0, 800.0, 50.0],
                "detected_feature_count": [9, 10, 3],
                "mito_fraction": [0.03, 0.02, 0.4],
                "passed_qc": [True, True, False],
            },
            index=["s0", "s1", "s2"],
        )

    def test_plot_qc_distributions(self, metrics):
        fig = qc_plots.plot_qc_distributions(metrics)

        assert isinstance(fig, go.Figure)

    def test_plot_qc_distributions_missing_metric(self, metrics):
        with pytest.raises(ValueError):
            qc_plots.plot_qc_distributions(metrics.drop(columns=["mito_fraction"]))

    def test_plot_qc_relationships(self, metrics):
        figures = qc_plots.plot_qc_relationships(metrics)

        assert set(figures) == {
            "total_count_vs_detected_feature_count",
            "total_count_vs_mito_fraction",
            "detected_feature_count_vs_mito_fraction",
        }
