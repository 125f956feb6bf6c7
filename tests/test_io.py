"""Tests for I/O module."""

import numpy as np
import pandas as pd
import pytest
from anndata import AnnData

from spatial_sections.errors import DataUnavailableError
from spatial_sections.io import lexicon, loader, validator


def create_lexicon_frame():
    """A CellMarker-style download."""
    return pd.DataFrame(
        {
            "species": ["Mouse", "Mouse", "Mouse", "Mouse", "Human", "Mouse"],
            "tissue_type": ["Brain", "Brain", "Brain", "Brain", "Brain", "Liver"],
            "cell_name": ["Astrocyte", "Astrocyte", "Endothelial cell", "Endothelial cell", "Astrocyte", "Astrocyte"],
            "marker": ["Gfap", " Aqp4 ", "Cldn5", None, "GFAP", "Alb"],
        }
    )


class TestLexicon:
    """Tests for the marker lexicon."""

    def test_lexicon_from_frame(self):
        """CellMarker columns are renamed; rows without a gene are dropped."""
        lex = lexicon.lexicon_from_frame(create_lexicon_frame())

        assert list(lex.table.columns) == lexicon.LEXICON_COLUMNS
        assert len(lex) == 5

    def test_query_exact_case_insensitive(self):
        lex = lexicon.lexicon_from_frame(create_lexicon_frame())
        query = lexicon.MarkerQuery(species="mouse", tissue="BRAIN", cell_types=("astrocyte", "Endothelial cell"))

        genes = lex.query(query)

        assert genes == {"astrocyte": ["Gfap", "Aqp4"], "Endothelial cell": ["Cldn5"]}

    def test_query_no_substring_match(self):
        """'Endothelial' does not match 'Endothelial cell'."""
        lex = lexicon.lexicon_from_frame(create_lexicon_frame())

        genes = lex.query(lexicon.MarkerQuery("Mouse", "Brain", ("Endothelial",)))

        assert genes == {"Endothelial": []}

    def test_cell_types(self):
        lex = lexicon.lexicon_from_frame(create_lexicon_frame())

        assert lex.cell_types("Mouse", "Brain") == ["Astrocyte", "Endothelial cell"]

    def test_records_to_lexicon(self):
        lex = lexicon.records_to_lexicon([("Mouse", "Brain", "Astrocyte", "Gfap")])

        assert lex.genes_for("Mouse", "Brain", "Astrocyte") == ["Gfap"]

    def test_missing_columns(self):
        with pytest.raises(ValueError):
            lexicon.MarkerLexicon(table=pd.DataFrame({"gene": ["Gfap"]}))

    def test_load_csv(self, tmp_path):
        path = tmp_path / "markers.csv"
        create_lexicon_frame().to_csv(path, index=False)

        lex = lexicon.load_marker_lexicon(path)

        assert lex.genes_for("Mouse", "Brain", "Endothelial cell") == ["Cldn5"]

    def test_load_xlsx(self, tmp_path):
        path = tmp_path / "markers.xlsx"
        create_lexicon_frame().to_excel(path, index=False, engine="openpyxl")

        lex = lexicon.load_marker_lexicon(path)

        assert lex.genes_for("Mouse", "Brain", "Astrocyte") == ["Gfap", "Aqp4"]

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(DataUnavailableError):
            lexicon.load_marker_lexicon(tmp_path / "absent.xlsx")


class TestLoader:
    """Tests for loader functions."""

    def test_load_h5ad_missing(self, tmp_path):
        with pytest.raises(DataUnavailableError):
            loader.load_h5ad(tmp_path / "absent.h5ad")

    def test_section_provider_h5ad(self, tmp_path, section_a):
        """A saved section loads back as a Dataset under the requested name."""
        path = tmp_path / "a.h5ad"
        section_a.write_h5ad(path)

        provider = loader.VisiumSectionProvider({"left": path})
        adata = provider.load("left")

        assert provider.names() == ["left"]
        assert adata.shape == section_a.shape
        assert (adata.obs["section"] == "left").all()
        assert "raw_counts" in adata.layers
        np.testing.assert_allclose(adata.obsm["spatial"], section_a.obsm["spatial"])

    def test_section_provider_unknown(self, tmp_path):
        provider = loader.VisiumSectionProvider({"left": tmp_path / "a.h5ad"})

        with pytest.raises(DataUnavailableError):
            provider.load("right")

    def test_section_provider_missing_dir_contents(self, tmp_path):
        provider = loader.VisiumSectionProvider({"left": tmp_path})

        with pytest.raises(DataUnavailableError):
            provider.load("left")

    def test_section_provider_requires_coordinates(self, tmp_path):
        path = tmp_path / "nospatial.h5ad"
        AnnData(X=np.ones((3, 2)), var=pd.DataFrame(index=["g1", "g2"])).write_h5ad(path)

        with pytest.raises(DataUnavailableError):
            loader.VisiumSectionProvider({"s": path}).load("s")

    def test_reference_provider(self, tmp_path, reference):
        path = tmp_path / "ref.h5ad"
        ref = reference.copy()
        ref.layers["counts"] = ref.layers["raw_counts"]
        del ref.layers["raw_counts"]
        ref.write_h5ad(path)

        loaded = loader.H5ADReferenceProvider(path, label_key="subclass").load()

        assert "raw_counts" in loaded.layers
        assert set(loaded.obs["subclass"]) == {"Astro", "Endo"}

    def test_reference_provider_missing_label(self, tmp_path, reference):
        path = tmp_path / "ref.h5ad"
        reference.write_h5ad(path)

        with pytest.raises(DataUnavailableError):
            loader.H5ADReferenceProvider(path, label_key="cell_class").load()

    def test_summarize_adata(self, reference):
        summary = loader.summarize_adata(reference, label_key="subclass")

        assert summary["n_obs"] == reference.n_obs
        assert summary["label_counts"] == {"Astro": 30, "Endo": 30}


class TestValidator:
    """Tests for validator functions."""

    def test_validate_schema_valid(self, section_a):
        """A freshly built section passes strict validation."""
        is_valid, messages = validator.validate_schema(section_a, strict=True)

        assert is_valid
        assert not any(m.startswith("ERROR") for m in messages)

    def test_validate_schema_no_spatial(self):
        adata = AnnData(X=np.ones((3, 2)))

        is_valid, messages = validator.validate_schema(adata, strict=False)
        assert is_valid
        assert any("spatial" in m for m in messages)

        is_valid, _ = validator.validate_schema(adata, strict=True)
        assert not is_valid

    def test_validate_schema_reference(self, reference):
        is_valid, _ = validator.validate_schema(reference, label_key="subclass")
        assert is_valid

        is_valid, _ = validator.validate_schema(reference, label_key="missing")
        assert not is_valid

    def test_validate_schema_non_counts(self, section_a):
        adata = section_a.copy()
        adata.layers["raw_counts"] = adata.layers["raw_counts"] * 0.5

        is_valid, messages = validator.validate_schema(adata, strict=True)

        assert not is_valid
        assert any("raw counts" in m for m in messages)

    def test_check_counts_data(self, section_a):
        result = validator.check_counts_data(section_a, layer="raw_counts")

        assert result["is_integer"]
        assert not result["has_negative"]
        assert 0 <= result["sparsity"] <= 1
