"""Providers for section data and the reference atlas."""

import logging
from pathlib import Path
from typing import Dict, Mapping, Optional, Union

import anndata
import numpy as np
import scanpy as sc

from ..dataset import RAW_LAYER, SPATIAL_KEY, new_dataset
from ..errors import DataUnavailableError

logger = logging.getLogger(__name__)

COUNT_LAYER_CANDIDATES = [RAW_LAYER, "counts", "raw"]


def load_h5ad(file_path: Union[str, Path]) -> anndata.AnnData:
    """
    Load an H5AD file.

    Parameters
    ----------
    file_path : str or Path
        Path to H5AD file.

    Returns
    -------
    anndata.AnnData
        Loaded AnnData object.

    Raises
    ------
    DataUnavailableError
        If the file does not exist.
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise DataUnavailableError("load", f"file not found: {file_path}")

    logger.info(f"Loading H5AD file: {file_path}")
    adata = anndata.read_h5ad(file_path)
    logger.info(f"Loaded {adata.n_obs} observations × {adata.n_vars} features from {file_path}")
    return adata


def _count_matrix(adata: anndata.AnnData):
    for layer in COUNT_LAYER_CANDIDATES:
        if layer in adata.layers:
            return adata.layers[layer]
    return adata.X


class VisiumSectionProvider:
    """
    Raw section data from Space Ranger output folders or ``.h5ad`` files.

    Parameters
    ----------
    sections : mapping of str to path
        Section name to a Space Ranger output directory (containing
        ``filtered_feature_bc_matrix.h5`` and ``spatial/``) or an ``.h5ad``
        file with counts and ``obsm['spatial']``.
    count_file : str
        Matrix file name inside a Space Ranger directory.
    """

    def __init__(
        self,
        sections: Mapping[str, Union[str, Path]],
        count_file: str = "filtered_feature_bc_matrix.h5",
    ):
        self.sections = {name: Path(p) for name, p in sections.items()}
        self.count_file = count_file

    def names(self):
        return list(self.sections.keys())

    def load(self, section: str) -> anndata.AnnData:
        """
        Load one section as a Dataset.

        Raises
        ------
        DataUnavailableError
            If the section is unknown or its files are missing.
        """
        if section not in self.sections:
            raise DataUnavailableError("load", f"unknown section '{section}'")

        path = self.sections[section]
        if path.suffix == ".h5ad":
            raw = load_h5ad(path)
        elif path.is_dir():
            if not (path / self.count_file).exists():
                raise DataUnavailableError("load", f"{self.count_file} not found in {path}")
            logger.info(f"Reading Visium output: {path}")
            raw = sc.read_visium(path, count_file=self.count_file)
        else:
            raise DataUnavailableError("load", f"no data at {path}")

        raw.var_names_make_unique()

        if SPATIAL_KEY not in raw.obsm:
            raise DataUnavailableError("load", f"section '{section}' has no spatial coordinates")

        libraries = raw.uns.get(SPATIAL_KEY, {})
        library_id = next(iter(libraries), section)

        adata = new_dataset(
            counts=_count_matrix(raw),
            spot_ids=raw.obs_names,
            gene_ids=raw.var_names,
            coordinates=np.asarray(raw.obsm[SPATIAL_KEY], dtype=float),
            section=section,
            library_id=str(library_id),
            image_metadata=libraries.get(library_id),
        )
        logger.info(f"Section '{section}': {adata.n_obs} spots × {adata.n_vars} genes")
        return adata

    def load_all(self) -> Dict[str, anndata.AnnData]:
        return {name: self.load(name) for name in self.sections}


class H5ADReferenceProvider:
    """
    Reference atlas from an ``.h5ad`` file.

    Counts are taken from the first of ``raw_counts``, ``counts``, ``raw``
    layers that exists, else ``X``, and stored in ``layers['raw_counts']``.

    Parameters
    ----------
    path : str or Path
        Reference file.
    label_key : str
        ``obs`` column with the cell-type label.
    """

    def __init__(self, path: Union[str, Path], label_key: str = "subclass"):
        self.path = Path(path)
        self.label_key = label_key

    def load(self) -> anndata.AnnData:
        reference = load_h5ad(self.path)
        if self.label_key not in reference.obs.columns:
            raise DataUnavailableError(
                "load", f"reference has no '{self.label_key}' column in obs"
            )
        reference.var_names_make_unique()
        reference.layers[RAW_LAYER] = _count_matrix(reference).copy()
        reference.obs[self.label_key] = reference.obs[self.label_key].astype(str)

        n_types = reference.obs[self.label_key].nunique()
        logger.info(f"Reference atlas: {reference.n_obs} cells, {n_types} '{self.label_key}' labels")
        return reference


def summarize_adata(adata: anndata.AnnData, label_key: Optional[str] = None) -> Dict:
    """
    Generate a summary of a Dataset or reference.

    Parameters
    ----------
    adata : anndata.AnnData
        Input object.
    label_key : str, optional
        Column whose label counts are included.

    Returns
    -------
    dict
        Dictionary with summary statistics.
    """
    summary = {
        "n_obs": adata.n_obs,
        "n_vars": adata.n_vars,
        "obs_columns": adata.obs.columns.tolist(),
        "obsm_keys": list(adata.obsm.keys()),
        "layers": list(adata.layers.keys()),
        "uns_keys": list(adata.uns.keys()),
    }

    if label_key is not None and label_key in adata.obs.columns:
        summary["label_counts"] = adata.obs[label_key].value_counts().to_dict()

    return summary
