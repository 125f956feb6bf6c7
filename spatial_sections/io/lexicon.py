"""Marker lexicon: typed (species, tissue, cell type, gene) marker entries."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

import pandas as pd

from ..errors import DataUnavailableError

logger = logging.getLogger(__name__)

LEXICON_COLUMNS = ["species", "tissue", "cell_type", "gene"]

# CellMarker download column names
CELLMARKER_COLUMNS = {
    "species": "species",
    "tissue_type": "tissue",
    "cell_name": "cell_type",
    "marker": "gene",
    "Symbol": "gene",
}


@dataclass(frozen=True)
class MarkerQuery:
    """Exact (case-insensitive) filter on species, tissue and cell types."""

    species: str
    tissue: str
    cell_types: Tuple[str, ...] = ()


@dataclass
class MarkerLexicon:
    """
    Table of marker entries with columns species, tissue, cell_type, gene.

    Rows with a missing gene are dropped on construction.
    """

    table: pd.DataFrame = field(default_factory=lambda: pd.DataFrame(columns=LEXICON_COLUMNS))

    def __post_init__(self):
        missing = [c for c in LEXICON_COLUMNS if c not in self.table.columns]
        if missing:
            raise ValueError(f"Marker lexicon is missing columns: {missing}")
        table = self.table[LEXICON_COLUMNS].dropna(subset=["gene"]).copy()
        for col in LEXICON_COLUMNS:
            table[col] = table[col].astype(str).str.strip()
        self.table = table.reset_index(drop=True)

    def __len__(self) -> int:
        return len(self.table)

    def _select(self, species: str, tissue: str) -> pd.DataFrame:
        return self.table[
            (self.table["species"].str.lower() == species.lower())
            & (self.table["tissue"].str.lower() == tissue.lower())
        ]

    def cell_types(self, species: str, tissue: str) -> List[str]:
        """Cell type names recorded for a species and tissue."""
        return sorted(self._select(species, tissue)["cell_type"].unique().tolist())

    def genes_for(self, species: str, tissue: str, cell_type: str) -> List[str]:
        """Unique marker genes for one cell type, in first-seen order."""
        rows = self._select(species, tissue)
        rows = rows[rows["cell_type"].str.lower() == cell_type.lower()]
        return list(dict.fromkeys(rows["gene"].tolist()))

    def query(self, query: MarkerQuery) -> Dict[str, List[str]]:
        """
        Marker genes per requested cell type.

        Cell types with no entries map to an empty list and are logged.
        """
        result = {}
        for cell_type in query.cell_types:
            genes = self.genes_for(query.species, query.tissue, cell_type)
            if not genes:
                logger.warning(
                    f"No markers for '{cell_type}' ({query.species}, {query.tissue}) in lexicon"
                )
            result[cell_type] = genes
        return result


def load_marker_lexicon(
    path: Union[str, Path],
    column_map: Optional[Dict[str, str]] = None,
    sheet_name: Union[str, int] = 0,
) -> MarkerLexicon:
    """
    Load a marker lexicon from CSV, TSV or Excel.

    Parameters
    ----------
    path : str or Path
        Lexicon file. ``.xlsx`` files are read with openpyxl.
    column_map : dict, optional
        Source column name to lexicon column. Defaults to the CellMarker
        names (species, tissue_type, cell_name, marker).
    sheet_name : str or int
        Sheet to read for Excel files.

    Returns
    -------
    MarkerLexicon

    Raises
    ------
    DataUnavailableError
        If the file does not exist.
    """
    path = Path(path)
    if not path.exists():
        raise DataUnavailableError("marker_lexicon", f"file not found: {path}")

    logger.info(f"Loading marker lexicon: {path}")
    suffix = path.suffix.lower()
    if suffix in (".xlsx", ".xls"):
        raw = pd.read_excel(path, sheet_name=sheet_name, engine="openpyxl")
    elif suffix in (".tsv", ".txt"):
        raw = pd.read_csv(path, sep="\t")
    else:
        raw = pd.read_csv(path)

    return lexicon_from_frame(raw, column_map=column_map)


def lexicon_from_frame(frame: pd.DataFrame, column_map: Optional[Dict[str, str]] = None) -> MarkerLexicon:
    """Build a MarkerLexicon from a frame, renaming source columns first."""
    column_map = column_map or CELLMARKER_COLUMNS
    renamed = frame.rename(columns={k: v for k, v in column_map.items() if k in frame.columns})
    renamed = renamed.loc[:, ~renamed.columns.duplicated()]
    lexicon = MarkerLexicon(table=renamed)
    logger.info(f"Marker lexicon: {len(lexicon)} entries")
    return lexicon


def records_to_lexicon(records: Sequence[Tuple[str, str, str, str]]) -> MarkerLexicon:
    """Build a lexicon from (species, tissue, cell_type, gene) tuples."""
    return MarkerLexicon(table=pd.DataFrame(list(records), columns=LEXICON_COLUMNS))
