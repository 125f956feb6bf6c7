"""Artifact sinks for tables and figures."""

import logging
from pathlib import Path
from typing import Any, Dict, List, Protocol, Union

import pandas as pd

logger = logging.getLogger(__name__)


class ArtifactSink(Protocol):
    """Receives named tabular and visual artifacts."""

    def write_table(self, name: str, table: pd.DataFrame) -> Any:
        ...

    def write_figure(self, name: str, figure: Any) -> Any:
        ...


class DirectoryArtifactSink:
    """
    Write artifacts into a directory.

    Tables become ``<name>.csv``; plotly figures ``<name>.html`` and
    matplotlib figures ``<name>.png``. Names may contain ``/`` to create
    sub-directories.

    Parameters
    ----------
    out_dir : str or Path
        Output directory, created if missing.
    dpi : int
        Resolution for raster figures.
    """

    def __init__(self, out_dir: Union[str, Path], dpi: int = 300):
        self.out_dir = Path(out_dir)
        self.out_dir.mkdir(parents=True, exist_ok=True)
        self.dpi = dpi
        self.written: List[Dict[str, str]] = []

    def _path(self, name: str, suffix: str) -> Path:
        path = self.out_dir / f"{name}{suffix}"
        path.parent.mkdir(parents=True, exist_ok=True)
        return path

    def write_table(self, name: str, table: pd.DataFrame) -> Path:
        path = self._path(name, ".csv")
        index = not isinstance(table.index, pd.RangeIndex)
        table.to_csv(path, index=index)
        self._record(name, "table", path)
        return path

    def write_figure(self, name: str, figure: Any) -> Path:
        if hasattr(figure, "write_html"):
            path = self._path(name, ".html")
            figure.write_html(str(path))
        elif hasattr(figure, "savefig"):
            import matplotlib.pyplot as plt

            path = self._path(name, ".png")
            figure.savefig(path, dpi=self.dpi, bbox_inches="tight")
            plt.close(figure)
        else:
            raise TypeError(f"Unsupported figure type: {type(figure).__name__}")
        self._record(name, "figure", path)
        return path

    def _record(self, name: str, kind: str, path: Path) -> None:
        logger.info(f"Saved {kind} '{name}' to {path}")
        self.written.append({"name": name, "kind": kind, "path": str(path)})


class MemoryArtifactSink:
    """Keep artifacts in dictionaries; for library use without disk output."""

    def __init__(self):
        self.tables: Dict[str, pd.DataFrame] = {}
        self.figures: Dict[str, Any] = {}

    def write_table(self, name: str, table: pd.DataFrame) -> None:
        self.tables[name] = table

    def write_figure(self, name: str, figure: Any) -> None:
        self.figures[name] = figure
