"""
Pathway Lookup Interface

Hands significant (analyte-1, analyte-2) identifier pairs to a pathway
annotation source and attaches one boolean per pair. The database-backed
lookup receives its SQLAlchemy engine explicitly from the caller.
"""

import logging
from typing import Any, Dict, Iterable, Mapping, Optional, Set, Tuple

import pandas as pd
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .result_processor import SignificantPairSet

logger = logging.getLogger(__name__)


class PathwayLookup:
    """Answers whether two analytes share an annotated pathway or reaction."""

    def shares_pathway(self, analyte_a: Any, analyte_b: Any) -> bool:
        raise NotImplementedError


class MappingPathwayLookup(PathwayLookup):
    """Lookup over an in-memory analyte -> pathway ids mapping."""

    def __init__(self, pathways: Mapping[Any, Iterable[Any]]):
        self.pathways: Dict[Any, Set[Any]] = {k: set(v) for k, v in pathways.items()}

    @classmethod
    def from_frame(cls, frame: pd.DataFrame,
                   analyte_column: str = 'analyte_id',
                   pathway_column: str = 'pathway_id') -> 'MappingPathwayLookup':
        grouped = frame.dropna(subset=[analyte_column, pathway_column]).groupby(analyte_column)[pathway_column]
        return cls({analyte: set(values) for analyte, values in grouped})

    def shares_pathway(self, analyte_a: Any, analyte_b: Any) -> bool:
        return bool(self.pathways.get(analyte_a, set()) & self.pathways.get(analyte_b, set()))


class SQLPathwayLookup(PathwayLookup):
    """Lookup against an analyte/pathway association table in a database."""

    DEFAULT_QUERY = """
    SELECT COUNT(*)
    FROM {table} a
    JOIN {table} b ON a.pathway_id = b.pathway_id
    WHERE a.analyte_id = :analyte_a AND b.analyte_id = :analyte_b
    """

    def __init__(self, engine: Engine, table: str = 'analyte_pathway', query: Optional[str] = None):
        self.engine = engine
        self.query = text(query or self.DEFAULT_QUERY.format(table=table))
        self._cache: Dict[Tuple[Any, Any], bool] = {}

    def shares_pathway(self, analyte_a: Any, analyte_b: Any) -> bool:
        key = (analyte_a, analyte_b)
        if key not in self._cache:
            try:
                with self.engine.connect() as conn:
                    count = conn.execute(
                        self.query, {'analyte_a': analyte_a, 'analyte_b': analyte_b}
                    ).scalar()
            except SQLAlchemyError as e:
                logger.error(f"Pathway query failed for {analyte_a}/{analyte_b}: {e}")
                raise
            self._cache[key] = bool(count)
        return self._cache[key]


def annotate_shared_pathways(significant: SignificantPairSet,
                             lookup: PathwayLookup,
                             column: str = 'shared_pathway') -> pd.DataFrame:
    """Copy of the significant pairs table with one shared-pathway flag per pair."""
    flags = [lookup.shares_pathway(a, b) for a, b in significant.pairs()]
    table = significant.table.copy()
    table[column] = pd.Series(flags, index=table.index, dtype=bool)
    logger.info(f"{sum(flags)} of {len(flags)} significant pairs share a pathway")
    return table
