"""
Manifest-Based Data Loading

Reads a manifest naming the phenotype table, the two analyte matrices and the
optional analyte metadata tables, and builds an OmicsDataset from them.
"""

import json
import logging
import re
from pathlib import Path
from typing import Dict, Optional

import pandas as pd

from .data_store import OmicsDataset
from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

REQUIRED_ENTRIES = ['phenotype', 'type1', 'type2']
OPTIONAL_ENTRIES = ['type1_meta', 'type2_meta']

MANIFEST_ALIASES = {
    'sample_meta_data': 'phenotype',
    'sample_metadata': 'phenotype',
    'pheno': 'phenotype',
    'analyte_type1': 'type1',
    'analyte_type2': 'type2',
    'analyte_type1_meta_data': 'type1_meta',
    'analyte_type2_meta_data': 'type2_meta',
    'analyte_type1_metadata': 'type1_meta',
    'analyte_type2_metadata': 'type2_meta',
}


def _normalize_key(name: str) -> str:
    """Lower snake case, splitting camelCase (analyteType1MetaData -> analyte_type1_meta_data)."""
    name = re.sub(r'(?<=[a-z0-9])(?=[A-Z])', '_', name.strip())
    return re.sub(r'[^a-z0-9]+', '_', name.lower()).strip('_')


def read_manifest(manifest_path: str) -> Dict[str, Path]:
    """Parse a JSON manifest or a two-column (type, filename) CSV manifest."""
    manifest_path = Path(manifest_path)
    if not manifest_path.exists():
        raise FileNotFoundError(f"Manifest not found: {manifest_path}")

    if manifest_path.suffix.lower() == '.json':
        with open(manifest_path, 'r') as f:
            raw = json.load(f)
    else:
        frame = pd.read_csv(manifest_path, dtype=str)
        if frame.shape[1] < 2:
            raise ConfigurationError(f"Manifest {manifest_path} needs a type and a filename column")
        raw = dict(zip(frame.iloc[:, 0].str.strip(), frame.iloc[:, 1].fillna('').str.strip()))

    entries = {}
    for key, value in raw.items():
        normalized = _normalize_key(key)
        target = MANIFEST_ALIASES.get(normalized, normalized)
        if target not in REQUIRED_ENTRIES + OPTIONAL_ENTRIES:
            logger.debug(f"Ignoring manifest entry {key!r}")
            continue
        if value:
            path = Path(value)
            entries[target] = path if path.is_absolute() else manifest_path.parent / path

    missing = [e for e in REQUIRED_ENTRIES if e not in entries]
    if missing:
        raise ConfigurationError(f"Manifest {manifest_path} is missing entries: {missing}")
    return entries


def read_table(path: Path, sep: Optional[str] = None) -> pd.DataFrame:
    """Read a delimited table whose first column holds the row identifiers."""
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    if sep is None:
        sep = '\t' if path.suffix.lower() in ('.tsv', '.txt') else ','
    frame = pd.read_csv(path, sep=sep, index_col=0)
    frame.index = frame.index.astype(str)
    return frame


def load_dataset(manifest_path: str) -> OmicsDataset:
    """Build an OmicsDataset from the files a manifest names."""
    entries = read_manifest(manifest_path)

    type1 = read_table(entries['type1'])
    type2 = read_table(entries['type2'])
    type1.columns = type1.columns.astype(str)
    type2.columns = type2.columns.astype(str)
    try:
        type1 = type1.apply(pd.to_numeric, errors='raise')
        type2 = type2.apply(pd.to_numeric, errors='raise')
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Analyte matrices must be numeric: {e}")

    dataset = OmicsDataset(
        type1=type1,
        type2=type2,
        phenotype=read_table(entries['phenotype']),
        type1_meta=read_table(entries['type1_meta']) if 'type1_meta' in entries else None,
        type2_meta=read_table(entries['type2_meta']) if 'type2_meta' in entries else None,
    )
    logger.info(f"Loaded dataset from {manifest_path}: {dataset.summary()}")
    return dataset
