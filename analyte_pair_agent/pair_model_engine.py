"""
Pair Model Engine - Core Screening Engine

Fits, for every (independent analyte, outcome analyte) pair, the model

    outcome ~ 1 + analyte + phenotype + analyte:phenotype + covariates

by ordinary least squares and extracts coefficient, p-value and R² statistics.
Outcome analytes that share a complete-case sample pattern are solved in one
vectorized least-squares call per independent analyte, and independent
analytes are distributed over a thread pool in fixed-size chunks.
"""

import logging
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple

import numpy as np
import pandas as pd
from scipy.linalg import solve_triangular

from .config.settings import ModelConfig, PhenotypeKind, ProcessingConfig
from .data_store import OmicsDataset
from .exceptions import ConfigurationError, InsufficientSampleError, ModelFitError
from .stats import t_pvalues, wald_pvalues

logger = logging.getLogger(__name__)

TERMS = ('interaction', 'analyte', 'stype')
RESULT_COLUMNS = [
    'independent', 'outcome',
    'interaction_coeff', 'interaction_pval',
    'analyte_coeff', 'analyte_pval',
    'stype_coeff', 'stype_pval',
    'rsquared', 'n_samples'
]

# rss below this fraction of the total sum of squares is a perfect fit
PERFECT_FIT_TOL = 1e-20
ROUNDING_TOL = 64 * np.finfo(float).eps
NEGLIGIBLE_COEF_TOL = 1e-8


def _sorted_levels(values) -> List[Any]:
    levels = list(pd.unique(values))
    try:
        return sorted(levels)
    except TypeError:
        return sorted(levels, key=str)


def _encode_categorical(values: pd.Series,
                        present: np.ndarray,
                        reference: Optional[Any] = None,
                        strict: bool = True) -> Tuple[np.ndarray, List[Any], Any]:
    """Treatment (dummy) coding against a reference level.

    Levels are taken from the rows in `present`; the reference defaults to the
    first level in sorted order. A configured reference missing from those rows
    is a ConfigurationError when `strict`, otherwise an InsufficientSampleError
    (a resampled subset that happens to lack it).
    """
    levels = _sorted_levels(values[present])
    if reference is None:
        reference = levels[0] if levels else None
    elif reference not in levels:
        message = f"Reference level {reference!r} not found in {values.name!r} (levels: {levels})"
        if strict:
            raise ConfigurationError(message)
        raise InsufficientSampleError(message)
    others = [level for level in levels if level != reference]
    if others:
        matrix = np.column_stack([(values == level).to_numpy(dtype=float) for level in others])
    else:
        matrix = np.empty((len(values), 0))
    return matrix, levels, reference


def _as_numeric(values: pd.Series) -> np.ndarray:
    try:
        return pd.to_numeric(values, errors='raise').to_numpy(dtype=float)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Column {values.name!r} is declared continuous but is not numeric")


@dataclass
class ModelDesign:
    """Sample-level design columns shared by every pair of one run."""

    samples: List[Any]
    mask: np.ndarray
    phenotype: np.ndarray
    covariates: np.ndarray
    covariate_terms: Dict[str, List[int]]
    levels: Optional[List[Any]] = None
    reference_level: Optional[Any] = None

    @property
    def n_phenotype_columns(self) -> int:
        return self.phenotype.shape[1]

    @property
    def n_params(self) -> int:
        return 2 + 2 * self.n_phenotype_columns + self.covariates.shape[1]

    def term_columns(self) -> Dict[str, List[int]]:
        """Column indices of each tested term in the design matrix."""
        q = self.n_phenotype_columns
        terms = {
            'analyte': [1],
            'stype': list(range(2, 2 + q)),
            'interaction': list(range(2 + q, 2 + 2 * q)),
        }
        offset = 2 + 2 * q
        for name, cols in self.covariate_terms.items():
            terms[name] = [offset + c for c in cols]
        return terms

    def design_matrix(self, x: np.ndarray, rows: np.ndarray) -> np.ndarray:
        xr = x[rows]
        pheno = self.phenotype[rows]
        return np.column_stack([
            np.ones(len(rows)), xr, pheno, xr[:, None] * pheno, self.covariates[rows]
        ])


def build_design(dataset: OmicsDataset, config: ModelConfig, strict_reference: bool = True) -> ModelDesign:
    """Encode phenotype and covariates for the dataset's aligned samples.

    With `strict_reference` off (fold and permutation runs) a reference level
    absent from the usable samples raises InsufficientSampleError.
    """
    table = dataset.phenotype
    missing = [c for c in [config.phenotype] + config.covariate_names if c not in table.columns]
    if missing:
        raise ConfigurationError(f"Columns not found in phenotype table: {missing}")

    mask = table[config.phenotype].notna().to_numpy(copy=True)
    for name in config.covariate_names:
        mask = mask & table[name].notna().to_numpy()
    if not mask.any():
        raise InsufficientSampleError("No samples with phenotype and all covariates present")

    levels = reference = None
    if config.phenotype_kind is PhenotypeKind.CATEGORICAL:
        phenotype, levels, reference = _encode_categorical(
            table[config.phenotype], mask, config.reference_level, strict_reference
        )
        if phenotype.shape[1] == 0:
            raise InsufficientSampleError(
                f"Phenotype {config.phenotype!r} has a single level among usable samples"
            )
    else:
        phenotype = _as_numeric(table[config.phenotype])[:, None]
        if np.ptp(phenotype[mask]) == 0:
            raise InsufficientSampleError(f"Phenotype {config.phenotype!r} is constant")

    blocks = []
    covariate_terms = {}
    offset = 0
    for spec in config.covariates:
        if spec.kind is PhenotypeKind.CATEGORICAL:
            block, _, _ = _encode_categorical(table[spec.name], mask)
        else:
            block = _as_numeric(table[spec.name])[:, None]
        if block.shape[1] == 0:
            logger.warning(f"Covariate {spec.name} has a single level and is ignored")
            continue
        blocks.append(block)
        covariate_terms[spec.name] = list(range(offset, offset + block.shape[1]))
        offset += block.shape[1]
    covariates = np.column_stack(blocks) if blocks else np.empty((len(table), 0))

    # zero-fill masked rows so NaN never reaches the design matrix
    phenotype = np.where(mask[:, None], phenotype, 0.0)
    covariates = np.where(mask[:, None], covariates, 0.0)

    design = ModelDesign(
        samples=list(table.index),
        mask=mask,
        phenotype=phenotype,
        covariates=covariates,
        covariate_terms=covariate_terms,
        levels=levels,
        reference_level=reference,
    )
    if int(mask.sum()) <= design.n_params:
        raise InsufficientSampleError(
            f"{int(mask.sum())} usable samples cannot fit a model with {design.n_params} parameters"
        )
    return design


def _centered(X: np.ndarray, terms: Dict[str, List[int]]) -> Tuple[np.ndarray, np.ndarray]:
    """Reparametrize the design around its column means.

    Every column but the intercept is centred and the interaction columns are
    rebuilt as products of the centred analyte and phenotype columns. Returns
    the centred design and T such that beta = T @ beta_centred.
    """
    pheno = terms['stype']
    inter = terms['interaction']
    means = X.mean(axis=0)
    means[0] = 0.0
    means[inter] = 0.0

    Xc = X - means
    Xc[:, inter] = Xc[:, [1]] * Xc[:, pheno]

    a = means[1]
    b = means[pheno]
    T = np.eye(X.shape[1])
    T[0, 1:] = -means[1:]
    T[0, inter] = a * b
    T[1, inter] = -b
    T[pheno, inter] = -a
    return Xc, T


def fit_block(X: np.ndarray, Y: np.ndarray, terms: Dict[str, List[int]]) -> Dict[str, np.ndarray]:
    """Fit one design matrix against many outcome columns.

    X is (n, p); Y is (n, m). Returns per-term coefficient and p-value arrays
    of length m plus rsquared and a `constant` mask of outcomes with no
    variance, whose statistics are NaN. Raises ModelFitError when the design
    itself is unusable.

    The least-squares problem is solved on a centred design and the
    coefficients mapped back, so large analyte means do not cost precision.
    """
    n, p = X.shape
    df = n - p
    if df < 1:
        raise ModelFitError("too few complete samples")
    if np.ptp(X[:, 1]) == 0:
        raise ModelFitError("zero variance in independent analyte")

    Xc, T = _centered(X, terms)
    if np.linalg.matrix_rank(Xc) < p:
        raise ModelFitError("rank-deficient design matrix")

    Q, R = np.linalg.qr(Xc)
    beta_c = solve_triangular(R, Q.T @ Y)
    R_inv = solve_triangular(R, np.eye(p))
    beta = T @ beta_c
    xtx_inv = T @ (R_inv @ R_inv.T) @ T.T

    resid = Y - Xc @ beta_c
    rss = np.einsum('ij,ij->j', resid, resid)
    centered = Y - Y.mean(axis=0)
    tss = np.einsum('ij,ij->j', centered, centered)
    y_scale = np.abs(Y).max(axis=0)

    constant = ~(tss > 0)
    # residuals at the rounding level of the outcome values count as zero
    perfect = rss <= np.maximum(PERFECT_FIT_TOL * tss, n * (ROUNDING_TOL * y_scale) ** 2)
    sigma2 = np.where(perfect, 0.0, rss / df)
    with np.errstate(divide='ignore', invalid='ignore'):
        rsquared = np.clip(1.0 - rss / tss, 0.0, 1.0)

    # a coefficient is negligible when its column moves the fit by a
    # rounding-level fraction of the outcome magnitude
    col_scale = np.maximum(np.abs(Xc).max(axis=0), np.finfo(float).tiny)
    negligible = np.abs(beta) <= NEGLIGIBLE_COEF_TOL * y_scale[None, :] / col_scale[:, None]

    out = {'rsquared': rsquared, 'constant': constant}
    columns = np.arange(Y.shape[1])
    for name, cols in terms.items():
        b = beta[cols]
        if len(cols) == 1:
            se = np.sqrt(xtx_inv[cols[0], cols[0]] * sigma2)
            coef = b[0]
            pval = t_pvalues(coef, se, df, negligible[cols[0]])
        else:
            cov_inv = np.linalg.inv(xtx_inv[np.ix_(cols, cols)])
            quad = np.einsum('im,ij,jm->m', b, cov_inv, b)
            pval = wald_pvalues(quad, sigma2, len(cols), df, negligible[cols].all(axis=0))
            # largest-magnitude level effect stands in for the multi-level term
            coef = b[np.abs(b).argmax(axis=0), columns]
        out[f'{name}_coeff'] = np.where(constant, np.nan, coef)
        out[f'{name}_pval'] = np.where(constant, np.nan, pval)
    out['rsquared'] = np.where(constant, np.nan, rsquared)
    return out


@dataclass(frozen=True)
class PairModelResult:
    """Per-pair statistics of one engine run, plus failure accounting."""

    table: pd.DataFrame
    n_failed: int = 0
    failures: Dict[str, int] = field(default_factory=dict)
    independent_role: str = 'type2'
    outcome_role: str = 'type1'
    levels: Optional[List[Any]] = None
    reference_level: Optional[Any] = None

    @property
    def n_pairs(self) -> int:
        return len(self.table)

    @property
    def n_evaluable(self) -> int:
        return self.n_pairs - self.n_failed

    def fitted(self) -> pd.DataFrame:
        """Rows whose model was fitted."""
        return self.table[self.table['rsquared'].notna()]

    def mean_rsquared(self) -> float:
        values = self.table['rsquared'].to_numpy(dtype=float)
        values = values[np.isfinite(values)]
        return float(values.mean()) if values.size else float('nan')


class PairModelEngine:
    """Fits the interaction model for every analyte pair of a dataset."""

    def __init__(self,
                 config: Optional[ModelConfig] = None,
                 processing: Optional[ProcessingConfig] = None,
                 strict_reference: bool = True):
        self.config = config or ModelConfig()
        self.processing = processing or ProcessingConfig()
        self.strict_reference = strict_reference

    def run(self, dataset: OmicsDataset) -> PairModelResult:
        """Fit every pair and return the assembled result table."""
        dataset = dataset.aligned()
        design = build_design(dataset, self.config, self.strict_reference)
        independent = dataset.matrix(self.config.independent)
        outcome = dataset.matrix(self.config.outcome)

        logger.info(
            f"Fitting {len(independent)} x {len(outcome)} pair models on "
            f"{int(design.mask.sum())} samples ({design.n_params} parameters per model)"
        )

        blocks = list(self._iter_blocks(independent, outcome, design))
        failures = Counter()
        for block in blocks:
            failures.update(block['failures'])

        table = self._assemble(blocks, independent.index, outcome.index, design)
        n_failed = int(sum(failures.values()))
        if n_failed:
            logger.warning(f"{n_failed} of {len(table)} pairs could not be evaluated: {dict(failures)}")
        logger.info(f"Pair model run completed: {len(table) - n_failed} pairs fitted")

        return PairModelResult(
            table=table,
            n_failed=n_failed,
            failures=dict(failures),
            independent_role=self.config.independent,
            outcome_role=self.config.outcome,
            levels=design.levels,
            reference_level=design.reference_level,
        )

    def iter_tables(self, dataset: OmicsDataset) -> Iterator[pd.DataFrame]:
        """Yield result rows one independent analyte at a time, in output order."""
        dataset = dataset.aligned()
        design = build_design(dataset, self.config, self.strict_reference)
        independent = dataset.matrix(self.config.independent)
        outcome = dataset.matrix(self.config.outcome)
        for block in self._iter_blocks(independent, outcome, design):
            yield self._assemble([block], independent.index, outcome.index, design)

    def _iter_blocks(self,
                     independent: pd.DataFrame,
                     outcome: pd.DataFrame,
                     design: ModelDesign) -> Iterator[Dict[str, Any]]:
        X_ind = independent.to_numpy(dtype=float)
        Y_out = outcome.to_numpy(dtype=float)
        terms = design.term_columns()

        def fit_one(i: int) -> Dict[str, Any]:
            return self._fit_independent(i, X_ind, Y_out, design, terms)

        n_ind = X_ind.shape[0]
        if self.processing.max_workers == 1:
            for i in range(n_ind):
                yield fit_one(i)
            return

        chunk = self.processing.chunk_size
        with ThreadPoolExecutor(max_workers=self.processing.max_workers) as executor:
            for start in range(0, n_ind, chunk):
                # map preserves submission order
                for block in executor.map(fit_one, range(start, min(start + chunk, n_ind))):
                    yield block

    def _outcome_positions(self, i: int, n_out: int) -> np.ndarray:
        positions = np.arange(n_out)
        if not self.config.same_matrix:
            return positions
        if self.config.remove_duplicate_pairs:
            return positions[positions > i]
        return positions[positions != i]

    def _fit_independent(self,
                         i: int,
                         X_ind: np.ndarray,
                         Y_out: np.ndarray,
                         design: ModelDesign,
                         terms: Dict[str, List[int]]) -> Dict[str, Any]:
        x = X_ind[i]
        positions = self._outcome_positions(i, Y_out.shape[0])
        m = len(positions)
        rows_i = np.flatnonzero(design.mask & np.isfinite(x))

        stats = {f'{name}_{kind}': np.full(m, np.nan)
                 for name in terms for kind in ('coeff', 'pval')}
        stats['rsquared'] = np.full(m, np.nan)
        failures = Counter()

        Y = Y_out[positions][:, rows_i]
        finite = np.isfinite(Y)
        stats['n_samples'] = finite.sum(axis=1)

        if m and finite.all():
            patterns = np.ones((1, len(rows_i)), dtype=bool)
            inverse = np.zeros(m, dtype=int)
        elif m:
            patterns, inverse = np.unique(finite, axis=0, return_inverse=True)
            inverse = inverse.reshape(-1)
        else:
            patterns, inverse = np.empty((0, len(rows_i)), dtype=bool), np.empty(0, dtype=int)

        for g, pattern in enumerate(patterns):
            cols = np.flatnonzero(inverse == g)
            rows = rows_i[pattern]
            try:
                fitted = fit_block(design.design_matrix(x, rows), Y[cols][:, pattern].T, terms)
            except ModelFitError as e:
                failures[str(e)] += len(cols)
                continue
            n_constant = int(fitted['constant'].sum())
            if n_constant:
                failures['constant outcome analyte'] += n_constant
            for key, values in fitted.items():
                if key in stats:
                    stats[key][cols] = values

        return {'index': i, 'positions': positions, 'stats': stats, 'failures': failures}

    def _assemble(self,
                  blocks: List[Dict[str, Any]],
                  independent_ids: pd.Index,
                  outcome_ids: pd.Index,
                  design: ModelDesign) -> pd.DataFrame:
        covariates = list(design.covariate_terms) if self.config.save_covariate_pvals else []
        columns = RESULT_COLUMNS + [f'pval_{name}' for name in covariates]
        if not blocks:
            return pd.DataFrame(columns=columns)

        counts = [len(b['positions']) for b in blocks]
        data = {
            'independent': np.repeat(independent_ids.to_numpy()[[b['index'] for b in blocks]], counts),
            'outcome': outcome_ids.to_numpy()[np.concatenate([b['positions'] for b in blocks])],
        }
        for term in TERMS:
            for kind in ('coeff', 'pval'):
                key = f'{term}_{kind}'
                data[key] = np.concatenate([b['stats'][key] for b in blocks])
        data['rsquared'] = np.concatenate([b['stats']['rsquared'] for b in blocks])
        data['n_samples'] = np.concatenate([b['stats']['n_samples'] for b in blocks]).astype(int)
        for name in covariates:
            data[f'pval_{name}'] = np.concatenate([b['stats'][f'{name}_pval'] for b in blocks])

        return pd.DataFrame(data, columns=columns)


def run_pair_models(dataset: OmicsDataset,
                    config: Optional[ModelConfig] = None,
                    processing: Optional[ProcessingConfig] = None) -> PairModelResult:
    """Module-level entry point for pipeline integration."""
    return PairModelEngine(config, processing).run(dataset)
