import numpy as np
import pandas as pd
from scipy import stats as sps

def bh_fdr(pvals):
    """Benjamini-Hochberg adjusted p-values; NaN stays NaN and is not counted."""
    p = np.asarray(pvals, float)
    q = np.full_like(p, np.nan, float)
    ok = np.isfinite(p)
    m = int(ok.sum())
    if m == 0: return q
    pv = p[ok]
    order = np.argsort(pv, kind="mergesort")
    ranked = pv[order] * m / np.arange(1, m+1)
    adj = np.minimum.accumulate(ranked[::-1])[::-1]
    out = np.empty(m, float)
    out[order] = np.minimum(adj, 1.0)
    q[ok] = out
    return q

def abs_quantile(values, perc):
    """Quantile of |values| over finite entries; NaN when nothing is finite."""
    v = np.abs(np.asarray(values, float))
    v = v[np.isfinite(v)]
    if v.size == 0: return np.nan
    return float(np.quantile(v, perc))

def t_pvalues(beta, se, df, negligible=False):
    """Two-sided t-test p-values for beta/se.

    A zero standard error comes from a perfect fit; coefficients flagged
    negligible then get p=1 and all others p=0.
    """
    beta = np.asarray(beta, float); se = np.asarray(se, float)
    with np.errstate(divide="ignore", invalid="ignore"):
        t = beta / se
    exact = ~(se > 0)
    t = np.where(exact, np.where(negligible, 0.0, np.inf), t)
    return 2.0 * sps.t.sf(np.abs(t), df)

def wald_pvalues(quad, sigma2, q, df, negligible):
    """Joint Wald F-test p-values for q coefficients.

    quad is b' inv(V) b with V the unscaled covariance block, so
    F = quad / q / sigma2 (equal to the partial F-test under OLS).
    Where sigma2 is zero (perfect fit) negligible coefficients get p=1.
    """
    quad = np.asarray(quad, float); sigma2 = np.asarray(sigma2, float)
    with np.errstate(divide="ignore", invalid="ignore"):
        f = quad / q / sigma2
    f = np.where(sigma2 > 0, f, np.where(negligible, 0.0, np.inf))
    return sps.f.sf(f, q, df)

def group_spearman(x, y, groups):
    """Spearman rho of x vs y within each group level (levels with <3 points give NaN)."""
    frame = pd.DataFrame({"x": x, "y": y, "g": groups}).dropna()
    out = {}
    for level, g in frame.groupby("g", sort=True):
        if len(g) < 3 or g["x"].nunique() < 2 or g["y"].nunique() < 2:
            out[level] = np.nan
        else:
            out[level] = float(sps.spearmanr(g["x"], g["y"])[0])
    return out
