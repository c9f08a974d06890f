"""
Model comparison and goodness of fit functions.

This module contains functions for:
- Computing Delta AIC across candidate detection functions
- Selecting the best candidate model
- Chi-square and Cramer-von Mises goodness of fit tests
- Building the model summary table
"""

import numpy as np
import pandas as pd
from scipy import stats

from distance_analysis import config


class NoViableModelError(RuntimeError):
    """Raised when no candidate detection function could be fitted."""


def delta_aic(aics):
    """
    AIC differences relative to the smallest AIC.

    Parameters
    ----------
    aics : array-like
        AIC value of each candidate

    Returns
    -------
    ndarray
        AIC - min(AIC); the best model(s) have 0
    """
    aics = np.asarray(aics, dtype=float)
    return aics - aics.min()


def select_model(candidates):
    """
    Pick the candidate with the lowest AIC.

    Parameters
    ----------
    candidates : list
        Fitted models exposing 'aic' (and optionally 'label', 'key',
        'n_adjustments'). None entries and models without a finite AIC
        are skipped.

    Returns
    -------
    tuple: (best, comparison)
        The selected model and a DataFrame of all viable candidates with
        their Delta AIC, in candidate order

    Raises
    ------
    NoViableModelError
        If no candidate is usable

    Notes
    -----
    Ties on AIC are broken in favour of the model with fewer adjustment
    terms, then by candidate order.
    """
    viable = [c for c in candidates if c is not None and np.isfinite(c.aic)]
    if not viable:
        raise NoViableModelError("No detection function model could be fitted")

    deltas = delta_aic([c.aic for c in viable])
    rows = []
    for i, (candidate, delta) in enumerate(zip(viable, deltas)):
        rows.append({
            "Model": getattr(candidate, "label", f"model_{i + 1}"),
            "Key function": getattr(candidate, "key", None),
            "Adjustments": getattr(candidate, "n_adjustments", 0),
            "AIC": candidate.aic,
            "Delta AIC": delta,
        })
    comparison = pd.DataFrame(rows)

    tied = [i for i, d in enumerate(deltas) if np.isclose(d, 0)]
    best_index = min(tied, key=lambda i: (rows[i]["Adjustments"], i))
    comparison["Selected"] = comparison.index == best_index

    return viable[best_index], comparison


def goodness_of_fit(model, n_bins=None):
    """
    Goodness of fit tests for a fitted detection function.

    Parameters
    ----------
    model : DetectionFunction
        Fitted model
    n_bins : int, optional
        Number of equal-width distance bins for the chi-square test.
        Default config.GOF_BINS.

    Returns
    -------
    dict
        chi2, chi2_df, chi2_p for the binned test, cvm_statistic and cvm_p
        for the Cramer-von Mises test, and 'bins': observed and expected
        counts per bin

    Notes
    -----
    The chi-square p-value is NaN when there are no degrees of freedom
    left (bins - 1 - number of parameters < 1).
    """
    n_bins = config.GOF_BINS if n_bins is None else n_bins
    x = model.distances
    n = len(x)

    edges = np.linspace(0, model.truncation, n_bins + 1)
    observed, _ = np.histogram(x, bins=edges)
    expected = n * np.diff(model.cdf(edges))

    chi2 = float(np.sum((observed - expected) ** 2 / expected))
    df = n_bins - 1 - model.n_params
    chi2_p = float(stats.chi2.sf(chi2, df)) if df > 0 else np.nan

    cvm = stats.cramervonmises(x, model.cdf)

    bins = pd.DataFrame({
        "lower": edges[:-1],
        "upper": edges[1:],
        "observed": observed,
        "expected": expected,
    })

    return {
        "chi2": chi2,
        "chi2_df": df,
        "chi2_p": chi2_p,
        "cvm_statistic": float(cvm.statistic),
        "cvm_p": float(cvm.pvalue),
        "bins": bins,
    }


def summarize_models(models):
    """
    Summary table of fitted detection functions, sorted by AIC.

    Columns: Model, Key function, Adjustments, CvM p-value, P_a, se(P_a),
    AIC, Delta AIC.
    """
    models = [m for m in models if m is not None]
    if not models:
        raise NoViableModelError("No fitted models to summarize")

    deltas = delta_aic([m.aic for m in models])
    rows = []
    for model, delta in zip(models, deltas):
        rows.append({
            "Model": model.label,
            "Key function": model.description,
            "Adjustments": model.n_adjustments,
            "CvM p-value": goodness_of_fit(model)["cvm_p"],
            "P_a": model.p_a,
            "se(P_a)": model.se_p_a,
            "AIC": model.aic,
            "Delta AIC": delta,
        })

    return (pd.DataFrame(rows)
            .sort_values(["AIC", "Adjustments"], kind="stable")
            .reset_index(drop=True))
