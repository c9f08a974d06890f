"""
Density and abundance estimation from a fitted detection function.

This module contains functions for:
- Encounter rate variance across transects
- Satterthwaite degrees of freedom and log-normal confidence intervals
- Stratum-level and total density/abundance of individuals and clusters
"""

import numpy as np
import pandas as pd
from scipy import stats

from distance_analysis import config
from distance_analysis.preprocessing import validate_survey_table


def encounter_rate_variance(counts, effort):
    """
    Variance of the encounter rate n/L between transects.

    Parameters
    ----------
    counts : array-like
        Number of detections (or individuals) on each transect, zeros included
    effort : array-like
        Effort on each transect

    Returns
    -------
    float
        Estimated variance of sum(counts) / sum(effort), NaN with fewer than
        two transects

    Notes
    -----
    Uses the R2 estimator of Fewster et al. (2009):
    var = K / (L^2 (K-1)) * sum l_k^2 (n_k/l_k - n/L)^2
    """
    counts = np.asarray(counts, dtype=float)
    effort = np.asarray(effort, dtype=float)
    k = len(counts)
    if k < 2:
        return np.nan

    total_effort = effort.sum()
    rate = counts.sum() / total_effort
    return k / (total_effort ** 2 * (k - 1)) * np.sum(effort ** 2 * (counts / effort - rate) ** 2)


def satterthwaite_df(components):
    """
    Degrees of freedom for a sum of squared CVs.

    Parameters
    ----------
    components : list of tuple
        (cv, df) for each variance component

    Returns
    -------
    float
        Combined degrees of freedom (inf when all components are zero)
    """
    used = [(cv, df) for cv, df in components if np.isfinite(cv) and cv > 0 and df > 0]
    if not used:
        return np.inf
    numerator = sum(cv ** 2 for cv, _ in used) ** 2
    denominator = sum(cv ** 4 / df for cv, df in used)
    return numerator / denominator


def lognormal_ci(estimate, cv, df, level=0.95):
    """
    Log-normal confidence interval for a positive estimate.

    Returns
    -------
    tuple: (lower, upper)
    """
    if not np.isfinite(cv) or estimate <= 0:
        return np.nan, np.nan
    t = stats.t.ppf(1 - (1 - level) / 2, df)
    c = np.exp(t * np.sqrt(np.log(1 + cv ** 2)))
    return estimate / c, estimate * c


def _estimate_row(label, estimate, cv, df, level):
    lcl, ucl = lognormal_ci(estimate, cv, df, level)
    return {
        "Label": label,
        "Estimate": estimate,
        "se": estimate * cv,
        "cv": cv,
        "lcl": lcl,
        "ucl": ucl,
        "df": df,
    }


def estimate_density(model, data, convert_units=None, ci_level=None):
    """
    Estimate density and abundance from a fitted detection function.

    Parameters
    ----------
    model : DetectionFunction
        Fitted detection function (provides truncation, esw and se_esw)
    data : DataFrame
        Prepared survey table in the canonical schema, including rows for
        transects without detections
    convert_units : float, optional
        Factor converting distance units to effort units.
        Default config.CONVERT_UNITS.
    ci_level : float, optional
        Confidence level. Default config.CI_LEVEL.

    Returns
    -------
    dict
        'summary': per-stratum effort, detections and encounter rates;
        'density' and 'abundance': estimates for individuals and clusters
        with se, cv, log-normal confidence limits (lcl, ucl) and df.
        A 'Total' region is added when there is more than one stratum.

    Notes
    -----
    D = sum(s) / (2 L mu c), where mu is the effective strip half-width and
    c the unit conversion, and N = D A. The squared CV of each estimate is
    the encounter rate CV squared plus the CV of mu squared.
    """
    convert_units = config.CONVERT_UNITS if convert_units is None else convert_units
    ci_level = config.CI_LEVEL if ci_level is None else ci_level
    if convert_units <= 0:
        raise ValueError(f"convert_units must be positive (got {convert_units})")

    validate_survey_table(data)

    width = model.truncation
    esw = model.esw * convert_units
    cv_esw = model.se_esw / model.esw
    df_esw = model.n - model.n_params

    keys = ["Region.Label", "Sample.Label"]
    samples = data.groupby(keys).agg(Effort=("Effort", "first"), Area=("Area", "first"))
    detected = data[data["distance"].notna() & (data["distance"] <= width)]
    counts = detected.groupby(keys).agg(clusters=("size", "size"), individuals=("size", "sum"))
    samples = samples.join(counts).fillna({"clusters": 0, "individuals": 0})

    summary_rows = []
    density_rows = []
    abundance_rows = []
    totals = {"Individuals": [], "Clusters": []}

    for region, group in samples.groupby(level="Region.Label"):
        effort = group["Effort"].to_numpy(dtype=float)
        area = float(group["Area"].iloc[0])
        total_effort = effort.sum()
        n_transects = len(group)
        sizes = detected.loc[detected["Region.Label"] == region, "size"].to_numpy(dtype=float)

        for kind, column in [("Individuals", "individuals"), ("Clusters", "clusters")]:
            counts_k = group[column].to_numpy(dtype=float)
            rate = counts_k.sum() / total_effort
            var_rate = encounter_rate_variance(counts_k, effort)
            cv_rate = np.sqrt(var_rate) / rate if rate > 0 else np.nan

            density = rate / (2 * esw)
            abundance = density * area
            cv = np.sqrt(cv_rate ** 2 + cv_esw ** 2)
            df = satterthwaite_df([(cv_rate, n_transects - 1), (cv_esw, df_esw)])

            density_rows.append({"Region": region, **_estimate_row(kind, density, cv, df, ci_level)})
            abundance_rows.append({"Region": region, **_estimate_row(kind, abundance, cv, df, ci_level)})
            # A stratum without detections adds no encounter rate variance
            var_abundance_rate = (area / (2 * esw)) ** 2 * var_rate if rate > 0 else 0.0
            totals[kind].append((abundance, area, var_abundance_rate, n_transects - 1))

            if kind == "Clusters":
                summary_rows.append({
                    "Region": region,
                    "Area": area,
                    "CoveredArea": 2 * width * convert_units * total_effort,
                    "Effort": total_effort,
                    "n": len(sizes),
                    "k": n_transects,
                    "ER": rate,
                    "se.ER": np.sqrt(var_rate),
                    "cv.ER": cv_rate,
                    "mean.size": sizes.mean() if len(sizes) else np.nan,
                    "se.mean.size": sizes.std(ddof=1) / np.sqrt(len(sizes)) if len(sizes) > 1 else np.nan,
                })

    if len(summary_rows) > 1:
        for kind, parts in totals.items():
            abundance = sum(p[0] for p in parts)
            area = sum(p[1] for p in parts)
            var_rate_part = sum(p[2] for p in parts)
            if abundance > 0:
                cv = np.sqrt(var_rate_part / abundance ** 2 + cv_esw ** 2)
                df = satterthwaite_df([(np.sqrt(p[2]) / abundance, p[3]) for p in parts]
                                      + [(cv_esw, df_esw)])
            else:
                cv = np.nan
                df = np.inf
            density_rows.append({"Region": "Total",
                                 **_estimate_row(kind, abundance / area, cv, df, ci_level)})
            abundance_rows.append({"Region": "Total", **_estimate_row(kind, abundance, cv, df, ci_level)})

    return {
        "summary": pd.DataFrame(summary_rows),
        "density": pd.DataFrame(density_rows),
        "abundance": pd.DataFrame(abundance_rows),
    }
