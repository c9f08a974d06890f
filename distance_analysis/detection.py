"""
Detection function fitting for line transect distance sampling.

This module contains functions for:
- Evaluating key functions (half-normal, hazard-rate, uniform) with
  cosine, Hermite or simple polynomial adjustment series
- Maximum likelihood fitting of detection functions to perpendicular distances
- Forward selection of adjustment terms by AIC
- Fitting every candidate key function for later model selection
"""

import numpy as np
import pandas as pd
from numpy.polynomial.hermite_e import hermeval
from numpy.polynomial.legendre import leggauss
from scipy import optimize

from distance_analysis import config
from distance_analysis.estimation import estimate_density


KEY_NAMES = {
    "hn": "Half-normal",
    "hr": "Hazard-rate",
    "unif": "Uniform",
}

ADJUSTMENT_NAMES = {
    "cos": "Cosine",
    "herm": "Hermite polynomial",
    "poly": "Simple polynomial",
}

# Number of key function parameters
KEY_PARAMS = {"hn": 1, "hr": 2, "unif": 0}

# Gauss-Legendre rule on [-1, 1], rescaled for each integral
_NODES, _WEIGHTS = leggauss(128)

# Points at which g(x) must be non-negative and non-increasing
_GRID_SIZE = 200


class ConvergenceError(RuntimeError):
    """Raised when a detection function cannot be fitted."""


def _check_key(key, adjustment):
    if key not in KEY_PARAMS:
        raise ValueError(f"Unknown key function: {key}. Must be one of: {list(KEY_PARAMS)}")
    if adjustment is not None and adjustment not in ADJUSTMENT_NAMES:
        raise ValueError(
            f"Unknown adjustment: {adjustment}. Must be one of: {list(ADJUSTMENT_NAMES)}"
        )


def adjustment_orders(key, adjustment, n_terms):
    """
    Orders of the first n_terms adjustment terms for a key function.

    Parameters
    ----------
    key : str
        Key function ('hn', 'hr' or 'unif')
    adjustment : str
        Adjustment series ('cos', 'herm' or 'poly')
    n_terms : int
        Number of adjustment terms

    Returns
    -------
    tuple of int
        Cosine terms start at order 1 for the uniform key and 2 otherwise.
        Polynomial and Hermite terms use even orders starting at 2 for the
        uniform key and 4 otherwise.
    """
    _check_key(key, adjustment)
    if n_terms == 0 or adjustment is None:
        return ()
    if adjustment == "cos":
        first = 1 if key == "unif" else 2
        return tuple(range(first, first + n_terms))
    first = 2 if key == "unif" else 4
    return tuple(range(first, first + 2 * n_terms, 2))


def key_function(x, key, key_params):
    """Evaluate a key function at distances x (log-scale parameters)."""
    x = np.asarray(x, dtype=float)
    if key == "hn":
        sigma = np.exp(key_params[0])
        return np.exp(-x ** 2 / (2 * sigma ** 2))
    if key == "hr":
        sigma = np.exp(key_params[0])
        shape = np.exp(key_params[1])
        with np.errstate(divide="ignore", over="ignore"):
            return 1 - np.exp(-(x / sigma) ** (-shape))
    return np.ones_like(x)


def _adjustment_term(x, adjustment, order, width):
    scaled = x / width
    if adjustment == "cos":
        return np.cos(order * np.pi * scaled)
    if adjustment == "poly":
        return scaled ** order
    coefficients = np.zeros(order + 1)
    coefficients[order] = 1
    return hermeval(scaled, coefficients)


def _series(x, adjustment, order, coefficients, width):
    terms = np.stack([_adjustment_term(x, adjustment, o, width) for o in order])
    return 1 + np.tensordot(coefficients, terms, axes=1)


def detection_probability(x, key, adjustment, order, params, width):
    """
    Evaluate the detection function g(x), scaled so that g(0) = 1.

    Parameters
    ----------
    x : array-like
        Perpendicular distances (any shape)
    key : str
        Key function
    adjustment : str or None
        Adjustment series
    order : tuple of int
        Adjustment term orders
    params : array-like
        Key parameters (log scale) followed by one coefficient per order
    width : float
        Truncation distance used to scale adjustment terms

    Returns
    -------
    ndarray
        Detection probability at each distance
    """
    x = np.asarray(x, dtype=float)
    params = np.asarray(params, dtype=float)
    n_key = KEY_PARAMS[key]
    values = key_function(x, key, params[:n_key])
    if not order:
        return values
    coefficients = params[n_key:]
    at_zero = _series(np.array(0.0), adjustment, order, coefficients, width)
    return values * _series(x, adjustment, order, coefficients, width) / at_zero


def integrate(func, upper):
    """
    Integrate func from 0 to upper by Gauss-Legendre quadrature.

    upper may be an array; one integral is returned per element.
    """
    upper = np.asarray(upper, dtype=float)
    points = upper[..., None] * (_NODES + 1) / 2
    return np.sum(_WEIGHTS * func(points), axis=-1) * upper / 2


def resolve_truncation(distances, truncation=None):
    """
    Work out the right truncation distance.

    Parameters
    ----------
    distances : array-like
        Observed perpendicular distances (NaN ignored)
    truncation : None, float or str, optional
        None uses the largest distance; a number is used as is; a string
        such as '5%' discards that percentage of the largest distances.

    Returns
    -------
    float
        Truncation distance
    """
    distances = np.asarray(distances, dtype=float)
    distances = distances[~np.isnan(distances)]
    if len(distances) == 0:
        raise ValueError("No distances to fit")

    if truncation is None:
        width = distances.max()
    elif isinstance(truncation, str):
        if not truncation.endswith("%"):
            raise ValueError(f"Truncation strings must be percentages like '5%' (got {truncation!r})")
        percent = float(truncation[:-1])
        if not 0 <= percent < 100:
            raise ValueError(f"Truncation percentage must be in [0, 100) (got {percent})")
        width = np.quantile(distances, 1 - percent / 100)
    else:
        width = float(truncation)

    if width <= 0:
        raise ValueError(f"Truncation distance must be positive (got {width})")
    return float(width)


def _extract_distances(data):
    if isinstance(data, pd.DataFrame):
        if "distance" not in data.columns:
            raise ValueError("Data has no 'distance' column")
        values = data["distance"].to_numpy(dtype=float)
    else:
        values = np.asarray(data, dtype=float)
    return values[~np.isnan(values)]


def _start_values(x, key, n_adjustments):
    typical = max(np.sqrt(np.mean(x ** 2)), 1e-6)
    if key == "hn":
        start = [np.log(typical)]
    elif key == "hr":
        start = [np.log(max(np.median(x), 0.1 * typical)), np.log(3.0)]
    else:
        start = []
    return np.array(start + [0.0] * n_adjustments)


def _negative_loglik(params, x, key, adjustment, order, width, grid):
    g = lambda t: detection_probability(t, key, adjustment, order, params, width)

    if order:
        on_grid = g(grid)
        if not np.all(np.isfinite(on_grid)) or (on_grid < 0).any():
            return np.inf
        if (np.diff(on_grid) > 1e-8).any():
            return np.inf

    mu = integrate(g, width)
    values = g(x)
    if not np.isfinite(mu) or mu <= 0 or (values <= 0).any() or not np.all(np.isfinite(values)):
        return np.inf
    return -(np.sum(np.log(values)) - len(x) * np.log(mu))


def _hessian(func, params, step=1e-4):
    """
    Finite difference Hessian of func at params.

    Central differences are used where func is finite on both sides. At a
    constraint boundary (func is inf on one side) the entry falls back to a
    forward, then a backward, one-sided difference.
    """
    params = np.asarray(params, dtype=float)
    k = len(params)
    steps = step * np.maximum(np.abs(params), 1)
    at_params = func(params)
    hessian = np.zeros((k, k))
    for i in range(k):
        for j in range(i, k):
            ei = np.zeros(k)
            ej = np.zeros(k)
            ei[i] = steps[i]
            ej[j] = steps[j]
            value = (
                func(params + ei + ej) - func(params + ei - ej)
                - func(params - ei + ej) + func(params - ei - ej)
            ) / (4 * steps[i] * steps[j])
            if not np.isfinite(value):
                value = (
                    func(params + ei + ej) - func(params + ei) - func(params + ej) + at_params
                ) / (steps[i] * steps[j])
            if not np.isfinite(value):
                value = (
                    func(params - ei - ej) - func(params - ei) - func(params - ej) + at_params
                ) / (steps[i] * steps[j])
            hessian[i, j] = value
            hessian[j, i] = value
    return hessian


def model_label(key, adjustment, order):
    """Short model label such as 'hn' or 'hn + cos(2,3)'."""
    if not order:
        return key
    orders = ",".join(str(o) for o in order)
    return f"{key} + {adjustment}({orders})"


class DetectionFunction:
    """
    A fitted detection function.

    Parameters are held on the fitting scale: log(sigma) and log(shape) for
    the key function, then one coefficient per adjustment term.
    """

    def __init__(self, key, adjustment, order, params, truncation, distances, loglik,
                 covariance):
        self.key = key
        self.adjustment = adjustment if order else None
        self.order = tuple(order)
        self.params = np.asarray(params, dtype=float)
        self.truncation = float(truncation)
        self.distances = np.asarray(distances, dtype=float)
        self.loglik = float(loglik)
        self.covariance = np.asarray(covariance, dtype=float).reshape(len(self.params),
                                                                      len(self.params))

    def __repr__(self):
        return f"DetectionFunction({self.label}, AIC={self.aic:.3f})"

    @property
    def label(self):
        return model_label(self.key, self.adjustment, self.order)

    @property
    def description(self):
        name = KEY_NAMES[self.key]
        if not self.order:
            return name
        orders = ",".join(str(o) for o in self.order)
        return f"{name} with {ADJUSTMENT_NAMES[self.adjustment].lower()} adjustment term(s) of order {orders}"

    @property
    def n(self):
        return len(self.distances)

    @property
    def n_params(self):
        return len(self.params)

    @property
    def n_adjustments(self):
        return len(self.order)

    @property
    def aic(self):
        return 2 * self.n_params - 2 * self.loglik

    @property
    def aicc(self):
        k = self.n_params
        if self.n - k - 1 <= 0:
            return np.inf
        return self.aic + 2 * k * (k + 1) / (self.n - k - 1)

    def g(self, x):
        """Detection probability at distance x."""
        return detection_probability(x, self.key, self.adjustment, self.order, self.params,
                                     self.truncation)

    def _esw_at(self, params):
        return integrate(
            lambda t: detection_probability(t, self.key, self.adjustment, self.order, params,
                                            self.truncation),
            self.truncation,
        )

    @property
    def esw(self):
        """Effective strip half-width: the integral of g(x) over [0, w]."""
        return float(self._esw_at(self.params))

    @property
    def p_a(self):
        """Average detection probability within the truncation distance."""
        return self.esw / self.truncation

    @property
    def se_esw(self):
        """Delta method standard error of the effective strip half-width."""
        if self.n_params == 0:
            return 0.0
        gradient = np.zeros(self.n_params)
        for i in range(self.n_params):
            h = 1e-5 * max(abs(self.params[i]), 1)
            up = self.params.copy()
            down = self.params.copy()
            up[i] += h
            down[i] -= h
            gradient[i] = (self._esw_at(up) - self._esw_at(down)) / (2 * h)
        return float(np.sqrt(gradient @ self.covariance @ gradient))

    @property
    def se_p_a(self):
        return self.se_esw / self.truncation

    def pdf(self, x):
        """Probability density of observed distances."""
        x = np.asarray(x, dtype=float)
        inside = (x >= 0) & (x <= self.truncation)
        return np.where(inside, self.g(np.clip(x, 0, self.truncation)), 0.0) / self.esw

    def cdf(self, x):
        """Cumulative distribution of observed distances."""
        x = np.clip(np.asarray(x, dtype=float), 0, self.truncation)
        return integrate(self.g, x) / self.esw

    def parameter_table(self):
        """Parameter estimates and standard errors as a DataFrame."""
        names = {"hn": ["log(sigma)"], "hr": ["log(sigma)", "log(shape)"], "unif": []}[self.key]
        names = names + [f"{self.adjustment}, order {o}" for o in self.order]
        se = np.sqrt(np.clip(np.diag(self.covariance), 0, None))
        return pd.DataFrame({"parameter": names, "estimate": self.params, "se": se})

    def estimate(self, data, convert_units=None, ci_level=None):
        """
        Density and abundance estimates from this detection function.

        See estimation.estimate_density.
        """
        return estimate_density(self, data, convert_units=convert_units, ci_level=ci_level)


def fit_detection_function(data, key="hn", adjustment=None, order=(), truncation=None,
                           start=None):
    """
    Fit a detection function to perpendicular distances by maximum likelihood.

    Parameters
    ----------
    data : DataFrame or array-like
        Prepared survey table (its 'distance' column is used) or distances.
        Missing distances are ignored.
    key : str, optional
        Key function: 'hn', 'hr' or 'unif'. Default 'hn'.
    adjustment : str, optional
        Adjustment series: 'cos', 'herm' or 'poly'. Ignored if order is empty.
    order : tuple of int, optional
        Adjustment term orders (see adjustment_orders). Default none.
    truncation : None, float or str, optional
        Right truncation (see resolve_truncation)
    start : array-like, optional
        Starting parameter values on the fitting scale

    Returns
    -------
    DetectionFunction
        Fitted model

    Raises
    ------
    ConvergenceError
        If the optimiser fails or the Hessian at the optimum is not
        positive definite

    Notes
    -----
    The likelihood of ungrouped distances is prod g(x_i) / mu, where mu is
    the integral of g over [0, w]. When adjustment terms are present, g must
    be non-negative and non-increasing on a grid over [0, w]; parameter
    values breaking this are given zero likelihood.
    """
    order = tuple(order) if order else ()
    _check_key(key, adjustment if order else None)
    if order and adjustment is None:
        raise ValueError("Adjustment orders given without an adjustment series")

    all_distances = _extract_distances(data)
    width = resolve_truncation(all_distances, truncation)
    x = all_distances[all_distances <= width]

    n_params = KEY_PARAMS[key] + len(order)
    if len(x) <= n_params:
        raise ValueError(
            f"Too few distances ({len(x)}) to fit a model with {n_params} parameters"
        )

    label = model_label(key, adjustment, order)

    if n_params == 0:
        return DetectionFunction(key, adjustment, order, [], width, x, -len(x) * np.log(width),
                                 np.zeros((0, 0)))

    start = _start_values(x, key, len(order)) if start is None else np.asarray(start, dtype=float)
    if len(start) != n_params:
        raise ValueError(f"Expected {n_params} starting values, got {len(start)}")

    grid = np.linspace(0, width, _GRID_SIZE)
    objective = lambda p: _negative_loglik(p, x, key, adjustment, order, width, grid)

    if not np.isfinite(objective(start)):
        raise ConvergenceError(f"{label}: likelihood is not finite at the starting values")

    options = {"maxiter": 4000 * n_params, "xatol": 1e-8, "fatol": 1e-10}
    result = optimize.minimize(objective, start, method="Nelder-Mead", options=options)
    # Restart from the optimum to avoid a collapsed simplex
    result = optimize.minimize(objective, result.x, method="Nelder-Mead", options=options)

    if not result.success or not np.isfinite(result.fun):
        raise ConvergenceError(f"{label} did not converge: {result.message}")

    hessian = _hessian(objective, result.x)
    if not np.all(np.isfinite(hessian)):
        raise ConvergenceError(f"{label}: Hessian could not be evaluated at the optimum")
    try:
        covariance = np.linalg.inv(hessian)
    except np.linalg.LinAlgError:
        raise ConvergenceError(f"{label}: Hessian is singular at the optimum")
    if (np.diag(covariance) <= 0).any():
        raise ConvergenceError(f"{label}: Hessian is not positive definite at the optimum")

    return DetectionFunction(key, adjustment, order, result.x, width, x, -result.fun, covariance)


def fit_with_adjustments(data, key="hn", adjustment=None, max_adjustments=None,
                         truncation=None):
    """
    Fit a key function and add adjustment terms while AIC improves.

    Terms are added one at a time in order (see adjustment_orders). The
    search stops at the first term that does not lower AIC or cannot be
    fitted, and the last accepted model is returned.

    Raises
    ------
    ConvergenceError
        If the key function alone cannot be fitted
    """
    if max_adjustments is None:
        max_adjustments = config.MAX_ADJUSTMENTS

    best = fit_detection_function(data, key=key, truncation=truncation)
    print(f"  {best.label}: AIC = {best.aic:.3f}")

    if adjustment is None or max_adjustments == 0:
        return best

    for n_terms in range(1, max_adjustments + 1):
        order = adjustment_orders(key, adjustment, n_terms)
        if best.n <= KEY_PARAMS[key] + len(order):
            break
        start = np.append(best.params, 0.0)
        try:
            candidate = fit_detection_function(data, key=key, adjustment=adjustment, order=order,
                                               truncation=truncation, start=start)
        except ConvergenceError as e:
            print(f"  {e}; keeping {best.label}")
            break

        print(f"  {candidate.label}: AIC = {candidate.aic:.3f}")
        if candidate.aic >= best.aic:
            break
        best = candidate

    return best


def fit_candidates(data, keys=None, adjustment="config", max_adjustments=None,
                   truncation="config"):
    """
    Fit one detection function per key function.

    Parameters
    ----------
    data : DataFrame
        Prepared survey table
    keys : list of str, optional
        Key functions to fit. Default config.KEY_FUNCTIONS.
    adjustment : str or None, optional
        Adjustment series. Default config.ADJUSTMENT.
    max_adjustments : int, optional
        Default config.MAX_ADJUSTMENTS.
    truncation : None, float or str, optional
        Default config.TRUNCATION.

    Returns
    -------
    tuple: (models, failures)
        List of fitted DetectionFunction objects, and a dict mapping each
        key function that could not be fitted to the reason
    """
    keys = config.KEY_FUNCTIONS if keys is None else keys
    adjustment = config.ADJUSTMENT if adjustment == "config" else adjustment
    truncation = config.TRUNCATION if truncation == "config" else truncation

    models = []
    failures = {}
    for key in keys:
        print(f"Fitting {KEY_NAMES.get(key, key)} key function...")
        try:
            models.append(fit_with_adjustments(data, key=key, adjustment=adjustment,
                                               max_adjustments=max_adjustments,
                                               truncation=truncation))
        except (ConvergenceError, ValueError) as e:
            print(f"  WARNING: {e}")
            failures[key] = str(e)

    print(f"Fitted {len(models)} of {len(keys)} candidate models")
    return models, failures
