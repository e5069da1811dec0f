"""
Plume module: along-centreline mass remaining after settling loss.

The turbulence term is the upper incomplete gamma function of order -m,

    z(xi) = integral from xi to infinity of exp(-t) * t**(-m - 1) dt,

evaluated by adaptive quadrature over a truncated range.
"""

import logging
import numpy as np
from typing import Tuple

from scipy import integrate

from .errors import IntegrationDivergence
from .particle import PhysicalParameters


# exp(-50) ~ 2e-22: the truncated tail is far below the quadrature tolerance
UPPER_SPAN = 50.0
RTOL = 1e-6
QUAD_LIMIT = 200
# Cells whose xi agree to this many significant digits share one quadrature
XI_DIGITS = 10


def _quad(integrand, lo, hi, xi, rtol):
    result = integrate.quad(
        integrand, lo, hi, epsabs=0.0, epsrel=rtol, limit=QUAD_LIMIT, full_output=1
    )
    # quad appends a message only when it did not converge
    if len(result) > 3:
        raise IntegrationDivergence(xi, result[3].strip())
    return result[0]


def turbulence_integral(xi: float, m: float, rtol: float = RTOL) -> float:
    """
    Evaluate the turbulence integral z(xi).

    Below t = 1 the integral is taken over s = ln t, where the integrand
    exp(-e^s) * e^(-m s) stays smooth however close xi is to 0.

    Args:
        xi: Lower integration bound (> 0)
        m: Derived turbulence exponent
        rtol: Relative tolerance requested from the quadrature

    Returns:
        Value of the integral

    Raises:
        IntegrationDivergence: If xi <= 0 (the integrand is not integrable at
            the origin) or the quadrature does not meet the tolerance
    """
    if not np.isfinite(xi) or xi <= 0:
        raise IntegrationDivergence(xi, "lower bound must be positive and finite")

    def integrand(t):
        return np.exp(-t) * t ** (-m - 1)

    def log_integrand(s):
        return np.exp(-np.exp(s) - m * s)

    upper = xi + UPPER_SPAN
    if xi >= 1.0:
        total = _quad(integrand, xi, upper, xi, rtol)
    else:
        total = (_quad(log_integrand, np.log(xi), 0.0, xi, rtol)
                 + _quad(integrand, 1.0, upper, xi, rtol))

    if not np.isfinite(total):
        raise IntegrationDivergence(xi, "non-finite result")
    return total


def _round_significant(values: np.ndarray, digits: int) -> np.ndarray:
    exponent = np.floor(np.log10(values))
    scale = np.power(10.0, digits - 1 - exponent)
    return np.round(values * scale) / scale


def xi_term(x, height, params: PhysicalParameters):
    """xi = height^2 / (x^(2-n) * Cz^2)."""
    return np.square(height) / (np.power(x, 2 - params.n) * params.cz ** 2)


def _mass_from_integral(x, height, u, z, xi, params: PhysicalParameters, vg: float):
    n, m, cz = params.n, params.m, params.cz
    scale = 4 * vg / (n * u * cz * np.sqrt(np.pi))
    loss = -np.power(x, n / 2) * np.exp(-xi) + np.power(height / cz, 2 * m) * (-m * z)
    return params.source_strength * np.exp(scale * loss)


def plume_mass(x: float, elevation_offset: float, u: float,
               params: PhysicalParameters, vg: float) -> float:
    """
    Mass remaining on the plume centreline at downwind distance x.

    Args:
        x: Horizontal distance (m)
        elevation_offset: Cell elevation minus sample cell elevation (m)
        u: Wind speed (m/s)
        params: Physical parameters
        vg: Settling velocity (cm/s)

    Returns:
        Remaining mass Qx; 0 when x <= 0, u <= 0 or the effective plume
        height is at or below the ground

    Raises:
        IntegrationDivergence: If the turbulence integral does not converge
    """
    height = params.plume_height + elevation_offset
    if x <= 0 or u <= 0 or height <= 0:
        return 0.0
    xi = float(xi_term(x, height, params))
    z = turbulence_integral(xi, params.m)
    with np.errstate(over="ignore", under="ignore"):
        return float(_mass_from_integral(x, height, u, z, xi, params, vg))


def plume_mass_field(x: np.ndarray, elevation_offset: np.ndarray, u: np.ndarray,
                     params: PhysicalParameters, vg: float) -> Tuple[np.ndarray, np.ndarray]:
    """
    Evaluate ``plume_mass`` for every cell of a raster.

    Cells where the integral diverges are set to 0 and flagged rather than
    aborting the whole raster.

    Args:
        x: Distance per cell (m)
        elevation_offset: Elevation offset per cell (m); NaN where absent
        u: Wind speed per cell (m/s); NaN where absent
        params: Physical parameters
        vg: Settling velocity (cm/s)

    Returns:
        Tuple of (Qx array, boolean array of diverged cells)
    """
    height = params.plume_height + elevation_offset
    with np.errstate(invalid="ignore"):
        active = (x > 0) & (u > 0) & (height > 0)
    active &= np.isfinite(x) & np.isfinite(u) & np.isfinite(height)

    qx = np.zeros(x.shape)
    diverged = np.zeros(x.shape, dtype=bool)
    if not active.any():
        return qx, diverged

    xa, ha, ua = x[active], height[active], u[active]
    with np.errstate(over="ignore", under="ignore"):
        xi = xi_term(xa, ha, params)

    # Mirrored cells share xi; evaluate each distinct value once
    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        keys = _round_significant(xi, XI_DIGITS)
    keys = np.where(np.isfinite(keys) & (keys > 0), keys, xi)
    _, first, inverse = np.unique(keys, return_index=True, return_inverse=True)
    inverse = inverse.reshape(-1)

    z_unique = np.zeros(first.shape)
    failed_unique = np.zeros(first.shape, dtype=bool)
    for k in np.argsort(first):
        try:
            z_unique[k] = turbulence_integral(float(xi[first[k]]), params.m)
        except IntegrationDivergence as exc:
            logging.debug("Zeroing cell: %s", exc)
            failed_unique[k] = True
    z = z_unique[inverse]
    failed = failed_unique[inverse]

    with np.errstate(over="ignore", under="ignore", invalid="ignore"):
        mass = _mass_from_integral(xa, ha, ua, z, xi, params, vg)
    mass[failed] = 0.0

    qx[active] = mass
    diverged[active] = failed
    return qx, diverged
