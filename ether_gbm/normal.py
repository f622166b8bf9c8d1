"""
Standard normal CDF via the Abramowitz & Stegun 26.2.17 rational approximation.

    t    = 1 / (1 + p * |z|),             p = 0.2316419
    phi  = exp(-z^2 / 2) / sqrt(2*pi)
    tail = phi * t * (b1 + t*(b2 + t*(b3 + t*(b4 + t*b5))))
    Phi(z) = 1 - tail   if z > 0
           = tail       otherwise

Absolute error is below 7.5e-8 over the whole real line.
"""

from typing import Union

import numpy as np
from numpy.typing import NDArray

_P = 0.2316419
_INV_SQRT_2PI = 0.3989422804
_B = (0.31938153, -0.356563782, 1.781477937, -1.821255978, 1.330274429)


def normal_cdf(z: Union[float, NDArray[np.float64]]) -> Union[float, NDArray[np.float64]]:
    """
    Approximate P(Z < z) for a standard normal Z.

    Scalars return a float, arrays are evaluated element-wise.
    NaN inputs propagate to NaN outputs; +/-inf map to 1.0 / 0.0.
    """
    x = np.asarray(z, dtype=np.float64)
    with np.errstate(over="ignore", invalid="ignore"):
        t = 1.0 / (1.0 + _P * np.abs(x))
        density = _INV_SQRT_2PI * np.exp(-x * x / 2.0)
        poly = t * (_B[0] + t * (_B[1] + t * (_B[2] + t * (_B[3] + t * _B[4]))))
        tail = density * poly
    result = np.where(x > 0, 1.0 - tail, tail)
    if result.ndim == 0:
        return float(result)
    return result
