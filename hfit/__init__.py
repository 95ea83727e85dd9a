"""
hfit - Adaptive hierarchical spline fitting

Fits parametrized point clouds with THB-splines (Truncated Hierarchical
B-splines), refining the basis only where the fit is inaccurate.

Key modules:
- discretization: Knot vectors and dyadic refinement
- geometry: B-spline evaluation, THB-spline basis, refinement boxes
- fitting: Least-squares fitting session and the adaptive refinement engine
- io: YAML/JSON configuration

Quick start:
    import numpy as np
    from hfit.geometry.thb import THBSplineBasis
    from hfit.fitting.base import Fitting
    from hfit.fitting.hfitting import HFitting

    u = np.random.default_rng(0).random((2000, 2))
    z = np.tanh(20 * (u[:, 0] - 0.5))

    basis = THBSplineBasis.uniform(degrees=(2, 2), n_elements=(4, 4))
    fitting = Fitting(u, z, basis)
    hfit = HFitting(fitting, refinement_percentage=0.1, extension=(2, 2),
                    smoothing=1e-6)
    state = hfit.iterative_refine(iterations=5, tolerance=1e-3)
    print(state, fitting.max_error, basis.size)
"""

__version__ = "0.1.0"

from .exceptions import ConfigurationError, PreconditionError
from .geometry.base import Box
from .geometry.thb import THBSplineBasis, THBSplineGeometry
from .fitting.base import Fitting, ErrorStats
from .fitting.hfitting import HFitting, RefinementState
from .io.config import FittingConfig, load_config, setup_fitting_from_config
