"""
Tests for the adaptive refinement loop (single steps and the driver).
"""

import numpy as np
import pytest

from hfit.exceptions import ConfigurationError, PreconditionError
from hfit.fitting.base import Fitting
from hfit.fitting.hfitting import HFitting, RefinementState
from hfit.geometry.thb import THBSplineBasis

from conftest import grid_params


def make_hfit(params, values, percentage=0.2, extension=(2, 2), smoothing=1e-5,
              degrees=(2, 2), n_elements=(4, 4)):
    basis = THBSplineBasis.uniform(degrees, n_elements)
    fitting = Fitting(params, values, basis)
    return HFitting(fitting, percentage, extension, smoothing)


def count_steps(hfit):
    """Wrap next_iteration to record its return values."""
    calls = []
    step = hfit.next_iteration

    def counted(*args, **kwargs):
        result = step(*args, **kwargs)
        calls.append(result)
        return result

    hfit.next_iteration = counted
    return calls


class TestConfiguration:
    """Tests for eager validation of the refinement settings."""

    def test_invalid_percentage(self, step_data):
        with pytest.raises(ConfigurationError):
            make_hfit(*step_data, percentage=1.5)
        with pytest.raises(ConfigurationError):
            make_hfit(*step_data, percentage=-0.1)

    def test_invalid_extension(self, step_data):
        with pytest.raises(ConfigurationError):
            make_hfit(*step_data, extension=(1,))
        with pytest.raises(ConfigurationError):
            make_hfit(*step_data, extension=(1, -2))

    def test_invalid_smoothing(self, step_data):
        with pytest.raises(ConfigurationError):
            make_hfit(*step_data, smoothing=-1.0)

    def test_setters_validate(self, step_data):
        hfit = make_hfit(*step_data)

        hfit.set_ref_percentage(0.5)
        hfit.set_extension([0, 3])
        hfit.set_smoothing(0.0)
        assert hfit.ref_percentage == 0.5
        assert hfit.extension == (0, 3)
        assert hfit.smoothing == 0.0

        with pytest.raises(ConfigurationError):
            hfit.set_ref_percentage(2.0)
        with pytest.raises(ConfigurationError):
            hfit.set_extension([1, 1, 1])
        with pytest.raises(ConfigurationError):
            hfit.set_smoothing(-0.5)
        assert hfit.ref_percentage == 0.5
        assert hfit.extension == (0, 3)

    def test_negative_tolerance(self, step_data):
        hfit = make_hfit(*step_data)
        with pytest.raises(ConfigurationError):
            hfit.iterative_refine(3, -1.0)


class TestNextIteration:
    """Tests for a single refine-then-refit step."""

    def test_requires_initial_fit(self, step_data):
        hfit = make_hfit(*step_data)
        with pytest.raises(PreconditionError):
            hfit.next_iteration(0.0)

    def test_no_progress_when_tolerance_met(self, step_data):
        hfit = make_hfit(*step_data)
        hfit.fitting.compute(hfit.smoothing)
        hfit.fitting.compute_errors()
        assert hfit.fitting.max_error < 10.0

        assert hfit.next_iteration(10.0) is False
        assert hfit.basis.max_level() == 0
        assert hfit.iterations_done == 0

    def test_no_progress_when_nothing_marked(self, step_data):
        hfit = make_hfit(*step_data)
        hfit.fitting.compute(hfit.smoothing)
        hfit.fitting.compute_errors()
        errors = hfit.fitting.point_errors

        assert hfit.next_iteration(0.0, err_threshold=errors.max() + 1.0) is False
        assert np.array_equal(hfit.fitting.point_errors, errors)

    def test_step_refines_and_refits(self, step_data):
        hfit = make_hfit(*step_data)
        hfit.fitting.compute(hfit.smoothing)
        hfit.fitting.compute_errors()
        size = hfit.basis.size

        assert hfit.next_iteration(0.0) is True
        assert hfit.basis.max_level() == 1
        assert hfit.basis.size > size
        assert hfit.fitting.result.coefs.shape[0] == hfit.basis.size
        assert hfit.iterations_done == 1

    def test_global_refinement(self, step_data):
        """Threshold 0 marks every point regardless of the percentage."""
        hfit = make_hfit(*step_data, percentage=0.01)
        hfit.fitting.compute(hfit.smoothing)
        hfit.fitting.compute_errors()

        boxes = hfit.get_boxes(hfit.fitting.point_errors, 0.0)
        assert len(boxes) == 16

        assert hfit.next_iteration(0.0, err_threshold=0.0) is True
        assert hfit.basis.get_domain(1).all()


class TestIterativeRefine:
    """Tests for the refinement driver."""

    def test_initial_state(self, step_data):
        hfit = make_hfit(*step_data)
        assert hfit.state is RefinementState.UNBOOTSTRAPPED

    def test_tolerance_already_met(self, grid):
        """A quadratic is reproduced exactly: no refinement happens."""
        values = grid[:, 0] ** 2 - grid[:, 0] * grid[:, 1]
        hfit = make_hfit(grid, values, smoothing=0.0)
        calls = count_steps(hfit)

        state = hfit.iterative_refine(5, tolerance=1.0)

        assert state is RefinementState.TOLERANCE_REACHED
        assert calls == [False]
        assert hfit.iterations_done == 0
        assert hfit.basis.max_level() == 0
        assert len(hfit.history) == 1

    def test_refinement_reduces_error(self, step_data):
        hfit = make_hfit(*step_data)
        state = hfit.iterative_refine(3, tolerance=0.0)

        assert state is RefinementState.REFINING
        assert hfit.iterations_done == 3
        assert len(hfit.history) == 4
        assert hfit.history[-1] < hfit.history[0]
        assert hfit.basis.max_level() >= 2

    def test_at_most_n_steps(self, step_data):
        for n in (0, 1, 2):
            hfit = make_hfit(*step_data)
            calls = count_steps(hfit)
            hfit.iterative_refine(n, tolerance=0.0)

            assert len(calls) <= n
            assert hfit.iterations_done <= n

    def test_zero_iterations_only_bootstraps(self, step_data):
        hfit = make_hfit(*step_data)
        state = hfit.iterative_refine(0, tolerance=0.0)

        assert state is RefinementState.REFINING
        assert hfit.fitting.has_errors
        assert hfit.basis.max_level() == 0

    def test_exhausted_when_nothing_to_refine(self, step_data):
        hfit = make_hfit(*step_data)
        calls = count_steps(hfit)
        state = hfit.iterative_refine(4, tolerance=0.0, err_threshold=100.0)

        assert state is RefinementState.EXHAUSTED
        assert calls == [False]
        assert hfit.iterations_done == 0

    def test_reaches_tolerance(self, step_data):
        hfit = make_hfit(*step_data)
        hfit.iterative_refine(0, tolerance=0.0)
        target = 0.5 * hfit.fitting.max_error

        state = hfit.iterative_refine(6, tolerance=target)

        assert state is RefinementState.TOLERANCE_REACHED
        assert hfit.fitting.max_error <= target

    def test_can_continue(self, step_data):
        hfit = make_hfit(*step_data)
        hfit.iterative_refine(1, tolerance=0.0)
        hfit.iterative_refine(1, tolerance=0.0)

        assert hfit.iterations_done == 2
        assert len(hfit.history) == 3

    def test_deterministic(self, step_data):
        first = make_hfit(*step_data)
        second = make_hfit(*step_data)
        first.iterative_refine(2, tolerance=0.0)
        second.iterative_refine(2, tolerance=0.0)

        assert first.history == second.history
        assert first.basis.active_functions() == second.basis.active_functions()

    def test_one_dimensional(self):
        x = np.linspace(0.0, 1.0, 200)
        y = np.abs(x - 0.3) ** 0.5
        basis = THBSplineBasis.uniform((2,), (4,))
        hfit = HFitting(Fitting(x, y, basis), 0.1, (1,), 1e-7)

        hfit.iterative_refine(4, tolerance=0.0)

        assert hfit.history[-1] < hfit.history[0]
        assert basis.max_level() >= 1
