from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
from scipy import integrate
from scipy.interpolate import BSpline

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from jointhazard.bases import basis_from_config, clone_bases
from jointhazard.errors import (
    InvalidBasisConfiguration,
    InvalidKnots,
    UnsupportedDerivativeOrder,
)
from jointhazard.polynomial import OrthoPolyBasis
from jointhazard.splines import (
    BSplineBasis,
    ISplineBasis,
    MSplineBasis,
    NaturalSplineBasis,
    SplineBasis,
)


def assert_allclose(
    a: np.ndarray, b: np.ndarray, *, atol: float, rtol: float, name: str
) -> None:
    a = np.asarray(a, dtype=float)
    b = np.asarray(b, dtype=float)
    if a.shape != b.shape:
        raise AssertionError(f"{name}: shape mismatch {a.shape} != {b.shape}")
    diff = np.max(np.abs(a - b)) if a.size else 0.0
    denom = np.max(np.abs(b)) if b.size else 0.0
    if not np.all(np.isfinite(a)) or not np.all(np.isfinite(b)):
        raise AssertionError(f"{name}: contains NaN/inf")
    if diff > atol + rtol * denom:
        raise AssertionError(
            f"{name}: not close (max|a-b|={diff:.3e}, max|b|={denom:.3e}, atol={atol:.1e}, rtol={rtol:.1e})"
        )


def assert_raises(exc_type, fn, *args, **kwargs) -> None:
    try:
        fn(*args, **kwargs)
    except exc_type:
        return
    raise AssertionError(f"{exc_type.__name__} was not raised by {fn}")


def scipy_design(knots: np.ndarray, order: int, x: np.ndarray, nu: int = 0) -> np.ndarray:
    n = knots.size - order
    spl = BSpline(knots, np.eye(n), order - 1, extrapolate=True)
    if nu > 0:
        spl = spl.derivative(nu)
    return spl(x)


def central_difference(basis, x: float, ders: int = 0, eps: float = 1e-6) -> np.ndarray:
    return (basis(x + eps, ders) - basis(x - eps, ders)) / (2 * eps)


def all_families():
    bk = [0.0, 5.0]
    ik = [1.0, 2.5, 4.0]
    return {
        "bs": BSplineBasis(bk, ik, intercept=False),
        "bs_intercept": BSplineBasis(bk, ik, intercept=True),
        "ns": NaturalSplineBasis(bk, ik, intercept=False),
        "ns_intercept": NaturalSplineBasis(bk, ik, intercept=True),
        "ispline": ISplineBasis(bk, ik, intercept=False),
        "mspline": MSplineBasis(bk, ik, intercept=True),
        "poly_raw": OrthoPolyBasis(3, intercept=True),
        "poly_orth": OrthoPolyBasis.poly_basis(np.linspace(0.0, 5.0, 11), 3)[0],
    }


def test_output_length_is_invariant() -> None:
    xs = [-1.0, 0.0, 0.3, 1.0, 2.7, 5.0, 6.5]
    supported = {
        "bs": [0, 1, 2, 3],
        "bs_intercept": [0, 1, 2, 3],
        "ns": [0, 1, 2, 3],
        "ns_intercept": [0, 1, 2],
        "ispline": [0, 1, 2],
        "mspline": [0, 1, 2],
        "poly_raw": [-2, -1, 0, 1, 2, 3, 4],
        "poly_orth": [-2, -1, 0, 1, 2, 3],
    }
    for name, basis in all_families().items():
        n = basis.n_basis()
        for ders in supported[name]:
            for x in xs:
                if name.startswith("mspline") and not 0.0 <= x <= 5.0:
                    continue
                out = basis(x, ders)
                if out.shape != (n,):
                    raise AssertionError(f"{name}: output length {out.shape} != {n}")
                if not np.all(np.isfinite(out)):
                    raise AssertionError(f"{name}: non-finite output at x={x}, ders={ders}")
            matrix = basis.basis(xs, ders) if not name.startswith("mspline") else basis.basis([1.0, 2.0], ders)
            if matrix.shape[1] != n:
                raise AssertionError(f"{name}: basis matrix width {matrix.shape[1]} != {n}")


def test_bspline_matches_scipy() -> None:
    basis = BSplineBasis([0.0, 10.0], [2.0, 5.0, 7.0], intercept=True)
    knots = basis.knots
    x = np.linspace(0.0, 10.0, 41)
    assert_allclose(basis.basis(x), scipy_design(knots, 4, x), atol=1e-12, rtol=1e-12, name="bs value")

    x_inner = np.linspace(0.1, 9.9, 50)
    for nu in (1, 2, 3):
        assert_allclose(
            basis.basis(x_inner, nu),
            scipy_design(knots, 4, x_inner, nu),
            atol=1e-10,
            rtol=1e-10,
            name=f"bs derivative {nu}",
        )

    # 切片なしは最初の列を除いたもの
    no_intercept = BSplineBasis([0.0, 10.0], [2.0, 5.0, 7.0], intercept=False)
    assert_allclose(no_intercept.basis(x), scipy_design(knots, 4, x)[:, 1:], atol=1e-12, rtol=1e-12, name="bs no intercept")


def test_bspline_extrapolation_continues_boundary_piece() -> None:
    basis = BSplineBasis([0.0, 10.0], [2.0, 5.0, 7.0], intercept=True)
    x = np.array([-2.0, -0.5, 10.5, 12.0])
    expected = scipy_design(basis.knots, 4, x)
    assert_allclose(basis.basis(x), expected, atol=1e-10, rtol=1e-10, name="bs extrapolation")
    assert_allclose(basis.basis(x, 1), scipy_design(basis.knots, 4, x, 1), atol=1e-10, rtol=1e-10, name="bs extrapolated slope")
    assert_raises(UnsupportedDerivativeOrder, basis, -1.0, 4)


def test_repeated_interior_knot_uses_guarded_path() -> None:
    knots = np.array([0.0, 0.0, 0.0, 0.0, 1.0, 1.0, 2.0, 2.0, 2.0, 2.0])
    basis = SplineBasis(knots, order=4)
    if basis.no_div_zero:
        raise AssertionError("repeated interior knot must disable the fast path")
    simple = SplineBasis([0.0, 0.0, 0.0, 0.0, 1.0, 2.0, 2.0, 2.0, 2.0], order=4)
    if not simple.no_div_zero:
        raise AssertionError("simple knots must enable the fast path")

    x = np.array([0.1, 0.5, 0.9, 1.2, 1.7, 1.99])
    assert_allclose(basis.basis(x), scipy_design(knots, 4, x), atol=1e-12, rtol=1e-12, name="guarded value")
    assert_allclose(basis.basis(x, 1), scipy_design(knots, 4, x, 1), atol=1e-10, rtol=1e-10, name="guarded derivative")

    # 台の外側は 0
    assert_allclose(basis(2.5), np.zeros(basis.n_basis()), atol=0.0, rtol=0.0, name="outside support")
    assert_raises(UnsupportedDerivativeOrder, basis, 0.5, -1)


def test_natural_spline_is_linear_outside_boundary() -> None:
    basis = NaturalSplineBasis([0.0, 5.0], [1.0, 2.5, 4.0], intercept=False)
    eps = 1e-7
    for edge in (0.0, 5.0):
        assert_allclose(basis(edge - eps), basis(edge + eps), atol=1e-6, rtol=0.0, name=f"ns value at {edge}")
        assert_allclose(basis(edge - eps, 1), basis(edge + eps, 1), atol=1e-5, rtol=0.0, name=f"ns slope at {edge}")
        # 境界での 2 階導関数は 0
        assert_allclose(basis(edge, 2), np.zeros(basis.n_basis()), atol=1e-10, rtol=0.0, name=f"ns curvature at {edge}")

    # 外側では厳密に線形
    left = basis.basis([-3.0, -2.0, -1.0])
    assert_allclose(left[1] - left[0], left[2] - left[1], atol=1e-12, rtol=0.0, name="ns linear left")
    assert_allclose(basis(-2.0, 1), basis(0.0, 1), atol=1e-12, rtol=0.0, name="ns slope left")
    assert_allclose(basis(7.0, 2), np.zeros(basis.n_basis()), atol=0.0, rtol=0.0, name="ns second derivative right")
    assert_raises(UnsupportedDerivativeOrder, basis, 1.0, -1)

    # 内側の導関数は差分と一致
    for x in (0.7, 1.8, 3.3):
        assert_allclose(basis(x, 1), central_difference(basis, x), atol=1e-6, rtol=1e-6, name=f"ns derivative at {x}")


def test_natural_spline_spans_bspline_subspace() -> None:
    # ns の各列は内部結節点が同じ B-spline の線形結合
    ns = NaturalSplineBasis([0.0, 5.0], [2.0], intercept=True)
    bs = BSplineBasis([0.0, 5.0], [2.0], intercept=True)
    x = np.linspace(0.0, 5.0, 30)
    b = bs.basis(x)
    n = ns.basis(x)
    coef, *_ = np.linalg.lstsq(b, n, rcond=None)
    assert_allclose(b @ coef, n, atol=1e-12, rtol=0.0, name="ns in bs span")
    if ns.n_basis() != bs.n_basis() - 2:
        raise AssertionError("ns must drop two degrees of freedom")


def test_ispline_is_monotone_and_bounded() -> None:
    basis = ISplineBasis([0.0, 5.0], [1.0, 2.5, 4.0], intercept=False)
    x = np.linspace(0.0, 5.0, 101)
    values = basis.basis(x)
    if np.any(values < -1e-12) or np.any(values > 1 + 1e-12):
        raise AssertionError("ispline must stay within [0, 1]")
    if np.any(np.diff(values, axis=0) < -1e-12):
        raise AssertionError("ispline must be non-decreasing")
    assert_allclose(values[0], np.zeros(basis.n_basis()), atol=1e-12, rtol=0.0, name="ispline at lower")
    assert_allclose(values[-1], np.ones(basis.n_basis()), atol=1e-12, rtol=0.0, name="ispline at upper")

    # 定義域の外側
    assert_allclose(basis(-1.0), np.zeros(basis.n_basis()), atol=0.0, rtol=0.0, name="ispline below")
    assert_allclose(basis(6.0), np.ones(basis.n_basis()), atol=0.0, rtol=0.0, name="ispline above")
    assert_allclose(basis(6.0, 1), np.zeros(basis.n_basis()), atol=0.0, rtol=0.0, name="ispline slope above")

    for x0 in (0.4, 1.7, 3.1, 4.6):
        assert_allclose(basis(x0, 1), central_difference(basis, x0), atol=1e-6, rtol=1e-6, name=f"ispline derivative at {x0}")


def test_mspline_integrates_to_one() -> None:
    basis = MSplineBasis([0.0, 5.0], [1.0, 2.5, 4.0], intercept=True)
    for j in range(basis.n_basis()):
        value, _ = integrate.quad(lambda t: basis(t)[j], 0.0, 5.0, points=[1.0, 2.5, 4.0], epsabs=1e-13)
        if abs(value - 1.0) > 1e-9:
            raise AssertionError(f"mspline column {j} integrates to {value}")

    # 導関数も B-spline の導関数を同じ係数で拡大したもの
    bs = BSplineBasis([0.0, 5.0], [1.0, 2.5, 4.0], intercept=True)
    n = bs.n_basis()
    scale = 4.0 / (bs.knots[4 : 4 + n] - bs.knots[:n])
    for x in (0.3, 1.3, 4.2):
        assert_allclose(basis(x), bs(x) * scale, atol=1e-14, rtol=1e-12, name=f"mspline value at {x}")
        assert_allclose(basis(x, 1), bs(x, 1) * scale, atol=1e-12, rtol=1e-12, name=f"mspline slope at {x}")


def test_raw_polynomial_derivatives_and_integrals() -> None:
    basis = OrthoPolyBasis(3, intercept=True)
    x = 1.7
    assert_allclose(basis(x), [1.0, x, x**2, x**3], atol=0.0, rtol=1e-15, name="raw value")
    assert_allclose(basis(x, 1), [0.0, 1.0, 2 * x, 3 * x**2], atol=0.0, rtol=1e-15, name="raw slope")
    assert_allclose(basis(x, 2), [0.0, 0.0, 2.0, 6 * x], atol=0.0, rtol=1e-15, name="raw curvature")
    assert_allclose(basis(x, 4), np.zeros(4), atol=0.0, rtol=0.0, name="raw fourth derivative")

    no_intercept = OrthoPolyBasis(2, intercept=False)
    assert_allclose(no_intercept(x, -1), [x**2 / 2, x**3 / 3], atol=0.0, rtol=1e-14, name="raw integral")

    # 積分下限が 0 でない場合の 1 重・2 重積分
    basis.set_lower_limit(0.4)
    for p in range(4):
        single, _ = integrate.quad(lambda t: t**p, 0.4, x)
        double, _ = integrate.quad(lambda t: (x - t) * t**p, 0.4, x)
        assert_allclose(basis(x, -1)[p], single, atol=1e-13, rtol=1e-12, name=f"raw integral p={p}")
        assert_allclose(basis(x, -2)[p], double, atol=1e-13, rtol=1e-12, name=f"raw double integral p={p}")


def test_poly_basis_is_orthonormal() -> None:
    x = np.array([0.1, 0.4, 0.9, 1.3, 2.0, 2.2, 3.1, 3.5])
    basis, values = OrthoPolyBasis.poly_basis(x, 3)
    if values.shape != (x.size, 3) or basis.n_basis() != 3:
        raise AssertionError("poly_basis shape unexpected")
    assert_allclose(values.T @ values, np.eye(3), atol=1e-12, rtol=0.0, name="orthonormal columns")
    assert_allclose(values.sum(axis=0), np.zeros(3), atol=1e-12, rtol=0.0, name="zero mean columns")
    assert_allclose(basis.basis(x), values, atol=1e-12, rtol=0.0, name="recurrence reproduces design")

    # 導関数と積分は差分・数値積分と一致
    for x0 in (0.5, 1.9, 3.0):
        assert_allclose(basis(x0, 1), central_difference(basis, x0), atol=1e-7, rtol=1e-7, name=f"orth derivative at {x0}")
        assert_allclose(basis(x0, 2), central_difference(basis, x0, 1, eps=1e-5), atol=1e-5, rtol=1e-5, name=f"orth curvature at {x0}")
        expected = np.array([
            integrate.quad(lambda t: basis(t)[j], 0.0, x0)[0] for j in range(3)
        ])
        assert_allclose(basis(x0, -1), expected, atol=1e-12, rtol=1e-10, name=f"orth integral at {x0}")

    with_intercept = OrthoPolyBasis.orthogonal(basis.alpha, basis.norm2, intercept=True)
    assert_allclose(with_intercept(1.1)[0], 1.0, atol=0.0, rtol=0.0, name="orth intercept")
    assert_allclose(with_intercept(1.1)[1:], basis(1.1), atol=1e-15, rtol=0.0, name="orth intercept columns")

    assert_raises(InvalidBasisConfiguration, OrthoPolyBasis.poly_basis, [1.0, 1.0, 2.0], 2)


def test_invalid_knots_are_rejected() -> None:
    assert_raises(InvalidKnots, BSplineBasis, [5.0, 0.0])
    assert_raises(InvalidKnots, BSplineBasis, [0.0, 5.0], [3.0, 1.0])
    assert_raises(InvalidKnots, BSplineBasis, [0.0, 5.0], [6.0])
    assert_raises(InvalidKnots, NaturalSplineBasis, [0.0, np.nan], [1.0])
    assert_raises(InvalidKnots, SplineBasis, [0.0, 2.0, 1.0, 3.0])
    # 基底が 2 列以下の natural spline は QR で必要なランクが得られない
    assert_raises(InvalidBasisConfiguration, NaturalSplineBasis, [0.0, 1.0], order=2)
    assert_raises(InvalidBasisConfiguration, BSplineBasis, [0.0, 1.0], order=0)
    assert_raises(InvalidBasisConfiguration, OrthoPolyBasis, 0, intercept=False)
    assert_raises(InvalidBasisConfiguration, OrthoPolyBasis.orthogonal, [0.1], [1.0, 2.0])


def test_clone_does_not_share_knots() -> None:
    basis = BSplineBasis([0.0, 5.0], [2.0], intercept=True)
    clone = basis.clone()
    clone.knots[:] = 0.0
    if np.all(basis.knots == 0.0):
        raise AssertionError("clone must not alias the knot vector")
    clones = clone_bases([basis, OrthoPolyBasis(2)])
    if clones[0] is basis or len(clones) != 2:
        raise AssertionError("clone_bases must return new objects")


def test_basis_from_config() -> None:
    basis = basis_from_config(
        {"type": "ns", "boundary_knots": [0.0, 5.0], "interior_knots": [2.0], "intercept": True}
    )
    if not isinstance(basis, NaturalSplineBasis) or basis.n_basis() != 3:
        raise AssertionError("basis_from_config ns unexpected")

    poly = basis_from_config({"type": "poly", "degree": 2, "lower_limit": 1.0})
    assert_allclose(poly(2.0, -1), [1.5, 7.0 / 3.0], atol=1e-14, rtol=0.0, name="poly from config")

    orth = basis_from_config({"type": "orth_poly", "alpha": [0.5], "norm2": [1.0, 4.0, 2.0]})
    assert_allclose(orth(1.5), [1.0 / np.sqrt(2.0)], atol=1e-15, rtol=0.0, name="orth from config")

    assert_raises(InvalidBasisConfiguration, basis_from_config, {"type": "wavelet"})
    assert_raises(InvalidBasisConfiguration, basis_from_config, {"type": "bs", "knots": [0.0, 1.0]})


def test_centred_basis_matrix() -> None:
    basis = BSplineBasis([0.0, 5.0], [2.0], intercept=False)
    centred = basis.basis([1.0, 3.0], centre=2.0)
    assert_allclose(centred, basis.basis([1.0, 3.0]) - basis(2.0), atol=1e-15, rtol=0.0, name="centred basis")


def main() -> None:
    test_output_length_is_invariant()
    test_bspline_matches_scipy()
    test_bspline_extrapolation_continues_boundary_piece()
    test_repeated_interior_knot_uses_guarded_path()
    test_natural_spline_is_linear_outside_boundary()
    test_natural_spline_spans_bspline_subspace()
    test_ispline_is_monotone_and_bounded()
    test_mspline_integrates_to_one()
    test_raw_polynomial_derivatives_and_integrals()
    test_poly_basis_is_orthonormal()
    test_invalid_knots_are_rejected()
    test_clone_does_not_share_knots()
    test_basis_from_config()
    test_centred_basis_matrix()
    print("OK: basis families")


if __name__ == "__main__":
    main()
