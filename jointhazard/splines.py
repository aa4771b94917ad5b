"""スプライン基底（B-spline / natural spline / I-spline / M-spline）。

SplineBasis は一般の結節点列に対する B-spline で、値は de Boor 型の表を使う
漸化式、導関数は係数の差分を繰り返す漸化式で計算する。

BSplineBasis は境界結節点を order 回重ねた結節点列（R の splines::bs 相当）で、
境界の外側では内側の点まわりの 3 次までのテイラー展開で外挿する。

NaturalSplineBasis / ISplineBasis / MSplineBasis は BSplineBasis をフィールドとして
保持し（継承ではなく合成）、その出力を変換する。

注意:
    結節点の差が 0 になる箇所の除算は、NaN を伝播させずに 0 として扱う。
    構築時に除算が起こり得るかを調べ（no_div_zero）、起こり得ない場合だけ
    分岐のない高速経路を使う。
"""

from __future__ import annotations

from typing import Sequence, Tuple

import numpy as np
from scipy import linalg

from .bases import DEFAULT_ORDER, Basis
from .errors import InvalidBasisConfiguration, InvalidKnots, UnsupportedDerivativeOrder
from .types import ArrayLike


class SplineBasis(Basis):
    """一般の結節点列に対する order 次（degree = order - 1）の B-spline 基底。

    Args:
        knots: 非減少の結節点列。基底数は len(knots) - order。
        order: スプラインの階数（3 次スプラインなら 4）。
    """

    def __init__(self, knots: ArrayLike, order: int = DEFAULT_ORDER) -> None:
        self.order = _as_order(order)
        self.ordm1 = self.order - 1
        self.knots = _validate_knots(knots)
        self.nknots = int(self.knots.size)
        self.ncoef = self.nknots - self.order if self.nknots > self.order else 0
        self.no_div_zero = self._find_no_div_zero()

    def n_basis(self) -> int:
        return self.ncoef

    def required_scratch(self) -> int:
        # ldel, rdel（各 order-1）と係数表 a、値の表 wrk（各 order）
        return 2 * self.ordm1 + 2 * self.order

    def evaluate(
        self, out: np.ndarray, scratch: np.ndarray, x: float, ders: int = 0
    ) -> None:
        if ders < 0:
            raise UnsupportedDerivativeOrder(type(self).__name__, ders)

        order, ordm1 = self.order, self.ordm1
        ldel = scratch[:ordm1]
        rdel = scratch[ordm1 : 2 * ordm1]
        a = scratch[2 * ordm1 : 2 * ordm1 + order]
        wrk = scratch[2 * ordm1 + order : 2 * ordm1 + 2 * order]

        out[: self.ncoef] = 0.0
        curs, boundary = self._set_cursor(x)
        if curs < order or curs > self.ncoef:
            # 結節点列の台の外側は 0
            return

        io = curs - order
        if ders > 0:
            for i in range(order):
                a[:] = 0.0
                a[i] = 1.0
                out[io + i] = self._slow_evaluate(a, ldel, rdel, x, curs, boundary, ders)
        else:
            self._basis_funcs(wrk, ldel, rdel, x, curs)
            out[io : io + order] = wrk

    def _set_cursor(self, x: float) -> Tuple[int, bool]:
        """x を含む区間の右端の結節点位置 curs と、右境界上かどうかを返す。"""
        knots = self.knots
        curs = int(np.searchsorted(knots, x, side="right"))
        if curs == self.nknots:
            # x が全結節点以上: 末尾と一致するときだけ末尾の位置を使う
            curs = self.nknots - 1 if x == knots[-1] else -1

        boundary = False
        if curs > self.ncoef and x == knots[self.ncoef]:
            boundary = True
            curs = self.ncoef
        return curs, boundary

    def _diff_table(
        self, ldel: np.ndarray, rdel: np.ndarray, x: float, curs: int, ndiff: int
    ) -> None:
        knots = self.knots
        for i in range(ndiff):
            rdel[i] = knots[curs + i] - x
            ldel[i] = x - knots[curs - (i + 1)]

    def _basis_funcs(
        self, b: np.ndarray, ldel: np.ndarray, rdel: np.ndarray, x: float, curs: int
    ) -> None:
        self._diff_table(ldel, rdel, x, curs, self.ordm1)
        b[0] = 1.0
        if self.no_div_zero:
            for j in range(1, self.order):
                saved = 0.0
                for r in range(j):
                    term = b[r] / (rdel[r] + ldel[j - 1 - r])
                    b[r] = saved + rdel[r] * term
                    saved = ldel[j - 1 - r] * term
                b[j] = saved
            return

        for j in range(1, self.order):
            saved = 0.0
            for r in range(j):
                den = rdel[r] + ldel[j - 1 - r]
                if den != 0:
                    term = b[r] / den
                    b[r] = saved + rdel[r] * term
                    saved = ldel[j - 1 - r] * term
                else:
                    if r != 0 or rdel[r] != 0:
                        b[r] = saved
                    saved = 0.0
            b[j] = saved

    def _slow_evaluate(
        self,
        a: np.ndarray,
        ldel: np.ndarray,
        rdel: np.ndarray,
        x: float,
        curs: int,
        boundary: bool,
        nder: int,
    ) -> float:
        """係数ベクトル a の B-spline 結合の nder 階導関数を x で評価する。"""
        knots = self.knots
        outer = self.ordm1
        if nder > outer:
            return 0.0
        if boundary and nder == outer:
            # 右境界上の最高階導関数は不定なので 0 とする
            return 0.0

        while nder > 0:
            nder -= 1
            lpt = curs - outer
            for apt in range(outer):
                den = knots[lpt + apt + outer] - knots[lpt + apt]
                a[apt] = outer * (a[apt + 1] - a[apt]) / den if den != 0 else 0.0
            outer -= 1

        self._diff_table(ldel, rdel, x, curs, outer)
        while outer > 0:
            outer -= 1
            for apt in range(outer + 1):
                lpt = outer - apt
                den = rdel[apt] + ldel[lpt]
                if den != 0:
                    a[apt] = (a[apt + 1] * ldel[lpt] + a[apt] * rdel[apt]) / den
                else:
                    a[apt] = 0.0
        return float(a[0])

    def _find_no_div_zero(self) -> bool:
        """値の漸化式で分母が 0 になる区間があるかを調べる。"""
        knots = self.knots
        end_curs = self.nknots - self.ordm1 if self.nknots > self.ordm1 else self.order
        for curs in range(self.order, end_curs):
            for j in range(1, self.order):
                for r in range(j):
                    if knots[curs + r] - knots[curs - j + r] == 0:
                        return False
        return True


class BSplineBasis(SplineBasis):
    """境界結節点と内部結節点から作る B-spline 基底（R の bs 相当）。

    Args:
        boundary_knots: 境界結節点 (lower, upper)。
        interior_knots: 境界の内側にある内部結節点。
        intercept: False の場合は最初の基底を除く。
        order: スプラインの階数。
    """

    def __init__(
        self,
        boundary_knots: Sequence[float],
        interior_knots: Sequence[float] = (),
        intercept: bool = False,
        order: int = DEFAULT_ORDER,
    ) -> None:
        order = _as_order(order)
        bk = _validate_boundary_knots(boundary_knots)
        ik = _validate_interior_knots(interior_knots, bk)
        knots = np.concatenate([np.full(order, bk[0]), ik, np.full(order, bk[1])])
        super().__init__(knots, order)

        self.boundary_knots = bk
        self.interior_knots = ik
        self.intercept = bool(intercept)
        if self.n_basis() < 1:
            raise InvalidBasisConfiguration("bs: 基底数が 1 未満になります")

    def n_basis(self) -> int:
        return self.ncoef - (not self.intercept)

    def required_scratch(self) -> int:
        # 外挿時に展開点での評価結果を置く領域を 2 段分確保する
        return 2 * self.ncoef + super().required_scratch()

    def evaluate(
        self, out: np.ndarray, scratch: np.ndarray, x: float, ders: int = 0
    ) -> None:
        n_raw = self.ncoef
        nb = self.n_basis()
        my_wk = scratch[:n_raw]
        rest = scratch[n_raw:]
        lo, hi = self.boundary_knots

        if x < lo or x > hi:
            if not 0 <= ders <= 3:
                raise UnsupportedDerivativeOrder("bs", ders)
            if x < lo:
                pivot = 0.75 * lo + 0.25 * self.knots[self.order]
            else:
                pivot = 0.75 * hi + 0.25 * self.knots[self.nknots - self.order - 1]
            delta = x - pivot

            # sum_{d=ders}^{3} f^{(d)}(pivot) * delta^(d-ders) / (d-ders)!
            out[:nb] = 0.0
            factor = 1.0
            for d in range(ders, 4):
                self.evaluate(my_wk, rest, pivot, d)
                out[:nb] += factor * my_wk[:nb]
                factor *= delta / (d - ders + 1)
            return

        if self.intercept:
            SplineBasis.evaluate(self, out, rest, x, ders)
        else:
            SplineBasis.evaluate(self, my_wk, rest, x, ders)
            out[:nb] = my_wk[1:n_raw]


class NaturalSplineBasis(Basis):
    """境界の外側で線形になる natural cubic spline 基底（R の ns 相当）。

    B-spline 基底 b(x) に対し、境界での 2 階導関数が 0 になる部分空間への
    変換 Q^T を構築時に一度だけ QR 分解で求め、(Q^T b(x))[2:] を返す。
    境界の外側では境界での値と傾きを使った線形外挿を行う。
    """

    def __init__(
        self,
        boundary_knots: Sequence[float],
        interior_knots: Sequence[float] = (),
        intercept: bool = False,
        order: int = DEFAULT_ORDER,
    ) -> None:
        self.bspline = BSplineBasis(boundary_knots, interior_knots, True, order)
        self.intercept = bool(intercept)
        self.q_matrix = self._constraint_complement()
        if self.q_matrix.shape[0] - 2 < 1:
            raise InvalidBasisConfiguration("ns: 基底数が 1 未満になります")

        lo, hi = self.bspline.boundary_knots
        # 境界での値（切片）と 1 階導関数（傾き）
        self.tl0 = self._trans(self.bspline(lo, 0))
        self.tl1 = self._trans(self.bspline(lo, 1))
        self.tr0 = self._trans(self.bspline(hi, 0))
        self.tr1 = self._trans(self.bspline(hi, 1))

    @property
    def boundary_knots(self) -> np.ndarray:
        return self.bspline.boundary_knots

    def n_basis(self) -> int:
        return self.q_matrix.shape[0] - 2

    def required_scratch(self) -> int:
        return (
            self.bspline.required_scratch()
            + self.q_matrix.shape[0]
            + self.bspline.n_basis()
        )

    def evaluate(
        self, out: np.ndarray, scratch: np.ndarray, x: float, ders: int = 0
    ) -> None:
        if ders < 0:
            raise UnsupportedDerivativeOrder("ns", ders)

        nb = self.n_basis()
        lo, hi = self.bspline.boundary_knots
        if x < lo or x > hi:
            if x < lo:
                t0, t1, edge = self.tl0, self.tl1, lo
            else:
                t0, t1, edge = self.tr0, self.tr1, hi
            if ders == 0:
                np.multiply(t1, x - edge, out=out[:nb])
                out[:nb] += t0
            elif ders == 1:
                out[:nb] = t1
            else:
                out[:nb] = 0.0
            return

        n_q = self.q_matrix.shape[0]
        n_b = self.bspline.n_basis()
        lhs = scratch[:n_q]
        b = scratch[n_q : n_q + n_b]
        self.bspline.evaluate(b, scratch[n_q + n_b :], x, ders)
        np.dot(self.q_matrix, b[(not self.intercept) :], out=lhs)
        out[:nb] = lhs[2:]

    def _constraint_complement(self) -> np.ndarray:
        const = self.bspline.basis(self.bspline.boundary_knots, ders=2)
        if not self.intercept:
            const = const[:, 1:]

        # const^T = Q R の完全な Q を使う。Q の 3 列目以降が制約の直交補空間。
        q, r = linalg.qr(const.T)
        diag = np.abs(np.diag(r))
        tol = 1e-10 * max(1.0, float(np.max(np.abs(const))))
        if diag.size < 2 or np.any(diag <= tol):
            raise InvalidKnots("ns: QR 分解で必要なランクが得られません")
        return np.ascontiguousarray(q.T)

    def _trans(self, b: np.ndarray) -> np.ndarray:
        lhs = self.q_matrix @ (b if self.intercept else b[1:])
        return lhs[2:]


class ISplineBasis(Basis):
    """単調な I-spline 基底（M-spline の積分）。

    order + 1 階の B-spline 基底の右からの累積和で表す。定義域より左では 0、
    右では 1（導関数は 0）に固定する。
    """

    def __init__(
        self,
        boundary_knots: Sequence[float],
        interior_knots: Sequence[float] = (),
        intercept: bool = False,
        order: int = DEFAULT_ORDER,
    ) -> None:
        self.intercept = bool(intercept)
        self.order = _as_order(order)
        self.bspline = BSplineBasis(boundary_knots, interior_knots, True, self.order + 1)
        if self.n_basis() < 1:
            raise InvalidBasisConfiguration("ispline: 基底数が 1 未満になります")

    @property
    def boundary_knots(self) -> np.ndarray:
        return self.bspline.boundary_knots

    def n_basis(self) -> int:
        return self.bspline.n_basis() - (not self.intercept)

    def required_scratch(self) -> int:
        return self.bspline.required_scratch() + self.bspline.n_basis()

    def evaluate(
        self, out: np.ndarray, scratch: np.ndarray, x: float, ders: int = 0
    ) -> None:
        if ders < 0:
            raise UnsupportedDerivativeOrder("ispline", ders)

        nb = self.n_basis()
        lo, hi = self.bspline.boundary_knots
        if x < lo:
            out[:nb] = 0.0
            return
        if x > hi:
            out[:nb] = 0.0 if ders > 0 else 1.0
            return

        n_b = self.bspline.n_basis()
        b = scratch[:n_b]
        self.bspline.evaluate(b, scratch[n_b:], x, ders)

        # 累積和を打ち切る位置（x 以上となる最初の結節点）
        if self.bspline.interior_knots.size > 0:
            js = int(np.searchsorted(self.bspline.knots[:-1], x, side="left"))
        else:
            js = self.order + 1

        for j in range(n_b - 1, -1, -1):
            if j > js:
                b[j] = 0.0
            elif j != n_b - 1:
                b[j] += b[j + 1]
        if ders == 0:
            for j in range(n_b - 2, -1, -1):
                if j + self.order + 1 < js:
                    b[j] = 1.0

        out[:nb] = b[(not self.intercept) : n_b]


class MSplineBasis(Basis):
    """M-spline 基底。B-spline 基底を order / (t[j+order] - t[j]) で拡大する。"""

    def __init__(
        self,
        boundary_knots: Sequence[float],
        interior_knots: Sequence[float] = (),
        intercept: bool = False,
        order: int = DEFAULT_ORDER,
    ) -> None:
        self.bspline = BSplineBasis(boundary_knots, interior_knots, True, order)
        self.intercept = bool(intercept)
        if self.n_basis() < 1:
            raise InvalidBasisConfiguration("mspline: 基底数が 1 未満になります")

        knots = self.bspline.knots
        k = self.bspline.order
        n_b = self.bspline.n_basis()
        span = knots[k : k + n_b] - knots[:n_b]
        scale = np.zeros(n_b, dtype=float)
        np.divide(float(k), span, out=scale, where=span > 0)
        self._scale = scale

    @property
    def boundary_knots(self) -> np.ndarray:
        return self.bspline.boundary_knots

    def n_basis(self) -> int:
        return self.bspline.n_basis() - (not self.intercept)

    def required_scratch(self) -> int:
        return self.bspline.required_scratch() + self.bspline.n_basis()

    def evaluate(
        self, out: np.ndarray, scratch: np.ndarray, x: float, ders: int = 0
    ) -> None:
        n_b = self.bspline.n_basis()
        wrk = scratch[:n_b]
        self.bspline.evaluate(wrk, scratch[n_b:], x, ders)
        wrk *= self._scale
        out[: self.n_basis()] = wrk[(not self.intercept) :]


def _as_order(order: int) -> int:
    if int(order) != order or int(order) < 1:
        raise InvalidBasisConfiguration("order は 1 以上の整数である必要があります")
    return int(order)


def _validate_knots(knots: ArrayLike) -> np.ndarray:
    knots_array = np.array(knots, dtype=float).reshape(-1)
    if np.any(~np.isfinite(knots_array)):
        raise InvalidKnots("knots に無限大または NaN が含まれています")
    if np.any(np.diff(knots_array) < 0):
        raise InvalidKnots("knots は非減少列である必要があります")
    return knots_array


def _validate_boundary_knots(boundary_knots: Sequence[float]) -> np.ndarray:
    bk = _validate_knots(boundary_knots)
    if bk.size != 2:
        raise InvalidKnots("boundary_knots は 2 点である必要があります")
    if not bk[0] < bk[1]:
        raise InvalidKnots("boundary_knots は lower < upper である必要があります")
    return bk


def _validate_interior_knots(
    interior_knots: Sequence[float], boundary_knots: np.ndarray
) -> np.ndarray:
    ik = _validate_knots(interior_knots)
    if ik.size > 0 and (ik[0] <= boundary_knots[0] or ik[-1] >= boundary_knots[1]):
        raise InvalidKnots("interior_knots は境界結節点の内側にある必要があります")
    return ik
