"""多項式基底（生の多項式と、R の poly() 互換の直交多項式）。

- 生の多項式: x^p（intercept=True なら p = 0..degree、False なら p = 1..degree）
- 直交多項式: 3 項漸化式
      P_0 = 1, P_1 = x - alpha_0,
      P_{c+1} = (x - alpha_c) P_c - (norm2_{c+1} / norm2_c) P_{c-1}
  を sqrt(norm2_{j+1}) で正規化したもの（切片列は正規化せず 1 のまま）。

導関数と積分は、生の多項式 x^0..x^degree の導関数・積分を計算してから
「単項式 → 直交多項式」の係数行列を掛けて求める。
"""

from __future__ import annotations

import math
from typing import Tuple

import numpy as np

from .bases import Basis
from .errors import InvalidBasisConfiguration
from .types import ArrayLike


class OrthoPolyBasis(Basis):
    """多項式基底。

    Args:
        degree: 多項式の次数（0 以上）。
        intercept: True の場合は定数項の列を含める。

    直交多項式を使う場合は orthogonal() か poly_basis() で構築する。
    """

    def __init__(self, degree: int, intercept: bool = False) -> None:
        if int(degree) != degree or int(degree) < 0:
            raise InvalidBasisConfiguration("degree は 0 以上の整数である必要があります")
        self.degree = int(degree)
        self.intercept = bool(intercept)
        if self.n_basis() < 1:
            raise InvalidBasisConfiguration("poly: 基底数が 1 未満になります")

        self.raw = True
        self.alpha = np.zeros(0, dtype=float)
        self.norm2 = np.zeros(0, dtype=float)
        self._orth_map = np.zeros((0, 0), dtype=float)

    @classmethod
    def orthogonal(
        cls, alpha: ArrayLike, norm2: ArrayLike, intercept: bool = False
    ) -> "OrthoPolyBasis":
        """漸化式の係数 alpha（長さ degree）と norm2（長さ degree+2）から構築する。"""
        alpha_arr = np.asarray(alpha, dtype=float).reshape(-1)
        norm2_arr = np.asarray(norm2, dtype=float).reshape(-1)
        if norm2_arr.size != alpha_arr.size + 2:
            raise InvalidBasisConfiguration(
                "norm2 の長さは alpha の長さ + 2 である必要があります"
            )
        if np.any(~np.isfinite(alpha_arr)) or np.any(~np.isfinite(norm2_arr)):
            raise InvalidBasisConfiguration("alpha/norm2 に NaN/inf が含まれています")
        if np.any(norm2_arr <= 0):
            raise InvalidBasisConfiguration("norm2 は正である必要があります")

        basis = cls(alpha_arr.size, intercept)
        basis.raw = False
        basis.alpha = alpha_arr
        basis.norm2 = norm2_arr
        basis._orth_map = basis._build_orth_map()
        return basis

    @classmethod
    def poly_basis(cls, x: ArrayLike, degree: int) -> Tuple["OrthoPolyBasis", np.ndarray]:
        """データ x から直交多項式を作る（R の poly(x, degree) 相当）。

        Returns:
            (basis, Z)
            - basis: intercept=False の直交多項式基底
            - Z: x での基底行列 (len(x), degree)。各列は平均 0・ノルム 1。

        Raises:
            InvalidBasisConfiguration: 異なる x の値が degree 個以下の場合。
        """
        x_arr = np.asarray(x, dtype=float).reshape(-1)
        if int(degree) < 1:
            raise InvalidBasisConfiguration("degree は 1 以上である必要があります")
        degree = int(degree)
        if np.unique(x_arr).size <= degree:
            raise InvalidBasisConfiguration(
                "poly: 異なる x の値の数が degree より多い必要があります"
            )

        xbar = float(np.mean(x_arr))
        xc = x_arr - xbar
        vander = np.vander(xc, degree + 1, increasing=True)
        q, r = np.linalg.qr(vander)
        diag = np.diag(r)
        if np.any(np.abs(diag) <= 1e-10 * max(1.0, float(np.max(np.abs(diag))))):
            raise InvalidBasisConfiguration("poly: 計画行列のランクが不足しています")

        z = q * diag
        norm2 = np.sum(z**2, axis=0)
        alpha = (np.sum(xc[:, None] * z**2, axis=0) / norm2 + xbar)[:degree]
        norm2 = np.concatenate([[1.0], norm2])
        values = z / np.sqrt(norm2[1:])
        return cls.orthogonal(alpha, norm2, intercept=False), values[:, 1:]

    def n_basis(self) -> int:
        return self.degree + self.intercept

    def required_scratch(self) -> int:
        return 0 if self.raw else self.degree + 1

    def evaluate(
        self, out: np.ndarray, scratch: np.ndarray, x: float, ders: int = 0
    ) -> None:
        if self.raw:
            start = 0 if self.intercept else 1
            self._raw_into(out, x, ders, start)
            return

        n = self.n_basis()
        p = scratch[: self.degree + 1]
        if ders == 0:
            self._recursion_into(p, x)
            if self.intercept:
                out[0] = 1.0
                out[1:n] = p[1:] / np.sqrt(self.norm2[2:])
            else:
                out[:n] = p[1:] / np.sqrt(self.norm2[2:])
            return

        # 単項式 x^0..x^degree の導関数（積分）を係数行列で写す
        self._raw_into(p, x, ders, 0)
        np.dot(p, self._orth_map, out=out[:n])

    def _recursion_into(self, p: np.ndarray, x: float) -> None:
        alpha, norm2 = self.alpha, self.norm2
        p[0] = 1.0
        if self.degree > 0:
            p[1] = x - alpha[0]
        for c in range(1, self.degree):
            p[c + 1] = (x - alpha[c]) * p[c] - norm2[c + 1] / norm2[c] * p[c - 1]

    def _raw_into(self, out: np.ndarray, x: float, ders: int, start: int) -> None:
        lower = self.lower_limit
        for j, power in enumerate(range(start, self.degree + 1)):
            if ders >= 0:
                if power < ders:
                    out[j] = 0.0
                else:
                    out[j] = math.perm(power, ders) * x ** (power - ders)
                continue

            # lower から x までの k 重積分: G(x) から G の lower でのテイラー多項式を引く
            k = -ders
            value = x ** (power + k) / math.perm(power + k, k)
            for i in range(k):
                g_i = lower ** (power + k - i) / math.perm(power + k - i, k - i)
                value -= g_i * (x - lower) ** i / math.factorial(i)
            out[j] = value

    def _build_orth_map(self) -> np.ndarray:
        """単項式の係数から正規化済み直交多項式への行列 (degree+1, n_basis) を作る。"""
        deg = self.degree
        coefs = np.zeros((deg + 1, deg + 1), dtype=float)  # 行: P_j, 列: べき
        coefs[0, 0] = 1.0
        if deg > 0:
            coefs[1, 0] = -self.alpha[0]
            coefs[1, 1] = 1.0
        for c in range(1, deg):
            coefs[c + 1, 1:] = coefs[c, :-1]
            coefs[c + 1] -= self.alpha[c] * coefs[c]
            coefs[c + 1] -= self.norm2[c + 1] / self.norm2[c] * coefs[c - 1]

        coefs[1:] /= np.sqrt(self.norm2[2:])[:, None]
        orth_map = coefs.T
        if not self.intercept:
            orth_map = orth_map[:, 1:]
        return np.ascontiguousarray(orth_map)
