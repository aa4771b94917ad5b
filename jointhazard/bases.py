"""時間の基底展開（スプライン・多項式）を表す抽象インターフェース。

本パッケージでは、ベースラインハザードの時間変化とマーカーの潜在軌道の両方を
基底関数の線形結合として表現する。積分器は「基底値とその導関数・原始関数」を
受け取るだけにして、基底の種類には依存しない。

設計上の狙い:
- 5 種類の基底（B-spline / natural spline / I-spline / M-spline / 多項式）を
  同じ 4 つの操作 {n_basis, required_scratch, evaluate, clone} で扱う
- evaluate は呼び出し側が用意した出力配列と作業配列に書き込むだけで、
  配列を新たに確保しない
- natural spline / I-spline / M-spline は B-spline をフィールドとして保持する（合成）

注意:
- Basis は抽象インターフェースであり、具象クラスで計算を定義する
- ders の意味: 0 は値、k > 0 は k 階導関数、-k は lower_limit から x までの k 重積分
"""

from __future__ import annotations

import copy
from typing import Any, Iterable, List, Mapping, Optional

import numpy as np

from .errors import InvalidBasisConfiguration
from .types import ArrayLike

DEFAULT_ORDER = 4


class Basis:
    """基底展開のインターフェース。

    想定する入出力:
        - x: スカラーの評価点（時刻）
        - out: 長さ n_basis() 以上の 1 次元 float 配列
        - scratch: 長さ required_scratch() 以上の 1 次元 float 配列

    例外:
        - 具象クラスが未実装の場合は NotImplementedError
        - 実装されていない ders を要求した場合は UnsupportedDerivativeOrder
    """

    lower_limit: float = 0.0

    def n_basis(self) -> int:
        """基底関数の数を返す。構築時に固定される。"""
        raise NotImplementedError("n_basis is not implemented.")

    def required_scratch(self) -> int:
        """evaluate が必要とする作業配列の要素数を返す。"""
        raise NotImplementedError("required_scratch is not implemented.")

    def evaluate(
        self, out: np.ndarray, scratch: np.ndarray, x: float, ders: int = 0
    ) -> None:
        """out[:n_basis()] に基底（またはその導関数・原始関数）の値を書き込む。

        Args:
            out: 出力先。
            scratch: 作業配列。内容は呼び出しの間だけ使われる。
            x: 評価点。
            ders: 微分次数（負の値は積分次数）。

        Raises:
            UnsupportedDerivativeOrder: ders に対応する閉じた形がない場合。
        """
        raise NotImplementedError("evaluate is not implemented.")

    def clone(self) -> "Basis":
        """独立したコピーを返す（結節点列なども共有しない）。"""
        return copy.deepcopy(self)

    def set_lower_limit(self, x: float) -> None:
        """ders < 0（積分）のときの積分下限を設定する。"""
        self.lower_limit = float(x)

    def __call__(self, x: float, ders: int = 0) -> np.ndarray:
        """1 点での評価結果を新しい配列として返す（利便用、配列を確保する）。"""
        out = np.empty(self.n_basis(), dtype=float)
        scratch = np.empty(self.required_scratch(), dtype=float)
        self.evaluate(out, scratch, float(x), ders)
        return out

    def basis(
        self, x: ArrayLike, ders: int = 0, centre: Optional[float] = None
    ) -> np.ndarray:
        """複数点での評価結果を行列 (len(x), n_basis()) として返す。

        Args:
            x: 評価点の列。
            ders: 微分次数。
            centre: 指定した場合、ders <= 0 なら centre での値を各行から引く。

        Returns:
            基底行列。
        """
        x_array = np.asarray(x, dtype=float).reshape(-1)
        n = self.n_basis()
        out = np.empty((x_array.size, n), dtype=float)
        scratch = np.empty(self.required_scratch(), dtype=float)
        for i, xi in enumerate(x_array):
            self.evaluate(out[i], scratch, float(xi), ders)

        if centre is not None and ders <= 0:
            centering = np.empty(n, dtype=float)
            self.evaluate(centering, scratch, float(centre), 0)
            out -= centering
        return out


def clone_bases(bases: Iterable[Basis]) -> List[Basis]:
    """基底の列を要素ごとに複製した新しいリストを返す。"""
    return [b.clone() for b in bases]


def max_scratch(bases: Iterable[Basis]) -> int:
    """基底の列を順に評価するのに必要な作業配列の大きさ。"""
    return max((b.required_scratch() for b in bases), default=0)


def basis_from_config(config: Mapping[str, Any]) -> Basis:
    """辞書（設定）から基底を構築する。

    config の想定:
        - "type": "bs" / "ns" / "ispline" / "mspline" / "poly"
        - スプライン: "boundary_knots", "interior_knots", "intercept", "order"
        - 多項式: "degree", "intercept", 直交多項式なら "alpha" と "norm2"
        - 共通: "lower_limit"（積分下限、省略時 0）

    Raises:
        InvalidBasisConfiguration: type が未知、または引数が不足・過剰な場合。
    """
    # 循環 import を避けるため、具象クラスはここで読み込む。
    from .polynomial import OrthoPolyBasis
    from .splines import (
        BSplineBasis,
        ISplineBasis,
        MSplineBasis,
        NaturalSplineBasis,
    )

    # Mapping を直接変更しないよう、まず通常の dict にコピーする。
    config_dict = dict(config)
    kind = str(config_dict.pop("type", "")).strip().lower().replace("-", "_")
    lower_limit = config_dict.pop("lower_limit", None)

    spline_types = {
        "bs": BSplineBasis,
        "bspline": BSplineBasis,
        "ns": NaturalSplineBasis,
        "natural_spline": NaturalSplineBasis,
        "ispline": ISplineBasis,
        "mspline": MSplineBasis,
    }
    try:
        if kind in spline_types:
            basis: Basis = spline_types[kind](**config_dict)
        elif kind in ("poly", "orth_poly", "polynomial"):
            if "alpha" in config_dict:
                basis = OrthoPolyBasis.orthogonal(**config_dict)
            else:
                basis = OrthoPolyBasis(**config_dict)
        else:
            raise InvalidBasisConfiguration(f"未知の基底 type が指定されました: {kind!r}")
    except TypeError as exc:
        raise InvalidBasisConfiguration(f"{kind} の引数が不正です: {exc}") from exc

    if lower_limit is not None:
        basis.set_lower_limit(float(lower_limit))
    return basis
