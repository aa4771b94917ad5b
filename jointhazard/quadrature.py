"""区間積分を数値近似するための求積（Quadrature）ルール。

目的:
    期待累積ハザードには閉じた形がないため、区間 [lower, upper] 上の積分を
    Q 点の評価点 v と重み w による加重和で近似する。

設計意図:
    - ルールは単位区間 [0, 1] 上の (node, weight) として一度だけ作り、不変に保つ
    - 呼び出しごとに node*(upper-lower)+lower, weight*(upper-lower) へ変換する
    - 積分器側は nodes_weights(lower, upper) だけを使えばよい

注意:
    デフォルトは Gauss-Legendre（Q=100）を用いる。
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

import numpy as np

from .types import ArrayLike


class QuadratureRule:
    """単位区間上の求積ルール。

    config の想定:
        - "Q": 求積点数（正の整数）
        - "rule": "gauss_legendre" または "simpson"
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None) -> None:
        # config は None の可能性があるため、空 dict に正規化して保持する。
        self.config = config or {}
        self.rule = self._normalize_rule(self.config.get("rule", "gauss_legendre"))
        self.q = int(self.config.get("Q", 100))
        self._validate_rule()
        nodes, weights = self._unit_rule()
        self._set_unit_rule(nodes, weights)

    @classmethod
    def from_arrays(cls, nodes: ArrayLike, weights: ArrayLike) -> "QuadratureRule":
        """単位区間上の節点と重みを直接与えてルールを作る。

        Raises:
            ValueError: 節点が [0,1] 内で狭義単調増加でない、重みが正でない、
                重みの和が 1 でない場合。
        """
        nodes_arr = np.asarray(nodes, dtype=float).reshape(-1)
        weights_arr = np.asarray(weights, dtype=float).reshape(-1)
        order = np.argsort(nodes_arr)
        rule = cls.__new__(cls)
        rule.config = {"rule": "custom", "Q": int(nodes_arr.size)}
        rule.rule = "custom"
        rule.q = int(nodes_arr.size)
        rule._set_unit_rule(nodes_arr[order], weights_arr[order])
        return rule

    @property
    def nodes(self) -> np.ndarray:
        """単位区間上の節点（読み取り専用）。"""
        return self._nodes

    @property
    def weights(self) -> np.ndarray:
        """単位区間上の重み（読み取り専用）。"""
        return self._weights

    def __len__(self) -> int:
        return self.q

    def nodes_weights(self, lower: float, upper: float) -> Tuple[np.ndarray, np.ndarray]:
        """区間 [lower, upper] に対する求積点と重みを返す。

        Args:
            lower: 区間左端。
            upper: 区間右端。lower <= upper を要求する。

        Returns:
            (v, w)
            - v: 求積点（形状 (Q,)）
            - w: 重み（形状 (Q,)）

        Raises:
            ValueError: lower > upper、または lower/upper が NaN/inf の場合。
        """
        a = float(lower)
        b = float(upper)
        if not np.isfinite(a) or not np.isfinite(b):
            raise ValueError("lower, upper は有限値である必要があります。")
        if a > b:
            raise ValueError("lower は upper 以下である必要があります。")

        width = b - a
        return self._nodes * width + a, self._weights * width

    def integrate(self, f, lower: float, upper: float) -> float:
        """ベクトル化された関数 f の [lower, upper] 上の積分を近似する。"""
        v, w = self.nodes_weights(lower, upper)
        return float(np.dot(w, f(v)))

    def _unit_rule(self) -> Tuple[np.ndarray, np.ndarray]:
        if self.rule == "gauss_legendre":
            nodes, weights = np.polynomial.legendre.leggauss(self.q)
            return 0.5 * nodes + 0.5, 0.5 * weights

        nodes = np.linspace(0.0, 1.0, self.q, dtype=float)
        h = 1.0 / (self.q - 1)
        weights = np.ones(self.q, dtype=float)
        weights[1:-1:2] = 4.0
        weights[2:-2:2] = 2.0
        return nodes, (h / 3.0) * weights

    def _set_unit_rule(self, nodes: np.ndarray, weights: np.ndarray) -> None:
        if nodes.ndim != 1 or nodes.shape != weights.shape or nodes.size == 0:
            raise ValueError("nodes と weights は同じ長さの 1 次元配列である必要があります。")
        if np.any(~np.isfinite(nodes)) or np.any(~np.isfinite(weights)):
            raise ValueError("nodes/weights に NaN/inf が含まれています。")
        if nodes[0] < 0.0 or nodes[-1] > 1.0 or np.any(np.diff(nodes) <= 0):
            raise ValueError("nodes は [0,1] 内の狭義単調増加列である必要があります。")
        if np.any(weights <= 0):
            raise ValueError("weights は正である必要があります。")
        if abs(float(weights.sum()) - 1.0) > 1e-10:
            raise ValueError("weights の和は 1 である必要があります。")

        # 共有しても安全なように書き込み不可にしておく。
        self._nodes = np.array(nodes, dtype=float)
        self._weights = np.array(weights, dtype=float)
        self._nodes.setflags(write=False)
        self._weights.setflags(write=False)

    def _validate_rule(self) -> None:
        if self.q <= 0:
            raise ValueError("Q は正の整数である必要があります。")
        if self.rule == "gauss_legendre":
            return
        if self.rule == "simpson":
            if self.q < 3 or self.q % 2 == 0:
                raise ValueError("Simpson の Q は 3 以上の奇数である必要があります。")
            return
        raise ValueError(f"未知の rule が指定されました: {self.rule!r}")

    def _normalize_rule(self, rule: Any) -> str:
        if rule is None:
            return "gauss_legendre"
        return str(rule).strip().lower().replace("-", "_")
