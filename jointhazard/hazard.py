"""期待累積ハザード（ハザードの区間積分）の計算。

対象:
    ∫_lower^upper exp( Z·delta + g(x)·omega + Mα(x)·zeta + ½ Mα(x)ᵀ Ψ Mα(x) ) dx

    - g(x): ベースラインの時間基底
    - Mα(x): マーカー i ごとに Σ_k alpha_{i,k} B_i^{(ders_{i,k})}(x) を積み上げ、
      末尾にフレイルティ用の定数 1 を付けたベクトル（長さ R + 1）

実装方針:
    - 求積点ごとの基底値はパラメータに依存しないため、評価用アリーナ上の
      float64 の表として先に作る
    - パラメータに依存する部分（線形予測子・二次形式・exp・加重和）は
      array_namespace で選んだ xp（numpy / jax.numpy）に対して一度だけ書く
    - 二次形式は (M Ψ) * M の行和として計算し、Q x D x D の中間配列は作らない

注意:
    Ψ の対称性・半正定値性は検査しない（呼び出し側の前提条件）。
"""

from __future__ import annotations

from typing import List, Optional, Sequence, Tuple

import numpy as np

from .arena import WorkingMemory
from .autodiff import array_namespace
from .bases import Basis, clone_bases, max_scratch
from .errors import ConfigurationMismatch
from .quadrature import QuadratureRule
from .types import ArrayLike, DerivativeOrders, Number


def normalize_ders(ders: DerivativeOrders, n_markers: int) -> List[List[int]]:
    """マーカーごとの微分次数を「int のリストのリスト」にそろえる。

    Raises:
        ConfigurationMismatch: 長さがマーカー数と異なる、または空の要素がある場合。
    """
    ders_list = list(ders)
    if len(ders_list) != n_markers:
        raise ConfigurationMismatch(
            f"ders の長さ ({len(ders_list)}) がマーカー数 ({n_markers}) と一致しません"
        )

    out: List[List[int]] = []
    for i, d in enumerate(ders_list):
        entry = [int(d)] if np.isscalar(d) else [int(v) for v in d]
        if not entry:
            raise ConfigurationMismatch(f"マーカー {i} の ders が空です")
        out.append(entry)
    return out


class ExpectedCumHazard:
    """1 種類の生存アウトカムに対する期待累積ハザードの積分器。

    Args:
        baseline: ベースラインの時間基底 g。
        markers: マーカーごとの時間基底。
        n_fixef: 固定効果（Z の長さ）。
        ders: マーカーごとの微分次数（int または int の列）。
            0 は水準、正は傾き、負は累積（積分）による関連を表す。

    構築時に基底は複製されるため、呼び出し側の基底を後から変更しても影響しない。
    """

    def __init__(
        self,
        baseline: Basis,
        markers: Sequence[Basis],
        n_fixef: int,
        ders: DerivativeOrders,
    ) -> None:
        markers = list(markers)
        self.ders = normalize_ders(ders, len(markers))
        self.baseline = baseline.clone()
        self.markers = clone_bases(markers)
        self.n_fixef = int(n_fixef)

        self.n_baseline = self.baseline.n_basis()
        self._marker_offsets: List[int] = []
        offset = 0
        for marker in self.markers:
            self._marker_offsets.append(offset)
            offset += marker.n_basis()
        self.n_shared = offset
        # 共有ランダム効果 + フレイルティ 1 つ
        self.n_zeta = self.n_shared + 1
        self.n_associations = sum(len(d) for d in self.ders)

    def required_memory(self, n_nodes: int) -> Tuple[int, int]:
        """1 回の評価に必要な (評価用アリーナ, 基底用アリーナ) の要素数。"""
        n_nodes = int(n_nodes)
        n_eval = (
            2 * n_nodes
            + n_nodes * self.n_baseline
            + (self.n_associations + 1) * n_nodes * self.n_zeta
        )
        n_basis = max_scratch([self.baseline, *self.markers])
        return n_eval, n_basis

    def __call__(
        self,
        quadrature: QuadratureRule,
        lower: float,
        upper: float,
        Z: ArrayLike,
        delta: ArrayLike,
        omega: ArrayLike,
        alpha: ArrayLike,
        zeta: ArrayLike,
        psi: ArrayLike,
        evaluation_memory: Optional[WorkingMemory] = None,
        basis_memory: Optional[WorkingMemory] = None,
    ) -> Number:
        """[lower, upper] 上のハザードの積分を返す。

        delta/omega/alpha/zeta/psi が NumPy 配列なら float、JAX の配列なら
        勾配を記録したスカラーを返す。psi は (D, D) または長さ D*D
        （D = マーカー基底数の総和 + 1）。

        Raises:
            ValueError: 区間が不正、または配列の長さが構成と一致しない場合。
        """
        self._check_shapes(Z, delta, omega, alpha, zeta)
        if np.size(psi) != self.n_zeta**2:
            raise ValueError(f"psi の要素数は {self.n_zeta ** 2} である必要があります")

        nodes, weights = quadrature.nodes_weights(lower, upper)
        evaluation_memory, basis_memory = _memory_or_new(
            self.required_memory(nodes.size), evaluation_memory, basis_memory
        )
        v = evaluation_memory.request(nodes.size)
        w = evaluation_memory.request(nodes.size)
        v[:] = nodes
        w[:] = weights
        g_table, m_table = self._tables(v, evaluation_memory, basis_memory)

        xp = array_namespace(delta, omega, alpha, zeta, psi)
        if xp is not np:
            # アリーナの領域は呼び出し側が巻き戻して再利用するため、グラフにはコピーを渡す
            w, g_table, m_table = xp.array(w), xp.array(g_table), xp.array(m_table)
        m = self._m_alpha(xp, m_table, alpha)
        psi_mat = xp.reshape(xp.asarray(psi), (self.n_zeta, self.n_zeta))

        eta = (
            xp.dot(np.asarray(Z, dtype=float), xp.asarray(delta))
            + xp.dot(g_table, xp.asarray(omega))
            + xp.dot(m, xp.asarray(zeta))
            + 0.5 * xp.sum(xp.dot(m, psi_mat) * m, axis=1)
        )
        return xp.dot(w, xp.exp(eta))

    def log_hazard(
        self,
        x: float,
        Z: ArrayLike,
        delta: ArrayLike,
        omega: ArrayLike,
        alpha: ArrayLike,
        zeta: ArrayLike,
        evaluation_memory: Optional[WorkingMemory] = None,
        basis_memory: Optional[WorkingMemory] = None,
    ) -> Number:
        """時刻 x での対数ハザードの線形部分 Z·delta + g(x)·omega + Mα(x)·zeta。"""
        self._check_shapes(Z, delta, omega, alpha, zeta)
        evaluation_memory, basis_memory = _memory_or_new(
            self.required_memory(1), evaluation_memory, basis_memory
        )
        v = evaluation_memory.request(1)
        v[0] = float(x)
        g_table, m_table = self._tables(v, evaluation_memory, basis_memory)

        xp = array_namespace(delta, omega, alpha, zeta)
        if xp is not np:
            g_table, m_table = xp.array(g_table), xp.array(m_table)
        m = self._m_alpha(xp, m_table, alpha)
        eta = (
            xp.dot(np.asarray(Z, dtype=float), xp.asarray(delta))
            + xp.dot(g_table, xp.asarray(omega))
            + xp.dot(m, xp.asarray(zeta))
        )
        return eta[0]

    def _tables(
        self,
        nodes: np.ndarray,
        evaluation_memory: WorkingMemory,
        basis_memory: WorkingMemory,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """求積点ごとの基底値の表を作る。

        Returns:
            (g_table, m_table)
            - g_table: (Q, n_baseline) のベースライン基底
            - m_table: (A + 1, Q, D) の関連項の表。a 番目の面は a 番目の関連係数に
              掛かる基底値で、該当マーカーの列以外は 0。最後の面はフレイルティ列の 1。
        """
        n_nodes = nodes.size
        scratch = basis_memory.request(max_scratch([self.baseline, *self.markers]))
        g_table = evaluation_memory.request((n_nodes, self.n_baseline))
        m_table = evaluation_memory.request(
            (self.n_associations + 1, n_nodes, self.n_zeta)
        )
        m_table[:] = 0.0
        m_table[-1, :, -1] = 1.0

        for q, x in enumerate(nodes):
            x = float(x)
            self.baseline.evaluate(g_table[q], scratch, x, 0)
            a = 0
            for marker, offset, ders in zip(self.markers, self._marker_offsets, self.ders):
                n = marker.n_basis()
                for d in ders:
                    marker.evaluate(m_table[a, q, offset : offset + n], scratch, x, d)
                    a += 1
        return g_table, m_table

    def _m_alpha(self, xp, m_table: np.ndarray, alpha: ArrayLike):
        # フレイルティの面には係数 1 を掛ける
        alpha_full = xp.concatenate([xp.asarray(alpha, dtype=float), xp.ones(1)])
        return xp.tensordot(alpha_full, m_table, axes=1)

    def _check_shapes(
        self,
        Z: ArrayLike,
        delta: ArrayLike,
        omega: ArrayLike,
        alpha: ArrayLike,
        zeta: ArrayLike,
    ) -> None:
        expected = {
            "Z": (Z, self.n_fixef),
            "delta": (delta, self.n_fixef),
            "omega": (omega, self.n_baseline),
            "alpha": (alpha, self.n_associations),
            "zeta": (zeta, self.n_zeta),
        }
        for name, (value, size) in expected.items():
            if np.size(value) != size:
                raise ValueError(
                    f"{name} の長さは {size} である必要があります（{np.size(value)} が与えられました）"
                )


def _memory_or_new(
    requirement: Tuple[int, int],
    evaluation_memory: Optional[WorkingMemory],
    basis_memory: Optional[WorkingMemory],
) -> Tuple[WorkingMemory, WorkingMemory]:
    n_eval, n_basis = requirement
    if evaluation_memory is None:
        evaluation_memory = WorkingMemory(n_eval)
    if basis_memory is None:
        basis_memory = WorkingMemory(n_basis)
    return evaluation_memory, basis_memory
