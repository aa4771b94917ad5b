"""複数の生存アウトカムにわたる寄与の集約。

各アウトカム i・被験者 j の寄与:
    event_ij * ( -log h_i(upper_ij) ) + ∫_{lower_ij}^{upper_ij} h_i(x) dx

ここで h_i は ExpectedCumHazard の被積分関数で、zeta/Psi は
「共有ランダム効果の全要素 + アウトカム i のフレイルティ要素」に制限して使う。
打ち切り（event=0）の場合は積分項だけを加える。

呼び出し側は (アウトカム, 被験者) の組ごとに __call__ を呼んで合計するか、
total / evaluate_survival_term をまとめて使う。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from tqdm.auto import tqdm

from .arena import Workspace
from .autodiff import evaluate, is_recording, value_and_gradient
from .bases import Basis
from .errors import ConfigurationMismatch
from .hazard import ExpectedCumHazard
from .logger import WandBLogger
from .params import ParameterLayout
from .quadrature import QuadratureRule
from .types import ArrayLike, DerivativeOrders, Number


@dataclass
class SurvivalObservations:
    """1 種類のアウトカムについての観測（被験者 j はデザイン行列の j 列目に対応）。

    Attributes:
        lower: 観測区間の左端（遅延エントリー時刻）。
        upper: 観測区間の右端（イベントまたは打ち切り時刻）。
        event: 1 ならイベントを観測、0 なら upper で打ち切り。
    """

    lower: np.ndarray
    upper: np.ndarray
    event: np.ndarray

    def __post_init__(self) -> None:
        self.lower = np.asarray(self.lower, dtype=float).reshape(-1)
        self.upper = np.asarray(self.upper, dtype=float).reshape(-1)
        event = np.asarray(self.event).reshape(-1)

        n = self.lower.size
        if self.upper.size != n or event.size != n:
            raise ValueError("lower, upper, event は同じ長さである必要があります。")
        if np.any(~np.isfinite(self.lower)) or np.any(~np.isfinite(self.upper)):
            raise ValueError("lower, upper に NaN/inf が含まれています。")
        if np.any(self.lower > self.upper):
            raise ValueError("lower は upper 以下である必要があります。")
        if not np.all(np.isin(event, (0, 1))):
            raise ValueError("event は 0/1 である必要があります。")
        self.event = event.astype(int)

    def __len__(self) -> int:
        return int(self.lower.size)

    @classmethod
    def from_frame(
        cls,
        frame: pd.DataFrame,
        lower: str = "lower",
        upper: str = "upper",
        event: str = "event",
    ) -> "SurvivalObservations":
        """DataFrame の列から観測を作る。

        Raises:
            KeyError: 指定した列が存在しない場合。
        """
        missing = [col for col in (lower, upper, event) if col not in frame.columns]
        if missing:
            raise KeyError(f"列が見つかりません: {missing}")
        return cls(
            lower=frame[lower].to_numpy(dtype=float),
            upper=frame[upper].to_numpy(dtype=float),
            event=frame[event].to_numpy(),
        )


class SurvivalTerm:
    """生存アウトカムの寄与（負の変分下界のうち生存部分）を計算する。

    Args:
        baselines: アウトカムごとのベースライン時間基底。
        markers: マーカーごとの時間基底（全アウトカムで共有）。
        designs: アウトカムごとのデザイン行列（行 = 固定効果、列 = 被験者）。
        layout: パラメータベクトルの配置。
        observations: アウトカムごとの観測。
        ders: アウトカムごとの、マーカー別の微分次数。

    Raises:
        ConfigurationMismatch: 各引数の長さ・大きさが layout や基底数と整合しない場合。
    """

    def __init__(
        self,
        baselines: Sequence[Basis],
        markers: Sequence[Basis],
        designs: Sequence[ArrayLike],
        layout: ParameterLayout,
        observations: Sequence[SurvivalObservations],
        ders: Sequence[DerivativeOrders],
    ) -> None:
        baselines = list(baselines)
        markers = list(markers)
        n_outcomes = len(baselines)
        if not (len(designs) == len(observations) == len(ders) == n_outcomes):
            raise ConfigurationMismatch(
                "baselines, designs, observations, ders の長さが一致しません"
            )
        if layout.n_outcomes != n_outcomes or layout.n_markers != len(markers):
            raise ConfigurationMismatch(
                "layout のアウトカム数・マーカー数が基底の数と一致しません"
            )
        for i, marker in enumerate(markers):
            if layout.marker_info(i).n_rng != marker.n_basis():
                raise ConfigurationMismatch(
                    f"マーカー {i} のランダム効果数が基底数 ({marker.n_basis()}) と一致しません"
                )

        self.layout = layout
        self.observations = list(observations)
        self.designs: List[np.ndarray] = []
        self._hazards: List[ExpectedCumHazard] = []
        for i in range(n_outcomes):
            design = np.asarray(designs[i], dtype=float)
            if design.ndim != 2:
                raise ConfigurationMismatch(f"designs[{i}] は 2 次元配列である必要があります")
            hazard = ExpectedCumHazard(baselines[i], markers, design.shape[0], ders[i])

            info = layout.surv_info(i)
            if info.n_fixef != design.shape[0]:
                raise ConfigurationMismatch(f"designs[{i}] の行数が固定効果数と一致しません")
            if design.shape[1] != len(self.observations[i]):
                raise ConfigurationMismatch(f"designs[{i}] の列数が観測数と一致しません")
            if info.n_variying != hazard.n_baseline:
                raise ConfigurationMismatch(
                    f"アウトカム {i} の時間変化係数の数がベースライン基底数と一致しません"
                )
            if layout.n_associations(i) != hazard.n_associations:
                raise ConfigurationMismatch(
                    f"アウトカム {i} の関連係数の数が ders の要素数と一致しません"
                )

            self.designs.append(design)
            self._hazards.append(hazard)

        n_shared = layout.n_shared
        self._idx_use = [
            np.append(np.arange(n_shared), n_shared + i) for i in range(n_outcomes)
        ]

    def n_outcomes(self) -> int:
        return len(self._hazards)

    def hazard(self, outcome: int) -> ExpectedCumHazard:
        """アウトカム outcome の積分器。"""
        return self._hazards[outcome]

    def n_terms(self, outcome: int) -> int:
        """アウトカム outcome の被験者数。"""
        return len(self.observations[outcome])

    def required_memory(self, n_nodes: int) -> Tuple[int, int]:
        """1 組の評価に必要な (評価用アリーナ, 基底用アリーナ) の要素数。"""
        n_eval, n_basis = 0, 0
        for hazard in self._hazards:
            # 積分と upper での対数ハザードの 2 回分
            e_int, b_int = hazard.required_memory(n_nodes)
            e_log, b_log = hazard.required_memory(1)
            n_eval = max(n_eval, e_int + e_log)
            n_basis = max(n_basis, b_int + b_log)
        return n_eval, n_basis

    def __call__(
        self,
        par: ArrayLike,
        idx: int,
        outcome: int,
        quadrature: QuadratureRule,
        workspace: Optional[Workspace] = None,
    ) -> Number:
        """アウトカム outcome の被験者 idx の寄与を返す。

        workspace は required_memory(len(quadrature)) 分だけあれば足りる。
        評価に使った領域は返す前に巻き戻すので、組の数によらず使い回せる。

        Raises:
            IndexError: outcome または idx が範囲外の場合。
        """
        if not 0 <= outcome < self.n_outcomes():
            raise IndexError(f"outcome は 0 以上 {self.n_outcomes()} 未満である必要があります")
        if not 0 <= idx < self.n_terms(outcome):
            raise IndexError(
                f"idx は 0 以上 {self.n_terms(outcome)} 未満である必要があります（{idx} が与えられました）"
            )
        par = self._as_params(par)
        n_eval, n_basis = self.required_memory(len(quadrature))
        if workspace is None:
            workspace = Workspace.for_requirement((n_eval, n_basis))

        hazard = self._hazards[outcome]
        obs = self.observations[outcome]
        delta, omega, alpha, zeta, psi = self._slice_params(par, outcome)
        Z = self.designs[outcome][:, idx]
        lower = float(obs.lower[idx])
        upper = float(obs.upper[idx])

        evaluation, basis = workspace.evaluation, workspace.basis
        evaluation.reserve(n_eval)
        basis.reserve(n_basis)
        marks = evaluation.mark(), basis.mark()
        try:
            out = hazard(
                quadrature,
                lower,
                upper,
                Z,
                delta,
                omega,
                alpha,
                zeta,
                psi,
                evaluation,
                basis,
            )
            if obs.event[idx]:
                out = out - hazard.log_hazard(
                    upper,
                    Z,
                    delta,
                    omega,
                    alpha,
                    zeta,
                    evaluation,
                    basis,
                )
        finally:
            evaluation.rewind(marks[0])
            basis.rewind(marks[1])
        return out

    def total(
        self,
        par: ArrayLike,
        quadrature: QuadratureRule,
        workspace: Optional[Workspace] = None,
        progress: bool = False,
    ) -> Number:
        """すべての (アウトカム, 被験者) の寄与の和。"""
        par = self._as_params(par)
        if workspace is None:
            workspace = Workspace.for_requirement(self.required_memory(len(quadrature)))

        pairs = [
            (outcome, idx)
            for outcome in range(self.n_outcomes())
            for idx in range(self.n_terms(outcome))
        ]
        result = 0.0
        for outcome, idx in tqdm(
            pairs, desc="survival terms", leave=False, disable=not progress
        ):
            result = result + self(par, idx, outcome, quadrature, workspace)
        return result

    def _as_params(self, par: ArrayLike):
        if not is_recording(par):
            par = np.asarray(par, dtype=float).reshape(-1)
        n_expected = self.layout.n_params_w_va()
        if par.shape != (n_expected,):
            raise ValueError(
                f"par の長さは {n_expected} である必要があります（形状 {par.shape}）。"
            )
        return par

    def _slice_params(self, par, outcome: int):
        layout = self.layout
        hazard = self._hazards[outcome]

        start = layout.fixef_surv(outcome)
        delta = par[start : start + hazard.n_fixef]
        start = layout.fixef_vary_surv(outcome)
        omega = par[start : start + hazard.n_baseline]
        start = layout.association(outcome)
        alpha = par[start : start + hazard.n_associations]

        n_va = layout.n_va
        start = layout.va_mean()
        va_mean = par[start : start + n_va]
        start = layout.va_vcov()
        va_vcov = par[start : start + n_va * n_va].reshape((n_va, n_va))

        idx_use = self._idx_use[outcome]
        zeta = va_mean[idx_use]
        psi = va_vcov[np.ix_(idx_use, idx_use)]
        return delta, omega, alpha, zeta, psi


def evaluate_survival_term(
    term: SurvivalTerm,
    par: ArrayLike,
    quadrature: QuadratureRule,
    gradient: bool = False,
    workspace: Optional[Workspace] = None,
    logger: Optional[WandBLogger] = None,
    step: Optional[int] = None,
    progress: bool = False,
) -> Tuple[float, Optional[np.ndarray]]:
    """生存項の合計（と勾配）を 1 エポックとして評価する。

    評価後は workspace を reset する（次のパラメータ評価に持ち越さない）。

    Args:
        term: 集約器。
        par: 平坦化されたパラメータベクトル（長さ layout.n_params_w_va()）。
        quadrature: 求積ルール。
        gradient: True の場合は JAX の逆伝播で勾配も返す。
        workspace: 使い回す作業領域。None なら新しく確保する。
        logger: 指定した場合は値と勾配ノルムを記録する。
        step: logger に渡すステップ番号。
        progress: True の場合は tqdm で進捗を表示する。

    Returns:
        (value, grad)。gradient=False の場合 grad は None。
    """
    if workspace is None:
        workspace = Workspace.for_requirement(term.required_memory(len(quadrature)))

    def objective(p):
        return term.total(p, quadrature, workspace, progress=progress)

    try:
        if gradient:
            value, grad = value_and_gradient(objective, par)
        else:
            value, grad = evaluate(objective, par), None
    finally:
        workspace.reset()

    if logger is not None:
        logger.log_evaluation(value, grad, step=step)
    return value, grad
