"""設定ファイル（TOML/JSON）を読み込み、基底や求積ルールを組み立てるユーティリティ。

目的:
    基底の種類・結節点・微分次数・求積点数などを設定ファイルとして外部化し、
    同じ構成を再現できるようにする。

設定の例（TOML）:

    [quadrature]
    rule = "gauss_legendre"
    Q = 100

    [[markers]]
    type = "poly"
    degree = 1
    intercept = true

    [[outcomes]]
    ders = [0]
    baseline = { type = "ns", boundary_knots = [0.0, 5.0], interior_knots = [2.5] }
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Sequence
import tomllib

from .bases import Basis, basis_from_config, clone_bases
from .hazard import normalize_ders
from .params import ParameterLayout
from .quadrature import QuadratureRule
from .survival import SurvivalObservations, SurvivalTerm
from .types import ArrayLike


def load_config(path: Path) -> Dict[str, Any]:
    """設定ファイルを読み込み、Python の辞書として返す。

    Args:
        path: 設定ファイルへのパス。拡張子でフォーマットを判定する。

    Returns:
        設定内容を表す辞書。

    Raises:
        FileNotFoundError: 指定パスが存在しない場合。
        ValueError: 対応していない拡張子の場合。
        json.JSONDecodeError: JSON のパースに失敗した場合。
        tomllib.TOMLDecodeError: TOML のパースに失敗した場合。
    """

    path = Path(path)
    # 設定ファイルが存在しない場合は、早期に失敗させて原因を明確化する。
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    if path.suffix == ".toml":
        # tomllib.load はバイナリファイルオブジェクトを想定する。
        with path.open("rb") as handle:
            return tomllib.load(handle)

    if path.suffix == ".json":
        with path.open("r", encoding="utf-8") as handle:
            return json.load(handle)

    raise ValueError(f"Unsupported config format: {path.suffix}")


@dataclass
class SurvivalModelSpec:
    """設定から組み立てた基底・微分次数・求積ルールの組。

    パラメータ配置（ParameterLayout）とデータは呼び出し側が与える。
    """

    markers: List[Basis]
    baselines: List[Basis]
    ders: List[List[List[int]]]
    quadrature: QuadratureRule = field(default_factory=QuadratureRule)

    @property
    def n_outcomes(self) -> int:
        return len(self.baselines)

    def default_layout(
        self,
        n_fixef_surv: Sequence[int],
        n_fixef_marker: Sequence[int] = (),
        n_variying_marker: Sequence[int] = (),
    ) -> ParameterLayout:
        """基底数から決まる部分を埋めた ParameterLayout を作る。

        マーカーの固定効果数は省略時 0 とする（生存項には現れない）。
        """
        n_markers = len(self.markers)
        fixef_marker = list(n_fixef_marker) or [0] * n_markers
        variying_marker = list(n_variying_marker) or [0] * n_markers
        if len(fixef_marker) != n_markers or len(variying_marker) != n_markers:
            raise ValueError("マーカーの固定効果数の長さがマーカー数と一致しません")
        if len(n_fixef_surv) != self.n_outcomes:
            raise ValueError("n_fixef_surv の長さがアウトカム数と一致しません")

        layout = ParameterLayout()
        for marker, n_fixef, n_variying in zip(self.markers, fixef_marker, variying_marker):
            layout.add_marker(n_fixef, n_variying, marker.n_basis())
        for baseline, n_fixef, ders in zip(self.baselines, n_fixef_surv, self.ders):
            layout.add_surv(n_fixef, baseline.n_basis(), sum(len(d) for d in ders))
        return layout

    def build_term(
        self,
        designs: Sequence[ArrayLike],
        observations: Sequence[SurvivalObservations],
        layout: ParameterLayout,
    ) -> SurvivalTerm:
        """データとパラメータ配置を与えて SurvivalTerm を作る。"""
        return SurvivalTerm(
            clone_bases(self.baselines),
            clone_bases(self.markers),
            designs,
            layout,
            observations,
            self.ders,
        )


def build_model(config: Mapping[str, Any]) -> SurvivalModelSpec:
    """辞書（設定）から SurvivalModelSpec を構築する。

    config の想定:
        - "markers": 基底設定のリスト（マーカーごと）
        - "outcomes": {"baseline": 基底設定, "ders": 微分次数のリスト} のリスト
          ders を省略した場合は全マーカー 0（水準による関連）
        - "quadrature": QuadratureRule の設定（省略時 Gauss-Legendre, Q=100）

    Raises:
        InvalidBasisConfiguration: 基底の設定が不正な場合。
        ConfigurationMismatch: ders の長さがマーカー数と一致しない場合。
        ValueError: outcomes が空、または baseline が無い場合。
    """

    config_dict = dict(config)
    markers = [basis_from_config(cfg) for cfg in config_dict.get("markers", [])]

    outcomes = config_dict.get("outcomes", [])
    if not outcomes:
        raise ValueError("outcomes に少なくとも 1 つのアウトカムが必要です")

    baselines: List[Basis] = []
    ders: List[List[List[int]]] = []
    for i, outcome in enumerate(outcomes):
        if "baseline" not in outcome:
            raise ValueError(f"outcomes[{i}] に baseline がありません")
        baselines.append(basis_from_config(outcome["baseline"]))
        ders.append(normalize_ders(outcome.get("ders", [0] * len(markers)), len(markers)))

    quadrature = QuadratureRule(config_dict.get("quadrature"))
    return SurvivalModelSpec(markers, baselines, ders, quadrature)
