"""平坦化されたパラメータベクトルの区画（オフセット）を管理する。

パラメータの並び順:
    1. マーカーごと: [固定効果, 時間変化する固定効果]
    2. 生存アウトカムごと: [固定効果, 時間変化する係数 (omega), 関連係数 (alpha)]
    3. マーカー誤差の共分散行列 (K x K)
    4. 共有ランダム効果の共分散行列 (R x R)、R はマーカー基底数の総和
    5. フレイルティの共分散行列 (S x S)、S は生存アウトカム数
    --- ここまでが n_params() ---
    6. 変分近似の平均 zeta (R + S)
    7. 変分近似の共分散 Psi ((R + S) x (R + S))
    --- ここまでが n_params_w_va() ---
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional


@dataclass(frozen=True)
class MarkerInfo:
    """マーカー（縦断アウトカム）1 つ分の大きさ。"""

    n_fixef: int
    n_variying: int
    n_rng: int


@dataclass(frozen=True)
class SurvivalInfo:
    """生存アウトカム 1 つ分の大きさ。n_associations=None はマーカー数を意味する。"""

    n_fixef: int
    n_variying: int
    n_associations: Optional[int] = None


class ParameterLayout:
    """パラメータベクトルの各ブロックの開始位置を返す。"""

    def __init__(self) -> None:
        self._markers: List[MarkerInfo] = []
        self._surv: List[SurvivalInfo] = []

    def add_marker(self, n_fixef: int, n_variying: int, n_rng: int) -> None:
        """マーカーを追加する。n_rng はそのマーカーのランダム効果（基底）数。"""
        _check_counts(n_fixef=n_fixef, n_variying=n_variying, n_rng=n_rng)
        self._markers.append(MarkerInfo(int(n_fixef), int(n_variying), int(n_rng)))

    def add_surv(
        self, n_fixef: int, n_variying: int, n_associations: Optional[int] = None
    ) -> None:
        """生存アウトカムを追加する。"""
        _check_counts(n_fixef=n_fixef, n_variying=n_variying)
        if n_associations is not None:
            _check_counts(n_associations=n_associations)
            n_associations = int(n_associations)
        self._surv.append(SurvivalInfo(int(n_fixef), int(n_variying), n_associations))

    @property
    def n_markers(self) -> int:
        return len(self._markers)

    @property
    def n_outcomes(self) -> int:
        return len(self._surv)

    @property
    def n_shared(self) -> int:
        """共有ランダム効果の次元 R。"""
        return sum(m.n_rng for m in self._markers)

    @property
    def n_shared_surv(self) -> int:
        """フレイルティの次元 S。"""
        return len(self._surv)

    @property
    def n_va(self) -> int:
        """変分近似の次元 R + S。"""
        return self.n_shared + self.n_shared_surv

    def n_associations(self, i: int) -> int:
        n = self._surv[i].n_associations
        return self.n_markers if n is None else n

    def marker_info(self, i: int) -> MarkerInfo:
        return self._markers[i]

    def surv_info(self, i: int) -> SurvivalInfo:
        return self._surv[i]

    def fixef_marker(self, i: int) -> int:
        return self._offsets()["fixef_marker"][i]

    def fixef_vary_marker(self, i: int) -> int:
        return self._offsets()["fixef_vary_marker"][i]

    def fixef_surv(self, i: int) -> int:
        return self._offsets()["fixef_surv"][i]

    def fixef_vary_surv(self, i: int) -> int:
        return self._offsets()["fixef_vary_surv"][i]

    def association(self, i: int) -> int:
        return self._offsets()["association"][i]

    def vcov_marker(self) -> int:
        return self._offsets()["vcov_marker"][0]

    def vcov_vary(self) -> int:
        return self._offsets()["vcov_vary"][0]

    def vcov_surv(self) -> int:
        return self._offsets()["vcov_surv"][0]

    def va_mean(self) -> int:
        return self._offsets()["va_mean"][0]

    def va_vcov(self) -> int:
        return self._offsets()["va_vcov"][0]

    def n_params(self) -> int:
        """変分近似を除いたモデルパラメータ数。"""
        return self.va_mean()

    def n_params_w_va(self) -> int:
        """変分近似のパラメータを含む総数。"""
        return self.va_vcov() + self.n_va**2

    def _offsets(self) -> Dict[str, List[int]]:
        # 追加のたびに変わるため、毎回先頭から数え直す（ブロック数は小さい）。
        offsets: Dict[str, List[int]] = {
            "fixef_marker": [],
            "fixef_vary_marker": [],
            "fixef_surv": [],
            "fixef_vary_surv": [],
            "association": [],
        }
        pos = 0
        for m in self._markers:
            offsets["fixef_marker"].append(pos)
            pos += m.n_fixef
            offsets["fixef_vary_marker"].append(pos)
            pos += m.n_variying
        for i, s in enumerate(self._surv):
            offsets["fixef_surv"].append(pos)
            pos += s.n_fixef
            offsets["fixef_vary_surv"].append(pos)
            pos += s.n_variying
            offsets["association"].append(pos)
            pos += self.n_associations(i)

        offsets["vcov_marker"] = [pos]
        pos += self.n_markers**2
        offsets["vcov_vary"] = [pos]
        pos += self.n_shared**2
        offsets["vcov_surv"] = [pos]
        pos += self.n_shared_surv**2
        offsets["va_mean"] = [pos]
        pos += self.n_va
        offsets["va_vcov"] = [pos]
        return offsets


def _check_counts(**counts: int) -> None:
    for key, value in counts.items():
        if int(value) != value or int(value) < 0:
            raise ValueError(f"{key} は 0 以上の整数である必要があります")
