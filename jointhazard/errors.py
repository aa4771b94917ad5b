"""jointhazard で送出する例外。

いずれも ValueError の派生クラスとし、呼び出し側は従来通り ValueError で
まとめて捕捉することもできる。

分類:
    - InvalidBasisConfiguration / InvalidKnots: 基底の構築時エラー（再試行しない）
    - UnsupportedDerivativeOrder: 評価時に未実装の微分次数を要求した
    - ConfigurationMismatch: 積分器・集約器の構成が基底数やマーカー数と整合しない
"""

from __future__ import annotations


class InvalidBasisConfiguration(ValueError):
    """基底の構成（次数・切片・係数など）が不正。"""


class InvalidKnots(InvalidBasisConfiguration):
    """結節点列が不正（非有限・非単調・QR 分解のランク不足）。"""


class UnsupportedDerivativeOrder(ValueError):
    """閉じた形が実装されていない微分（積分）次数が要求された。"""

    def __init__(self, family: str, ders: int) -> None:
        self.family = family
        self.ders = int(ders)
        super().__init__(f"{family}: ders={self.ders} は実装されていません")


class ConfigurationMismatch(ValueError):
    """積分器・集約器の構成が与えられた基底やパラメータ配置と一致しない。"""
