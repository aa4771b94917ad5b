"""型定義。

基底評価・求積・ハザード積分の各モジュールで共有する型エイリアスをまとめる。

注意:
    パラメータは NumPy 配列（値のみ）と JAX 配列（勾配を記録するトレーサ）の
    どちらでも流れてくるため、Number/ArrayLike は Any のままにしている。
"""

from typing import Any, Sequence, Union

# ArrayLike:
# - 「配列のように扱える」入力（list / tuple / np.ndarray / jax.Array）。
ArrayLike = Any

# Number:
# - float または勾配記録型（JAX のトレーサ）のスカラー。
Number = Any

# DerivativeOrders:
# - マーカーごとの微分次数。int 1 つ、または int の列（関連係数を複数持つ場合）。
DerivativeOrders = Sequence[Union[int, Sequence[int]]]
