"""値のみの評価と勾配記録つき評価を同じ式で切り替えるためのユーティリティ。

方針:
    - 積分器・集約器の式は「配列名前空間 xp」に対して一度だけ書く
    - 値のみの評価では xp = numpy、勾配が必要な場合は xp = jax.numpy になる
    - 勾配は jax.value_and_grad による逆伝播で厳密に求める

注意:
    JAX は既定で float32 を使うため、import 時に jax_enable_x64 を有効化する。
    JAX のトレースは value_and_gradient の呼び出しごとに新しく作られるため、
    前回の評価の記録を巻き戻す（rewind）操作は不要。
"""

from __future__ import annotations

from typing import Any, Callable, Tuple

import numpy as np

import jax

# 配列を作る前に 64bit 浮動小数点を有効化する。
# 相対誤差 1e-6 の勾配検証は float32 では満たせない。
jax.config.update("jax_enable_x64", True)

import jax.numpy as jnp  # noqa: E402

from .types import ArrayLike, Number  # noqa: E402


def is_recording(x: Any) -> bool:
    """x が勾配記録型（JAX 配列またはトレーサ）かを返す。"""
    return isinstance(x, jax.Array)


def array_namespace(*arrays: Any):
    """引数に応じた配列名前空間（numpy か jax.numpy）を返す。

    いずれかが JAX 配列なら jax.numpy、すべて NumPy/Python の値なら numpy。
    """
    if any(is_recording(a) for a in arrays):
        return jnp
    return np


def evaluate(fn: Callable[[ArrayLike], Number], params: ArrayLike) -> float:
    """値のみのモードで fn(params) を評価する。"""
    return float(fn(np.asarray(params, dtype=float)))


def value_and_gradient(
    fn: Callable[[ArrayLike], Number], params: ArrayLike
) -> Tuple[float, np.ndarray]:
    """fn(params) の値と params に関する勾配を返す。

    Args:
        fn: 1 次元パラメータベクトルを受け取りスカラーを返す関数。
            内部では array_namespace を通じて jax.numpy で演算される。
        params: 平坦化されたパラメータベクトル。

    Returns:
        (value, gradient)。gradient は params と同じ長さの NumPy 配列。
    """
    par = jnp.asarray(np.asarray(params, dtype=float))
    value, grad = jax.value_and_grad(fn)(par)
    return float(value), np.asarray(grad, dtype=float)
