"""作業領域（ワーキングメモリ）を確保するアリーナ。

目的:
    求積点ごとの基底評価は同じ形の一時配列を何度も必要とする。
    これを呼び出しのたびに np.empty で確保せず、事前にまとめて確保したバッファから
    切り出して使い回す。

設計意図:
    - 各コンポーネント（基底・積分器・集約器）は required_memory / required_scratch で
      必要量を純粋関数として申告し、呼び出し側はそれに合わせて一度だけ reserve する
    - request はバンプアロケータとして末尾から切り出すだけで、個別の解放はない
    - mark / rewind で、ある位置以降をまとめて再利用できる（集約器は 1 組ごとに巻き戻す）
    - reset を呼ぶまで確保済みのビューは有効（エポック単位のライフサイクル）

注意:
    スレッド間で同じ WorkingMemory を共有してはならない（ロックは持たない）。
    並列化する場合はワーカーごとに Workspace を作ること。
    reset 後も古いビュー自体は参照可能だが、内容は次のエポックで上書きされる。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Sequence, Tuple, Union

import numpy as np

Shape = Union[int, Sequence[int]]


class WorkingMemory:
    """float64 の作業配列を切り出すバンプアロケータ。"""

    def __init__(self, size: int = 0, dtype: type = np.float64) -> None:
        if int(size) < 0:
            raise ValueError("size は 0 以上である必要があります")
        self.dtype = np.dtype(dtype)
        # _blocks: 確保済みのブロック。末尾が現在切り出し中のブロック。
        self._blocks: List[np.ndarray] = []
        self._offset = 0
        if size > 0:
            self._blocks.append(np.empty(int(size), dtype=self.dtype))

    @property
    def capacity(self) -> int:
        """確保済みの総要素数。"""
        return int(sum(block.size for block in self._blocks))

    @property
    def in_use(self) -> int:
        """現在のブロックで使用中の要素数。"""
        return self._offset

    def reserve(self, size: int) -> None:
        """少なくとも size 要素を連続で切り出せるようにしておく。"""
        size = int(size)
        if size == 0 or (self._blocks and self._blocks[-1].size - self._offset >= size):
            return
        self._grow(size)

    def mark(self) -> Tuple[int, int]:
        """現在の切り出し位置を返す。rewind に渡すと、この位置まで巻き戻せる。"""
        return len(self._blocks), self._offset

    def rewind(self, mark: Tuple[int, int]) -> None:
        """mark 以降に切り出したビューを無効化し、その領域を再利用できるようにする。

        mark の後に追加されたブロックは手放す。事前に reserve しておけば
        mark から rewind までの間にブロックは追加されない。

        Raises:
            ValueError: mark が現在位置より後を指している場合。
        """
        n_blocks, offset = mark
        if n_blocks > len(self._blocks) or (
            n_blocks == len(self._blocks) and offset > self._offset
        ):
            raise ValueError("mark が現在の切り出し位置より後を指しています")
        del self._blocks[n_blocks:]
        self._offset = offset

    def request(self, shape: Shape) -> np.ndarray:
        """shape の作業配列を返す。値は初期化されない。

        Args:
            shape: 要素数（int）または配列形状。

        Returns:
            バッファのビュー。次の reset まで他の request と重ならない。
        """
        dims = _as_shape(shape)
        n = int(np.prod(dims, dtype=np.int64)) if dims else 1
        if n == 0:
            return np.empty(dims, dtype=self.dtype)
        if not self._blocks or self._blocks[-1].size - self._offset < n:
            self._grow(n)
        block = self._blocks[-1]
        view = block[self._offset : self._offset + n]
        self._offset += n
        return view.reshape(dims)

    def reset(self, release: bool = False) -> None:
        """確保済みのビューをすべて無効化する。

        Args:
            release: True の場合はメモリを解放する。False の場合は容量を保ち、
                複数ブロックに分かれていれば 1 ブロックへまとめ直す。
        """
        if release:
            self._blocks = []
        elif len(self._blocks) > 1:
            self._blocks = [np.empty(self.capacity, dtype=self.dtype)]
        self._offset = 0

    def _grow(self, n: int) -> None:
        # 既存ブロックは reset まで保持する（切り出し済みビューを有効に保つため）。
        size = max(n, self.capacity, 64)
        self._blocks.append(np.empty(size, dtype=self.dtype))
        self._offset = 0


@dataclass
class Workspace:
    """積分器・集約器が使う 2 つの独立したプール。

    - evaluation: 求積点ごとの基底表などの評価状態
    - basis: 基底評価の一時領域（評価呼び出しの間だけ使う）
    """

    evaluation: WorkingMemory = field(default_factory=WorkingMemory)
    basis: WorkingMemory = field(default_factory=WorkingMemory)

    @classmethod
    def for_requirement(cls, requirement: Tuple[int, int]) -> "Workspace":
        """required_memory の戻り値から事前確保済みの Workspace を作る。"""
        n_eval, n_basis = requirement
        return cls(WorkingMemory(n_eval), WorkingMemory(n_basis))

    def reset(self, release: bool = False) -> None:
        self.evaluation.reset(release)
        self.basis.reset(release)


def _as_shape(shape: Shape) -> Tuple[int, ...]:
    if isinstance(shape, (int, np.integer)):
        dims: Tuple[int, ...] = (int(shape),)
    else:
        dims = tuple(int(s) for s in shape)
    if any(d < 0 for d in dims):
        raise ValueError("shape に負の値が含まれています")
    return dims
