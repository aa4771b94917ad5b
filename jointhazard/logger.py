"""WandB ロギング用のユーティリティ。

方針:
    - WandB は任意依存。未インストールでも評価自体は動作させる。
    - ロギングは積分器から分離し、evaluate_survival_term など外側で利用する。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional

import numpy as np

from .params import ParameterLayout


def _import_wandb():
    try:
        import importlib

        return importlib.import_module("wandb")
    except Exception as exc:  # noqa: BLE001 - 任意依存のため広めに捕捉
        raise RuntimeError(
            "wandb がインストールされていません。"
            " `pip install wandb` を実行するか、ロギングを無効化してください。"
        ) from exc


@dataclass
class WandBLogger:
    """WandB へのロギングを行うクラス。enabled=False ならすべて何もしない。"""

    project: str
    entity: Optional[str] = None
    name: Optional[str] = None
    tags: Optional[Iterable[str]] = None
    enabled: bool = True
    _run: Any = field(default=None, init=False, repr=False)

    def start_run(
        self,
        config: Optional[Dict[str, Any]] = None,
        layout: Optional[ParameterLayout] = None,
        name: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
    ) -> None:
        """WandB run を開始する。

        layout を渡した場合は、マーカー数・アウトカム数・パラメータ数を
        run の config に加える（config 側の同名キーが優先）。
        """

        if not self.enabled:
            return
        run_config: Dict[str, Any] = {}
        if layout is not None:
            run_config.update(
                n_markers=layout.n_markers,
                n_outcomes=layout.n_outcomes,
                n_params=layout.n_params(),
                n_params_w_va=layout.n_params_w_va(),
            )
        run_config.update(config or {})

        wandb = _import_wandb()
        self._run = wandb.init(
            project=self.project,
            entity=self.entity,
            name=name or self.name,
            tags=list(tags if tags is not None else self.tags or []) or None,
            config=run_config,
        )

    def log_metrics(
        self,
        metrics: Dict[str, Any],
        step: Optional[int] = None,
        prefix: Optional[str] = None,
    ) -> None:
        """任意の指標をログに送る。"""

        if not self.enabled:
            return
        wandb = _import_wandb()
        if prefix:
            payload = {f"{prefix}/{key}": value for key, value in metrics.items()}
        else:
            payload = dict(metrics)
        wandb.log(payload, step=step)

    def log_evaluation(
        self,
        value: float,
        gradient: Optional[np.ndarray] = None,
        step: Optional[int] = None,
    ) -> None:
        """生存項の 1 回分の評価（値と勾配のノルム）を記録する。"""

        if not self.enabled:
            return
        metrics: Dict[str, Any] = {"value": float(value)}
        if gradient is not None:
            grad = np.asarray(gradient, dtype=float)
            metrics["grad_norm"] = float(np.linalg.norm(grad))
            metrics["grad_max_abs"] = float(np.max(np.abs(grad))) if grad.size else 0.0
        self.log_metrics(metrics, step=step, prefix="survival")

    def finish(self) -> None:
        """start_run で開始した WandB run を終了する。run が無ければ何もしない。"""

        if not self.enabled or self._run is None:
            return
        self._run.finish()
        self._run = None
