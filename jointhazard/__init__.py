"""jointhazard パッケージ。

縦断データと生存時間の同時モデルで使う期待累積ハザード（ハザードの区間積分）と、
その全パラメータに関する勾配を計算する。

外部に公開する API（基底・求積・積分器・集約器）をここで再エクスポートする。
利用者は基本的に `from jointhazard import SurvivalTerm` の形で import できる。
"""

from .arena import WorkingMemory, Workspace
from .bases import Basis, basis_from_config, clone_bases
from .config import SurvivalModelSpec, build_model, load_config
from .errors import (
    ConfigurationMismatch,
    InvalidBasisConfiguration,
    InvalidKnots,
    UnsupportedDerivativeOrder,
)
from .hazard import ExpectedCumHazard
from .logger import WandBLogger
from .params import ParameterLayout
from .polynomial import OrthoPolyBasis
from .quadrature import QuadratureRule
from .splines import (
    BSplineBasis,
    ISplineBasis,
    MSplineBasis,
    NaturalSplineBasis,
    SplineBasis,
)
from .survival import SurvivalObservations, SurvivalTerm, evaluate_survival_term

# __all__:
# - `from jointhazard import *` の対象を明示する。
__all__ = [
    "Basis",
    "BSplineBasis",
    "ConfigurationMismatch",
    "ExpectedCumHazard",
    "ISplineBasis",
    "InvalidBasisConfiguration",
    "InvalidKnots",
    "MSplineBasis",
    "NaturalSplineBasis",
    "OrthoPolyBasis",
    "ParameterLayout",
    "QuadratureRule",
    "SplineBasis",
    "SurvivalModelSpec",
    "SurvivalObservations",
    "SurvivalTerm",
    "UnsupportedDerivativeOrder",
    "WandBLogger",
    "WorkingMemory",
    "Workspace",
    "basis_from_config",
    "build_model",
    "clone_bases",
    "evaluate_survival_term",
    "load_config",
]
