# falsification_core/operators/__init__.py
from __future__ import annotations

from typing import Mapping

from falsification_core.contracts import OperatorType
from falsification_core.operators.exclusion_test import EXCLUSION_TEST
from falsification_core.operators.level_split import LEVEL_SPLIT
from falsification_core.operators.object_transpose import OBJECT_TRANSPOSE
from falsification_core.operators.scale_check import SCALE_CHECK
from falsification_core.workflow import OperatorDefinition

OPERATORS: Mapping[OperatorType, OperatorDefinition] = {
    OperatorType.LEVEL_SPLIT: LEVEL_SPLIT,
    OperatorType.EXCLUSION_TEST: EXCLUSION_TEST,
    OperatorType.OBJECT_TRANSPOSE: OBJECT_TRANSPOSE,
    OperatorType.SCALE_CHECK: SCALE_CHECK,
}


def get_operator(operator_type: OperatorType | str) -> OperatorDefinition:
    return OPERATORS[OperatorType(operator_type)]


__all__ = [
    "EXCLUSION_TEST",
    "LEVEL_SPLIT",
    "OBJECT_TRANSPOSE",
    "OPERATORS",
    "SCALE_CHECK",
    "get_operator",
]
