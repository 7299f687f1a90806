"""
Exception Hierarchy

This module defines the typed errors raised by the mltrees models.
"""

from typing import Any, Dict, Optional


class MLTreesError(Exception):
    """
    mltreesパッケージの基底例外クラス

    Attributes:
    -----------
    message : str
        エラーメッセージ
    context : dict
        デバッグ用の追加情報
    """

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} (Context: {context_str})"
        return self.message


class InvalidArgumentError(MLTreesError, ValueError):
    """Malformed hyper-parameters, bad index sets or mismatched dimensions."""
    pass


class NotTrainedError(MLTreesError, ValueError):
    """Raised when a model is used before a successful train call."""
    pass


class UnsupportedError(MLTreesError, NotImplementedError):
    """Raised for options that are declared but not implemented."""
    pass


class TrainingAbortedError(MLTreesError):
    """Raised when training is cancelled between two trees."""
    pass
