"""Weak references.

デリゲートやタイマーのコールバックを弱参照で保持するためのモジュール。
"""

import inspect
import weakref
from typing import Any, Callable, Optional


def ref(target: Any) -> Callable[[], Optional[Any]]:
    """targetへの弱参照を返す.

    バウンドメソッドの場合はWeakMethodを使います。
    """
    if inspect.ismethod(target):
        return weakref.WeakMethod(target)
    return weakref.ref(target)
