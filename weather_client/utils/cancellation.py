"""
キャンセルトークン

非同期処理の「最後に発行されたものが勝つ」ルールを実現する協調的キャンセル。
トークンは処理中のI/Oを中断しない。結果を状態に反映する直前に
is_current を確認し、古いトークンの結果は破棄する。
"""

import itertools
from typing import Optional


class CancellationToken:
    """1回の非同期処理を識別するトークン"""

    def __init__(self, source: 'CancellationSource', token_id: int):
        self._source = source
        self.token_id = token_id
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def is_current(self) -> bool:
        """このトークンが最新かつ未キャンセルかどうか"""
        return not self._cancelled and self._source.current is self

    def cancel(self) -> None:
        self._cancelled = True

    def __repr__(self) -> str:
        state = 'cancelled' if self._cancelled else 'active'
        return f"<CancellationToken {self.token_id} {state}>"


class CancellationSource:
    """トークンの発行元。新しいトークンを発行すると前のトークンは無効になる"""

    def __init__(self):
        self._counter = itertools.count(1)
        self._current: Optional[CancellationToken] = None

    @property
    def current(self) -> Optional[CancellationToken]:
        return self._current

    def issue(self) -> CancellationToken:
        """新しいトークンを発行し、処理中のトークンを無効化する"""
        if self._current is not None:
            self._current.cancel()
        self._current = CancellationToken(self, next(self._counter))
        return self._current

    def cancel(self) -> None:
        """現在のトークンを無効化する（新しいトークンは発行しない）"""
        if self._current is not None:
            self._current.cancel()
