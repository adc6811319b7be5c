"""
キャンセルトークンのユニットテスト
"""

from weather_client.utils.cancellation import CancellationSource


class TestCancellationSource:

    def test_issue_invalidates_previous(self):
        source = CancellationSource()
        first = source.issue()
        second = source.issue()

        assert first.cancelled
        assert not first.is_current
        assert second.is_current
        assert second.token_id > first.token_id

    def test_cancel_without_new_token(self):
        source = CancellationSource()
        token = source.issue()

        source.cancel()

        assert token.cancelled
        assert not token.is_current
        assert source.current is token

    def test_cancel_is_idempotent(self):
        source = CancellationSource()
        source.cancel()
        token = source.issue()
        token.cancel()
        token.cancel()

        assert not token.is_current
