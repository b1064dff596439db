"""
Tests para helpers compartidos: montos, rate limiting y encolado de notificaciones
"""

import pytest
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

from mostrador.common.money import amounts_match, apply_discount, money, money_sum
from mostrador.common.rate_limit import MemoryRateLimiter, build_rate_limiter
from mostrador.core.config import settings
from mostrador.core.exceptions import RateLimitError
from mostrador.modules.notifications import dispatcher


class TestMoney:

    def test_money_rounds_half_up(self):
        assert money("10.005") == Decimal("10.01")
        assert money(0.1 + 0.2) == Decimal("0.30")

    def test_money_sum(self):
        assert money_sum(["1.10", Decimal("2.20"), 3]) == Decimal("6.30")
        assert money_sum([]) == Decimal("0.00")

    def test_amounts_match_uses_tolerance(self):
        assert amounts_match("100.00", "100.01")
        assert not amounts_match("100.00", "100.02")

    @pytest.mark.parametrize("subtotal,discount,kind,expected", [
        ("100", "10", "fixed", "90.00"),
        ("100", "15", "percentage", "85.00"),
        ("50", "80", "fixed", "0.00"),
        ("100", "0", "percentage", "100.00"),
    ])
    def test_apply_discount(self, subtotal, discount, kind, expected):
        assert apply_discount(subtotal, discount, kind) == Decimal(expected)


class TestRateLimiter:

    def test_blocks_after_limit(self):
        limiter = MemoryRateLimiter()
        limiter.check("sales:a", limit=2, window=60)
        limiter.check("sales:a", limit=2, window=60)

        with pytest.raises(RateLimitError) as exc:
            limiter.check("sales:a", limit=2, window=60)

        assert exc.value.status_code == 429
        assert exc.value.extra["retry_after"] >= 1
        # Otra clave tiene su propia ventana
        limiter.check("sales:b", limit=2, window=60)

    def test_window_expires(self):
        limiter = MemoryRateLimiter()
        with patch("mostrador.common.rate_limit.time.time", return_value=1000.0):
            assert limiter.hit("k", 1, 10) == (True, 0)
            assert limiter.hit("k", 1, 10)[0] is False
        with patch("mostrador.common.rate_limit.time.time", return_value=1011.0):
            assert limiter.hit("k", 1, 10) == (True, 0)

    def test_idle_keys_are_discarded(self):
        limiter = MemoryRateLimiter()
        with patch("mostrador.common.rate_limit.time.time", return_value=1000.0):
            limiter.hit("sales:a", 5, 10)
            limiter.hit("sales:b", 5, 10)
        with patch("mostrador.common.rate_limit.time.time", return_value=1011.0):
            limiter.hit("sales:c", 5, 10)

        assert set(limiter._buckets) == {"sales:c"}

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            build_rate_limiter("memcached")


class TestNotificationDispatch:

    def _client(self, email="cliente@mail.com"):
        return SimpleNamespace(name="Cliente", email=email, current_debt=Decimal("10.00"))

    def _payment(self):
        return SimpleNamespace(amount=Decimal("5.00"), payment_method="EFECTIVO", reference=None, created_at=None)

    def test_disabled_notifications_are_not_queued(self, monkeypatch):
        monkeypatch.setattr(settings, "NOTIFICATIONS_ENABLED", False)
        task = MagicMock()
        assert dispatcher._dispatch(task, "a@b.com", {}) is False
        task.delay.assert_not_called()

    def test_client_without_email(self):
        assert dispatcher.queue_client_payment_receipt(self._payment(), self._client(email=None)) is False

    def test_broker_failure_does_not_raise(self, monkeypatch):
        monkeypatch.setattr(settings, "NOTIFICATIONS_ENABLED", True)
        task = MagicMock()
        task.delay.side_effect = ConnectionError("broker caído")

        assert dispatcher._dispatch(task, "a@b.com", {"total": Decimal("1.00")}) is False

    def test_context_is_serializable(self, monkeypatch):
        monkeypatch.setattr(settings, "NOTIFICATIONS_ENABLED", True)
        task = MagicMock()

        assert dispatcher._dispatch(task, "a@b.com", {"total": Decimal("1.50"), "items": [{"q": 1}]}) is True
        task.delay.assert_called_once_with("a@b.com", {"total": "1.50", "items": [{"q": 1}]})
