"""
Tests for integer minor-unit precision: no floating point anywhere.

Floating point representations of money cause rounding errors (e.g.,
0.1 + 0.2 = 0.30000000000000004). By storing everything in integer minor
units, and converting currencies with Decimal, arithmetic stays exact.

Tests verify:
  - All amounts are integers in responses
  - Large values work correctly
  - Repeated small movements don't accumulate rounding errors
  - Balance = exact sum of all completed records
  - Transfers conserve the total money supply (same currency)
"""


def key(value: str) -> dict:
    return {"Idempotency-Key": value}


class TestIntegerMinorUnitPrecision:
    """Tests that all monetary operations use integer minor units exactly."""

    async def test_all_amounts_are_integers(self, authenticated_client):
        """Every monetary field in the response should be an integer, never a float."""
        txn = await authenticated_client.post(
            "/v1/deposits", json={"amount_cents": 1050}, headers=key("p-int")
        )
        assert isinstance(txn.json()["amount_cents"], int)

        balance = await authenticated_client.get("/v1/me/balance")
        data = balance.json()
        assert isinstance(data["balance_cents"], int)
        assert isinstance(data["computed_balance_cents"], int)

    async def test_float_amounts_rejected(self, authenticated_client):
        response = await authenticated_client.post(
            "/v1/deposits", json={"amount_cents": 10.5}, headers=key("p-float")
        )
        assert response.status_code == 422

    async def test_large_values(self, authenticated_client):
        """Large minor-unit values should not overflow or lose precision."""
        # $1,000,000.00 (100 million cents)
        await authenticated_client.post(
            "/v1/deposits", json={"amount_cents": 100_000_000}, headers=key("p-big")
        )
        # Withdraw $999,999.99
        await authenticated_client.post(
            "/v1/withdrawals", json={"amount_cents": 99_999_999}, headers=key("p-big-out")
        )

        balance = await authenticated_client.get("/v1/me/balance")
        assert balance.json()["balance_cents"] == 1  # Exactly 1 cent left
        assert balance.json()["match"] is True

    async def test_no_rounding_errors_with_repeated_small_deposits(self, authenticated_client):
        """1 cent deposited 100 times is exactly 100 cents."""
        for i in range(100):
            await authenticated_client.post(
                "/v1/deposits", json={"amount_cents": 1}, headers=key(f"p-cent-{i}")
            )

        balance = await authenticated_client.get("/v1/me/balance")
        assert balance.json()["balance_cents"] == 100
        assert balance.json()["computed_balance_cents"] == 100

    async def test_sum_verification_after_mixed_operations(self, authenticated_client):
        """Balance should be the exact sum of credits minus debits."""
        # $33.33, $66.67, $16.66, $8.34 don't add up cleanly in float
        await authenticated_client.post(
            "/v1/deposits", json={"amount_cents": 3333}, headers=key("p-mix-1")
        )
        await authenticated_client.post(
            "/v1/deposits", json={"amount_cents": 6667}, headers=key("p-mix-2")
        )
        await authenticated_client.post(
            "/v1/withdrawals", json={"amount_cents": 1666}, headers=key("p-mix-3")
        )
        await authenticated_client.post(
            "/v1/withdrawals", json={"amount_cents": 834}, headers=key("p-mix-4")
        )

        # 3333 + 6667 - 1666 - 834 = 7500
        data = (await authenticated_client.get("/v1/me/balance")).json()
        assert data["balance_cents"] == 7500
        assert data["computed_balance_cents"] == 7500
        assert data["match"] is True


class TestMoneySupply:
    async def test_transfers_preserve_total_money_supply(self, wallet_service, make_account):
        """Same-currency transfers only move money; the total is unchanged."""
        a = await make_account(balance_cents=10000)
        b = await make_account(balance_cents=0)
        c = await make_account(balance_cents=0)

        await wallet_service.transfer(a, b, 3000, "p-ab")
        await wallet_service.transfer(a, c, 2000, "p-ac")
        await wallet_service.transfer(b, c, 1000, "p-bc")
        await wallet_service.transfer(c, a, 99999, "p-ca")  # declined

        balances = [await wallet_service.ledger.balance(x.id) for x in (a, b, c)]
        assert balances == [5000, 2000, 3000]
        assert sum(balances) == 10000

    async def test_conversion_rounds_to_whole_minor_units(self, wallet_service, make_account):
        """USD 333 at 0.85 is 283.05 EUR cents, credited as 283."""
        sender = await make_account(balance_cents=1000, currency="USD")
        receiver = await make_account(balance_cents=0, currency="EUR")

        await wallet_service.transfer(sender, receiver, 333, "p-round")

        assert await wallet_service.ledger.balance(sender.id) == 667
        assert await wallet_service.ledger.balance(receiver.id) == 283
