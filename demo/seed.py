#!/usr/bin/env python3
"""
Demo seed script: populates a running wallet API with sample users and activity.

!! NOT FOR PRODUCTION !!
This script onboards users with known emails and pushes deposits,
withdrawals, and transfers through the public API. It is intended ONLY for
local demos.

Usage:
    # With the API server running on localhost:8000 (and Redis reachable):
    python demo/seed.py

    # Custom server URL:
    python demo/seed.py --base-url http://localhost:9000

Every request carries a fresh Idempotency-Key, except for one deliberate
replay per member that shows the original outcome being returned without
moving money twice. The API keys of the seeded users are printed at the end.
"""

import argparse
import asyncio
import random
import sys
import uuid

import httpx

BASE_URL = "http://localhost:8000"

# ---------------------------------------------------------------------------
# Demo users
# ---------------------------------------------------------------------------

MEMBERS = [
    {"email": "alice.chen@example.com", "currency": "USD", "opening_deposit": 850_00},
    {"email": "bob.martinez@example.com", "currency": "EUR", "opening_deposit": 1_200_00},
    {"email": "carol.nguyen@example.com", "currency": "GBP", "opening_deposit": 3_200_00},
    {"email": "dave.johnson@example.com", "currency": "USD", "opening_deposit": 600_00},
]

# Transfers between members, in the sender's minor units
TRANSFERS = [
    ("alice.chen@example.com", "bob.martinez@example.com", 100_00),
    ("bob.martinez@example.com", "alice.chen@example.com", 25_00),
    ("carol.nguyen@example.com", "dave.johnson@example.com", 50_00),
    ("dave.johnson@example.com", "carol.nguyen@example.com", 10_00),
    # EUR -> GBP has no configured rate; recorded as a failed transfer
    ("bob.martinez@example.com", "carol.nguyen@example.com", 5_00),
    # More than Dave has; recorded as a failed transfer
    ("dave.johnson@example.com", "alice.chen@example.com", 10_000_00),
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def log(msg: str) -> None:
    print(f"  {msg}")


def format_amount(cents: int, currency: str) -> str:
    return f"{cents / 100:,.2f} {currency}"


def new_key() -> str:
    return str(uuid.uuid4())


def auth_header(api_key: str, idempotency_key: str | None = None) -> dict:
    headers = {"X-User-API-Key": api_key}
    if idempotency_key:
        headers["Idempotency-Key"] = idempotency_key
    return headers


async def onboard(client: httpx.AsyncClient, member: dict) -> str:
    """Onboard a member, return their API key."""
    resp = await client.post(
        f"{BASE_URL}/v1/users",
        json={"email": member["email"], "currency": member["currency"]},
    )
    resp.raise_for_status()
    return resp.json()["api_key"]


async def move(client: httpx.AsyncClient, api_key: str, path: str, body: dict,
               idempotency_key: str) -> httpx.Response:
    """POST a money movement. 201 and 422 are both recorded outcomes."""
    resp = await client.post(
        f"{BASE_URL}/v1/{path}",
        json=body,
        headers=auth_header(api_key, idempotency_key),
    )
    if resp.status_code not in (201, 422):
        resp.raise_for_status()
    return resp


async def get_balance(client: httpx.AsyncClient, api_key: str) -> dict:
    resp = await client.get(f"{BASE_URL}/v1/me/balance", headers=auth_header(api_key))
    resp.raise_for_status()
    return resp.json()


def describe(resp: httpx.Response) -> str:
    data = resp.json()
    if resp.status_code == 201:
        return f"completed ({data['id']})"
    return f"failed: {data['detail']} [{data['error_type']}]"


# ---------------------------------------------------------------------------
# Seed logic
# ---------------------------------------------------------------------------

async def seed_member_activity(client: httpx.AsyncClient, member: dict, api_key: str) -> None:
    currency = member["currency"]

    resp = await move(
        client, api_key, "deposits", {"amount_cents": member["opening_deposit"]}, new_key()
    )
    log(f"Opening deposit {format_amount(member['opening_deposit'], currency)}: {describe(resp)}")

    for _ in range(random.randint(2, 5)):
        amount = random.randint(3_00, 120_00)
        resp = await move(client, api_key, "withdrawals", {"amount_cents": amount}, new_key())
        log(f"Withdrawal {format_amount(amount, currency)}: {describe(resp)}")

    # Replay: the same key returns the original record; the balance moves once
    key = new_key()
    first = await move(client, api_key, "deposits", {"amount_cents": 20_00}, key)
    replay = await move(client, api_key, "deposits", {"amount_cents": 20_00}, key)
    same = first.json()["id"] == replay.json()["id"]
    log(f"Deposit replayed with one key: same record = {same}")


async def seed(base_url: str) -> None:
    global BASE_URL
    BASE_URL = base_url

    print("\n========================================")
    print("  DEMO SEED: NOT FOR PRODUCTION")
    print("========================================\n")

    async with httpx.AsyncClient(timeout=30.0) as client:
        # Health check
        try:
            health = await client.get(f"{BASE_URL}/health")
            health.raise_for_status()
        except (httpx.ConnectError, httpx.HTTPStatusError):
            print(f"  ERROR: Cannot connect to {BASE_URL}")
            print("  Start the server first: uvicorn wallet.main:app --reload\n")
            sys.exit(1)

        api_keys: dict[str, str] = {}
        for member in MEMBERS:
            print(f"Onboarding {member['email']} ({member['currency']})...")
            try:
                api_keys[member["email"]] = await onboard(client, member)
            except httpx.HTTPStatusError as exc:
                if exc.response.status_code == 409:
                    print("  Already onboarded; reset the database to re-seed.\n")
                    sys.exit(1)
                raise
            await seed_member_activity(client, member, api_keys[member["email"]])

        print("\nTransfers...")
        for sender, recipient, amount in TRANSFERS:
            resp = await move(
                client,
                api_keys[sender],
                "transfers",
                {"to_email": recipient, "amount_cents": amount},
                new_key(),
            )
            log(f"{sender} -> {recipient} {amount}: {describe(resp)}")

        print("\nBalances:")
        for member in MEMBERS:
            balance = await get_balance(client, api_keys[member["email"]])
            log(
                f"{member['email']}: "
                f"{format_amount(balance['balance_cents'], balance['currency'])} "
                f"(matches history: {balance['match']})"
            )

        print("\nAPI keys (send as X-User-API-Key):")
        for email, api_key in api_keys.items():
            log(f"{email}: {api_key}")
        print()


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed the wallet API with demo data.")
    parser.add_argument("--base-url", default=BASE_URL, help="API base URL")
    args = parser.parse_args()
    asyncio.run(seed(args.base_url))


if __name__ == "__main__":
    main()
