"""Points endpoints tests."""

import pytest
from fastapi import status
from httpx import AsyncClient

from src.api.core.messages import MessageCode
from src.database.models import TransactionKind
from src.modules.billing.constants import POINT_PACKAGES
from src.modules.billing.pricing import PRICE_TABLE, PRICE_TABLE_VERSION

from tests.utils.assertions import assert_error_response, assert_success_response


async def test_balance_of_existing_user(app, authorized_client: AsyncClient, test_user):
    response = await authorized_client.get("/v1/points/balance")

    data = assert_success_response(response)
    assert data["user_id"] == test_user.id
    assert data["balance"] == 100


async def test_balance_provisions_new_account(app, client_factory):
    async with client_factory("user_first_visit", "first@example.com") as client:
        response = await client.get("/v1/points/balance")
        history = await client.get("/v1/points/transactions")

    assert assert_success_response(response)["balance"] == PRICE_TABLE.welcome_bonus

    transactions = assert_success_response(history)["transactions"]
    assert len(transactions) == 1
    assert transactions[0]["kind"] == TransactionKind.BONUS.value
    assert transactions[0]["amount"] == PRICE_TABLE.welcome_bonus


async def test_transactions_newest_first_with_limit(
    app, authorized_client: AsyncClient, points_service, test_user
):
    for points in (5, 6, 7):
        await points_service.deduct(
            test_user.id, points, f"Analysis {points}", metadata={"n": points}
        )

    response = await authorized_client.get("/v1/points/transactions", params={"limit": 2})

    data = assert_success_response(response)
    assert data["count"] == 2
    assert [t["amount"] for t in data["transactions"]] == [-7, -6]
    assert data["transactions"][0]["metadata"] == {"n": 7}


async def test_transactions_limit_is_bounded(app, authorized_client: AsyncClient, test_user):
    response = await authorized_client.get("/v1/points/transactions", params={"limit": 1000})

    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


async def test_estimate(app, public_client: AsyncClient):
    response = await public_client.get(
        "/v1/points/estimate", params={"duration_seconds": 600, "mode": "deep"}
    )

    data = assert_success_response(response)
    assert data["mode"] == "deep"
    assert data["estimated_input_tokens"] == 47200
    assert data["estimated_output_tokens"] == 6000
    assert data["estimated_points"] == 11
    assert data["price_table_version"] == PRICE_TABLE_VERSION


async def test_packages(app, public_client: AsyncClient):
    response = await public_client.get("/v1/points/packages")

    data = assert_success_response(response)
    assert data["currency"] == "EUR"
    assert list(data["packages"]) == [package.value for package in POINT_PACKAGES]
    standard = data["packages"]["standard"]
    assert standard["total_points"] == 1700


@pytest.mark.parametrize("duration", ["inf", "-inf", "nan", "86401"])
async def test_estimate_rejects_unbounded_duration(app, public_client: AsyncClient, duration):
    response = await public_client.get(
        "/v1/points/estimate", params={"duration_seconds": duration}
    )

    assert_error_response(
        response, MessageCode.INVALID_INPUT, status.HTTP_422_UNPROCESSABLE_ENTITY
    )
