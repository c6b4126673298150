"""
Backend API Tests for the Beneficiary Allocation Service
Testing: response envelopes, validation errors, status mapping and routing
"""
import pytest
import pytest_asyncio
from bson import ObjectId
from httpx import ASGITransport, AsyncClient

from server import create_app

API = "/api/v1"


@pytest_asyncio.fixture
async def api(client, db):
    app = create_app(client=client, db=db, uniform_error_status=False)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        yield http


@pytest_asyncio.fixture
async def legacy_api(client, db):
    app = create_app(client=client, db=db, uniform_error_status=True)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        yield http


def body(user, payment_type, percentage):
    return {
        "userId": str(user["_id"]),
        "percentage": percentage,
        "paymentTypeId": str(payment_type["_id"])
    }


class TestHealthEndpoints:
    """Health check endpoint"""

    @pytest.mark.asyncio
    async def test_health(self, api):
        response = await api.get(f"{API}/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


class TestCreateBeneficiary:
    """POST /beneficiaries"""

    @pytest.mark.asyncio
    async def test_create(self, api, make_user, make_payment_type, admin):
        user = await make_user("government")
        payment_type = await make_payment_type()

        response = await api.post(
            f"{API}/beneficiaries",
            json=body(user, payment_type, 40),
            headers={"userid": str(admin["_id"])}
        )

        assert response.status_code == 201, response.text
        data = response.json()
        assert data["success"] is True
        assert data["message"] == "Beneficiary created successfully"
        assert data["data"]["user_id"] == str(user["_id"])
        assert data["data"]["role"] == "government"
        assert data["data"]["created_by"] == str(admin["_id"])
        assert ObjectId.is_valid(data["data"]["beneficiary_id"])

    @pytest.mark.asyncio
    async def test_singular_path_alias(self, api, make_user, make_payment_type):
        response = await api.post(f"{API}/beneficiary", json=body(await make_user(), await make_payment_type(), 10))
        assert response.status_code == 201

    @pytest.mark.asyncio
    async def test_validation_errors_listed_per_field(self, api):
        response = await api.post(f"{API}/beneficiaries", json={
            "userId": "bad",
            "percentage": 120,
            "paymentTypeId": str(ObjectId())
        })

        assert response.status_code == 400
        data = response.json()
        assert data["success"] is False
        messages = {error["path"]: error["msg"] for error in data["errors"]}
        assert messages["userId"] == "Invalid user ID"
        assert messages["percentage"] == "Percentage must be between 0 and 100"
        assert all(error["location"] == "body" for error in data["errors"])

    @pytest.mark.asyncio
    async def test_over_allocation_is_unprocessable(self, api, make_user, make_payment_type, make_beneficiary):
        payment_type = await make_payment_type()
        await make_beneficiary(await make_user(), payment_type, 70)

        response = await api.post(f"{API}/beneficiaries", json=body(await make_user(), payment_type, 40))

        assert response.status_code == 422
        assert response.json() == {
            "success": False,
            "message": "Total percentage of beneficiaries cannot exceed 100%"
        }

    @pytest.mark.asyncio
    async def test_duplicate_is_conflict(self, api, make_user, make_payment_type):
        user = await make_user()
        payment_type = await make_payment_type()
        await api.post(f"{API}/beneficiaries", json=body(user, payment_type, 30))

        response = await api.post(f"{API}/beneficiaries", json=body(user, payment_type, 30))
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_missing_user_is_not_found(self, api, make_payment_type):
        response = await api.post(f"{API}/beneficiaries", json=body({"_id": ObjectId()}, await make_payment_type(), 10))
        assert response.status_code == 404
        assert response.json()["message"] == "User not found"

    @pytest.mark.asyncio
    async def test_legacy_mode_reports_domain_errors_as_500(self, legacy_api, make_user, make_payment_type, make_beneficiary):
        payment_type = await make_payment_type()
        await make_beneficiary(await make_user(), payment_type, 70)

        response = await legacy_api.post(f"{API}/beneficiaries", json=body(await make_user(), payment_type, 40))

        assert response.status_code == 500
        assert response.json()["message"] == "Total percentage of beneficiaries cannot exceed 100%"


class TestReadBeneficiaries:
    """GET /beneficiaries and /beneficiaries/{id}"""

    @pytest.mark.asyncio
    async def test_list_with_pagination(self, api, make_user, make_payment_type, make_beneficiary):
        payment_type = await make_payment_type()
        user = await make_user()
        await make_beneficiary(user, payment_type, 25)

        response = await api.get(f"{API}/beneficiaries", params={"paymentTypeId": str(payment_type["_id"])})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["pagination"] == {"totalBeneficiaries": 1, "totalPages": 1, "currentPage": 1, "limit": 10}
        assert data["data"][0]["user"]["user_id"] == str(user["_id"])
        assert data["data"][0]["payment_type"]["name"] == "TRICYCLE"

    @pytest.mark.asyncio
    async def test_get_by_id(self, api, make_user, make_payment_type, make_beneficiary):
        beneficiary = await make_beneficiary(await make_user(), await make_payment_type(), 25)

        response = await api.get(f"{API}/beneficiaries/{beneficiary['_id']}")

        assert response.status_code == 200
        assert response.json()["data"]["beneficiary_id"] == str(beneficiary["_id"])

    @pytest.mark.asyncio
    async def test_get_missing_is_404_even_in_legacy_mode(self, legacy_api):
        response = await legacy_api.get(f"{API}/beneficiaries/{ObjectId()}")
        assert response.status_code == 404
        assert response.json() == {"success": False, "message": "Beneficiary not found"}

    @pytest.mark.asyncio
    async def test_malformed_id_is_bad_request(self, api):
        response = await api.get(f"{API}/beneficiaries/not-an-id")
        assert response.status_code == 400
        error = response.json()["errors"][0]
        assert error["location"] == "params"
        assert error["value"] == "not-an-id"

    @pytest.mark.asyncio
    async def test_oversized_limit_falls_back_to_default(self, api):
        response = await api.get(f"{API}/beneficiaries", params={"limit": "1e400"})
        assert response.status_code == 200
        assert response.json()["pagination"]["limit"] == 10


class TestMutateBeneficiaries:
    """PATCH / DELETE / remove"""

    @pytest.mark.asyncio
    async def test_update(self, api, make_user, make_payment_type, make_beneficiary):
        payment_type = await make_payment_type()
        await make_beneficiary(await make_user(), payment_type, 60)
        target = await make_beneficiary(await make_user(), payment_type, 40)

        response = await api.patch(f"{API}/beneficiaries/{target['_id']}", json={"percentage": 30})

        assert response.status_code == 200, response.text
        assert response.json()["message"] == "Beneficiary updated successfully"
        assert response.json()["data"]["percentage"] == 30

    @pytest.mark.asyncio
    async def test_update_invalid_role(self, api, make_user, make_payment_type, make_beneficiary):
        target = await make_beneficiary(await make_user(), await make_payment_type(), 40)
        response = await api.patch(f"{API}/beneficiaries/{target['_id']}", json={"role": "emperor"})
        assert response.status_code == 400
        assert response.json()["errors"][0]["msg"] == "Invalid role"

    @pytest.mark.asyncio
    async def test_delete_blocked_then_detach_then_delete(self, api, db, make_user, make_payment_type, make_beneficiary):
        payment_type = await make_payment_type()
        target = await make_beneficiary(await make_user(), payment_type, 100)
        await db.payment_types.update_one({"_id": payment_type["_id"]}, {"$set": {"beneficiaries": [target["_id"]]}})

        blocked = await api.delete(f"{API}/beneficiaries/{target['_id']}")
        assert blocked.status_code == 409

        detached = await api.post(f"{API}/beneficiaries/remove/{target['_id']}")
        assert detached.status_code == 200
        assert detached.json()["message"] == "Beneficiary removed from payment type successfully"
        assert detached.json()["data"]["payment_type_id"] is None

        deleted = await api.delete(f"{API}/beneficiaries/{target['_id']}")
        assert deleted.status_code == 200
        assert deleted.json()["message"] == "Beneficiary deleted successfully"


class TestPaymentTypeRoster:
    """/payment-types/{id}/beneficiaries"""

    @pytest.mark.asyncio
    async def test_set_and_read_roster(self, api, make_user, make_payment_type, make_beneficiary):
        payment_type = await make_payment_type()
        first = await make_beneficiary(await make_user(), payment_type, 50)
        second = await make_beneficiary(await make_user(), payment_type, 50)

        response = await api.put(
            f"{API}/payment-types/{payment_type['_id']}/beneficiaries",
            json={"beneficiaries": [str(first["_id"]), str(second["_id"])]}
        )
        assert response.status_code == 200, response.text
        assert response.json()["message"] == "Payment Type beneficiaries updated successfully"
        assert response.json()["data"]["total"] == 100

        response = await api.get(f"{API}/payment-types/{payment_type['_id']}/beneficiaries")
        assert response.status_code == 200
        assert [entry["percentage"] for entry in response.json()["data"]] == [50, 50]

    @pytest.mark.asyncio
    async def test_roster_mismatch(self, api, make_user, make_payment_type, make_beneficiary):
        payment_type = await make_payment_type()
        only = await make_beneficiary(await make_user(), payment_type, 50)

        response = await api.put(
            f"{API}/payment-types/{payment_type['_id']}/beneficiaries",
            json={"beneficiaries": [str(only["_id"])]}
        )
        assert response.status_code == 422
        assert response.json()["message"] == (
            "Total percentage of beneficiaries must be exactly 100%. Current total: 50.0"
        )

    @pytest.mark.asyncio
    async def test_invalid_beneficiary_id_in_body(self, api, make_payment_type):
        payment_type = await make_payment_type()
        response = await api.put(
            f"{API}/payment-types/{payment_type['_id']}/beneficiaries",
            json={"beneficiaries": ["nope"]}
        )
        assert response.status_code == 400
        assert response.json()["errors"][0]["msg"] == "Invalid beneficiary ID"

    @pytest.mark.asyncio
    async def test_repeated_beneficiary_is_unprocessable(self, api, make_user, make_payment_type, make_beneficiary):
        payment_type = await make_payment_type()
        half = await make_beneficiary(await make_user(), payment_type, 50)

        response = await api.put(
            f"{API}/payment-types/{payment_type['_id']}/beneficiaries",
            json={"beneficiaries": [str(half["_id"]), str(half["_id"])]}
        )
        assert response.status_code == 422
        assert response.json()["message"] == f"Beneficiary listed more than once: {half['_id']}"
