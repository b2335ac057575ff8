# Staff account management and owner protections

import pytest

from auth import verify_password
from models import UserRole
from tests.conftest import DEFAULT_PASSWORD, assert_response


@pytest.fixture
async def admin_a(factory, company_a):
    return await factory.user(company_a, "admin@abcshop.com", UserRole.ADMIN)


@pytest.fixture
async def manager_a(factory, company_a):
    return await factory.user(company_a, "manager@abcshop.com", UserRole.MANAGER)


class TestCreateUser:

    async def test_generated_password(self, client, owner_a, company_a, login_as):
        """
        SCENARIO: Owner adds a manager without choosing a password
        EXPECTED: 201 with generatedPassword, which works for login
        """
        login_as(owner_a, company_a)
        response = await client.post("/api/users", json={
            "email": "New.Staff@abcshop.com", "name": "New Staff", "role": "manager",
        })
        body = assert_response(response, 201, "Create manager")
        password = body["data"]["generatedPassword"]
        assert len(password) == 8
        assert body["data"]["email"] == "new.staff@abcshop.com"
        assert body["data"]["role"] == "manager"

        client.cookies.clear()
        response = await client.post("/api/auth/admin-login", json={
            "email": "new.staff@abcshop.com", "password": password, "tenant": "abc-shop",
        })
        assert_response(response, 200, "Login with the generated password")

    async def test_explicit_password_is_not_echoed(self, client, owner_a, company_a, login_as):
        login_as(owner_a, company_a)
        response = await client.post("/api/users", json={
            "email": "viewer@abcshop.com", "name": "Viewer", "role": "viewer", "password": "Viewer123",
        })
        body = assert_response(response, 201, "Create viewer with password")
        assert "generatedPassword" not in body["data"]
        assert "password" not in body["data"]
        assert "passwordHash" not in body["data"]

    async def test_owner_role_cannot_be_assigned(self, client, owner_a, company_a, login_as):
        login_as(owner_a, company_a)
        response = await client.post("/api/users", json={
            "email": "second@abcshop.com", "name": "Second", "role": "owner",
        })
        assert_response(response, 400, "Second owner")

    async def test_duplicate_email_in_company(self, client, owner_a, company_a, login_as):
        login_as(owner_a, company_a)
        response = await client.post("/api/users", json={
            "email": "OWNER@abcshop.com", "name": "Copy", "role": "admin",
        })
        body = assert_response(response, 400, "Email already used in this company")
        assert body["message"] == "อีเมลนี้มีผู้ใช้งานแล้ว"

    async def test_same_email_in_other_company(self, client, admin_b, company_b, login_as):
        login_as(admin_b, company_b)
        response = await client.post("/api/users", json={
            "email": "owner@abcshop.com", "name": "Other", "role": "viewer",
        })
        assert_response(response, 201, "Emails are unique per company only")

    async def test_invalid_email(self, client, owner_a, company_a, login_as):
        login_as(owner_a, company_a)
        response = await client.post("/api/users", json={"email": "not-an-email", "name": "X", "role": "viewer"})
        assert_response(response, 400, "Malformed email")

    async def test_manager_cannot_manage_users(self, client, manager_a, company_a, login_as):
        login_as(manager_a, company_a)
        body = assert_response(await client.get("/api/users"), 403, "Manager lists users")
        assert body["message"] == "ไม่มีสิทธิ์จัดการผู้ใช้"


class TestOwnerProtection:

    async def test_owner_cannot_be_deleted(self, client, owner_a, admin_a, company_a, login_as):
        """
        SCENARIO: An admin tries to delete the owner
        EXPECTED: 400, owner keeps the account
        """
        login_as(admin_a, company_a)
        response = await client.delete(f"/api/users/{owner_a.id}")
        body = assert_response(response, 400, "Delete owner")
        assert body["message"] == "ไม่สามารถลบบัญชีเจ้าของระบบได้"

    async def test_owner_cannot_be_deactivated(self, client, owner_a, admin_a, company_a, login_as):
        login_as(admin_a, company_a)
        response = await client.put(f"/api/users/{owner_a.id}/toggle-active", json={"isActive": False})
        assert_response(response, 400, "Deactivate owner via toggle")
        response = await client.put(f"/api/users/{owner_a.id}", json={"isActive": False})
        assert_response(response, 400, "Deactivate owner via update")

    async def test_owner_cannot_be_demoted(self, client, owner_a, admin_a, company_a, login_as):
        login_as(admin_a, company_a)
        response = await client.put(f"/api/users/{owner_a.id}", json={"role": "viewer"})
        assert_response(response, 400, "Demote owner")

    async def test_cannot_delete_self(self, client, admin_a, company_a, login_as):
        login_as(admin_a, company_a)
        assert_response(await client.delete(f"/api/users/{admin_a.id}"), 400, "Delete own account")

    async def test_admin_has_owner_rights(self, client, owner_a, admin_a, manager_a, company_a, login_as):
        login_as(admin_a, company_a)
        body = assert_response(await client.get("/api/users"), 200, "Admin lists users")
        assert len(body["data"]) == 3
        assert_response(await client.delete(f"/api/users/{manager_a.id}"), 200, "Admin deletes manager")


class TestUpdateUsers:

    async def test_toggle_flips_state(self, client, owner_a, manager_a, company_a, login_as):
        login_as(owner_a, company_a)
        body = assert_response(await client.put(f"/api/users/{manager_a.id}/toggle-active"), 200, "Toggle off")
        assert body["data"]["isActive"] is False
        assert body["message"] == "ปิดใช้งานผู้ใช้สำเร็จ"
        body = assert_response(await client.put(f"/api/users/{manager_a.id}/toggle-active"), 200, "Toggle on")
        assert body["data"]["isActive"] is True

    async def test_change_role(self, client, owner_a, manager_a, company_a, login_as):
        login_as(owner_a, company_a)
        response = await client.put(f"/api/users/{manager_a.id}", json={"role": "viewer", "name": "Renamed"})
        body = assert_response(response, 200, "Change role and name")
        assert body["data"]["role"] == "viewer"
        assert body["data"]["name"] == "Renamed"

    async def test_reset_password(self, client, owner_a, manager_a, company_a, login_as, db):
        """
        SCENARIO: Owner resets a manager's password
        EXPECTED: New password returned once, old one stops working
        """
        login_as(owner_a, company_a)
        response = await client.post(f"/api/users/{manager_a.id}/reset-password")
        body = assert_response(response, 200, "Reset password")
        new_password = body["data"]["newPassword"]

        await db.refresh(manager_a)
        assert verify_password(new_password, manager_a.password_hash)
        assert not verify_password(DEFAULT_PASSWORD, manager_a.password_hash)
        assert manager_a.password_reset_by == owner_a.id

    async def test_user_of_other_company(self, client, owner_a, admin_b, company_a, login_as):
        login_as(owner_a, company_a)
        assert_response(await client.get(f"/api/users/{admin_b.id}"), 404, "Foreign user")
        assert_response(await client.delete(f"/api/users/{admin_b.id}"), 404, "Delete foreign user")
