# Customer warranty registration and the admin warranty screens

import io
import json
from datetime import date, datetime, timedelta

import pytest
from openpyxl import load_workbook

from models import UserRole, WarrantyStatus
from timezone_utils import get_company_today
from warranty_lifecycle import add_years
from image_utils import UPLOAD_FAILED_WARNING
from tests.conftest import assert_response


def warranty_form(product_id: int, **overrides) -> dict:
    data = {
        "productId": product_id,
        "customerName": "สมชาย ใจดี",
        "phone": "0812345678",
        "email": "somchai@gmail.com",
        "address": "1 ถนนสีลม",
        "district": "สีลม",
        "amphoe": "บางรัก",
        "province": "กรุงเทพมหานคร",
        "postcode": "10500",
        "serialNumber": "SN-0001",
        "purchaseLocation": "Big C",
        "purchaseDate": "2024-01-15",
    }
    data.update(overrides)
    return {"warrantyData": json.dumps(data)}


def receipt_file(png_bytes: bytes) -> dict:
    return {"receipt": ("receipt.png", png_bytes, "image/png")}


@pytest.fixture
async def catalog(factory, company_a):
    """Samsung brand with a 1 year fridge (default required fields) and a 2 year TV without receipt."""
    brand = await factory.brand(company_a, "Samsung")
    fridge = await factory.product(company_a, brand, name="ตู้เย็น", model="RT38")
    tv = await factory.product(
        company_a, brand, name="ทีวี", model="UA55", years=2,
        required_fields={"serialNumber": False, "receiptImage": False, "purchaseLocation": True},
    )
    return {"brand": brand, "fridge": fridge, "tv": tv}


@pytest.fixture
async def customer_a(factory, company_a):
    return await factory.customer(company_a, "U-somchai", "Somchai")


class TestRegisterWarranty:

    async def test_register_with_receipt(self, client, catalog, customer_a, company_a, login_customer, png_bytes, fake_storage):
        """
        SCENARIO: Customer registers a fridge bought 2024-01-15 (1 year warranty)
        EXPECTED: 201, expiry 2025-01-15, snapshots stored, receipt uploaded
        """
        login_customer(customer_a, company_a)
        response = await client.post(
            "/api/warranties",
            data=warranty_form(catalog["fridge"].id),
            files=receipt_file(png_bytes),
        )
        body = assert_response(response, 201, "Register fridge warranty")
        data = body["data"]
        assert data["warrantyStartDate"] == "2024-01-16"
        assert data["warrantyExpiry"] == "2025-01-15"
        assert data["status"] == "active"
        assert data["customerId"] == customer_a.id
        assert data["customerInfo"]["name"] == "สมชาย ใจดี"
        assert data["customerInfo"]["lineDisplayName"] == "Somchai"
        assert data["productInfo"] == {
            "brandName": "Samsung", "productName": "ตู้เย็น", "model": "RT38",
            "serialNumber": "SN-0001", "purchaseLocation": "Big C",
        }
        assert data["receiptImage"].startswith(f"https://cdn.example.com/companies/{company_a.id}/receipts/")
        assert len(fake_storage) == 1

    async def test_recent_purchase_is_active(self, client, catalog, customer_a, company_a, login_customer):
        login_customer(customer_a, company_a)
        bought = get_company_today("Asia/Bangkok") - timedelta(days=3)
        response = await client.post("/api/warranties", data=warranty_form(catalog["tv"].id, purchaseDate=bought.isoformat()))
        body = assert_response(response, 201, "Register TV bought 3 days ago")
        assert body["data"]["effectiveStatus"] == "active"
        assert body["data"]["daysUntilExpiry"] > 700

    async def test_receipt_required(self, client, catalog, customer_a, company_a, login_customer):
        login_customer(customer_a, company_a)
        response = await client.post("/api/warranties", data=warranty_form(catalog["fridge"].id))
        body = assert_response(response, 400, "No receipt for a product that needs one")
        assert body["message"] == "กรุณาแนบรูปใบเสร็จ"

    async def test_required_receipt_upload_failure(self, client, catalog, customer_a, company_a, login_customer, png_bytes):
        """
        SCENARIO: Receipt is required and attached, but storage is not configured
        EXPECTED: 201, warranty saved without the image, upload warning returned
        """
        login_customer(customer_a, company_a)
        response = await client.post(
            "/api/warranties",
            data=warranty_form(catalog["fridge"].id),
            files=receipt_file(png_bytes),
        )
        body = assert_response(response, 201, "Required receipt could not be stored")
        assert body["data"]["receiptImage"] is None
        assert body["warnings"] == [UPLOAD_FAILED_WARNING]

        body = assert_response(await client.get("/api/warranties"), 200, "List after failed upload")
        assert len(body["data"]) == 1

    async def test_optional_receipt_upload_failure_is_a_warning(self, client, catalog, customer_a, company_a, login_customer, png_bytes):
        login_customer(customer_a, company_a)
        response = await client.post(
            "/api/warranties",
            data=warranty_form(catalog["tv"].id),
            files=receipt_file(png_bytes),
        )
        body = assert_response(response, 201, "Optional receipt could not be stored")
        assert body["data"]["receiptImage"] is None
        assert body["warnings"]

    async def test_serial_number_required(self, client, catalog, customer_a, company_a, login_customer, png_bytes, fake_storage):
        login_customer(customer_a, company_a)
        response = await client.post(
            "/api/warranties",
            data=warranty_form(catalog["fridge"].id, serialNumber="  "),
            files=receipt_file(png_bytes),
        )
        body = assert_response(response, 400, "Missing serial number")
        assert body["message"] == "กรุณากรอกหมายเลขเครื่อง (Serial Number)"

    async def test_purchase_location_required(self, client, catalog, customer_a, company_a, login_customer):
        login_customer(customer_a, company_a)
        response = await client.post("/api/warranties", data=warranty_form(catalog["tv"].id, purchaseLocation=""))
        body = assert_response(response, 400, "Missing purchase location")
        assert body["message"] == "กรุณากรอกสถานที่ซื้อ"

    @pytest.mark.parametrize("field", ["customerName", "phone"])
    async def test_contact_required(self, client, catalog, customer_a, company_a, login_customer, field):
        login_customer(customer_a, company_a)
        response = await client.post("/api/warranties", data=warranty_form(catalog["tv"].id, **{field: ""}))
        assert_response(response, 400, f"Missing {field}")

    async def test_invalid_email(self, client, catalog, customer_a, company_a, login_customer):
        login_customer(customer_a, company_a)
        response = await client.post("/api/warranties", data=warranty_form(catalog["tv"].id, email="somchai@"))
        assert_response(response, 400, "Malformed email")

    async def test_future_purchase_date(self, client, catalog, customer_a, company_a, login_customer):
        login_customer(customer_a, company_a)
        tomorrow = get_company_today("Asia/Bangkok") + timedelta(days=1)
        response = await client.post("/api/warranties", data=warranty_form(catalog["tv"].id, purchaseDate=tomorrow.isoformat()))
        body = assert_response(response, 400, "Purchase date in the future")
        assert body["message"] == "วันที่ซื้อต้องไม่เป็นวันในอนาคต"

    async def test_inactive_product(self, client, factory, catalog, customer_a, company_a, login_customer):
        retired = await factory.product(company_a, catalog["brand"], name="เลิกขาย", is_active=False)
        login_customer(customer_a, company_a)
        response = await client.post("/api/warranties", data=warranty_form(retired.id))
        assert_response(response, 400, "Inactive product")

    async def test_inactive_brand(self, client, factory, customer_a, company_a, login_customer):
        brand = await factory.brand(company_a, "Closed", is_active=False)
        product = await factory.product(company_a, brand, required_fields={"serialNumber": False, "receiptImage": False})
        login_customer(customer_a, company_a)
        response = await client.post("/api/warranties", data=warranty_form(product.id))
        assert_response(response, 400, "Product of inactive brand")

    async def test_product_of_other_company(self, client, factory, customer_a, company_a, company_b, login_customer):
        brand = await factory.brand(company_b, "Hitachi")
        foreign = await factory.product(company_b, brand)
        login_customer(customer_a, company_a)
        response = await client.post("/api/warranties", data=warranty_form(foreign.id))
        assert_response(response, 404, "Foreign product id")

    async def test_requires_line_login(self, client, catalog):
        response = await client.post("/api/warranties", data=warranty_form(catalog["tv"].id))
        assert_response(response, 401, "Anonymous registration")


class TestMyWarranties:

    async def test_only_own_warranties(self, client, factory, catalog, customer_a, company_a, login_customer):
        """
        SCENARIO: Two customers of the same company each have a warranty
        EXPECTED: Each sees only their own, the other one is 404 by id
        """
        other = await factory.customer(company_a, "U-other", "Other")
        mine = await factory.warranty(company_a, catalog["fridge"], customer_a, date(2024, 1, 15))
        theirs = await factory.warranty(company_a, catalog["fridge"], other, date(2024, 2, 1))
        login_customer(customer_a, company_a)

        body = assert_response(await client.get("/api/warranties"), 200, "My warranties")
        assert [w["id"] for w in body["data"]] == [mine.id]
        assert body["data"][0]["timeRemaining"]

        assert_response(await client.get(f"/api/warranties/{mine.id}"), 200, "Own warranty by id")
        assert_response(await client.get(f"/api/warranties/{theirs.id}"), 404, "Someone else's warranty")

    async def test_session_of_other_company(self, client, customer_a, company_a, company_b, login_customer):
        login_customer(customer_a, company_a)
        assert_response(await client.get("/xyz-store/api/warranties"), 403, "LINE session on other tenant")


@pytest.fixture
async def registrations(factory, catalog, customer_a, company_a):
    """One warranty in each effective state."""
    today = get_company_today("Asia/Bangkok")
    fridge = catalog["fridge"]
    sharp = await factory.brand(company_a, "Sharp")
    microwave = await factory.product(company_a, sharp, name="ไมโครเวฟ", model="R-2221")
    return {
        "active": await factory.warranty(company_a, fridge, customer_a, today - timedelta(days=10)),
        "expiring": await factory.warranty(company_a, fridge, customer_a, add_years(today, -1) + timedelta(days=10)),
        "expired": await factory.warranty(
            company_a, microwave, customer_a, date(2020, 1, 1), brand_name="Sharp",
            registration_date=datetime(2020, 1, 2, 3, 0),
        ),
        "claimed": await factory.warranty(company_a, fridge, customer_a, today - timedelta(days=30), WarrantyStatus.CLAIMED),
    }


class TestAdminWarrantyList:

    async def test_stats(self, client, owner_a, company_a, login_as, registrations):
        login_as(owner_a, company_a)
        body = assert_response(await client.get("/api/admin/warranties/stats"), 200, "Dashboard counters")
        assert body["data"] == {"total": 4, "active": 2, "expired": 1, "claimed": 1, "expiringSoon": 1}

    @pytest.mark.parametrize("status_filter,expected", [
        ("all", 4), ("active", 2), ("expiring", 1), ("expired", 1), ("claimed", 1),
    ])
    async def test_status_filter(self, client, owner_a, company_a, login_as, registrations, status_filter, expected):
        login_as(owner_a, company_a)
        response = await client.get("/api/admin/warranties", params={"status": status_filter})
        body = assert_response(response, 200, f"Filter {status_filter}")
        assert body["total"] == expected
        assert len(body["data"]) == expected

    async def test_effective_status_in_list(self, client, owner_a, company_a, login_as, registrations):
        login_as(owner_a, company_a)
        body = assert_response(await client.get("/api/admin/warranties"), 200, "Full list")
        by_id = {w["id"]: w["effectiveStatus"] for w in body["data"]}
        assert by_id == {registrations[name].id: name for name in ("active", "expiring", "expired", "claimed")}

    async def test_brand_filter_uses_snapshot(self, client, owner_a, company_a, login_as, registrations):
        login_as(owner_a, company_a)
        body = assert_response(await client.get("/api/admin/warranties", params={"brand": "Sharp"}), 200, "Brand filter")
        assert [w["id"] for w in body["data"]] == [registrations["expired"].id]

    async def test_limit(self, client, owner_a, company_a, login_as, registrations):
        login_as(owner_a, company_a)
        body = assert_response(await client.get("/api/admin/warranties", params={"limit": 1}), 200, "Limited list")
        assert len(body["data"]) == 1
        assert body["total"] == 4

    async def test_unknown_status_filter(self, client, owner_a, company_a, login_as):
        login_as(owner_a, company_a)
        assert_response(await client.get("/api/admin/warranties", params={"status": "lost"}), 400, "Unknown filter")

    async def test_other_company_sees_nothing(self, client, admin_b, company_b, login_as, registrations):
        login_as(admin_b, company_b)
        body = assert_response(await client.get("/api/admin/warranties"), 200, "Other company's list")
        assert body["data"] == []
        assert_response(
            await client.get(f"/api/admin/warranties/{registrations['active'].id}"), 404, "Other company's warranty"
        )


class TestClaimWarranty:

    async def test_claim_records_history(self, client, owner_a, company_a, login_as, registrations, customer_a):
        """
        SCENARIO: Admin marks an active warranty as claimed
        EXPECTED: Stored status claimed, one history entry naming the admin
        """
        login_as(owner_a, company_a)
        warranty = registrations["active"]
        response = await client.put(f"/api/admin/warranties/{warranty.id}", json={
            "status": "claimed", "reason": "คอมเพรสเซอร์เสีย", "notes": "รับเครื่องแล้ว",
        })
        body = assert_response(response, 200, "Claim warranty")
        data = body["data"]
        assert data["status"] == "claimed"
        assert data["effectiveStatus"] == "claimed"
        assert data["notes"] == "รับเครื่องแล้ว"
        assert data["lineUserId"] == customer_a.line_user_id
        assert len(data["statusHistory"]) == 1
        change = data["statusHistory"][0]
        assert change["fromStatus"] == "active"
        assert change["toStatus"] == "claimed"
        assert change["changedByUserId"] == owner_a.id
        assert change["reason"] == "คอมเพรสเซอร์เสีย"

    async def test_expiring_can_be_claimed(self, client, owner_a, company_a, login_as, registrations):
        login_as(owner_a, company_a)
        response = await client.put(f"/api/admin/warranties/{registrations['expiring'].id}", json={"status": "claimed"})
        assert_response(response, 200, "Claim expiring warranty")

    async def test_claimed_is_final(self, client, owner_a, company_a, login_as, registrations):
        login_as(owner_a, company_a)
        response = await client.put(f"/api/admin/warranties/{registrations['claimed'].id}", json={"status": "active"})
        body = assert_response(response, 400, "Reopen claimed warranty")
        assert body["message"] == "ไม่สามารถเปลี่ยนสถานะจาก claimed เป็น active ได้"

    async def test_expired_cannot_be_claimed(self, client, owner_a, company_a, login_as, registrations):
        login_as(owner_a, company_a)
        response = await client.put(f"/api/admin/warranties/{registrations['expired'].id}", json={"status": "claimed"})
        assert_response(response, 400, "Claim expired warranty")

    async def test_same_status_writes_no_history(self, client, owner_a, company_a, login_as, registrations):
        login_as(owner_a, company_a)
        response = await client.put(f"/api/admin/warranties/{registrations['active'].id}", json={"status": "active", "notes": "โทรแจ้งแล้ว"})
        body = assert_response(response, 200, "No-op status with notes")
        assert body["data"]["statusHistory"] == []
        assert body["data"]["notes"] == "โทรแจ้งแล้ว"

    async def test_viewer_cannot_update(self, client, factory, company_a, login_as, registrations):
        viewer = await factory.user(company_a, "viewer@abcshop.com", UserRole.VIEWER)
        login_as(viewer, company_a)
        response = await client.put(f"/api/admin/warranties/{registrations['active'].id}", json={"status": "claimed"})
        assert_response(response, 403, "Viewer claims warranty")
        assert_response(await client.get(f"/api/admin/warranties/{registrations['active'].id}"), 200, "Viewer reads detail")


class TestExport:

    async def test_export_workbook(self, client, owner_a, company_a, login_as, registrations, customer_a):
        """
        SCENARIO: Admin downloads every registration
        EXPECTED: xlsx attachment, Thai header row, one row per warranty
        """
        login_as(owner_a, company_a)
        response = await client.get("/api/admin/warranties/export")
        assert response.status_code == 200, response.text
        assert response.headers["content-type"].startswith(
            "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
        )
        disposition = response.headers["content-disposition"]
        assert disposition.startswith('attachment; filename="abc-shop_warranties_')
        assert disposition.endswith('.xlsx"')

        sheet = load_workbook(io.BytesIO(response.content)).active
        rows = list(sheet.iter_rows(values_only=True))
        assert sheet.title == "ข้อมูลการลงทะเบียน"
        assert rows[0][0] == "วันที่ลงทะเบียน"
        assert len(rows) == 5
        assert {row[2] for row in rows[1:]} == {customer_a.line_user_id}
        assert {row[18] for row in rows[1:]} == {"ใช้งานได้", "ใกล้หมดอายุ", "หมดอายุ", "เคลมแล้ว"}

    async def test_export_date_range(self, client, owner_a, company_a, login_as, registrations):
        login_as(owner_a, company_a)
        response = await client.get("/api/admin/warranties/export", params={"dateTo": "2020-12-31"})
        assert response.status_code == 200, response.text

        rows = list(load_workbook(io.BytesIO(response.content)).active.iter_rows(values_only=True))
        assert len(rows) == 2
        # stored 2020-01-02 03:00 UTC is 10:00 in Bangkok
        assert rows[1][0] == "02/01/2020 10:00"
        assert rows[1][16] == "01/01/2020"

    async def test_export_requires_login(self, client):
        assert_response(await client.get("/api/admin/warranties/export"), 401, "Anonymous export")
