"""
Tests for the practice configuration and logo endpoints.
"""
from estimate_tracker.configuration.models import SystemConfiguration
from estimate_tracker.configuration.schemas import ConfigurationUpdate
from estimate_tracker.configuration.service import get_configuration, update_configuration

CONFIGURATION = "/api/v1/configuration"
PNG = b"\x89PNG\r\n\x1a\n" + b"0" * 64


def test_read_before_first_update_is_null(client, user_headers):
    response = client.get(CONFIGURATION, headers=user_headers)
    assert response.status_code == 200
    assert response.json() == {"success": True, "configuration": None}


def test_update_creates_then_updates_same_row(client, db, admin_headers):
    created = client.put(CONFIGURATION, json={"dentist_name": "Dr. Zahn"}, headers=admin_headers)
    assert created.status_code == 200
    first_id = created.json()["configuration"]["id"]

    updated = client.put(CONFIGURATION, json={"webhook_url": "https://hooks.example.com/x"}, headers=admin_headers)
    configuration = updated.json()["configuration"]

    assert configuration["id"] == first_id
    assert configuration["dentist_name"] == "Dr. Zahn"
    assert configuration["webhook_url"] == "https://hooks.example.com/x"
    assert db.query(SystemConfiguration).count() == 1


def test_explicit_null_clears_field(client, admin_headers):
    client.put(CONFIGURATION, json={"dentist_name": "Dr. Zahn", "webhook_url": "https://hooks.example.com/x"}, headers=admin_headers)

    response = client.put(CONFIGURATION, json={"dentist_name": None}, headers=admin_headers)

    configuration = response.json()["configuration"]
    assert configuration["dentist_name"] is None
    assert configuration["webhook_url"] == "https://hooks.example.com/x"


def test_update_requires_admin(client, user_headers):
    response = client.put(CONFIGURATION, json={"dentist_name": "Dr. Zahn"}, headers=user_headers)
    assert response.status_code == 403
    assert response.json()["success"] is False


def test_unknown_field_is_rejected(client, admin_headers):
    response = client.put(CONFIGURATION, json={"colour": "blue"}, headers=admin_headers)
    assert response.status_code == 400


def test_service_merges_partial_updates(db):
    assert get_configuration(db) is None
    update_configuration(db, ConfigurationUpdate(email_template_first="Hallo"))
    configuration = update_configuration(db, ConfigurationUpdate(email_template_reminder="Erinnerung"))

    assert configuration.email_template_first == "Hallo"
    assert configuration.email_template_reminder == "Erinnerung"


def test_logo_upload_replaces_previous(client, admin_headers, object_store):
    first = client.post(
        f"{CONFIGURATION}/logo", files={"file": ("logo.png", PNG, "image/png")}, headers=admin_headers
    )
    assert first.status_code == 200
    first_url = first.json()["configuration"]["logo_url"]
    assert first_url.startswith("https://files.example.com/public/practice_assets/logo-")
    assert len(object_store.objects("practice_assets")) == 1

    second = client.post(
        f"{CONFIGURATION}/logo", files={"file": ("neu.svg", b"<svg/>", "image/svg+xml")}, headers=admin_headers
    )
    second_url = second.json()["configuration"]["logo_url"]

    assert second_url != first_url
    assert second_url.endswith(".svg")
    assert list(object_store.objects("practice_assets")) == [second_url.rsplit("/", 1)[-1]]


def test_logo_extension_follows_content_type(client, admin_headers, object_store):
    response = client.post(
        f"{CONFIGURATION}/logo", files={"file": ("evil.exe", PNG, "image/png")}, headers=admin_headers
    )

    assert response.status_code == 200
    assert response.json()["configuration"]["logo_url"].endswith(".png")
    assert [key.rsplit(".", 1)[-1] for key in object_store.objects("practice_assets")] == ["png"]


def test_logo_rejects_wrong_type_and_size(client, admin_headers, object_store):
    wrong_type = client.post(
        f"{CONFIGURATION}/logo", files={"file": ("logo.gif", b"GIF89a", "image/gif")}, headers=admin_headers
    )
    too_large = client.post(
        f"{CONFIGURATION}/logo",
        files={"file": ("logo.png", b"0" * (2 * 1024 * 1024 + 1), "image/png")},
        headers=admin_headers
    )

    assert wrong_type.status_code == 400
    assert too_large.status_code == 400
    assert object_store.objects("practice_assets") == {}


def test_logo_delete(client, admin_headers, object_store):
    client.post(f"{CONFIGURATION}/logo", files={"file": ("logo.png", PNG, "image/png")}, headers=admin_headers)

    response = client.delete(f"{CONFIGURATION}/logo", headers=admin_headers)

    assert response.status_code == 200
    assert response.json()["configuration"]["logo_url"] is None
    assert object_store.objects("practice_assets") == {}


def test_logo_upload_failure(client, admin_headers, object_store):
    object_store.fail_on.add("upload")
    response = client.post(
        f"{CONFIGURATION}/logo", files={"file": ("logo.png", PNG, "image/png")}, headers=admin_headers
    )
    assert response.status_code == 502
    assert client.get(CONFIGURATION, headers=admin_headers).json()["configuration"] is None
