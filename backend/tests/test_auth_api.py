# backend/tests/test_auth_api.py
from __future__ import annotations

import dataclasses
import json
from http.cookies import SimpleCookie
from urllib.parse import parse_qs, unquote, urlsplit

from jose import jwt

from tapauth.core.config import get_auth_config
from tapauth.core.security import REGISTERED_SESSION_TTL, SessionTokenIssuer
from tapauth.main import app
from tapauth.models import InvitationCode, User
from tapauth.services.auth_flow import claims_for_user

from conftest import TEST_SECRET, last_code, make_invitation, make_user


def _bearer(config, user) -> dict:
    token = SessionTokenIssuer(config).issue(claims_for_user(user), REGISTERED_SESSION_TTL)
    return {"Authorization": f"Bearer {token}"}


def _session_cookie(resp):
    jar = SimpleCookie()
    jar.load(resp.headers["set-cookie"])
    return jar["tap_token"]


def _assert_error(resp, status_code: int, code: str):
    assert resp.status_code == status_code, resp.text
    body = resp.json()
    assert body["success"] is False
    assert body["code"] == code
    assert body["detail"]["code"] == code
    assert body["error"] == body["message"]
    assert body["request_id"]
    assert resp.headers["X-Request-ID"] == body["request_id"]
    return body


# ---------- email login ----------

def test_send_code(client, outbox):
    resp = client.post("/api/v1/auth/email/send-code", json={"email": "a@b.com"})
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "message": "验证码已发送"}
    assert outbox[-1]["to"] == "a@b.com"


def test_send_code_rejects_bad_email(client, outbox):
    _assert_error(client.post("/api/v1/auth/email/send-code", json={"email": "nope"}), 400, "VALIDATION_ERROR")
    assert outbox == []


def test_send_code_transport_failure_is_500(client, outbox):
    outbox.fail = True
    body = _assert_error(
        client.post("/api/v1/auth/email/send-code", json={"email": "a@b.com"}),
        500,
        "TRANSPORT_ERROR",
    )
    assert body["message"] == "发送邮件失败"


def test_malformed_body_is_400(client):
    body = _assert_error(client.post("/api/v1/auth/email/send-code", json={}), 400, "VALIDATION_ERROR")
    assert body["errors"]
    assert body["message"] == "请求参数错误"


def test_request_shape_errors_share_the_service_status(client, outbox):
    no_at = client.post("/api/v1/auth/email/send-code", json={"email": "nope"})
    too_short = client.post("/api/v1/auth/email/send-code", json={"email": "ab"})
    five_digits = client.post("/api/v1/auth/email/verify", json={"email": "a@b.com", "code": "12345"})

    for resp in (no_at, too_short, five_digits):
        _assert_error(resp, 400, "VALIDATION_ERROR")
    assert five_digits.json()["errors"][0]["loc"][-1] == "code"
    assert outbox == []


def test_service_error_detail_carries_code_and_message(client):
    resp = client.post("/api/v1/auth/email/verify", json={"email": "ghost@b.com", "code": "123456"})
    body = _assert_error(resp, 400, "NOT_FOUND")
    assert body["detail"] == {"code": "NOT_FOUND", "message": body["message"]}


def test_register_sets_shared_domain_cookie(client, outbox, db, admin):
    inv = make_invitation(db, admin.id)
    client.post("/api/v1/auth/email/send-code", json={"email": "new@example.com"})

    resp = client.post(
        "/api/v1/auth/email/verify",
        json={"email": "new@example.com", "code": last_code(outbox), "invitationCode": inv.code},
        headers={"Host": "app.tapcanvas.com"},
    )
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["success"] is True
    assert body["user"]["email"] == "new@example.com"
    assert body["user"]["guest"] is False
    assert "avatarUrl" in body["user"]

    morsel = _session_cookie(resp)
    assert morsel.value == body["token"]
    assert morsel["domain"] == ".tapcanvas.com"
    assert morsel["secure"]
    assert morsel["samesite"].lower() == "none"
    assert morsel["path"] == "/"
    assert int(morsel["max-age"]) == REGISTERED_SESSION_TTL
    assert not morsel["httponly"]

    db.expire_all()
    assert db.query(User).filter(User.email == "new@example.com").count() == 1


def test_verify_wrong_code(client, outbox):
    client.post("/api/v1/auth/email/send-code", json={"email": "a@b.com"})
    code = last_code(outbox)
    wrong = "000000" if code != "000000" else "111111"

    body = _assert_error(
        client.post("/api/v1/auth/email/verify", json={"email": "a@b.com", "code": wrong}),
        400,
        "VALIDATION_ERROR",
    )
    assert body["message"] == "验证码错误"


def test_verify_without_invitation_for_new_user(client, outbox):
    client.post("/api/v1/auth/email/send-code", json={"email": "a@b.com"})
    body = _assert_error(
        client.post("/api/v1/auth/email/verify", json={"email": "a@b.com", "code": last_code(outbox)}),
        400,
        "VALIDATION_ERROR",
    )
    assert body["message"] == "首次注册需要邀请码"


def test_verify_unknown_invitation(client, outbox):
    client.post("/api/v1/auth/email/send-code", json={"email": "a@b.com"})
    _assert_error(
        client.post(
            "/api/v1/auth/email/verify",
            json={"email": "a@b.com", "code": last_code(outbox), "invitationCode": "x" * 32},
        ),
        400,
        "NOT_FOUND",
    )


def test_verify_without_any_code_sent(client):
    _assert_error(
        client.post("/api/v1/auth/email/verify", json={"email": "ghost@b.com", "code": "123456"}),
        400,
        "NOT_FOUND",
    )


# ---------- guest ----------

def test_guest_login_on_localhost(client, db):
    resp = client.post("/api/v1/auth/guest", json={"nickname": "Pixel"}, headers={"Host": "localhost:5173"})
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["user"]["guest"] is True
    assert body["user"]["role"] is None
    assert body["user"]["name"] == "Pixel"

    morsel = _session_cookie(resp)
    assert int(morsel["max-age"]) == 86400
    assert morsel["samesite"].lower() == "lax"
    assert not morsel["secure"]
    assert not morsel["domain"]

    assert db.query(User).count() == 0


def test_guest_login_without_body(client):
    resp = client.post("/api/v1/auth/guest")
    assert resp.status_code == 200
    assert resp.json()["user"]["login"].startswith("guest_")


# ---------- invitations ----------

def test_generate_and_list_invitations(client, config, admin, db):
    headers = _bearer(config, admin)

    with_expiry = client.post("/api/v1/auth/invitation/generate", json={"expiresInDays": 7}, headers=headers)
    assert with_expiry.status_code == 200, with_expiry.text
    first = with_expiry.json()
    assert first["success"] is True
    assert len(first["code"]) == 32

    lenient = client.post("/api/v1/auth/invitation/generate", json={"expiresInDays": "soon"}, headers=headers)
    assert lenient.status_code == 200
    no_body = client.post("/api/v1/auth/invitation/generate", headers=headers)
    assert no_body.status_code == 200

    db.expire_all()
    rows = {r.id: r for r in db.query(InvitationCode).all()}
    assert rows[first["id"]].expires_at is not None
    assert rows[lenient.json()["id"]].expires_at is None
    assert rows[no_body.json()["id"]].expires_at is None

    listed = client.get("/api/v1/auth/invitation/list", headers=headers)
    assert listed.status_code == 200
    codes = listed.json()["codes"]
    assert len(codes) == 3
    assert {"id", "code", "isUsed", "expiresAt", "createdAt", "usedAt", "usedByEmail"} <= set(codes[0])


def test_invitations_forbidden_for_non_admin(client, config, db):
    member = make_user(db, "member@example.com")
    headers = _bearer(config, member)

    _assert_error(client.post("/api/v1/auth/invitation/generate", headers=headers), 403, "FORBIDDEN")
    _assert_error(client.get("/api/v1/auth/invitation/list", headers=headers), 403, "FORBIDDEN")


def test_invitations_require_a_session(client):
    resp = client.post("/api/v1/auth/invitation/generate")
    _assert_error(resp, 401, "HTTP_401")
    assert resp.headers["WWW-Authenticate"] == "Bearer"

    _assert_error(client.get("/api/v1/auth/invitation/list", headers={"Authorization": "Bearer junk"}), 401, "HTTP_401")


def test_guest_token_cannot_issue_invitations(client, config):
    token = client.post("/api/v1/auth/guest").json()["token"]
    _assert_error(
        client.post("/api/v1/auth/invitation/generate", headers={"Authorization": f"Bearer {token}"}),
        403,
        "FORBIDDEN",
    )


# ---------- session ----------

def test_session_with_bearer(client, config, admin):
    resp = client.get("/api/v1/auth/session", headers=_bearer(config, admin))
    assert resp.status_code == 200
    body = resp.json()
    assert body["authenticated"] is True
    assert body["user"]["sub"] == admin.id
    assert jwt.decode(body["token"], TEST_SECRET, algorithms=["HS256"])["sub"] == admin.id


def test_session_with_cookie(client, config, admin):
    token = _bearer(config, admin)["Authorization"].split(" ", 1)[1]
    client.cookies.set("tap_token", token)
    resp = client.get("/api/v1/auth/session")
    assert resp.status_code == 200
    assert resp.json()["token"] == token


def test_session_redirect_hands_over_token(client, config, admin):
    resp = client.get(
        "/api/v1/auth/session",
        params={"redirect": "https://app.tapcanvas.com/cb"},
        headers=_bearer(config, admin),
        follow_redirects=False,
    )
    assert resp.status_code == 302
    location = urlsplit(resp.headers["location"])
    assert location.netloc == "app.tapcanvas.com"
    qs = parse_qs(location.query)
    assert jwt.decode(qs["tap_token"][0], TEST_SECRET, algorithms=["HS256"])["sub"] == admin.id
    assert json.loads(unquote(qs["tap_user"][0]))["email"] == "root@example.com"


def test_session_ignores_unsafe_redirect(client, config, admin):
    resp = client.get(
        "/api/v1/auth/session",
        params={"redirect_uri": "javascript:alert(1)"},
        headers=_bearer(config, admin),
        follow_redirects=False,
    )
    assert resp.status_code == 200
    assert resp.json()["authenticated"] is True


def test_session_unauthenticated(client):
    resp = client.get("/api/v1/auth/session")
    assert resp.status_code == 401
    assert resp.json() == {"authenticated": False, "error": "Unauthorized"}


def test_session_unauthenticated_with_login_page(client, config):
    app.dependency_overrides[get_auth_config] = lambda: dataclasses.replace(
        config, login_url="https://tapcanvas.com/login"
    )

    resp = client.get("/api/v1/auth/session")
    assert resp.status_code == 401
    assert resp.json()["loginUrl"] == "https://tapcanvas.com/login"

    bounced = client.get(
        "/api/v1/auth/session",
        params={"redirect": "/canvas/7"},
        follow_redirects=False,
    )
    assert bounced.status_code == 302
    location = urlsplit(bounced.headers["location"])
    assert location.path == "/login"
    assert parse_qs(location.query)["redirect"] == ["https://tapcanvas.com/canvas/7"]


def test_expired_session_is_unauthenticated(client, config, admin):
    from datetime import datetime, timedelta, timezone

    token = SessionTokenIssuer(config).issue(
        claims_for_user(admin),
        REGISTERED_SESSION_TTL,
        now=datetime.now(timezone.utc) - timedelta(days=8),
    )
    resp = client.get("/api/v1/auth/session", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 401


# ---------- health ----------

def test_health(client):
    assert client.get("/api/v1/health").json()["status"] == "ok"
    db_probe = client.get("/api/v1/health/db")
    assert db_probe.status_code == 200
    assert db_probe.json()["db"] == "up"
