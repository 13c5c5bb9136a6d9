from datetime import datetime, timedelta, timezone


def _deadline():
    return (datetime.now(timezone.utc) + timedelta(days=1)).strftime("%Y-%m-%dT%H:%M:%SZ")


def _checkout(client, h, tool_ids, name="3S EDIMAR"):
    r = client.post(
        "/checkouts",
        json={
            "toolIds": tool_ids,
            "responsibleName": name,
            "responsibleMatricula": "GAP-SP",
            "expectedReturnDate": _deadline(),
        },
        headers=h,
    )
    assert r.status_code == 200
    return r.json()


def test_list_history(client, user_headers):
    h = user_headers

    first = _checkout(client, h, ["T1"])
    second = _checkout(client, h, ["T2"], name="Cb Souza")
    back = client.post(f"/checkouts/{first['id']}/return", json={"toolIds": ["T1"]}, headers=h).json()

    r = client.get("/history?limit=50&offset=0&sort=seq_desc", headers=h)
    assert r.status_code == 200
    data = r.json()
    assert data["total"] == 3
    assert [i["id"] for i in data["items"]] == [back["id"], second["id"], first["id"]]

    r2 = client.get("/history?sort=seq_asc&limit=1&offset=1", headers=h)
    assert r2.json()["limit"] == 1
    assert [i["id"] for i in r2.json()["items"]] == [second["id"]]

    r3 = client.get("/history?actionType=RETURN", headers=h)
    assert [i["id"] for i in r3.json()["items"]] == [back["id"]]

    r4 = client.get("/history?q=souza", headers=h)
    assert [i["id"] for i in r4.json()["items"]] == [second["id"]]


def test_history_date_range(client, user_headers):
    h = user_headers
    _checkout(client, h, ["T1"])

    today = datetime.now(timezone.utc).date()
    r = client.get(f"/history?start={today.isoformat()}&end={today.isoformat()}", headers=h)
    assert r.status_code == 200
    assert r.json()["total"] == 1

    tomorrow = today + timedelta(days=1)
    r2 = client.get(f"/history?start={tomorrow.isoformat()}", headers=h)
    assert r2.json()["total"] == 0


def test_history_bad_params(client, user_headers):
    h = user_headers

    r = client.get("/history?start=2026-13-40", headers=h)
    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "BAD_REQUEST"

    r2 = client.get("/history?tz=Mars/Olympus", headers=h)
    assert r2.status_code == 400

    r3 = client.get("/history?start=2026-01-10&end=2026-01-01", headers=h)
    assert r3.status_code == 400

    r4 = client.get("/history?limit=0", headers=h)
    assert r4.status_code == 422


def test_get_history_record(client, user_headers):
    h = user_headers
    record = _checkout(client, h, ["T3"])

    r = client.get(f"/history/{record['id']}", headers=h)
    assert r.status_code == 200
    assert r.json()["toolIds"] == ["T3"]

    r2 = client.get("/history/nope", headers=h)
    assert r2.status_code == 404
    assert r2.json()["detail"]["code"] == "HISTORY_NOT_FOUND"


def test_receipt_pdf_survives_deleted_tool(client, user_headers):
    h = user_headers
    record = _checkout(client, h, ["T4", "T5"])
    client.post(f"/checkouts/{record['id']}/return", json={"toolIds": ["T5"]}, headers=h)
    assert client.delete("/tools/T5", headers=h).status_code == 200

    r = client.get(f"/history/{record['id']}/receipt.pdf?tz=America/Sao_Paulo", headers=h)
    assert r.status_code == 200
    assert r.headers["content-type"] == "application/pdf"
    assert "ZAGFER_Retirada_3S_EDIMAR_" in r.headers["content-disposition"]
    assert r.content.startswith(b"%PDF")


def test_history_export_admin_only(client, admin_headers, user_headers):
    _checkout(client, user_headers, ["T1"])

    r = client.get("/history/export.csv", headers=user_headers)
    assert r.status_code == 403

    r2 = client.get("/history/export.csv?tz=America/Sao_Paulo", headers=admin_headers)
    assert r2.status_code == 200
    lines = r2.content.decode("utf-8").splitlines()
    assert lines[0].lstrip("\ufeff").startswith('"ID","Data/Hora","Tipo"')
    assert len(lines) == 2
    assert '"Retirada"' in lines[1]
