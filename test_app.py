import importlib
from io import BytesIO

import pytest
from werkzeug.datastructures import FileStorage

from conftest import SEED_PASSWORD, login_as


def _store(app_module):
    return app_module.get_store()


def test_pages_require_login(client):
    for path in ("/", "/scores", "/reports", "/admin", "/logs"):
        res = client.get(path)
        assert res.status_code == 302
        assert "/login" in res.headers["Location"]


def test_missing_secret_key_is_refused(monkeypatch, app_module):
    monkeypatch.delenv("SECRET_KEY")
    with pytest.raises(RuntimeError, match="SECRET_KEY"):
        importlib.reload(app_module)


def test_login_success_and_failure(client):
    res = client.post("/login", data={"email": "teacher@cdssdaura.edu.ng", "password": "nope"})
    assert res.status_code == 200
    assert b"Invalid credentials" in res.data

    res = client.post("/login", data={"email": "Teacher@CDSSDaura.edu.ng", "password": SEED_PASSWORD})
    assert res.status_code == 302
    with client.session_transaction() as sess:
        assert sess["user_id"] == "u4"

    res = client.get("/")
    assert res.status_code == 200
    assert b"Mallam Teacher" in res.data


def test_register_then_pending_login(client, app_module):
    res = client.post("/register", data={
        "full_name": "New Teacher",
        "email": "new@cdssdaura.edu.ng",
        "role": "SUBJECT_TEACHER",
        "password": "secret1",
    })
    assert res.status_code == 302
    assert _store(app_module).find_user_by_email("new@cdssdaura.edu.ng")["is_active"] is False

    res = client.post("/login", data={"email": "new@cdssdaura.edu.ng", "password": "secret1"})
    assert b"Account pending approval." in res.data


def test_register_duplicate_email(client):
    res = client.post("/register", data={
        "full_name": "Dup",
        "email": "ADMIN@cdssdaura.edu.ng",
        "role": "SUBJECT_TEACHER",
        "password": "secret1",
    })
    assert res.status_code == 200
    assert b"Email already exists" in res.data


def test_forgot_password_same_message_for_unknown_email(client):
    res = client.post("/forgot-password", data={"email": "nobody@cdssdaura.edu.ng"}, follow_redirects=True)
    assert b"If the email exists" in res.data


def test_reset_password_with_token(client, app_module):
    store = _store(app_module)
    with app_module.app.test_request_context():
        token = app_module.request_password_reset(store, "exam@cdssdaura.edu.ng")
    assert token

    res = client.post(f"/reset-password/{token}", data={"password": "fresh-pass", "confirm": "fresh-pass"})
    assert res.status_code == 302
    assert store.login("exam@cdssdaura.edu.ng", "fresh-pass")["id"] == "u3"


def test_reset_password_rejects_bad_token(client):
    res = client.get("/reset-password/not-a-token")
    assert res.status_code == 302
    assert "/forgot-password" in res.headers["Location"]


def test_score_entry_page_for_teacher(client):
    login_as(client, "u4")
    res = client.get("/scores?class=JSS1%20A&subject=Mathematics")
    assert res.status_code == 200
    assert b"CDSS/25/1000" in res.data
    assert b"Read only" not in res.data


def test_teacher_saves_scores(client, app_module):
    login_as(client, "u4")
    res = client.post("/scores", data={
        "class": "JSS1 A",
        "subject": "Mathematics",
        "ca1_s1": "12",
        "ca2_s1": "40",
        "exam_s1": "65",
    })
    assert res.status_code == 302
    assert "class=JSS1" in res.headers["Location"]

    scores = _store(app_module).get_scores()
    assert len(scores) == 1
    assert (scores[0]["ca1"], scores[0]["ca2"], scores[0]["exam"]) == (12, 15, 65)
    assert scores[0]["term"] == 1 and scores[0]["session"] == "2025/2026"


def test_unassigned_user_cannot_save_scores(client, app_module):
    login_as(client, "u1")
    res = client.post("/scores", data={
        "class": "JSS1 A",
        "subject": "Mathematics",
        "ca1_s1": "12",
    }, follow_redirects=True)
    assert b"You are not assigned to Mathematics for JSS1 A." in res.data
    assert _store(app_module).get_scores() == []


def test_scores_for_unassigned_subject_are_not_saved_elsewhere(client, app_module):
    login_as(client, "u4")
    res = client.post("/scores", data={
        "class": "JSS1 A",
        "subject": "Basic Science",
        "ca1_s1": "5",
        "ca2_s1": "5",
        "exam_s1": "5",
    }, follow_redirects=True)
    assert b"You are not assigned to Basic Science for JSS1 A." in res.data
    assert _store(app_module).get_scores() == []


def test_scores_for_unassigned_class_are_not_saved_elsewhere(client, app_module):
    login_as(client, "u4")
    client.post("/scores", data={
        "class": "JSS2 B",
        "subject": "Mathematics",
        "ca1_s1": "5",
    })
    assert _store(app_module).get_scores() == []


def test_closed_term_blocks_score_entry(client, app_module):
    store = _store(app_module)
    store.update_session("u1", "2025/2026", 1, False)
    login_as(client, "u4")

    res = client.get("/scores")
    assert b"Term Closed" in res.data

    client.post("/scores", data={"class": "JSS1 A", "subject": "Mathematics", "ca1_s1": "12"})
    assert store.get_scores() == []


def test_class_report_pdf(client):
    login_as(client, "u1")
    res = client.get("/reports/class?class=JSS1%20A")
    assert res.status_code == 200
    assert res.mimetype == "application/pdf"
    assert res.data.startswith(b"%PDF")
    assert "Report_Cards_JSS1_A.pdf" in res.headers["Content-Disposition"]


def test_single_report_pdf(client):
    login_as(client, "u5")
    res = client.get("/reports/student/s1")
    assert res.status_code == 200
    assert "CDSS_Report_CDSS-25-1000.pdf" in res.headers["Content-Disposition"]


def test_form_master_is_pinned_to_own_class(client, app_module):
    student, _ = app_module.add_student(_store(app_module), "u1", "Other Pupil", "CDSS/25/5000", "SSS1 A", "F")
    login_as(client, "u5")

    res = client.get(f"/reports/student/{student['id']}")
    assert res.status_code == 302

    res = client.get("/reports?class=SSS1%20A")
    assert b"CDSS/25/1000" in res.data
    assert b"CDSS/25/5000" not in res.data


def test_empty_class_report_redirects(client):
    login_as(client, "u3")
    res = client.get("/reports/class?class=SSS3%20C", follow_redirects=True)
    assert b"No students found in this class to print." in res.data


def test_subject_teacher_has_no_reports(client):
    login_as(client, "u4")
    res = client.get("/reports")
    assert res.status_code == 302


def test_bulk_add_students_route(client, app_module):
    login_as(client, "u2")
    res = client.post("/admin/students/bulk", data={
        "names": "Musa Bello\nAisha Umar\nJohn Doe",
        "start_reg": "CDSS/25/1050",
        "classname": "JSS2 A",
    }, follow_redirects=True)
    assert b"3 students added successfully!" in res.data
    assert b"CDSS/25/1053" in res.data
    regs = [s["reg_number"] for s in _store(app_module).get_students("JSS2 A")]
    assert regs == ["CDSS/25/1050", "CDSS/25/1051", "CDSS/25/1052"]


def test_add_student_duplicate_reg_number(client, app_module):
    login_as(client, "u2")
    res = client.post("/admin/students", data={
        "full_name": "Dup",
        "reg_number": "CDSS/25/1001",
        "classname": "JSS1 A",
        "gender": "F",
    }, follow_redirects=True)
    assert b"Registration Number CDSS/25/1001 already exists." in res.data
    assert len(_store(app_module).get_students()) == 30


def test_only_commandant_and_admin_officer_manage_session(client, app_module):
    store = _store(app_module)
    login_as(client, "u3")
    client.post("/admin/session", data={"year": "2025/2026", "term": "2", "action": "close"})
    assert store.get_session()["is_term_open"] is True

    login_as(client, "u1")
    res = client.post("/admin/session", data={"year": "2025/2026", "term": "2", "action": "close"},
                      follow_redirects=True)
    assert b"Successfully Closed Second Term 2025/2026" in res.data
    assert store.get_session() == {"year": "2025/2026", "current_term": 2, "is_term_open": False}


def test_approve_pending_user(client, app_module):
    store = _store(app_module)
    pending = store.register("new@cdssdaura.edu.ng", "New Teacher", "SUBJECT_TEACHER", "secret1")
    login_as(client, "u6")
    client.post(f"/admin/users/{pending['id']}/approve")
    assert store.get_user(pending["id"])["is_active"] is True


def test_assignments_route_saves_custom_subject(client, app_module):
    store = _store(app_module)
    login_as(client, "u2")
    client.post("/admin/users/u4/assignments", data={
        "assigned_classes": ["JSS2 A", "NOT A CLASS"],
        "assigned_subjects": ["Mathematics"],
        "custom_subject": "  French  ",
    })
    user = store.get_user("u4")
    assert user["assigned_classes"] == ["JSS2 A"]
    assert user["assigned_subjects"] == ["Mathematics", "French"]


def test_admin_tabs_render(client):
    login_as(client, "u1")
    for tab in ("users", "students", "session", "branding", "logs"):
        res = client.get(f"/admin?tab={tab}")
        assert res.status_code == 200


def test_branding_update(client, app_module):
    login_as(client, "u1")
    client.post("/admin/branding", data={"school_name": "  New   School  ", "address": ""})
    settings = _store(app_module).get_settings()
    assert settings["school_name"] == "New School"
    assert settings["address"] == "KATSINA STATE, NIGERIA"


def test_parse_uploaded_logo(app_module):
    upload = FileStorage(stream=BytesIO(b"\x89PNG fake"), filename="logo.png", content_type="image/png")
    data_url, error = app_module.parse_uploaded_logo(upload)
    assert error == ""
    assert data_url.startswith("data:image/png;base64,")

    bad = FileStorage(stream=BytesIO(b"GIF89a"), filename="logo.gif", content_type="image/gif")
    assert app_module.parse_uploaded_logo(bad) == ("", "Only PNG, JPG, JPEG, or WEBP files are allowed.")
