import hashlib
import hmac
import json
from urllib.parse import urlencode

import pytest

from blueprints.webhooks import document_type, extract_field, map_submission
from models import ActivityAlert, Application, ApplicationDocument, WebhookEvent

from conftest import make_application

SECRET = b"webhook-test-secret"
URL = "/api/webhooks/jotform"


def sign(body):
    return hmac.new(SECRET, body, hashlib.sha256).hexdigest()


def submission(submission_id="5001", email="siti@example.com"):
    return {
        "submissionID": submission_id,
        "formID": "230001",
        "answers": {
            "3": {"name": "fullName", "answer": "Siti Aminah"},
            "4": {"name": "email", "answer": email},
            "5": {"name": "nric", "answer": "880808-08-8888"},
            "6": {"name": "dateOfBirth", "answer": {"day": "08", "month": "08", "year": "1988"},
                  "prettyFormat": "08-08-1988"},
            "7": {"name": "phoneNumber", "answer": "+60123456789"},
            "30": {"name": "declaration", "answer": "Yes"},
            "35": {"name": "introducerId", "answer": "agt000111"},
            "40": {"name": "ic_copy", "type": "control_fileupload",
                   "answer": ["https://files.example.com/ic-front.pdf", "https://files.example.com/ic-back.pdf"]},
            "41": {"name": "account_statement", "type": "control_fileupload",
                   "answer": "https://files.example.com/statement.pdf"},
        },
    }


def post_json(client, payload, signature=None):
    body = json.dumps(payload).encode()
    return client.post(URL, data=body, content_type="application/json",
                       headers={"X-Jotform-Signature": signature if signature is not None else sign(body)})


class TestDelivery:

    def test_stores_pending_application(self, client, app):
        response = post_json(client, submission())
        assert response.status_code == 200
        body = response.get_json()
        assert body["message"] == "Application processed successfully"

        with app.app_context():
            application = Application.query.one()
            assert application.id == body["application_id"]
            assert application.full_name == "Siti Aminah"
            assert application.date_of_birth.isoformat() == "1988-08-08"
            assert application.introducer_id == "AGT000111"
            assert application.declaration is True
            assert application.application_status == "PENDING"
            assert application.source == "jotform"
            assert application.jotform_submission_id == "5001"
            assert application.jotform_form_id == "230001"

            types = sorted(d.document_type for d in ApplicationDocument.query.all())
            assert types == ["bank", "identity", "identity"]

            event = WebhookEvent.query.filter_by(event_type="success").one()
            assert event.submission_id == "5001"
            assert event.status == "success"
            assert ActivityAlert.query.filter_by(alert_type="new_application").count() == 1

    def test_form_encoded_raw_request(self, client, app):
        body = urlencode({"rawRequest": json.dumps(submission("5002"))}).encode()
        response = client.post(URL, data=body, content_type="application/x-www-form-urlencoded",
                               headers={"X-Jotform-Signature": sign(body)})
        assert response.status_code == 200
        with app.app_context():
            assert Application.query.filter_by(jotform_submission_id="5002").count() == 1

    def test_redelivery_is_ignored(self, client, app):
        assert post_json(client, submission()).status_code == 200
        response = post_json(client, submission())
        assert response.status_code == 200
        assert response.get_json()["message"] == "Submission already processed"

        with app.app_context():
            assert Application.query.count() == 1
            assert WebhookEvent.query.filter_by(event_type="duplicate").count() == 1

    def test_duplicate_email(self, client, app):
        with app.app_context():
            make_application(email="siti@example.com")

        response = post_json(client, submission("5003"))
        assert response.status_code == 409
        assert response.get_json()["error"] == "Email already exists in applications"
        with app.app_context():
            event = WebhookEvent.query.filter_by(event_type="error").one()
            assert event.status == "failed"
            assert event.remarks == "Duplicate email"

    def test_incomplete_answers_rejected(self, client, app):
        payload = submission()
        del payload["answers"]["5"]
        response = post_json(client, payload)
        assert response.status_code == 400
        assert response.get_json()["details"] == ["nric"]
        with app.app_context():
            assert Application.query.count() == 0


class TestRejections:

    def test_bad_signature(self, client):
        assert post_json(client, submission(), signature="deadbeef").status_code == 401

    def test_missing_signature(self, client):
        body = json.dumps(submission()).encode()
        response = client.post(URL, data=body, content_type="application/json")
        assert response.status_code == 401

    def test_missing_submission_id(self, client):
        payload = submission()
        del payload["submissionID"]
        assert post_json(client, payload).status_code == 400

    def test_missing_answers(self, client):
        assert post_json(client, {"submissionID": "1"}).status_code == 400

    def test_unparseable_body(self, client):
        body = b"{not json"
        response = client.post(URL, data=body, content_type="application/json",
                               headers={"X-Jotform-Signature": sign(body)})
        assert response.status_code == 400

    def test_ip_allowlist(self, client, app):
        app.config["WEBHOOK_IP_CHECK"] = True
        assert post_json(client, submission()).status_code == 403

    def test_get_not_allowed(self, client):
        assert client.get(URL).status_code == 405


class TestFieldMapping:

    def test_id_match_wins_over_name(self):
        answers = {
            "3": {"name": "q3", "answer": "By Id"},
            "9": {"name": "fullName", "answer": "By Name"},
        }
        assert extract_field(answers, ["3", "fullName"]) == "By Id"

    def test_name_match(self):
        answers = {"17": {"name": "homeAddress", "answer": "1 Jalan Besar"}}
        assert extract_field(answers, ["9", "address", "homeAddress"]) == "1 Jalan Besar"

    def test_list_answers_joined(self):
        answers = {"18": {"name": "workingStyle", "answer": ["Full time", "Remote"]}}
        assert map_submission(answers)["working_style"] == "Full time, Remote"

    def test_unparseable_date_dropped(self):
        answers = {"6": {"name": "dob", "answer": "sometime in 1990"}}
        assert map_submission(answers)["date_of_birth"] is None

    @pytest.mark.parametrize("name,expected", [
        ("ic_copy", "identity"),
        ("passportScan", "identity"),
        ("utility_bill", "address"),
        ("bank_statement", "bank"),
        ("signed_agreement", "agreement"),
        ("picture", "other"),
    ])
    def test_document_type(self, name, expected):
        assert document_type(name) == expected
