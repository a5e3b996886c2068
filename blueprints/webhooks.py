import hashlib
import hmac
import json
import logging
import re
from datetime import datetime

from flask import Blueprint, current_app, jsonify, request

from blueprints.applications import build_application
from errors import Conflict, PortalError
from extensions import db
from logger import log_security_event
from models import ActivityAlert, Application, ApplicationDocument, WebhookEvent
from utils import client_ip

logger = logging.getLogger(__name__)

bp = Blueprint("webhooks", __name__, url_prefix="/api/webhooks")

PROVIDER = "jotform"

# Application column -> answer ids / names to look for in the submission
FIELD_MAPPING = {
    # Section A - Personal Details
    "full_name": ["3", "fullName", "name"],
    "email": ["4", "email", "emailAddress"],
    "nric": ["5", "nric", "ic", "identityCard"],
    "date_of_birth": ["6", "dateOfBirth", "dob", "birthDate"],
    "contact_number": ["7", "phone", "phoneNumber", "contactNumber"],
    "gender": ["8", "gender"],
    "address": ["9", "address", "homeAddress"],
    "postcode": ["10", "postcode", "postalCode"],
    "city_country": ["11", "city", "cityCountry", "location"],
    "marital_status": ["12", "maritalStatus", "status"],

    # Section B - Bank Details
    "account_holder_name": ["13", "accountHolderName", "bankAccountName"],
    "bank_name": ["14", "bankName", "bank"],
    "account_number": ["15", "accountNumber", "bankAccountNumber"],

    # Section C - Additional Information
    "previous_experience": ["16", "experience", "previousExperience"],
    "currently_promoting": ["17", "currentlyPromoting", "otherCompanies"],
    "working_style": ["18", "workingStyle", "workPreference"],

    # Section D - Beneficiary Details
    "beneficiary_full_name": ["19", "beneficiaryName", "emergencyContactName"],
    "beneficiary_nric": ["20", "beneficiaryNric", "beneficiaryIC"],
    "beneficiary_date_of_birth": ["21", "beneficiaryDob", "beneficiaryBirthDate"],
    "beneficiary_postcode": ["22", "beneficiaryPostcode"],
    "beneficiary_city_country": ["23", "beneficiaryCity", "beneficiaryLocation"],
    "beneficiary_relation": ["24", "relationship", "beneficiaryRelation"],
    "beneficiary_contact_number": ["25", "beneficiaryPhone", "emergencyPhone"],
    "beneficiary_email_address": ["26", "beneficiaryEmail"],
    "beneficiary_account_holder_name": ["27", "beneficiaryAccountName"],
    "beneficiary_bank_name": ["28", "beneficiaryBank"],
    "beneficiary_account_number": ["29", "beneficiaryAccountNumber"],

    # Section E - Authorization
    "declaration": ["30", "declaration", "agreement", "terms"],
    "applicant_signature": ["31", "signature", "digitalSignature"],
    "signature_date": ["32", "signatureDate"],
    "signature_name": ["33", "signatureName"],

    # Referral Information
    "introducer_name": ["34", "introducerName", "referrerName"],
    "introducer_id": ["35", "introducerId", "referrerId"],
}

DATE_FORMATS = ("%Y-%m-%d", "%d-%m-%Y", "%m/%d/%Y", "%d/%m/%Y", "%Y/%m/%d")

# ===========================================================
# PAYLOAD HELPERS
# ===========================================================

def verify_signature(body: bytes, signature: str) -> bool:
    secret = current_app.config.get("JOTFORM_WEBHOOK_SECRET")
    if not signature or not secret:
        return False
    expected = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(signature.strip().lower(), expected)


def _answer_value(answer):
    if not isinstance(answer, dict):
        return None
    for key in ("answer", "text", "prettyFormat"):
        value = answer.get(key)
        if not value:
            continue
        if isinstance(value, dict):
            pretty = answer.get("prettyFormat")
            if isinstance(pretty, str) and pretty:
                return pretty
            return " ".join(str(v) for v in value.values() if v)
        if isinstance(value, list):
            return ", ".join(str(v) for v in value if v)
        return str(value)
    return None


def extract_field(answers, aliases):
    """
    Match by answer id first, then by answer name for the non-numeric aliases.
    Uploads are never matched by name; collect_documents handles them.
    """
    for alias in aliases:
        if alias in answers:
            value = _answer_value(answers[alias])
            if value:
                return value

    for alias in aliases:
        if alias.isdigit():
            continue
        for answer in answers.values():
            if not isinstance(answer, dict) or answer.get("type") == "control_fileupload":
                continue
            name = answer.get("name") or ""
            if alias.lower() in name.lower():
                value = _answer_value(answer)
                if value:
                    return value
    return None


def _normalise_date(value):
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value.strip()[:10], fmt).date().isoformat()
        except ValueError:
            continue
    return None


def map_submission(answers):
    data = {}
    for field, aliases in FIELD_MAPPING.items():
        value = extract_field(answers, aliases)
        if not value:
            continue
        if field == "declaration":
            data[field] = value.strip().lower() in ("yes", "true", "1")
        elif "date" in field:
            data[field] = _normalise_date(value)
        else:
            data[field] = value
    return data


def document_type(field_name: str) -> str:
    name = (field_name or "").lower()
    tokens = set(re.split(r"[^a-z0-9]+", name))
    if "identity" in name or "nric" in name or "ic" in tokens or "passport" in name:
        return "identity"
    if "address" in name or "utility" in name:
        return "address"
    if "bank" in name or "statement" in name:
        return "bank"
    if "agreement" in name or "contract" in name:
        return "agreement"
    return "other"


def collect_documents(submission_id, answers):
    documents = []
    for key, answer in answers.items():
        if not isinstance(answer, dict) or answer.get("type") != "control_fileupload":
            continue
        urls = answer.get("answer")
        if not urls:
            continue
        if isinstance(urls, str):
            urls = [urls]
        field_name = answer.get("name") or f"field_{key}"
        for url in urls:
            documents.append(ApplicationDocument(
                submission_id=submission_id,
                field_name=field_name,
                file_url=url,
                document_type=document_type(field_name),
            ))
    return documents


def log_webhook(event_type, submission_id, details, signature=None):
    event = WebhookEvent(
        provider=PROVIDER,
        event_type=event_type,
        submission_id=submission_id,
        payload=details,
        signature=signature,
    )
    event.mark_processed(success=event_type != "error", remarks=details.get("reason"))
    db.session.add(event)
    return event

# ===========================================================
# ENDPOINT
# ===========================================================

@bp.route("/jotform", methods=["POST"])
def jotform_webhook():
    """
    Form-provider intake: verify origin and signature, then store the submission
    as a PENDING application. Safe to redeliver.
    """
    ip = client_ip(request)
    if current_app.config.get("WEBHOOK_IP_CHECK") and ip not in current_app.config.get("JOTFORM_ALLOWED_IPS", []):
        log_security_event("webhook_ip_rejected", {"ip": ip})
        return jsonify({"error": "Unauthorized IP address"}), 403

    body = request.get_data(cache=True)
    signature = request.headers.get("X-Jotform-Signature", "")
    if not verify_signature(body, signature):
        log_security_event("webhook_bad_signature", {"ip": ip})
        return jsonify({"error": "Invalid signature"}), 401

    try:
        if request.is_json:
            submission = json.loads(body or b"{}")
        else:
            submission = json.loads(request.form.get("rawRequest") or "{}")
    except ValueError:
        logger.error("Error parsing webhook payload", exc_info=True)
        return jsonify({"error": "Invalid payload format"}), 400

    if not isinstance(submission, dict):
        return jsonify({"error": "Invalid payload format"}), 400

    submission_id = str(submission.get("submissionID") or "")
    answers = submission.get("answers")
    if not submission_id or not isinstance(answers, dict) or not answers:
        return jsonify({"error": "Missing required fields"}), 400

    already_logged = WebhookEvent.query.filter_by(
        provider=PROVIDER, submission_id=submission_id, event_type="success"
    ).first()
    if already_logged or Application.query.filter_by(jotform_submission_id=submission_id).first():
        log_webhook("duplicate", submission_id, {"reason": "Already processed"})
        db.session.commit()
        current_app.logger.info(f"Duplicate submission ignored: {submission_id}")
        return jsonify({"message": "Submission already processed"}), 200

    data = {}
    try:
        data = map_submission(answers)
        application = build_application(data, source=PROVIDER)
        application.jotform_submission_id = submission_id
        application.jotform_form_id = str(submission.get("formID") or "") or None

        db.session.add(application)
        db.session.flush()

        for document in collect_documents(submission_id, answers):
            document.application_id = application.id
            db.session.add(document)

        log_webhook("success", submission_id, {
            "application_id": application.id,
            "email": application.email,
            "name": application.full_name,
        }, signature=signature)
        ActivityAlert.raise_alert(
            "new_application", "New consultant application (form)",
            f"{application.full_name} ({application.email}) applied via the online form",
            target=application,
        )
        db.session.commit()
    except Conflict as e:
        db.session.rollback()
        log_webhook("error", submission_id, {"reason": "Duplicate email", "email": data.get("email")})
        db.session.commit()
        return jsonify({"error": "Email already exists in applications"}), e.status_code
    except PortalError as e:
        db.session.rollback()
        log_webhook("error", submission_id, {"reason": e.message, "details": e.details})
        db.session.commit()
        return jsonify(e.to_dict()), e.status_code
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Webhook processing error for {submission_id}", exc_info=True)
        log_webhook("error", submission_id, {"reason": "Failed to store application", "error": str(e)})
        ActivityAlert.raise_alert(
            "webhook_failure", "Form webhook failed",
            f"Submission {submission_id} could not be stored", severity="critical",
        )
        db.session.commit()
        return jsonify({"error": "Failed to store application"}), 500

    current_app.logger.info(f"Processed form submission {submission_id} as application {application.id}")
    return jsonify({
        "message": "Application processed successfully",
        "application_id": application.id,
    }), 200


@bp.route("/jotform", methods=["GET"])
def jotform_webhook_info():
    return jsonify({"message": "Jotform webhook endpoint - POST only"}), 405
