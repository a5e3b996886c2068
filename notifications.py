# notifications.py - Outbound email (best effort, never raises to the caller)
import logging

from flask import current_app
from flask_mail import Message

from extensions import mail

logger = logging.getLogger(__name__)


def _company():
    return current_app.config.get("COMPANY_NAME", "Aaron M LLP")


def send_email(to, subject, body, html=None):
    """Send one message. Returns True on success, False (logged) on failure."""
    try:
        msg = Message(
            subject=subject,
            sender=current_app.config.get("MAIL_DEFAULT_SENDER"),
            recipients=[to],
            body=body,
            html=html,
        )
        mail.send(msg)
        logger.info(f"Email '{subject}' sent to {to}")
        return True
    except Exception as e:
        logger.error(f"Email sending failed for {to}: {e}")
        return False


def send_approval_email(application, invite_token):
    from dividends.commission import CommissionHelper

    company = _company()
    invite_url = f"{current_app.config['APP_BASE_URL'].rstrip('/')}/invites/{invite_token.token}"
    structure = CommissionHelper.commission_structure()
    overrides = "\n".join(
        f"    - {label}: {rate}% override" for label, rate in structure["overrides"].items()
    )
    body = f"""Welcome to {company}!

Dear {application.full_name},

Congratulations! Your consultant application has been approved.

Complete your onboarding here:
{invite_url}

This link can be used once and expires on {invite_token.expires_at:%d %b %Y %H:%M} UTC.

Next Steps:
1. Open the link above and set your password
2. Complete your profile information
3. Start building your client network

Commission Structure:
    - {structure['passive']}% Passive Commission (per annum, paid quarterly)
    - {structure['one_off']}% One-off Commission (initial investment bonus)
{overrides}

Best regards,
{company} Team
"""
    return send_email(
        application.email,
        f"Welcome to {company} - Your Application Has Been Approved!",
        body,
    )


def send_rejection_email(application, reason=None):
    company = _company()
    reason_block = f"\nReason: {reason}\n" if reason else ""
    body = f"""Application Status Update

Dear {application.full_name},

Thank you for your interest in joining {company} as a consultant.

After careful review of your application, we regret to inform you that we are unable to proceed with your application at this time.
{reason_block}
We encourage you to reapply after 6 months.

Best regards,
{company} Team
"""
    return send_email(application.email, f"{company} - Application Status Update", body)


def send_request_info_email(application, message):
    company = _company()
    body = f"""Dear {application.full_name},

We are reviewing your consultant application and need some more information:

{message}

Please reply with the requested details so we can continue the review.

Best regards,
{company} Team
"""
    return send_email(application.email, f"{company} - Additional Information Required", body)


def send_investor_welcome_email(user, temporary_password):
    company = _company()
    login_url = f"{current_app.config['APP_BASE_URL'].rstrip('/')}/login"
    body = f"""Dear {user.full_name},

Your investor account with {company} has been created.

Email: {user.email}
Temporary Password: {temporary_password}
Login URL: {login_url}

IMPORTANT: You will be asked to change your password on first login.

Best regards,
{company} Team
"""
    return send_email(user.email, f"Your {company} investor account", body)


def send_password_reset_email(email, code):
    minutes = current_app.config.get("PASSWORD_RESET_TTL_MINUTES", 10)
    return send_email(
        email,
        "Password Reset Code",
        f"Your password reset code is: {code}\n\nThis code will expire in {minutes} minutes.",
    )
