import logging
from typing import Dict

import sib_api_v3_sdk
from botocore.exceptions import BotoCoreError, ClientError
from sib_api_v3_sdk.rest import ApiException

import config
from aws_clients import get_client

logger = logging.getLogger(__name__)

SENDER_NAME = "Smart Attendance System"


def build_verification_url(token: str) -> str:
    return f"{config.FRONTEND_URL.rstrip('/')}/verify-email?token={token}"


def get_verification_email_template(name: str, verification_url: str) -> Dict[str, str]:
    """Subject, HTML and plain-text bodies of the verification email"""
    html = f"""
    <!DOCTYPE html>
    <html lang="en">
    <head>
        <meta charset="UTF-8">
        <title>Email Verification</title>
    </head>
    <body style="margin: 0; padding: 0; font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
        <table role="presentation" cellspacing="0" cellpadding="0" border="0" width="100%" style="max-width: 600px; margin: 0 auto;">
            <tr>
                <td style="background: #007bff; color: white; padding: 20px; text-align: center;">
                    <h1 style="margin: 0;">Smart Attendance System</h1>
                </td>
            </tr>
            <tr>
                <td style="padding: 20px; background: #f9f9f9;">
                    <h2>Welcome, {name}!</h2>
                    <p>Thank you for registering with the Smart Attendance System. To activate your account, please verify your email address.</p>
                    <p style="text-align: center;">
                        <a href="{verification_url}" style="display: inline-block; background: #28a745; color: white; padding: 12px 24px; text-decoration: none; border-radius: 5px; margin: 20px 0;">Verify Email Address</a>
                    </p>
                    <p><strong>Security Note:</strong> This link will expire in {config.VERIFICATION_TOKEN_HOURS} hours.</p>
                    <hr>
                    <p><small>If you didn't create this account, please ignore this email.</small></p>
                </td>
            </tr>
            <tr>
                <td style="padding: 20px; text-align: center; color: #666; font-size: 12px;">
                    <p>This is an automated email, please do not reply.</p>
                </td>
            </tr>
        </table>
    </body>
    </html>
    """

    text = (
        f"Hi {name},\n\n"
        "Thank you for registering with the Smart Attendance System. "
        "Please verify your email address by opening this link:\n"
        f"{verification_url}\n\n"
        f"This link expires in {config.VERIFICATION_TOKEN_HOURS} hours.\n\n"
        "If you didn't create this account, please ignore this email.\n"
    )

    return {
        "subject": "Verify Your Smart Attendance System Account",
        "html": html,
        "text": text,
    }


def _send_with_brevo(to_email: str, name: str, template: Dict[str, str]):
    configuration = sib_api_v3_sdk.Configuration()
    configuration.api_key['api-key'] = config.BREVO_API_KEY
    api_instance = sib_api_v3_sdk.TransactionalEmailsApi(
        sib_api_v3_sdk.ApiClient(configuration)
    )
    send_smtp_email = sib_api_v3_sdk.SendSmtpEmail(
        to=[{"email": to_email, "name": name}],
        sender={"email": config.FROM_EMAIL, "name": SENDER_NAME},
        subject=template["subject"],
        html_content=template["html"],
        text_content=template["text"],
    )
    api_instance.send_transac_email(send_smtp_email)


def _send_with_ses(to_email: str, template: Dict[str, str]):
    get_client("ses").send_email(
        Source=config.FROM_EMAIL,
        Destination={"ToAddresses": [to_email]},
        Message={
            "Subject": {"Data": template["subject"], "Charset": "UTF-8"},
            "Body": {
                "Html": {"Data": template["html"], "Charset": "UTF-8"},
                "Text": {"Data": template["text"], "Charset": "UTF-8"},
            },
        },
    )


def send_verification_email(to_email: str, name: str, token: str) -> bool:
    """Send the account verification email. Returns False (and logs) on failure."""
    verification_url = build_verification_url(token)
    template = get_verification_email_template(name, verification_url)
    provider = config.EMAIL_PROVIDER

    try:
        if provider == "brevo":
            _send_with_brevo(to_email, name, template)
        elif provider == "ses":
            _send_with_ses(to_email, template)
        else:
            logger.info("[EMAIL] Console mode, not sending. To: %s Subject: %s", to_email, template["subject"])
            logger.info("[EMAIL] Verification URL: %s", verification_url)
            return True

        logger.info("[EMAIL] Verification email sent to %s via %s", to_email, provider)
        return True

    except ApiException as e:
        logger.error("[EMAIL] Brevo API error: %s", e)
        return False
    except (ClientError, BotoCoreError) as e:
        logger.error("[EMAIL] SES error: %s", e)
        return False
    except Exception as e:
        logger.error("[EMAIL] Error sending email: %s", e)
        return False
