"""
SendGrid operator alerts for OmniFlow CRM
- Critical alerts (circuit breaker tripped, scheduler failures)
- Automation run summary when a run ends with errors
"""

import os
import logging
from datetime import datetime, timezone
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail, Email, To, Content

logger = logging.getLogger("email_service")

# Configuration
SENDGRID_API_KEY = os.environ.get('SENDGRID_API_KEY', '')
ALERT_EMAIL = os.environ.get('ALERT_EMAIL', '')
SENDER_EMAIL = os.environ.get('SENDER_EMAIL', 'noreply@omniflow.app')
APP_URL = os.environ.get('APP_URL', 'http://localhost:3000')


class EmailService:
    """Operator notifications (platform email, not tenant email)"""

    def __init__(self):
        self.api_key = SENDGRID_API_KEY
        self.sender = SENDER_EMAIL
        self.alert_recipient = ALERT_EMAIL

    def _send_email(self, to_email: str, subject: str, html_content: str) -> bool:
        """Send through SendGrid"""
        if not self.api_key or not to_email:
            logger.warning("SENDGRID_API_KEY or ALERT_EMAIL not configured, alert not sent")
            return False

        try:
            message = Mail(
                from_email=Email(self.sender, "OmniFlow CRM"),
                to_emails=To(to_email),
                subject=subject,
                html_content=Content("text/html", html_content)
            )

            sg = SendGridAPIClient(self.api_key)
            response = sg.send(message)

            if response.status_code in [200, 202]:
                logger.info(f"Alert sent to {to_email}: {subject}")
                return True
            else:
                logger.error(f"SendGrid error: {response.status_code}")
                return False

        except Exception as e:
            logger.error(f"SendGrid exception: {str(e)}")
            return False

    @staticmethod
    def _details_html(details: dict = None) -> str:
        if not details:
            return ""
        items = "".join(f"<li><strong>{key}:</strong> {value}</li>" for key, value in details.items())
        return f"<ul>{items}</ul>"

    # ==================== CRITICAL ALERTS ====================

    def send_critical_alert(self, alert_type: str, message: str, details: dict = None) -> bool:
        """
        Immediate alert.
        Types: CIRCUIT_BREAKER, AUTOMATION_FAILURE, CAMPAIGN_FAILURE, SYSTEM_ERROR
        """
        subject = f"🚨 CRITICAL ALERT - {alert_type}"
        details_html = self._details_html(details)

        html_content = f"""
        <!DOCTYPE html>
        <html>
        <head>
            <style>
                body {{ font-family: Arial, sans-serif; margin: 0; padding: 20px; background-color: #f5f5f5; }}
                .container {{ max-width: 600px; margin: 0 auto; background: white; border-radius: 8px; overflow: hidden; }}
                .header {{ background: #DC2626; color: white; padding: 20px; text-align: center; }}
                .content {{ padding: 30px; }}
                .alert-box {{ background: #FEF2F2; border-left: 4px solid #DC2626; padding: 15px; margin: 20px 0; }}
                .details {{ background: #F3F4F6; padding: 15px; border-radius: 4px; margin-top: 20px; }}
                .footer {{ background: #F9FAFB; padding: 15px; text-align: center; font-size: 12px; color: #6B7280; }}
            </style>
        </head>
        <body>
            <div class="container">
                <div class="header"><h1>🚨 CRITICAL ALERT</h1></div>
                <div class="content">
                    <p>{datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S')} UTC</p>
                    <div class="alert-box">
                        <strong>Type:</strong> {alert_type}<br>
                        <strong>Message:</strong> {message}
                    </div>
                    {f'<div class="details"><strong>Details:</strong>{details_html}</div>' if details_html else ''}
                    <p><a href="{APP_URL}">Open the dashboard</a></p>
                </div>
                <div class="footer">OmniFlow CRM - automatic alerts</div>
            </div>
        </body>
        </html>
        """

        return self._send_email(self.alert_recipient, subject, html_content)

    # ==================== AUTOMATION RUN SUMMARY ====================

    def send_automation_run_summary(self, result: dict) -> bool:
        """
        result = run_all_automations() output:
        {"companies_processed", "total_states_processed", "total_emails_sent",
         "total_new_enrollments", "total_errors", "skipped_quota",
         "skipped_circuit_breaker", "errors": [...]}
        """
        subject = f"⚠️ Email automation run: {result.get('total_errors', 0)} errors"

        errors_html = "".join(f"<li>{e}</li>" for e in result.get("errors", [])[:20])
        rows = [
            ("Companies processed", result.get("companies_processed", 0)),
            ("States processed", result.get("total_states_processed", 0)),
            ("Emails sent", result.get("total_emails_sent", 0)),
            ("New enrollments", result.get("total_new_enrollments", 0)),
            ("Errors", result.get("total_errors", 0)),
            ("Skipped (quota)", result.get("skipped_quota", 0)),
            ("Skipped (circuit breaker)", result.get("skipped_circuit_breaker", 0)),
        ]
        rows_html = "".join(f"<tr><td>{label}</td><td><strong>{value}</strong></td></tr>" for label, value in rows)

        html_content = f"""
        <!DOCTYPE html>
        <html>
        <body style="font-family: Arial, sans-serif; background-color: #f5f5f5; padding: 20px;">
            <div style="max-width: 600px; margin: 0 auto; background: white; border-radius: 8px; padding: 30px;">
                <h2>Email automation run</h2>
                <p>{datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S')} UTC</p>
                <table cellpadding="6">{rows_html}</table>
                {f'<h3>Errors</h3><ul>{errors_html}</ul>' if errors_html else ''}
            </div>
        </body>
        </html>
        """

        return self._send_email(self.alert_recipient, subject, html_content)


# Global instance
email_service = EmailService()
