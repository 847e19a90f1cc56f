"""
Notification Service - Email and SMS delivery for triage events.

Channels:
1. Email - Via AWS SES with secure portal links
2. SMS - Via Twilio for urgent alerts (PHI-minimal)

AlertNotifier composes the messages for each triage event (new alert,
escalation, force-claim, claim timeout, assessment reminder) and never
raises: every delivery failure is logged and reported as False.
"""

import logging
from typing import List, Optional

import boto3
from twilio.rest import Client as TwilioClient

from alert_triage.config import Settings, settings as default_settings
from alert_triage.schemas.alert_schemas import AlertSnapshot, Severity
from .config_service import AlertEngineConfig, AlertConfigService
from .interfaces import (
    ClinicianContact,
    NotificationSender,
    PatientContact,
    RequiredAssessment,
    UserContact,
)

logger = logging.getLogger(__name__)


class NotificationService:
    """AWS SES / Twilio backed NotificationSender"""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or default_settings

        self.twilio_client = None
        self.twilio_from_number = self.settings.TWILIO_PHONE_NUMBER
        if self.settings.sms_configured():
            try:
                self.twilio_client = TwilioClient(
                    self.settings.TWILIO_ACCOUNT_SID,
                    self.settings.TWILIO_AUTH_TOKEN
                )
                logger.info("Twilio SMS notifications enabled")
            except Exception as e:
                logger.warning(f"Twilio initialization failed: {e}")

        self.ses_client = None
        if self.settings.email_configured():
            try:
                self.ses_client = boto3.client(
                    'ses',
                    region_name=self.settings.AWS_REGION,
                    aws_access_key_id=self.settings.AWS_ACCESS_KEY_ID,
                    aws_secret_access_key=self.settings.AWS_SECRET_ACCESS_KEY
                )
                logger.info("AWS SES email notifications enabled")
            except Exception as e:
                logger.warning(f"AWS SES initialization failed: {e}")

    def send_email(self, to: str, subject: str, body: str) -> bool:
        if not self.ses_client or not to:
            logger.warning("Email not available or no email address")
            return False

        try:
            response = self.ses_client.send_email(
                Source=self.settings.AWS_SES_FROM_EMAIL,
                Destination={'ToAddresses': [to]},
                Message={
                    'Subject': {'Data': subject, 'Charset': 'UTF-8'},
                    'Body': {'Text': {'Data': body, 'Charset': 'UTF-8'}}
                }
            )
            logger.info(f"Email sent: {response.get('MessageId')}")
            return True
        except Exception as e:
            logger.error(f"Error sending email: {e}")
            return False

    def send_sms(self, to: str, body: str) -> bool:
        if not self.twilio_client or not to:
            logger.warning("SMS not available or no phone number")
            return False

        try:
            message = self.twilio_client.messages.create(
                body=body,
                from_=self.twilio_from_number,
                to=to
            )
            logger.info(f"SMS sent: {message.sid}")
            return True
        except Exception as e:
            logger.error(f"Error sending SMS: {e}")
            return False


class AlertNotifier:
    """Best-effort triage notifications on top of a NotificationSender"""

    def __init__(
        self,
        sender: Optional[NotificationSender],
        config: Optional[AlertEngineConfig] = None,
        frontend_url: Optional[str] = None
    ):
        self.sender = sender
        self.config = config or AlertConfigService().config
        self.frontend_url = (frontend_url or default_settings.FRONTEND_URL).rstrip("/")

    def _alert_link(self, alert_id: str) -> str:
        return f"{self.frontend_url}/alerts/{alert_id}"

    def _email(self, to: Optional[str], subject: str, body: str) -> bool:
        if not self.sender or not self.config.email_enabled or not to:
            return False
        try:
            return bool(self.sender.send_email(to, subject, body))
        except Exception as e:
            logger.error(f"Email delivery failed: {e}")
            return False

    def _sms(self, to: Optional[str], body: str) -> bool:
        if not self.sender or not self.config.sms_enabled or not to:
            return False
        try:
            return bool(self.sender.send_sms(to, body))
        except Exception as e:
            logger.error(f"SMS delivery failed: {e}")
            return False

    def notify_alert_created(self, alert: AlertSnapshot, clinician: Optional[ClinicianContact]) -> bool:
        """Email the assigned clinician for MEDIUM and above; CRITICAL also goes out by SMS"""
        if clinician is None or alert.severity == Severity.LOW.value:
            return False

        subject = f"[{alert.severity}] Patient alert requires review"
        body = (
            f"{alert.message}\n\n"
            f"Risk score: {alert.risk_score}\n"
            f"Respond by: {alert.sla_breach_time.isoformat() if alert.sla_breach_time else 'n/a'}\n\n"
            f"Review in the secure portal: {self._alert_link(alert.id)}"
        )
        sent = self._email(clinician.email, subject, body)

        if alert.severity == Severity.CRITICAL.value:
            sms = "Health Alert: CRITICAL priority pattern detected. Review details in secure portal."
            sent = self._sms(clinician.phone, sms) or sent
        return sent

    def notify_escalation(
        self,
        alert: AlertSnapshot,
        recipients: List[UserContact],
        reason: str
    ) -> int:
        """Returns the number of recipients reached on at least one channel"""
        reached = 0
        subject = f"[ESCALATION] [{alert.severity}] Alert requires supervisor attention"
        body = (
            f"{reason}\n\n"
            f"{alert.message}\n"
            f"Escalation level: {alert.escalation_level}\n\n"
            f"Review in the secure portal: {self._alert_link(alert.id)}"
        )
        sms = (
            f"[ESCALATION] Health Alert requires attention. "
            f"Severity: {alert.severity}. Please review in secure portal."
        )
        for recipient in recipients:
            sent = self._email(recipient.email, subject, body)
            if alert.severity in (Severity.CRITICAL.value, Severity.HIGH.value):
                sent = self._sms(recipient.phone, sms) or sent
            if sent:
                reached += 1
        return reached

    def notify_force_claim(self, alert: AlertSnapshot, prior_claimer: UserContact, reason: str) -> bool:
        subject = "An alert you claimed was reassigned"
        body = (
            f"A supervisor has taken over an alert you were handling.\n\n"
            f"Reason: {reason}\n\n"
            f"{self._alert_link(alert.id)}"
        )
        return self._email(prior_claimer.email, subject, body)

    def notify_claim_warning(self, alert: AlertSnapshot, claimer: UserContact, minutes_claimed: int) -> bool:
        remaining = max(0, self.config.claim_timeout_minutes - minutes_claimed)
        subject = "Claimed alert will be released soon"
        body = (
            f"You claimed an alert {minutes_claimed} minutes ago without resolving it. "
            f"It will be released back to the queue in about {remaining} minutes.\n\n"
            f"{self._alert_link(alert.id)}"
        )
        return self._email(claimer.email, subject, body)

    def notify_auto_release(self, alert: AlertSnapshot, claimer: UserContact) -> bool:
        subject = "Claimed alert released back to the queue"
        body = (
            f"An alert you claimed was released after {self.config.claim_timeout_minutes} "
            f"minutes without resolution.\n\n{self._alert_link(alert.id)}"
        )
        return self._email(claimer.email, subject, body)

    def send_assessment_reminder(
        self,
        patient: PatientContact,
        assessment: RequiredAssessment,
        hours_until_due: float
    ) -> bool:
        subject = f"Reminder: {assessment.template_name} due soon"
        body = (
            f"Hi {patient.first_name},\n\n"
            f"Your {assessment.template_name} is due in about {int(round(hours_until_due))} hours. "
            f"Please complete it in the patient portal: {self.frontend_url}/assessments"
        )
        return self._email(patient.email, subject, body)
