import logging

import resend

import config

logger = logging.getLogger(__name__)

SIGNUP_SUBJECT = "Signup succeeded!"
SIGNUP_HTML = "<h1>You successfully signed up! Stay with us for exciting offer and discount.</h1>"


class LogMailer:
    """Writes outgoing mail to the log instead of sending it."""

    def send(self, to_email: str, subject: str, html: str) -> None:
        logger.info("EMAIL to=%s subject=%s\n%s", to_email, subject, html)

    def send_safely(self, to_email: str, subject: str, html: str) -> None:
        try:
            self.send(to_email, subject, html)
        except Exception as e:
            logger.error("Sending mail to %s failed: %s", to_email, e)


class ResendMailer(LogMailer):
    def __init__(self, api_key: str, sender: str):
        self.api_key = api_key
        self.sender = sender

    def send(self, to_email: str, subject: str, html: str) -> None:
        resend.api_key = self.api_key
        resend.Emails.send({
            "from": self.sender,
            "to": [to_email],
            "subject": subject,
            "html": html,
        })


def build_mailer():
    if config.RESEND_API_KEY:
        return ResendMailer(config.RESEND_API_KEY, config.MAIL_FROM)
    return LogMailer()
