"""
Service Email - Envoi des codes OTP
Providers supportés: SMTP, Console (développement)
"""

import logging
import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from abc import ABC, abstractmethod

from authcore.models.enums import OTPPurpose

logger = logging.getLogger(__name__)


class EmailProvider(ABC):
    """Interface abstraite pour les providers Email"""

    name = 'abstract'

    @abstractmethod
    def send(self, to: str, subject: str, body: str, html: str = None) -> dict:
        """Envoie un email"""
        pass


class SMTPEmailProvider(EmailProvider):
    """
    Provider Email SMTP générique
    Compatible avec Gmail, Outlook, serveurs SMTP personnalisés

    Configuration requise:
        - host: Serveur SMTP (ex: smtp.gmail.com)
        - port: Port SMTP (587 pour TLS, 465 pour SSL)
        - username: Nom d'utilisateur/email
        - password: Mot de passe ou app password
        - from_email: Email expéditeur (défaut: username)
        - from_name: Nom expéditeur (optionnel)
        - use_ssl: SSL direct si port 465
    """

    name = 'smtp'

    def __init__(self, config: dict):
        self.host = config.get('host')
        self.port = int(config.get('port') or 587)
        self.username = config.get('username')
        self.password = config.get('password')
        self.from_email = config.get('from_email') or self.username
        self.from_name = config.get('from_name', 'Auth')
        self.use_ssl = config.get('use_ssl', self.port == 465)
        self.timeout = config.get('timeout', 10)

        if not all([self.host, self.username, self.password, self.from_email]):
            raise ValueError("SMTP config requires: host, username, password")

    def send(self, to: str, subject: str, body: str, html: str = None) -> dict:
        """Envoie un email via SMTP"""
        try:
            if html:
                msg = MIMEMultipart('alternative')
                msg.attach(MIMEText(body, 'plain', 'utf-8'))
                msg.attach(MIMEText(html, 'html', 'utf-8'))
            else:
                msg = MIMEText(body, 'plain', 'utf-8')

            msg['Subject'] = subject
            msg['From'] = f"{self.from_name} <{self.from_email}>"
            msg['To'] = to

            if self.use_ssl:
                server = smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout)
            else:
                server = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
                server.starttls()

            try:
                server.login(self.username, self.password)
                server.sendmail(self.from_email, [to], msg.as_string())
            finally:
                server.quit()

            logger.info(f"Email SMTP sent to {to}")
            return {'success': True, 'provider': 'smtp', 'to': to}
        except smtplib.SMTPAuthenticationError as e:
            logger.error(f"SMTP auth error: {str(e)}")
            return {
                'success': False,
                'provider': 'smtp',
                'error': 'Authentication failed. Check username/password.',
                'to': to
            }
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP error: {str(e)}")
            return {'success': False, 'provider': 'smtp', 'error': str(e), 'to': to}


class ConsoleEmailProvider(EmailProvider):
    """
    Provider de développement: écrit l'email dans les logs.
    Seul endroit où un code OTP apparaît en clair dans les logs.
    """

    name = 'console'

    def send(self, to: str, subject: str, body: str, html: str = None) -> dict:
        logger.warning(f"[DEV EMAIL] to={to} | {subject}\n{body}")
        return {'success': True, 'provider': 'console', 'to': to}


SUBJECTS = {
    OTPPurpose.LOGIN.value: 'Votre code de connexion',
    OTPPurpose.VERIFY_EMAIL.value: 'Vérifiez votre adresse email',
    OTPPurpose.ACCOUNT_RECOVERY.value: 'Récupération de votre compte',
}


class OTPMailer:
    """
    Envoi des codes OTP par email.
    Ne lève jamais d'exception: retourne True si l'email est parti.
    """

    def __init__(self, provider: EmailProvider):
        self.provider = provider

    def send_otp(self, email: str, code: str, purpose: str = OTPPurpose.LOGIN.value,
                 ttl_minutes: int = 10) -> bool:
        subject = SUBJECTS.get(purpose, SUBJECTS[OTPPurpose.LOGIN.value])
        body = (
            f"Votre code de vérification est : {code}\n\n"
            f"Ce code expire dans {ttl_minutes} minutes.\n"
            f"Si vous n'êtes pas à l'origine de cette demande, ignorez cet email."
        )
        html = (
            f"<p>Votre code de vérification est :</p>"
            f"<p style=\"font-size:24px;font-weight:bold;letter-spacing:4px\">{code}</p>"
            f"<p>Ce code expire dans {ttl_minutes} minutes.</p>"
        )
        try:
            result = self.provider.send(email, subject, body, html)
        except Exception as e:
            logger.error(f"OTP email error ({self.provider.name}): {e}")
            return False
        return bool(result.get('success'))


def build_mailer(app) -> OTPMailer:
    """SMTP si SMTP_USER est configuré, console sinon"""
    if app.config.get('SMTP_USER'):
        provider = SMTPEmailProvider({
            'host': app.config.get('SMTP_HOST'),
            'port': app.config.get('SMTP_PORT'),
            'username': app.config.get('SMTP_USER'),
            'password': app.config.get('SMTP_PASS'),
            'from_email': app.config.get('SMTP_FROM'),
            'from_name': app.config.get('SMTP_FROM_NAME'),
        })
    else:
        if not app.config.get('TESTING'):
            logger.warning("SMTP not configured, OTP emails will be written to the log")
        provider = ConsoleEmailProvider()
    return OTPMailer(provider)
