"""CLI tool for admin operations.

Usage:
    python -m ekman.cli create-user
    python -m ekman.cli purge-sessions
"""

import sys
import getpass
import time
from datetime import datetime, timedelta, timezone

from sqlmodel import Session

from ekman.config import settings
from ekman.database import engine, create_db_and_tables
from ekman.errors import AuthError
from ekman.services.auth import AuthService
from ekman.services.credentials import CredentialStore
from ekman.services.otp import OTPVerifier
from ekman.services.sessions import SessionManager
from ekman.utils.logging import setup_logging


def _auth_service(session: Session) -> AuthService:
    return AuthService(
        credentials=CredentialStore(session),
        sessions=SessionManager.from_settings(session, settings),
        verifier=OTPVerifier.from_settings(settings),
        issuer=settings.totp_issuer,
        enrollment_ttl=timedelta(minutes=settings.totp_enrollment_ttl_minutes),
    )


def create_user():
    """Enroll a user from the terminal: secret first, committed only after a valid code."""
    create_db_and_tables()

    username = input("Username: ").strip()
    if not username:
        print("Username cannot be empty.")
        sys.exit(1)

    password = getpass.getpass("Password: ")
    password_confirm = getpass.getpass("Confirm password: ")
    if not password:
        print("Password cannot be empty.")
        sys.exit(1)
    if password != password_confirm:
        print("Passwords do not match.")
        sys.exit(1)

    with Session(engine) as session:
        auth = _auth_service(session)
        if auth.credentials.find_user(username):
            print(f"User '{username}' already exists.")
            sys.exit(1)

        totp_secret, totp_uri = auth.totp_setup(username)
        print(f"\nTOTP Secret: {totp_secret}")
        print(f"TOTP URI: {totp_uri}")
        print("\nScan the QR code below with your authenticator app:")

        try:
            import qrcode
            qr = qrcode.QRCode(box_size=1, border=1)
            qr.add_data(totp_uri)
            qr.make(fit=True)
            qr.print_ascii(invert=True)
        except ImportError:
            print("(Install ekman[qr] to display QR code in terminal)")

        code = input("\nCode from your authenticator: ").strip()
        try:
            _, auth_session = auth.register(username, password, totp_secret, code)
        except AuthError as e:
            print(f"Registration failed: {e.detail}. Nothing was saved; run the command again.")
            sys.exit(1)
        # The CLI has no use for the session the web flow hands out.
        auth.logout(auth_session.token)

    print(f"\nUser '{username}' created successfully.")


def purge_sessions():
    """Delete expired sessions and enrollment secrets nobody registered with."""
    create_db_and_tables()
    with Session(engine) as session:
        removed = SessionManager.from_settings(session, settings, clock=time.time).purge_expired()
        stale = CredentialStore(session).purge_issued_secrets(datetime.now(timezone.utc))
    print(f"Removed {removed} expired session(s) and {stale} unused enrollment secret(s).")


def main():
    setup_logging()
    if len(sys.argv) < 2:
        print("Usage: python -m ekman.cli <command>")
        print("Commands: create-user, purge-sessions")
        sys.exit(1)

    command = sys.argv[1]
    if command == "create-user":
        create_user()
    elif command == "purge-sessions":
        purge_sessions()
    else:
        print(f"Unknown command: {command}")
        sys.exit(1)


if __name__ == "__main__":
    main()
