"""
API Dependencies

Explicit construction of the services shared by the route handlers.
The database handle is opened once per application and passed down; there
is no module-level instance.
"""

from dataclasses import dataclass

from portal.auth.registration import RegistrationWorkflow
from portal.auth.sessions import SessionService
from portal.database import Database
from portal.mailer import Mailer, create_mailer
from portal.migrations import Migrator


@dataclass
class Services:
    """Everything a handler may touch."""
    config: dict
    db: Database
    sessions: SessionService
    registration: RegistrationWorkflow
    mailer: Mailer

    @property
    def password_scheme(self) -> str:
        return self.config.get("auth", {}).get("password_scheme", "plaintext")


def open_database(config: dict, check_same_thread: bool = False) -> Database:
    """Open the database named in the config."""
    return Database(config["database"]["path"], check_same_thread=check_same_thread)


def run_migrations(db: Database, config: dict) -> list[str]:
    """Apply pending migrations. MigrationError propagates to the caller."""
    migrator = Migrator(db, config["database"]["migrations_dir"])
    return migrator.migrate()


def build_services(config: dict, db: Database, mailer: Mailer = None) -> Services:
    """Wire the session service, mailer and registration workflow around a database."""
    mailer = mailer or create_mailer(config)
    sessions = SessionService(db)
    registration_config = config.get("registration", {})
    registration = RegistrationWorkflow(
        db,
        sessions,
        mailer,
        base_url=config.get("app_base_url", "http://localhost:5173"),
        sender=config.get("smtp", {}).get("sender", "no-reply@company.com"),
        token_hours=int(registration_config.get("token_hours", 24)),
        min_password_length=int(registration_config.get("min_password_length", 8)),
        password_scheme=config.get("auth", {}).get("password_scheme", "plaintext"),
    )
    return Services(
        config=config,
        db=db,
        sessions=sessions,
        registration=registration,
        mailer=mailer,
    )
