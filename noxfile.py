import nox

PYTHON_VERSIONS = ["3.11", "3.12", "3.13"]


def _install(session: nox.Session) -> None:
    """Install the project with the test extra into the nox virtualenv."""
    session.install("-e", ".[test]")


@nox.session(python=PYTHON_VERSIONS)
def tests(session: nox.Session) -> None:
    """Run full test suite across Python versions."""
    _install(session)
    session.run("pytest", *session.posargs)


@nox.session(python=PYTHON_VERSIONS)
def domain(session: nox.Session) -> None:
    """Run domain-layer tests only (no HTTP, no threads)."""
    _install(session)
    session.run("pytest", "-m", "domain", *session.posargs)


@nox.session(python=PYTHON_VERSIONS)
def application(session: nox.Session) -> None:
    """Run command handler and service tests."""
    _install(session)
    session.run("pytest", "-m", "application", *session.posargs)


@nox.session(python=PYTHON_VERSIONS)
def integration(session: nox.Session) -> None:
    """Run API and end-to-end reconciliation tests."""
    _install(session)
    session.run("pytest", "-m", "integration", *session.posargs)
