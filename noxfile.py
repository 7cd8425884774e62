"""Nox sessions."""

from contextlib import contextmanager
from pathlib import Path
import tempfile
from typing import List
from uuid import uuid4

import nox
import toml


nox.options.sessions = "lint", "mypy", "tests", "xdoctest", "mindeps"
PY_VERSIONS = ["3.12", "3.11", "3.10", "3.9"]
PY_LATEST = "3.12"


@nox.session(python=PY_VERSIONS)
def tests(session):
    """Run the test suite."""
    args = session.posargs or ["--cov"]
    poetry_install(session, "test")
    session.run("pytest", *args)


@nox.session(python=PY_VERSIONS)
def xdoctest(session) -> None:
    """Run examples with xdoctest."""
    args = session.posargs or ["all"]
    poetry_install(session)
    install_with_constraints(session, "xdoctest")
    session.run("python", "-m", "xdoctest", "grpc_stub", *args)


def poetry_install(session, *extras):
    """Install this project via poetry, with the given extras."""
    args = ["poetry", "install", "--only", "main"]
    for extra in extras:
        args += ["--extras", extra]
    session.run(*args, external=True)


@nox.session(python=PY_LATEST)
def coverage(session):
    """Report coverage as XML."""
    install_with_constraints(session, "coverage[toml]")
    session.run("coverage", "xml", "--fail-under=0")


SOURCE_CODE = ["src", "tests", "noxfile.py"]


@nox.session(python=PY_LATEST)
def black(session):
    """Run black code formatter."""
    args = session.posargs or SOURCE_CODE
    install_with_constraints(session, "black")
    session.run("black", *args)


@nox.session(python=PY_LATEST)
def lint(session):
    """Lint using flake8."""
    args = session.posargs or SOURCE_CODE
    install_with_constraints(
        session,
        "flake8",
        "flake8-bandit",
        "flake8-bugbear",
        "flake8-docstrings",
        "flake8-import-order",
    )
    session.run("flake8", *args)


@nox.session(python=PY_VERSIONS)
def mypy(session):
    """Type-check using mypy."""
    args = session.posargs or ["src"]
    install_with_constraints(session, "mypy")
    session.run("mypy", "--ignore-missing-imports", *args)


@nox.session(python="3.9")
def mindeps(session):
    """Run test with minimum versions of dependencies."""
    deps = _parse_minimum_dependency_versions()
    session.install(*deps)
    session.run("pytest", env={"PYTHONPATH": "src"})


def install_with_constraints(session, *args, **kwargs):
    """Install packages constrained by Poetry's lock file."""
    with _temp_file() as requirements:
        session.run(
            "poetry",
            "export",
            "--with=dev",
            "--all-extras",
            "--format=requirements.txt",
            f"--output={requirements}",
            "--without-hashes",
            external=True,
        )
        session.install(f"--constraint={requirements}", *args, **kwargs)


@contextmanager
def _temp_file():
    # NamedTemporaryFile doesn't work on Windows.
    path = Path(tempfile.gettempdir()) / str(uuid4())
    try:
        yield path
    finally:
        try:
            path.unlink()
        except FileNotFoundError:
            pass


def _parse_minimum_dependency_versions() -> List[str]:
    pyproj = toml.load("pyproject.toml")
    dependencies = pyproj["tool"]["poetry"]["dependencies"]
    min_deps = []

    for dep, constraint in dependencies.items():
        if dep == "python":
            continue

        if not isinstance(constraint, str):
            # Optional deps (the test extra) are dicts with a version.
            constraint = constraint["version"]

        if constraint.startswith("^") or constraint.startswith("~"):
            version = constraint[1:]
        elif constraint.startswith(">="):
            version = constraint[2:]
        else:
            version = constraint

        min_deps.append(f"{dep}=={version}")

    return min_deps
