import nox

nox.needs_version = ">=2024.4.15"
nox.options.default_venv_backend = "uv|virtualenv"


@nox.session(python=["3.9", "3.10", "3.11", "3.12", "3.13"])
@nox.parametrize("editable", [True, False])
def tests(session: nox.Session, editable: bool) -> None:
    session.install("-e.[test]" if editable else ".[test]")
    session.run("pytest", "--timeout=30", "tests", *session.posargs)


@nox.session
def installed_import(session: nox.Session) -> None:
    session.install(".")
    out = session.run(
        "python", "-c", "import upload_progress; print(upload_progress.__version__)", silent=True
    )
    assert out.strip(), "upload_progress did not report a version"
