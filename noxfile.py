"""
Nox session definitions
"""


import datetime
import os
import pathlib

import nox  # isort:skip

SKIP_REQUIREMENTS_INSTALL = os.environ.get("SKIP_REQUIREMENTS_INSTALL", "0") == "1"

# Global Path Definitions
REPO_ROOT = pathlib.Path(os.path.dirname(__file__)).resolve()
os.chdir(str(REPO_ROOT))

ARTIFACTS_DIR = REPO_ROOT / "artifacts"
PYTEST_LOGFILE = ARTIFACTS_DIR.joinpath(
    "logs",
    "pytest-{}.log".format(datetime.datetime.now().strftime("%Y%m%d%H%M%S.%f")),
)

# Nox options
#  Reuse existing virtualenvs
nox.options.reuse_existing_virtualenvs = True
#  Don't fail on missing interpreters
nox.options.error_on_missing_interpreters = False


# Prevent Python from writing bytecode
os.environ["PYTHONDONTWRITEBYTECODE"] = "1"


# <---------------------- SESSIONS ---------------------->
@nox.session
def tests(session):
    run_pytest_session(session)


@nox.session
@nox.parametrize("target", ("linux", "darwin"))
def wrap(session, target):
    """
    Regenerate libtor from lock.json, the repository is passed as TORWRAP_ROOT.
    """
    session.install(".")
    invoke_torwrap(session, "wrap", f"--target={target}", "--log-level=info")


@nox.session
def update(session):
    session.install(".")
    invoke_torwrap(session, "wrap", "--update", "--log-level=info")


# <---------------------- HELPERS ---------------------->
def run_pytest_session(session, *cmd_args):
    make_artifacts_directory()

    if not SKIP_REQUIREMENTS_INSTALL:
        session.install("-e", ".[tests]")

    default_args = [
        "-vv",
        "--showlocals",
        "--show-capture=no",
        "-ra",
        "-s",
        "--log-file-level=debug",
    ]

    # check for --log-file
    for arg in cmd_args:
        if arg.startswith("--log-file"):
            break
    else:
        default_args.append(f"--log-file={PYTEST_LOGFILE}")

    pytest_args = default_args + list(cmd_args) + list(session.posargs)
    session.run("python", "-m", "pytest", *pytest_args)


def invoke_torwrap(session, *cmd_args):
    session.run("python", "-m", "torwrap", *cmd_args)


def make_artifacts_directory():
    ARTIFACTS_DIR.mkdir(parents=True, exist_ok=True)
    ARTIFACTS_DIR.chmod(0o777)
