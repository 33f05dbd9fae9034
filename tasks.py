import os
import re
import sys

from invoke import run, task

version_file = os.path.join("upload_progress", "__init__.py")
version_regex = re.compile(r"((?:\d+)\.(?:\d+)\.(?:\d+))")

FUZZ_TARGETS = ("fuzz_decoder", "fuzz_options_header")


@task
def test(ctx, all=False):
    test_cmd = [
        "pytest",  # Test command
        "--cov-report term-missing",  # Print only uncovered lines to stdout
        "--cov upload_progress",  # Test only this package
        "--timeout=30",  # Each test should timeout after 30 sec
    ]

    # Test in this directory
    test_cmd.append("tests")

    res = run(" ".join(test_cmd), pty=False, warn=True)
    if not res.ok:
        sys.exit(res.return_code)


@task
def fuzz(ctx, target="fuzz_decoder", runs=100000):
    if target not in FUZZ_TARGETS:
        print("Unknown fuzz target %r, choose from %s" % (target, ", ".join(FUZZ_TARGETS)), file=sys.stderr)
        sys.exit(1)

    run("python %s -runs=%d" % (os.path.join("fuzz", target + ".py"), runs), pty=False)


@task
def version(ctx):
    with open(version_file) as f:
        print(version_regex.search(f.read()).group(0))
