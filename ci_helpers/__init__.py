"""
Package: ci_helpers
What: Small helpers for build and CI tooling.
Doing: Wraps git, go, container runtimes, HTTP downloads and filesystem search behind plain Python calls.
Why: Lets workflow scripts and integration tests share one tested set of wrappers instead of ad-hoc shell.
Goal: Keep every external call readable, cancellable and easy to fake in tests.
"""
