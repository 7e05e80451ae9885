"""
Script: ci_helpers/step_download_file.py
What: Downloads one file for later workflow steps.
Doing: Reads `DOWNLOAD_URL` and `DOWNLOAD_OUT`, creates the parent directory, and streams the file to disk.
Why: Tool archives and fixtures are fetched the same way in every job.
Goal: Provide `path` of the downloaded file, or fail the step with the HTTP status.
"""

from __future__ import annotations

from pathlib import Path

from ci_helpers.common import require_env, write_github_outputs
from ci_helpers.web import download_file


def main() -> None:
    url = require_env("DOWNLOAD_URL")
    out_path = Path(require_env("DOWNLOAD_OUT"))

    out_path.parent.mkdir(parents=True, exist_ok=True)
    download_file(url, str(out_path))
    write_github_outputs({"path": str(out_path)})

    print(f"Downloaded {url} to {out_path} ({out_path.stat().st_size} bytes)")


if __name__ == "__main__":
    main()
