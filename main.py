"""Repo entrypoint.

Keep this file tiny so `python main.py submit ...` works, while the real
implementation lives in the `crpt_api` package.
"""

from crpt_api.main import main


if __name__ == "__main__":
    raise SystemExit(main())
